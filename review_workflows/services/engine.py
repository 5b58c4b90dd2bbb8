"""
Workflow engine - the durable execution core.

Creates instances, executes their steps with memoized results, suspends
them on events, resumes them on signals or deadline expiry, and persists
enough state after every step to pick up again after a crash.

Replay model: a definition is re-run from the top on every drive. Steps
already in the instance's step log return their recorded result without
running again, and waits already answered return the recorded event.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from review_workflows.config import Config, get_config
from review_workflows.domain import (
    Event,
    InstanceStatus,
    PendingWait,
    WorkflowInstance,
    WorkflowType,
    wait_step_name,
)
from review_workflows.persistence import ActiveInstanceExistsError, InstanceRepository
from .catalog import WorkflowCatalog

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Base exception for engine errors."""

    # Set when the error ended a specific instance
    instance_id: Optional[str] = None


class InstanceNotFoundError(EngineError):
    """Raised when an instance does not exist or no longer accepts changes."""
    pass


class SignalMismatchError(EngineError):
    """Raised when an event does not match what the instance is waiting on."""

    def __init__(self, instance_id: str, event_name: str, waiting_on: Optional[str] = None):
        self.instance_id = instance_id
        self.event_name = event_name
        self.waiting_on = waiting_on
        if waiting_on:
            detail = f"it is waiting on '{waiting_on}'"
        else:
            detail = "it is not waiting on an event"
        super().__init__(
            f"Instance {instance_id} cannot accept event '{event_name}': {detail}"
        )


class DuplicateInstanceError(EngineError):
    """Raised when a submission already has an active instance."""

    def __init__(self, existing: WorkflowInstance):
        self.existing = existing
        super().__init__(
            f"Instance {existing.id} is already active for submission {existing.submission_id}"
        )


class StepExecutionError(EngineError):
    """Raised when a step fails after exhausting its retries."""

    def __init__(self, step_name: str, message: str, details: Optional[Dict] = None):
        self.step_name = step_name
        self.details = details or {}
        super().__init__(f"Step '{step_name}' failed: {message}")


class ConcurrentModificationError(EngineError):
    """Raised when a write loses a version race for an instance."""
    pass


class WorkflowSuspended(Exception):
    """Unwinds a run that has suspended on wait_for_event."""


class WorkflowCancelled(Exception):
    """Unwinds a run whose instance was cancelled while it executed."""

    def __init__(self, instance: WorkflowInstance):
        self.instance = instance
        super().__init__(f"Instance {instance.id} was cancelled")


class WorkflowContext:
    """
    The handle a definition uses to run steps and waits for one instance.

    A new context is created for each drive of an instance.
    """

    def __init__(self, engine: "WorkflowEngine", instance: WorkflowInstance):
        self.engine = engine
        self.instance = instance

    @property
    def instance_id(self) -> str:
        return self.instance.id

    def idempotency_key(self, step_name: str) -> str:
        """Stable key for side effects performed by a step."""
        return f"{self.instance.id}:{step_name}"

    def step(self, name: str, fn: Callable[[], Any]) -> Any:
        """
        Run ``fn`` once for this instance and memoize its result.

        The result must be JSON-serializable. On replay the recorded
        result is returned and ``fn`` is not called.
        """
        record = self.instance.get_step(name)
        if record is not None:
            logger.debug(f"Replaying step '{name}' for instance {self.instance.id}")
            return record.result

        result = self.engine._run_step(self.instance, name, fn)
        self.instance.record_step(name, result)
        self.engine._persist(self.instance)
        return result

    def wait_for_event(self, event_name: str, timeout: timedelta) -> Event:
        """
        Return the event delivered for this wait, suspending if there is none yet.

        If the deadline passes first the returned event has ``timed_out`` set.
        """
        event = self.instance.get_event(event_name)
        if event is not None:
            return event

        pending = self.instance.pending_wait
        if self.instance.status == InstanceStatus.WAITING and pending and pending.event_name == event_name:
            raise WorkflowSuspended()

        self.engine._suspend(self.instance, event_name, timeout)
        raise WorkflowSuspended()


class WorkflowEngine:
    """
    Durable workflow execution engine.

    Responsibilities:
    - Create instances (at most one active per submission)
    - Execute steps in declared order with memoized results
    - Retry failed steps with exponential backoff
    - Suspend on events and resume on signals or deadline expiry
    - Persist every state change with compare-and-set on the instance version
    """

    def __init__(
        self,
        catalog: WorkflowCatalog,
        instance_repo: InstanceRepository,
        config: Optional[Config] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.catalog = catalog
        self.instance_repo = instance_repo
        self.config = config or get_config()
        self.sleep = sleep
        self.clock = clock

    def create(self, workflow_type, payload: Optional[Dict[str, Any]] = None) -> WorkflowInstance:
        """
        Create an instance and run it to its first suspension point or completion.

        ``workflow_type`` may be a WorkflowType, its value, or a trigger alias.
        """
        definition = self.catalog.resolve(workflow_type)
        payload = payload or {}
        submission_id = definition.submission_id(payload)

        instance = WorkflowInstance.create(definition.workflow_type, submission_id, payload)
        try:
            instance = self.instance_repo.create(instance)
        except ActiveInstanceExistsError as e:
            logger.info(
                f"Submission {submission_id} already has active instance {e.existing.id}"
            )
            raise DuplicateInstanceError(e.existing)

        logger.info(
            f"Created instance {instance.id} ({definition.workflow_type.value}) "
            f"for submission {submission_id}"
        )
        return self._drive(instance)

    def get(self, instance_id: str) -> WorkflowInstance:
        """Get an instance by ID."""
        instance = self.instance_repo.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")
        return instance

    def list_active(
        self, workflow_type: Optional[WorkflowType] = None, limit: int = 100
    ) -> List[WorkflowInstance]:
        """List running and waiting instances."""
        return self.instance_repo.list_active(workflow_type=workflow_type, limit=limit)

    def resume(
        self, instance_id: str, event: Event, now: Optional[datetime] = None
    ) -> WorkflowInstance:
        """
        Deliver an event to a waiting instance and continue executing it.

        Exactly one of several concurrent resumers wins; the others get
        SignalMismatchError and change nothing.
        """
        instance = self._get_active(instance_id)
        pending = instance.pending_wait

        if instance.status != InstanceStatus.WAITING or pending is None:
            raise SignalMismatchError(instance_id, event.name)
        if pending.event_name != event.name:
            raise SignalMismatchError(instance_id, event.name, pending.event_name)
        if event.timed_out and not pending.is_expired(now or self.clock()):
            raise SignalMismatchError(instance_id, event.name, pending.event_name)

        instance.record_step(wait_step_name(event.name), event.to_dict())
        instance.transition(InstanceStatus.RUNNING)

        try:
            self._persist(instance)
        except ConcurrentModificationError:
            raise SignalMismatchError(instance_id, event.name)
        except WorkflowCancelled:
            raise InstanceNotFoundError(f"Instance {instance_id} was cancelled")

        if event.timed_out:
            logger.info(f"Instance {instance_id} resumed by timeout of '{event.name}'")
        else:
            logger.info(f"Instance {instance_id} resumed by event '{event.name}'")

        return self._drive(instance)

    def replay(self, instance_id: str) -> WorkflowInstance:
        """
        Re-drive an instance from its step log.

        Completed steps are skipped, so replaying never repeats a side effect.
        """
        instance = self.get(instance_id)
        if instance.is_terminal:
            return instance
        return self._drive(instance)

    def cancel(self, instance_id: str) -> WorkflowInstance:
        """
        Cancel an active instance.

        Side effects already committed are not rolled back. A run in flight
        stops at its next persisted write.
        """
        for _ in range(5):
            instance = self._get_active(instance_id)
            instance.transition(InstanceStatus.CANCELLED)
            try:
                self._persist(instance)
            except ConcurrentModificationError:
                continue
            except WorkflowCancelled as e:
                return e.instance
            logger.info(f"Instance {instance_id} cancelled")
            return instance

        raise ConcurrentModificationError(f"Could not cancel instance {instance_id}")

    def sweep_expired(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """
        Resume every instance whose wait deadline has passed with a timeout event.

        Returns the number of timeouts delivered.
        """
        now = now or self.clock()
        fired = 0

        for instance in self.instance_repo.list_expired_waits(now, limit=limit):
            event = Event.timeout(instance.pending_wait.event_name)
            try:
                self.resume(instance.id, event, now=now)
                fired += 1
            except (SignalMismatchError, InstanceNotFoundError) as e:
                logger.warning(f"Skipping timeout for instance {instance.id}: {e}")
            except EngineError as e:
                fired += 1
                logger.error(f"Instance {instance.id} failed after timeout: {e}")

        if fired:
            logger.info(f"Delivered {fired} wait timeouts")
        return fired

    def recover_stalled(self, older_than: Optional[timedelta] = None, limit: int = 100) -> int:
        """
        Re-drive running instances that stopped being written, e.g. after a crash.

        Returns the number of instances re-driven.
        """
        older_than = older_than or timedelta(seconds=self.config.STALLED_AFTER_SECONDS)
        threshold = self.clock() - older_than
        recovered = 0

        for instance in self.instance_repo.list_stalled(threshold, limit=limit):
            logger.warning(f"Recovering stalled instance {instance.id}")
            try:
                self._drive(instance)
            except ConcurrentModificationError as e:
                logger.warning(f"Instance {instance.id} is being driven elsewhere: {e}")
                continue
            except EngineError as e:
                logger.error(f"Recovery of instance {instance.id} failed: {e}")
            recovered += 1

        return recovered

    def _get_active(self, instance_id: str) -> WorkflowInstance:
        instance = self.get(instance_id)
        if instance.is_terminal:
            raise InstanceNotFoundError(
                f"Instance {instance_id} is already {instance.status.value}"
            )
        return instance

    def _drive(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Run the definition until it suspends, completes, fails or is cancelled."""
        definition = self.catalog.get(instance.workflow_type)
        ctx = WorkflowContext(self, instance)

        try:
            output = definition.run(ctx, instance.payload)
            self._complete(instance, output)
        except WorkflowSuspended:
            pass
        except WorkflowCancelled as e:
            logger.info(f"Instance {instance.id} was cancelled while running; stopping")
            return e.instance
        except StepExecutionError as e:
            logger.error(f"Instance {instance.id} failed: {e}")
            self._fail(instance, str(e))
            e.instance_id = instance.id
            raise
        except ConcurrentModificationError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in instance {instance.id}")
            self._fail(instance, f"Unexpected error: {e}")
            error = EngineError(f"Instance {instance.id} failed: {e}")
            error.instance_id = instance.id
            raise error from e

        return instance

    def _run_step(self, instance: WorkflowInstance, name: str, fn: Callable[[], Any]) -> Any:
        """
        Execute a step closure with retry logic.

        Returns the closure's result, raises StepExecutionError once all
        attempts are used.
        """
        max_attempts = self.config.STEP_MAX_ATTEMPTS
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info(
                    f"Running step '{name}' for instance {instance.id} "
                    f"(attempt {attempt}/{max_attempts})"
                )
                return fn()
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Step '{name}' attempt {attempt} failed for instance {instance.id}: {e}",
                    exc_info=True,
                )
                if attempt < max_attempts:
                    delay = self._calculate_backoff(attempt)
                    logger.info(f"Retrying step '{name}' in {delay:.2f}s")
                    self.sleep(delay)

        raise StepExecutionError(
            name,
            f"failed after {max_attempts} attempts: {last_error}",
            {"last_error": str(last_error), "error_type": type(last_error).__name__},
        )

    def _suspend(self, instance: WorkflowInstance, event_name: str, timeout: timedelta) -> None:
        instance.transition(InstanceStatus.WAITING)
        instance.pending_wait = PendingWait.create(event_name, timeout, now=self.clock())
        self._persist(instance)
        logger.info(
            f"Instance {instance.id} waiting on '{event_name}' "
            f"until {instance.pending_wait.deadline.isoformat()}"
        )

    def _complete(self, instance: WorkflowInstance, output: Optional[Dict[str, Any]]) -> None:
        instance.transition(InstanceStatus.COMPLETED)
        instance.output = output
        self._persist(instance)
        logger.info(f"Instance {instance.id} completed: {output}")

    def _fail(self, instance: WorkflowInstance, error_message: str) -> None:
        instance.transition(InstanceStatus.FAILED)
        instance.error = error_message
        try:
            self._persist(instance)
        except WorkflowCancelled:
            logger.info(f"Instance {instance.id} was cancelled before it could be marked failed")

    def _persist(self, instance: WorkflowInstance) -> None:
        """
        Write the instance with compare-and-set on its version.

        Raises WorkflowCancelled if the instance was cancelled underneath us,
        ConcurrentModificationError for any other lost race.
        """
        expected_version = instance.version
        instance.version = expected_version + 1
        instance.updated_at = self.clock()

        if self.instance_repo.save(instance, expected_version):
            return

        instance.version = expected_version
        current = self.instance_repo.get(instance.id)
        if current is not None and current.status == InstanceStatus.CANCELLED:
            raise WorkflowCancelled(current)
        raise ConcurrentModificationError(
            f"Instance {instance.id} was modified concurrently (expected version {expected_version})"
        )

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Calculate exponential backoff delay.

        Formula: min(base_delay * 2^attempt, max_delay)
        """
        delay = self.config.RETRY_BASE_DELAY * (2 ** attempt)
        return min(delay, self.config.RETRY_MAX_DELAY)
