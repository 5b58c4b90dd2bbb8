"""
Domain entities for durable review workflows.

These are the core domain objects: workflow instances, their replay log of
step records, the wait they are suspended on, and the events that resume
them. They are independent of any persistence mechanism.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .enums import InstanceStatus, WorkflowType
from .state_machine import InstanceStateMachine

# Step names under which delivered events are recorded in the step log
WAIT_STEP_PREFIX = "wait:"


def make_instance_id(workflow_type: WorkflowType) -> str:
    """Generate a type-tagged instance id, e.g. ``content_review-3f2a...``."""
    return f"{workflow_type.value}-{uuid4().hex}"


def parse_instance_type(instance_id: str) -> Optional[WorkflowType]:
    """
    Recover the workflow type embedded in an instance id.

    Returns None for ids that were not produced by make_instance_id.
    """
    prefix, sep, suffix = instance_id.rpartition("-")
    if not sep or len(suffix) != 32:
        return None
    try:
        int(suffix, 16)
        return WorkflowType(prefix)
    except ValueError:
        return None


def wait_step_name(event_name: str) -> str:
    return f"{WAIT_STEP_PREFIX}{event_name}"


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class StepRecord:
    """One memoized step result in an instance's replay log."""
    step_name: str
    result: Any = None
    completed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_name": self.step_name,
            "result": self.result,
            "completed_at": self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepRecord":
        return cls(
            step_name=data["step_name"],
            result=data.get("result"),
            completed_at=_parse_datetime(data["completed_at"]),
        )


@dataclass
class PendingWait:
    """The event an instance is suspended on and when the wait expires."""
    event_name: str
    deadline: datetime

    @classmethod
    def create(cls, event_name: str, timeout: timedelta, now: Optional[datetime] = None) -> "PendingWait":
        """Factory method computing the deadline from a timeout."""
        return cls(event_name=event_name, deadline=(now or datetime.utcnow()) + timeout)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.deadline <= (now or datetime.utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {"event_name": self.event_name, "deadline": self.deadline.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingWait":
        return cls(event_name=data["event_name"], deadline=_parse_datetime(data["deadline"]))


@dataclass
class Event:
    """
    An externally delivered event (or a synthetic deadline timeout).

    Timeouts are not errors: definitions branch on ``timed_out``.
    """
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=datetime.utcnow)
    timed_out: bool = False

    @classmethod
    def create(cls, name: str, payload: Optional[Dict[str, Any]] = None) -> "Event":
        """Factory method for a delivered event."""
        return cls(name=name, payload=payload or {}, received_at=datetime.utcnow())

    @classmethod
    def timeout(cls, name: str) -> "Event":
        """Factory method for the synthetic event the deadline sweep delivers."""
        return cls(name=name, payload={}, received_at=datetime.utcnow(), timed_out=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "payload": self.payload,
            "received_at": self.received_at.isoformat(),
            "timed_out": self.timed_out,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            name=data["name"],
            payload=data.get("payload") or {},
            received_at=_parse_datetime(data["received_at"]),
            timed_out=data.get("timed_out", False),
        )


@dataclass
class WorkflowInstance:
    """
    One running execution of a catalog definition for one submission.

    The step log is append-only; it is what makes replay deterministic.
    ``version`` is bumped on every persisted write and used for
    compare-and-set updates.
    """
    id: str
    workflow_type: WorkflowType
    submission_id: str
    status: InstanceStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    step_log: List[StepRecord] = field(default_factory=list)
    pending_wait: Optional[PendingWait] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    version: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        workflow_type: WorkflowType,
        submission_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "WorkflowInstance":
        """Factory method to create a new instance in RUNNING status."""
        now = datetime.utcnow()
        return cls(
            id=make_instance_id(workflow_type),
            workflow_type=workflow_type,
            submission_id=submission_id,
            status=InstanceStatus.RUNNING,
            payload=payload or {},
            step_log=[],
            version=0,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        """Check if the instance is in a terminal state."""
        return InstanceStateMachine.is_terminal(self.status)

    def get_step(self, step_name: str) -> Optional[StepRecord]:
        """Return the recorded result for a step, if it has completed."""
        for record in self.step_log:
            if record.step_name == step_name:
                return record
        return None

    def record_step(self, step_name: str, result: Any) -> StepRecord:
        """Append a step result to the replay log."""
        if self.get_step(step_name) is not None:
            raise ValueError(f"Step '{step_name}' already recorded for instance {self.id}")
        record = StepRecord(step_name=step_name, result=result, completed_at=datetime.utcnow())
        self.step_log.append(record)
        return record

    def get_event(self, event_name: str) -> Optional[Event]:
        """Return the event recorded for a wait, if one was delivered."""
        record = self.get_step(wait_step_name(event_name))
        return Event.from_dict(record.result) if record else None

    def transition(self, new_status: InstanceStatus) -> None:
        """Move to a new status, validated by the state machine."""
        self.status = InstanceStateMachine.transition(self.status, new_status)
        now = datetime.utcnow()
        self.updated_at = now
        if new_status != InstanceStatus.WAITING:
            self.pending_wait = None
        if InstanceStateMachine.is_terminal(new_status):
            self.completed_at = now
