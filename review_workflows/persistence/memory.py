"""In-memory implementations of the repositories.

Selected with ``DATABASE_URL=memory://``. Useful for tests and local runs;
data is not persisted across process restarts.
"""

import copy
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from review_workflows.domain import (
    WorkflowInstance, WorkflowType, InstanceStateMachine, InstanceStatus
)
from .repositories import (
    ActiveInstanceExistsError,
    InstanceRepository,
    SubmissionRepository,
    _check_table,
)


class InMemoryInstanceRepository(InstanceRepository):
    """Store workflow instances in a lock-guarded dict.

    Instances are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._lock = threading.Lock()

    def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        with self._lock:
            existing = self._find_active(instance.workflow_type, instance.submission_id)
            if existing is not None:
                raise ActiveInstanceExistsError(copy.deepcopy(existing))
            self._instances[instance.id] = copy.deepcopy(instance)
        return copy.deepcopy(instance)

    def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        with self._lock:
            instance = self._instances.get(instance_id)
            return copy.deepcopy(instance) if instance else None

    def save(self, instance: WorkflowInstance, expected_version: int) -> bool:
        with self._lock:
            stored = self._instances.get(instance.id)
            if stored is None or stored.version != expected_version:
                return False
            self._instances[instance.id] = copy.deepcopy(instance)
            return True

    def find_active(
        self, workflow_type: WorkflowType, submission_id: str
    ) -> Optional[WorkflowInstance]:
        with self._lock:
            existing = self._find_active(workflow_type, submission_id)
            return copy.deepcopy(existing) if existing else None

    def list_active(
        self, workflow_type: Optional[WorkflowType] = None, limit: int = 100
    ) -> List[WorkflowInstance]:
        return self._select(
            lambda i: InstanceStateMachine.is_active(i.status)
            and (workflow_type is None or i.workflow_type == workflow_type),
            key=lambda i: i.created_at,
            limit=limit,
        )

    def list_expired_waits(self, now: datetime, limit: int = 100) -> List[WorkflowInstance]:
        return self._select(
            lambda i: i.status == InstanceStatus.WAITING
            and i.pending_wait is not None
            and i.pending_wait.is_expired(now),
            key=lambda i: i.pending_wait.deadline,
            limit=limit,
        )

    def list_stalled(self, updated_before: datetime, limit: int = 100) -> List[WorkflowInstance]:
        return self._select(
            lambda i: i.status == InstanceStatus.RUNNING and i.updated_at < updated_before,
            key=lambda i: i.updated_at,
            limit=limit,
        )

    def _find_active(
        self, workflow_type: WorkflowType, submission_id: str
    ) -> Optional[WorkflowInstance]:
        for instance in self._instances.values():
            if (
                instance.workflow_type == workflow_type
                and instance.submission_id == submission_id
                and InstanceStateMachine.is_active(instance.status)
            ):
                return instance
        return None

    def _select(self, predicate, key, limit: int) -> List[WorkflowInstance]:
        with self._lock:
            matches = [i for i in self._instances.values() if predicate(i)]
            matches.sort(key=key)
            return [copy.deepcopy(i) for i in matches[:limit]]


class InMemorySubmissionRepository(SubmissionRepository):
    """Submission rows, unified queue rows and profiles held in dicts."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.unified: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def update_submission(self, table: str, submission_id: str, fields: Dict[str, Any]) -> None:
        _check_table(table)
        with self._lock:
            row = self.tables.setdefault(table, {}).setdefault(submission_id, {"id": submission_id})
            row.update(copy.deepcopy(fields))

    def upsert_unified(
        self, reference_id: str, submission_type: str, fields: Dict[str, Any]
    ) -> None:
        with self._lock:
            row = self.unified.setdefault(
                (reference_id, submission_type),
                {"reference_id": reference_id, "submission_type": submission_type},
            )
            row.update(copy.deepcopy(fields))

    def update_unified(
        self, reference_id: str, submission_type: str, fields: Dict[str, Any]
    ) -> None:
        with self._lock:
            row = self.unified.get((reference_id, submission_type))
            if row is not None:
                row.update(copy.deepcopy(fields))

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            profile = self.profiles.get(user_id)
            return copy.deepcopy(profile) if profile else None

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            profile = self.profiles.get(user_id)
            if profile is not None:
                profile.update(copy.deepcopy(fields))

    def add_profile(self, user_id: str, email: Optional[str], capabilities: Optional[list] = None) -> None:
        """Seed a profile row."""
        with self._lock:
            self.profiles[user_id] = {
                "id": user_id,
                "email": email,
                "capabilities": list(capabilities or []),
            }

    def get_submission(self, table: str, submission_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.tables.get(table, {}).get(submission_id)
            return copy.deepcopy(row) if row else None

    def get_unified(self, reference_id: str, submission_type: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.unified.get((reference_id, submission_type))
            return copy.deepcopy(row) if row else None
