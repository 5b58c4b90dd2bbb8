"""
Repository implementations for data access.

These repositories provide a clean interface between the engine and the
persistence layer. InstanceRepository owns the workflow replay records;
SubmissionRepository is the narrow window onto the platform's submission
tables that workflow steps update as a side effect.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg2 import errors, sql
from psycopg2.extras import Json

from review_workflows.domain import (
    WorkflowInstance, WorkflowType, InstanceStatus, StepRecord, PendingWait
)
from .database import Database

logger = logging.getLogger(__name__)


# Submission tables that workflow steps may update
SUBMISSION_TABLES = {
    "content_submissions",
    "directory_listings",
    "verification_requests",
    "experts",
}


class ActiveInstanceExistsError(Exception):
    """Raised when a submission already has a running or waiting instance."""

    def __init__(self, existing: WorkflowInstance):
        self.existing = existing
        super().__init__(
            f"Submission {existing.submission_id} already has active instance {existing.id}"
        )


class InstanceRepository(ABC):
    """Storage contract for workflow instances."""

    @abstractmethod
    def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist a new instance; raises ActiveInstanceExistsError on conflict."""

    @abstractmethod
    def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Load an instance by id."""

    @abstractmethod
    def save(self, instance: WorkflowInstance, expected_version: int) -> bool:
        """
        Compare-and-set write of the instance's mutable state.

        Succeeds only if the stored version still equals expected_version.
        """

    @abstractmethod
    def find_active(
        self, workflow_type: WorkflowType, submission_id: str
    ) -> Optional[WorkflowInstance]:
        """Find the running or waiting instance for a submission."""

    @abstractmethod
    def list_active(
        self, workflow_type: Optional[WorkflowType] = None, limit: int = 100
    ) -> List[WorkflowInstance]:
        """List running and waiting instances, oldest first."""

    @abstractmethod
    def list_expired_waits(self, now: datetime, limit: int = 100) -> List[WorkflowInstance]:
        """List waiting instances whose deadline is at or before now."""

    @abstractmethod
    def list_stalled(self, updated_before: datetime, limit: int = 100) -> List[WorkflowInstance]:
        """List running instances that have not been written since updated_before."""

    def health_check(self) -> bool:
        return True


class SubmissionRepository(ABC):
    """Access to the platform's submission rows and user profiles."""

    @abstractmethod
    def update_submission(self, table: str, submission_id: str, fields: Dict[str, Any]) -> None:
        """Update columns of one submission row."""

    @abstractmethod
    def upsert_unified(
        self, reference_id: str, submission_type: str, fields: Dict[str, Any]
    ) -> None:
        """Insert or update the unified review-queue projection row."""

    @abstractmethod
    def update_unified(
        self, reference_id: str, submission_type: str, fields: Dict[str, Any]
    ) -> None:
        """Update the unified review-queue projection row."""

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Load a user profile (email, capabilities)."""

    @abstractmethod
    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        """Update columns of a user profile."""

    def health_check(self) -> bool:
        return True


def _check_table(table: str) -> None:
    if table not in SUBMISSION_TABLES:
        raise ValueError(f"Unknown submission table: {table}")


def _adapt(value: Any) -> Any:
    """Wrap dict column values for JSONB; lists map to SQL arrays."""
    if isinstance(value, dict):
        return Json(value)
    return value


class PostgresInstanceRepository(InstanceRepository):
    """PostgreSQL-backed workflow instance storage."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Create a new workflow instance."""
        query = """
            INSERT INTO workflow_instances
            (id, workflow_type, submission_id, status, payload, step_log,
             pending_event_name, pending_deadline, output, error, version,
             created_at, updated_at, completed_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        """
        params = (
            instance.id,
            instance.workflow_type.value,
            instance.submission_id,
            instance.status.value,
            json.dumps(instance.payload),
            json.dumps([r.to_dict() for r in instance.step_log]),
            instance.pending_wait.event_name if instance.pending_wait else None,
            instance.pending_wait.deadline if instance.pending_wait else None,
            json.dumps(instance.output) if instance.output is not None else None,
            instance.error,
            instance.version,
            instance.created_at,
            instance.updated_at,
            instance.completed_at,
        )
        try:
            row = self.db.execute_one(query, params)
        except errors.UniqueViolation:
            existing = self.find_active(instance.workflow_type, instance.submission_id)
            if existing is None:
                raise
            raise ActiveInstanceExistsError(existing)

        return self._row_to_instance(row)

    def get(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Get an instance by ID."""
        row = self.db.execute_one(
            "SELECT * FROM workflow_instances WHERE id = %s", (instance_id,)
        )
        return self._row_to_instance(row) if row else None

    def save(self, instance: WorkflowInstance, expected_version: int) -> bool:
        """Write instance state if nobody else has written since expected_version."""
        query = """
            UPDATE workflow_instances
            SET status = %s,
                step_log = %s,
                pending_event_name = %s,
                pending_deadline = %s,
                output = %s,
                error = %s,
                version = %s,
                updated_at = %s,
                completed_at = %s
            WHERE id = %s AND version = %s
        """
        params = (
            instance.status.value,
            json.dumps([r.to_dict() for r in instance.step_log]),
            instance.pending_wait.event_name if instance.pending_wait else None,
            instance.pending_wait.deadline if instance.pending_wait else None,
            json.dumps(instance.output) if instance.output is not None else None,
            instance.error,
            instance.version,
            instance.updated_at,
            instance.completed_at,
            instance.id,
            expected_version,
        )
        return self.db.execute_rowcount(query, params) == 1

    def find_active(
        self, workflow_type: WorkflowType, submission_id: str
    ) -> Optional[WorkflowInstance]:
        query = """
            SELECT * FROM workflow_instances
            WHERE workflow_type = %s AND submission_id = %s
            AND status IN (%s, %s)
        """
        row = self.db.execute_one(query, (
            workflow_type.value,
            submission_id,
            InstanceStatus.RUNNING.value,
            InstanceStatus.WAITING.value,
        ))
        return self._row_to_instance(row) if row else None

    def list_active(
        self, workflow_type: Optional[WorkflowType] = None, limit: int = 100
    ) -> List[WorkflowInstance]:
        conditions = ["status IN (%s, %s)"]
        params: list = [InstanceStatus.RUNNING.value, InstanceStatus.WAITING.value]

        if workflow_type:
            conditions.append("workflow_type = %s")
            params.append(workflow_type.value)

        query = f"""
            SELECT * FROM workflow_instances
            WHERE {' AND '.join(conditions)}
            ORDER BY created_at
            LIMIT %s
        """
        params.append(limit)
        rows = self.db.execute(query, tuple(params))
        return [self._row_to_instance(row) for row in rows]

    def list_expired_waits(self, now: datetime, limit: int = 100) -> List[WorkflowInstance]:
        query = """
            SELECT * FROM workflow_instances
            WHERE status = %s AND pending_deadline <= %s
            ORDER BY pending_deadline
            LIMIT %s
        """
        rows = self.db.execute(query, (InstanceStatus.WAITING.value, now, limit))
        return [self._row_to_instance(row) for row in rows]

    def list_stalled(self, updated_before: datetime, limit: int = 100) -> List[WorkflowInstance]:
        query = """
            SELECT * FROM workflow_instances
            WHERE status = %s AND updated_at < %s
            ORDER BY updated_at
            LIMIT %s
        """
        rows = self.db.execute(query, (InstanceStatus.RUNNING.value, updated_before, limit))
        return [self._row_to_instance(row) for row in rows]

    def health_check(self) -> bool:
        return self.db.health_check()

    def _row_to_instance(self, row: dict) -> WorkflowInstance:
        """Convert database row to WorkflowInstance entity."""
        payload = row.get("payload") or {}
        if isinstance(payload, str):
            payload = json.loads(payload)

        step_log = row.get("step_log") or []
        if isinstance(step_log, str):
            step_log = json.loads(step_log)

        output = row.get("output")
        if isinstance(output, str):
            output = json.loads(output)

        pending_wait = None
        if row.get("pending_event_name"):
            pending_wait = PendingWait(
                event_name=row["pending_event_name"],
                deadline=row["pending_deadline"],
            )

        return WorkflowInstance(
            id=row["id"],
            workflow_type=WorkflowType(row["workflow_type"]),
            submission_id=row["submission_id"],
            status=InstanceStatus(row["status"]),
            payload=payload,
            step_log=[StepRecord.from_dict(r) for r in step_log],
            pending_wait=pending_wait,
            output=output,
            error=row.get("error"),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row.get("completed_at"),
        )


class PostgresSubmissionRepository(SubmissionRepository):
    """PostgreSQL access to submission rows, the unified queue and profiles."""

    def __init__(self, db: Database):
        self.db = db

    def update_submission(self, table: str, submission_id: str, fields: Dict[str, Any]) -> None:
        _check_table(table)
        self._update(table, sql.SQL("id = %s"), (submission_id,), fields)

    def upsert_unified(
        self, reference_id: str, submission_type: str, fields: Dict[str, Any]
    ) -> None:
        values = {"reference_id": reference_id, "submission_type": submission_type, **fields}
        columns = list(values)
        query = sql.SQL(
            "INSERT INTO unified_submissions ({columns}) VALUES ({placeholders}) "
            "ON CONFLICT (reference_id, submission_type) DO UPDATE SET {updates}"
        ).format(
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            placeholders=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            updates=sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
                for c in fields
            ),
        )
        self.db.execute(query, tuple(_adapt(values[c]) for c in columns))

    def update_unified(
        self, reference_id: str, submission_type: str, fields: Dict[str, Any]
    ) -> None:
        self._update(
            "unified_submissions",
            sql.SQL("reference_id = %s AND submission_type = %s"),
            (reference_id, submission_type),
            fields,
        )

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self.db.execute_one(
            "SELECT id, email, capabilities FROM profiles WHERE id = %s", (user_id,)
        )
        return dict(row) if row else None

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        self._update("profiles", sql.SQL("id = %s"), (user_id,), fields)

    def health_check(self) -> bool:
        return self.db.health_check()

    def _update(self, table: str, where: sql.SQL, where_params: tuple, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        query = sql.SQL("UPDATE {table} SET {assignments} WHERE {where}").format(
            table=sql.Identifier(table),
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(column)) for column in fields
            ),
            where=where,
        )
        params = tuple(_adapt(v) for v in fields.values()) + where_params
        self.db.execute(query, params)
