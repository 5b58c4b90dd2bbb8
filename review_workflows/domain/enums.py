"""
Domain enums for submission review workflows.

These enums define the workflow catalog types and the possible states of a
workflow instance. The state machine enforces valid transitions between them.
"""

from enum import Enum


class WorkflowType(str, Enum):
    """
    Review pipelines in the catalog.

    - CONTENT_REVIEW: Community content submission review
    - LISTING_REVIEW: Directory listing review
    - VERIFICATION: Paid business verification (payment, then review)
    - EXPERT_APPLICATION: Local expert application review
    """
    CONTENT_REVIEW = "content_review"
    LISTING_REVIEW = "listing_review"
    VERIFICATION = "verification"
    EXPERT_APPLICATION = "expert_application"


class InstanceStatus(str, Enum):
    """
    Status of a workflow instance.

    State machine transitions:
    RUNNING → WAITING → RUNNING (suspend on an event, resume on signal/timeout)
    RUNNING → COMPLETED (success path)
    RUNNING → FAILED (step retries exhausted)
    RUNNING/WAITING → CANCELLED (manual intervention)

    - RUNNING: Steps are executing
    - WAITING: Suspended until an event arrives or its deadline passes
    - COMPLETED: Definition returned a result
    - FAILED: A step exhausted its retries; requires manual intervention
    - CANCELLED: Manually cancelled
    """
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
