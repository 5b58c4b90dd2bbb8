# Domain models
from .enums import WorkflowType, InstanceStatus
from .entities import (
    WorkflowInstance,
    StepRecord,
    PendingWait,
    Event,
    make_instance_id,
    parse_instance_type,
    wait_step_name,
)
from .state_machine import InstanceStateMachine, InvalidTransitionError

__all__ = [
    "WorkflowType",
    "InstanceStatus",
    "WorkflowInstance",
    "StepRecord",
    "PendingWait",
    "Event",
    "make_instance_id",
    "parse_instance_type",
    "wait_step_name",
    "InstanceStateMachine",
    "InvalidTransitionError",
]
