# Service layer
from .catalog import UnknownWorkflowTypeError, WorkflowCatalog, WorkflowDefinition
from .engine import (
    ConcurrentModificationError,
    DuplicateInstanceError,
    EngineError,
    InstanceNotFoundError,
    SignalMismatchError,
    StepExecutionError,
    WorkflowContext,
    WorkflowEngine,
)
from .workflows import (
    APPROVAL_EVENT,
    PAYMENT_EVENT,
    EXPIRED_REASON,
    UBUNTU_POINTS,
    ContentReviewWorkflow,
    ListingReviewWorkflow,
    VerificationWorkflow,
    ExpertApplicationWorkflow,
    create_default_catalog,
)
from .dispatcher import SignalDispatcher
from .runtime import Runtime, build_runtime

__all__ = [
    "UnknownWorkflowTypeError",
    "WorkflowCatalog",
    "WorkflowDefinition",
    "ConcurrentModificationError",
    "DuplicateInstanceError",
    "EngineError",
    "InstanceNotFoundError",
    "SignalMismatchError",
    "StepExecutionError",
    "WorkflowContext",
    "WorkflowEngine",
    "APPROVAL_EVENT",
    "PAYMENT_EVENT",
    "EXPIRED_REASON",
    "UBUNTU_POINTS",
    "ContentReviewWorkflow",
    "ListingReviewWorkflow",
    "VerificationWorkflow",
    "ExpertApplicationWorkflow",
    "create_default_catalog",
    "SignalDispatcher",
    "Runtime",
    "build_runtime",
]
