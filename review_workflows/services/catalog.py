"""
Workflow catalog.

Each review pipeline implements WorkflowDefinition. The catalog maps
workflow types (and their public trigger names) to definitions and is
handed to the engine at construction.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from review_workflows.domain import WorkflowType

logger = logging.getLogger(__name__)


class UnknownWorkflowTypeError(Exception):
    """Raised when a trigger names a workflow that is not in the catalog."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown workflow: {name}")


class WorkflowDefinition(ABC):
    """
    Base class for catalog definitions.

    ``run`` is a plain function of the context and the payload. The engine
    re-runs it from the top on every resume, so everything with a side
    effect must go through ``ctx.step``.
    """

    # Public trigger names accepted in addition to the canonical type value
    aliases: Tuple[str, ...] = ()

    # Payload field holding the submission id
    submission_key: str = "id"

    # How long to wait for the approval decision
    decision_timeout: timedelta = timedelta(days=14)

    @property
    @abstractmethod
    def workflow_type(self) -> WorkflowType:
        """Return the workflow type this definition implements."""
        pass

    @abstractmethod
    def run(self, ctx, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute the workflow.

        Args:
            ctx: WorkflowContext for the instance being driven
            payload: The immutable trigger payload

        Returns:
            The instance output once the workflow completes
        """
        pass

    def submission_id(self, payload: Dict[str, Any]) -> str:
        """Extract the submission id from a trigger payload."""
        value = payload.get(self.submission_key)
        if not value:
            raise ValueError(f"{self.submission_key} is required")
        return str(value)


class WorkflowCatalog:
    """
    Registry of workflow definitions.

    Allows lookup by workflow type and by public trigger name.
    """

    def __init__(self):
        self._definitions: Dict[WorkflowType, WorkflowDefinition] = {}
        self._names: Dict[str, WorkflowType] = {}

    def register(self, definition: WorkflowDefinition) -> None:
        """Register a definition under its type and aliases."""
        workflow_type = definition.workflow_type
        self._definitions[workflow_type] = definition
        self._names[workflow_type.value] = workflow_type
        for alias in definition.aliases:
            self._names[alias] = workflow_type
        logger.info(f"Registered workflow definition: {workflow_type.value}")

    def has(self, workflow_type: WorkflowType) -> bool:
        return workflow_type in self._definitions

    def get(self, workflow_type: WorkflowType) -> WorkflowDefinition:
        """Get the definition for a workflow type."""
        definition = self._definitions.get(workflow_type)
        if definition is None:
            raise UnknownWorkflowTypeError(getattr(workflow_type, "value", str(workflow_type)))
        return definition

    def resolve(self, name) -> WorkflowDefinition:
        """Resolve a WorkflowType, canonical type name or trigger alias."""
        if isinstance(name, WorkflowType):
            return self.get(name)
        workflow_type: Optional[WorkflowType] = self._names.get(name)
        if workflow_type is None:
            raise UnknownWorkflowTypeError(name)
        return self._definitions[workflow_type]

    def list_types(self) -> List[WorkflowType]:
        """List all registered workflow types."""
        return list(self._definitions.keys())

    def list_names(self) -> List[str]:
        """List every name a trigger may use."""
        return sorted(self._names.keys())
