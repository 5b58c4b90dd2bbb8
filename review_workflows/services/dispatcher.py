"""
Signal dispatcher.

Routes external events (reviewer decisions, payment webhooks) to the
instance they belong to. Instance ids carry their workflow type, so the
route is found without scanning every catalog type.
"""

import logging
from typing import Any, Dict, Optional

from review_workflows.domain import Event, WorkflowInstance, parse_instance_type
from .catalog import WorkflowCatalog
from .engine import InstanceNotFoundError, SignalMismatchError, WorkflowEngine
from .workflows import PAYMENT_EVENT

logger = logging.getLogger(__name__)


class SignalDispatcher:
    """Deliver named events to waiting instances."""

    def __init__(self, engine: WorkflowEngine, catalog: WorkflowCatalog):
        self.engine = engine
        self.catalog = catalog

    def signal(
        self,
        instance_id: str,
        event_name: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        """
        Deliver an event to the instance with the given id.

        Raises:
            InstanceNotFoundError: unknown id, unregistered type, or terminal instance
            SignalMismatchError: the instance is not waiting on this event
            StepExecutionError: a step after the wait exhausted its retries
        """
        workflow_type = parse_instance_type(instance_id)
        if workflow_type is None or not self.catalog.has(workflow_type):
            raise InstanceNotFoundError(f"Instance {instance_id} not found")

        instance = self.engine.get(instance_id)
        if instance.workflow_type != workflow_type:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")

        try:
            return self.engine.resume(instance_id, Event.create(event_name, payload))
        except SignalMismatchError as e:
            logger.warning(f"Signal mismatch for {workflow_type.value} instance: {e}")
            raise

    def payment_completed(
        self,
        instance_id: str,
        payment_intent_id: str,
        amount: int,
        currency: str,
    ) -> WorkflowInstance:
        """Deliver a completed payment to a verification instance."""
        logger.info(f"Payment {payment_intent_id} completed for instance {instance_id}")
        return self.signal(instance_id, PAYMENT_EVENT, {
            "paymentIntentId": payment_intent_id,
            "amount": amount,
            "currency": currency,
        })
