"""
Wiring for the engine and its collaborators.

Both the API process and the sweeper build their components here so they
share one backend selection rule.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from review_workflows.config import Config, get_config
from review_workflows.persistence import (
    Database,
    InMemoryInstanceRepository,
    InMemorySubmissionRepository,
    InstanceRepository,
    PostgresInstanceRepository,
    PostgresSubmissionRepository,
    SubmissionRepository,
)
from review_workflows.worker.queue import QueueClient
from .catalog import WorkflowCatalog
from .dispatcher import SignalDispatcher
from .engine import WorkflowEngine
from .workflows import create_default_catalog

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """The wired-up components of one process."""
    config: Config
    instances: InstanceRepository
    submissions: SubmissionRepository
    queue: QueueClient
    catalog: WorkflowCatalog
    engine: WorkflowEngine
    dispatcher: SignalDispatcher
    database: Optional[Database] = None

    def close(self) -> None:
        self.queue.close()
        if self.database is not None:
            self.database.close()


def build_runtime(config: Optional[Config] = None, queue: Optional[QueueClient] = None) -> Runtime:
    """
    Build repositories, queue client, catalog, engine and dispatcher.

    ``DATABASE_URL=memory://`` selects the in-process repositories;
    anything else is treated as a PostgreSQL URL.
    """
    config = config or get_config()
    database = None

    if config.uses_memory_backend:
        logger.info("Using in-memory persistence backend")
        instances: InstanceRepository = InMemoryInstanceRepository()
        submissions: SubmissionRepository = InMemorySubmissionRepository()
    else:
        database = Database(config.DATABASE_URL, config=config)
        database.initialize()
        database.apply_schema()
        instances = PostgresInstanceRepository(database)
        submissions = PostgresSubmissionRepository(database)

    queue = queue or QueueClient(
        redis_url=config.REDIS_URL,
        jobs_queue=config.JOBS_QUEUE_NAME,
        notifications_queue=config.NOTIFICATIONS_QUEUE_NAME,
        idempotency_ttl=config.QUEUE_IDEMPOTENCY_TTL,
    )
    catalog = create_default_catalog(submissions, queue)
    engine = WorkflowEngine(catalog, instances, config=config)

    return Runtime(
        config=config,
        instances=instances,
        submissions=submissions,
        queue=queue,
        catalog=catalog,
        engine=engine,
        dispatcher=SignalDispatcher(engine, catalog),
        database=database,
    )
