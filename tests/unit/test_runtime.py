"""
Unit tests for runtime wiring.
"""

from review_workflows.config import Config
from review_workflows.persistence import InMemoryInstanceRepository, InMemorySubmissionRepository
from review_workflows.services import build_runtime


class TestBuildRuntime:

    def test_memory_backend(self, test_config, queue):
        runtime = build_runtime(test_config, queue=queue)

        assert isinstance(runtime.instances, InMemoryInstanceRepository)
        assert isinstance(runtime.submissions, InMemorySubmissionRepository)
        assert runtime.database is None
        assert runtime.engine.catalog is runtime.catalog
        assert runtime.dispatcher.engine is runtime.engine
        assert len(runtime.catalog.list_types()) == 4

    def test_wired_engine_runs_workflows(self, test_config, queue, content_payload):
        runtime = build_runtime(test_config, queue=queue)

        instance = runtime.engine.create("content-review", content_payload)

        assert runtime.instances.get(instance.id) is not None
        assert queue.get_queue_length(queue.notifications_queue) == 1

    def test_queue_uses_configured_idempotency_ttl(self):
        config = Config(DATABASE_URL="memory://", QUEUE_IDEMPOTENCY_TTL=60)

        runtime = build_runtime(config)

        assert runtime.queue.idempotency_ttl == 60
        runtime.close()
