"""
Test configuration and fixtures.

Provides common fixtures for unit and integration tests.
"""

import os
import pytest
from unittest.mock import MagicMock

# Set test environment before importing app modules
os.environ["FLASK_ENV"] = "testing"
os.environ["DATABASE_URL"] = "memory://"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"


@pytest.fixture
def test_config():
    from review_workflows.config import TestConfig
    return TestConfig()


@pytest.fixture
def mock_redis():
    """Create a fake Redis client for unit tests."""
    import fakeredis
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def queue(mock_redis, test_config):
    """Queue client backed by fakeredis."""
    from review_workflows.worker.queue import QueueClient
    return QueueClient(
        jobs_queue=test_config.JOBS_QUEUE_NAME,
        notifications_queue=test_config.NOTIFICATIONS_QUEUE_NAME,
        client=mock_redis,
    )


@pytest.fixture
def instances():
    from review_workflows.persistence import InMemoryInstanceRepository
    return InMemoryInstanceRepository()


@pytest.fixture
def submissions():
    from review_workflows.persistence import InMemorySubmissionRepository
    repo = InMemorySubmissionRepository()
    repo.add_profile("user-1", "author@example.com")
    return repo


@pytest.fixture
def catalog(submissions, queue):
    from review_workflows.services import create_default_catalog
    return create_default_catalog(submissions, queue)


@pytest.fixture
def sleep():
    """Recorded no-op sleep so retries do not slow the suite."""
    return MagicMock()


@pytest.fixture
def engine(catalog, instances, test_config, sleep):
    from review_workflows.services import WorkflowEngine
    return WorkflowEngine(catalog, instances, config=test_config, sleep=sleep)


@pytest.fixture
def dispatcher(engine, catalog):
    from review_workflows.services import SignalDispatcher
    return SignalDispatcher(engine, catalog)


@pytest.fixture
def content_payload():
    """Sample content-review trigger payload."""
    return {
        "contentId": "content-1",
        "userId": "user-1",
        "title": "Mobile money in Harare",
        "contentType": "article",
    }


@pytest.fixture
def listing_payload():
    return {
        "listingId": "listing-1",
        "userId": "user-1",
        "businessName": "Kariba Tours",
        "category": "travel",
    }


@pytest.fixture
def verification_payload():
    return {
        "verificationId": "verification-1",
        "listingId": "listing-1",
        "userId": "user-1",
        "businessName": "Kariba Tours",
    }


@pytest.fixture
def expert_payload():
    return {
        "applicationId": "application-1",
        "userId": "user-1",
        "expertiseArea": "agronomy",
        "fullName": "Tendai Moyo",
    }


# ============================================
# Integration Test Fixtures
# ============================================

@pytest.fixture
def runtime(test_config, instances, submissions, queue, catalog, engine, dispatcher):
    from review_workflows.services import Runtime
    return Runtime(
        config=test_config,
        instances=instances,
        submissions=submissions,
        queue=queue,
        catalog=catalog,
        engine=engine,
        dispatcher=dispatcher,
    )


@pytest.fixture
def app(test_config, runtime):
    """Create Flask test application."""
    from review_workflows.api.app import create_app

    app = create_app(test_config, runtime=runtime)
    app.config["TESTING"] = True
    yield app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
