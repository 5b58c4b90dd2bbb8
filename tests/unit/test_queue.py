"""
Unit tests for the Redis queue client.
"""

import json
import pytest
from unittest.mock import MagicMock, patch

import redis

from review_workflows.worker.queue import (
    JOB_AWARD_POINTS,
    JOB_INCREMENT_VIEW_COUNT,
    JOB_LOG_ACTIVITY,
    QueueClient,
    QueueMessage,
)


class TestQueueMessage:

    def test_create_stamps_id_and_timestamp(self):
        message = QueueMessage.create("content-submitted", {"contentId": "c1"})

        assert message.id
        assert message.timestamp.endswith("+00:00")
        assert message.idempotency_key is None

    def test_wire_format(self):
        message = QueueMessage.create("log-activity", {"userId": "u1"}, idempotency_key="k1")

        data = json.loads(message.to_json())

        assert set(data) == {"id", "type", "payload", "timestamp", "idempotency_key"}
        assert data["type"] == "log-activity"
        assert QueueMessage.from_json(message.to_json()) == message


class TestQueueClient:
    """Tests for QueueClient against fakeredis."""

    def test_enqueue_job(self, queue):
        message = queue.enqueue_job("custom-job", {"a": 1})

        assert message is not None
        assert queue.get_queue_length(queue.jobs_queue) == 1
        assert queue.peek(queue.jobs_queue)[0].payload == {"a": 1}

    def test_peek_is_oldest_first(self, queue):
        queue.enqueue_notification("first", {})
        queue.enqueue_notification("second", {})

        assert [m.type for m in queue.peek(queue.notifications_queue)] == ["first", "second"]

    def test_duplicate_idempotency_key_suppressed(self, queue):
        first = queue.enqueue_job("custom-job", {}, idempotency_key="inst:step")
        second = queue.enqueue_job("custom-job", {}, idempotency_key="inst:step")

        assert first is not None
        assert second is None
        assert queue.get_queue_length(queue.jobs_queue) == 1

    def test_idempotency_keys_are_per_queue(self, queue):
        queue.enqueue_job("custom-job", {}, idempotency_key="inst:step")
        queue.enqueue_notification("custom-note", {}, idempotency_key="inst:step")

        assert queue.get_queue_length(queue.jobs_queue) == 1
        assert queue.get_queue_length(queue.notifications_queue) == 1

    def test_idempotency_key_expires(self, queue, mock_redis):
        queue.enqueue_job("custom-job", {}, idempotency_key="inst:step")

        ttl = mock_redis.ttl(f"{queue.jobs_queue}:idempotency:inst:step")

        assert 0 < ttl <= 86400

    def test_queue_points_award(self, queue):
        queue.queue_points_award("u1", "listing_approved", 50, details="Listing approved",
                                 metadata={"listingId": "l1"})

        message = queue.peek(queue.jobs_queue)[0]
        assert message.type == JOB_AWARD_POINTS
        assert message.payload == {
            "userId": "u1",
            "contributionType": "listing_approved",
            "points": 50,
            "details": "Listing approved",
            "metadata": {"listingId": "l1"},
        }

    def test_queue_email_notification(self, queue):
        queue.queue_email_notification("a@example.com", "content-approved", {"title": "T"})

        message = queue.peek(queue.notifications_queue)[0]
        assert message.payload == {
            "to": "a@example.com",
            "type": "content-approved",
            "data": {"title": "T"},
        }

    def test_queue_view_count_increment(self, queue):
        queue.queue_view_count_increment("content_submissions", "c1")

        message = queue.peek(queue.jobs_queue)[0]
        assert message.type == JOB_INCREMENT_VIEW_COUNT
        assert message.payload == {"table": "content_submissions", "id": "c1"}

    def test_queue_activity_log(self, queue):
        queue.queue_activity_log("u1", "content_viewed", metadata={"contentId": "c1"})

        message = queue.peek(queue.jobs_queue)[0]
        assert message.type == JOB_LOG_ACTIVITY
        assert message.payload["activityType"] == "content_viewed"
        assert message.payload["ipAddress"] is None

    def test_custom_idempotency_ttl(self, mock_redis):
        queue = QueueClient(jobs_queue="jobs", notifications_queue="notes",
                            idempotency_ttl=60, client=mock_redis)

        queue.enqueue_job("custom-job", {}, idempotency_key="inst:step")

        assert 0 < mock_redis.ttl("jobs:idempotency:inst:step") <= 60

    def test_failed_push_records_no_key(self):
        client = MagicMock()
        client.exists.return_value = 0
        client.lpush.side_effect = redis.ConnectionError("down")
        queue = QueueClient(jobs_queue="jobs", notifications_queue="notes", client=client)

        with pytest.raises(redis.ConnectionError):
            queue.enqueue_job("custom-job", {}, idempotency_key="k1")

        client.set.assert_not_called()

    def test_retry_after_failed_push_is_delivered(self, queue, mock_redis):
        with patch.object(mock_redis, "lpush", side_effect=redis.ConnectionError("down")):
            with pytest.raises(redis.ConnectionError):
                queue.enqueue_job("custom-job", {}, idempotency_key="inst:step")

        assert queue.enqueue_job("custom-job", {}, idempotency_key="inst:step") is not None
        assert queue.get_queue_length(queue.jobs_queue) == 1

    def test_key_write_failure_still_returns_message(self):
        client = MagicMock()
        client.exists.return_value = 0
        client.set.side_effect = redis.ConnectionError("down")
        queue = QueueClient(jobs_queue="jobs", notifications_queue="notes", client=client)

        message = queue.enqueue_job("custom-job", {}, idempotency_key="k1")

        assert message is not None
        client.lpush.assert_called_once()

    def test_health_check(self, queue):
        assert queue.health_check() is True

    def test_health_check_failure(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("down")
        queue = QueueClient(client=client)

        assert queue.health_check() is False
