"""
Redis-backed queue client.

Produces at-least-once messages onto two logical queues: background jobs
(points awards, view counts, activity logs) and notifications (email and
in-app). Consumers live outside this service and must dedupe on the
message's idempotency key.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import redis

from review_workflows.config import get_config

logger = logging.getLogger(__name__)

# Job types understood by the background jobs consumer
JOB_AWARD_POINTS = "award-ubuntu-points"
JOB_INCREMENT_VIEW_COUNT = "increment-view-count"
JOB_LOG_ACTIVITY = "log-activity"


@dataclass
class QueueMessage:
    """
    A message on the jobs or notifications queue.

    Wire format: ``{id, type, payload, timestamp, idempotency_key}`` with an
    ISO8601 timestamp.
    """
    id: str
    type: str
    payload: Dict[str, Any]
    timestamp: str
    idempotency_key: Optional[str] = None

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return json.dumps({
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "idempotency_key": self.idempotency_key,
        })

    @classmethod
    def from_json(cls, data: str) -> "QueueMessage":
        """Deserialize message from JSON."""
        obj = json.loads(data)
        return cls(
            id=obj["id"],
            type=obj["type"],
            payload=obj.get("payload") or {},
            timestamp=obj["timestamp"],
            idempotency_key=obj.get("idempotency_key"),
        )

    @classmethod
    def create(
        cls,
        message_type: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> "QueueMessage":
        """Factory method to create a new message stamped with the current time."""
        return cls(
            id=str(uuid4()),
            type=message_type,
            payload=payload or {},
            timestamp=datetime.now(timezone.utc).isoformat(),
            idempotency_key=idempotency_key,
        )


class QueueClient:
    """
    Producer for the jobs and notifications queues.

    Features:
    - JSON messages pushed onto Redis lists
    - Producer-side duplicate suppression per idempotency key (24h TTL by default)
    - Typed helpers for the platform's common jobs
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        jobs_queue: Optional[str] = None,
        notifications_queue: Optional[str] = None,
        idempotency_ttl: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ):
        config = get_config()
        self.redis_url = redis_url or config.REDIS_URL
        self.jobs_queue = jobs_queue or config.JOBS_QUEUE_NAME
        self.notifications_queue = notifications_queue or config.NOTIFICATIONS_QUEUE_NAME
        self.idempotency_ttl = idempotency_ttl or config.QUEUE_IDEMPOTENCY_TTL

        self._redis: Optional[redis.Redis] = client

    @property
    def redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
            )
        return self._redis

    def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            self._redis.close()
            self._redis = None

    def enqueue_job(
        self,
        job_type: str,
        payload: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Optional[QueueMessage]:
        """Send a message to the background jobs queue."""
        return self._enqueue(self.jobs_queue, job_type, payload, idempotency_key)

    def enqueue_notification(
        self,
        notification_type: str,
        payload: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Optional[QueueMessage]:
        """Send a message to the notifications queue."""
        return self._enqueue(self.notifications_queue, notification_type, payload, idempotency_key)

    def queue_points_award(
        self,
        user_id: str,
        contribution_type: str,
        points: int,
        details: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Optional[QueueMessage]:
        """Queue an Ubuntu points award for a user."""
        return self.enqueue_job(JOB_AWARD_POINTS, {
            "userId": user_id,
            "contributionType": contribution_type,
            "points": points,
            "details": details,
            "metadata": metadata or {},
        }, idempotency_key=idempotency_key)

    def queue_email_notification(
        self,
        to: str,
        notification_type: str,
        data: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Optional[QueueMessage]:
        """Queue an email for the notification worker to render and send."""
        return self.enqueue_notification(notification_type, {
            "to": to,
            "type": notification_type,
            "data": data,
        }, idempotency_key=idempotency_key)

    def queue_view_count_increment(self, table: str, record_id: str) -> Optional[QueueMessage]:
        return self.enqueue_job(JOB_INCREMENT_VIEW_COUNT, {"table": table, "id": record_id})

    def queue_activity_log(
        self,
        user_id: str,
        activity_type: str,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[QueueMessage]:
        return self.enqueue_job(JOB_LOG_ACTIVITY, {
            "userId": user_id,
            "activityType": activity_type,
            "metadata": metadata,
            "ipAddress": ip_address,
            "userAgent": user_agent,
        })

    def get_queue_length(self, queue_name: str) -> int:
        """Get the number of messages waiting on a queue."""
        return self.redis.llen(queue_name)

    def peek(self, queue_name: str) -> List[QueueMessage]:
        """Return the messages on a queue, oldest first, without consuming them."""
        return [QueueMessage.from_json(raw) for raw in reversed(self.redis.lrange(queue_name, 0, -1))]

    def health_check(self) -> bool:
        """Check if Redis is accessible."""
        try:
            return self.redis.ping()
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    def _enqueue(
        self,
        queue_name: str,
        message_type: str,
        payload: Dict[str, Any],
        idempotency_key: Optional[str],
    ) -> Optional[QueueMessage]:
        """
        Push a message, suppressing duplicates for the same idempotency key.

        The key is recorded only after the push succeeds, so a failed push
        never leaves a key behind that would swallow the retry. A crash
        between the two commands can produce a duplicate, which consumers
        dedupe on the message's idempotency key.

        Returns the queued message, or None if it was a duplicate.
        """
        idem_key = None
        if idempotency_key:
            idem_key = f"{queue_name}:idempotency:{idempotency_key}"
            if self.redis.exists(idem_key):
                logger.warning(f"Duplicate message rejected: {idempotency_key}")
                return None

        message = QueueMessage.create(message_type, payload, idempotency_key=idempotency_key)
        self.redis.lpush(queue_name, message.to_json())

        if idem_key:
            try:
                self.redis.set(idem_key, "1", ex=self.idempotency_ttl)
            except redis.RedisError as e:
                # The message is already out; a later resend is a tolerated duplicate
                logger.warning(f"Failed to record idempotency key {idempotency_key}: {e}")

        logger.info(f"Enqueued {message_type} message {message.id} on {queue_name}")
        return message
