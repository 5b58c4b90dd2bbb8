# Worker layer
from .queue import QueueClient, QueueMessage

__all__ = [
    "QueueClient",
    "QueueMessage",
]
