# Persistence layer
from .database import Database
from .repositories import (
    ActiveInstanceExistsError,
    InstanceRepository,
    SubmissionRepository,
    PostgresInstanceRepository,
    PostgresSubmissionRepository,
)
from .memory import InMemoryInstanceRepository, InMemorySubmissionRepository

__all__ = [
    "Database",
    "ActiveInstanceExistsError",
    "InstanceRepository",
    "SubmissionRepository",
    "PostgresInstanceRepository",
    "PostgresSubmissionRepository",
    "InMemoryInstanceRepository",
    "InMemorySubmissionRepository",
]
