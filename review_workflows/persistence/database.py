"""
PostgreSQL access for the workflow engine.

Owns the connection pool and the schema of the engine-owned
`workflow_instances` table. Submission tables are created and migrated by
the platform, not here.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from review_workflows.config import Config, get_config

logger = logging.getLogger(__name__)


# Engine-owned tables. Submission tables belong to the platform database.
SCHEMA = """
CREATE TABLE IF NOT EXISTS workflow_instances (
    id VARCHAR(80) PRIMARY KEY,
    workflow_type VARCHAR(40) NOT NULL,
    submission_id VARCHAR(255) NOT NULL,
    status VARCHAR(20) NOT NULL,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    step_log JSONB NOT NULL DEFAULT '[]'::jsonb,
    pending_event_name VARCHAR(100),
    pending_deadline TIMESTAMP,
    output JSONB,
    error TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_workflow_instances_active_submission
    ON workflow_instances (workflow_type, submission_id)
    WHERE status IN ('running', 'waiting');

CREATE INDEX IF NOT EXISTS idx_workflow_instances_pending_deadline
    ON workflow_instances (pending_deadline)
    WHERE status = 'waiting';

CREATE INDEX IF NOT EXISTS idx_workflow_instances_status_updated
    ON workflow_instances (status, updated_at);
"""


class Database:
    """
    Database connection manager with connection pooling.

    Uses psycopg2's ThreadedConnectionPool for thread-safe connection management.
    """

    def __init__(self, database_url: Optional[str] = None, config: Optional[Config] = None):
        config = config or get_config()
        self.database_url = database_url or config.DATABASE_URL
        self.pool_size = config.DATABASE_POOL_SIZE
        self.max_overflow = config.DATABASE_MAX_OVERFLOW
        self._pool: Optional[pool.ThreadedConnectionPool] = None

    def initialize(self) -> None:
        """Initialize the connection pool."""
        if self._pool is not None:
            return

        logger.info("Initializing database connection pool")
        try:
            self._pool = pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=self.pool_size + self.max_overflow,
                dsn=self.database_url,
            )
            logger.info("Database connection pool initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise

    def close(self) -> None:
        """Close all connections in the pool."""
        if self._pool is not None:
            logger.info("Closing database connection pool")
            self._pool.closeall()
            self._pool = None

    def apply_schema(self) -> None:
        """Create the engine tables and indexes if they do not exist."""
        with self.transaction() as cur:
            cur.execute(SCHEMA)
        logger.info("Workflow schema applied")

    @contextmanager
    def get_connection(self) -> Generator:
        """
        Get a connection from the pool.

        Usage:
            with db.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        if self._pool is None:
            self.initialize()

        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """
        Get a dict cursor that commits on success and rolls back on error.

        Usage:
            with db.transaction() as cur:
                cur.execute("INSERT INTO ...")
                cur.execute("UPDATE ...")
        """
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def execute(self, query, params: tuple = None) -> list:
        """Execute a query and return results."""
        with self.transaction() as cur:
            cur.execute(query, params)
            if cur.description:
                return cur.fetchall()
            return []

    def execute_one(self, query, params: tuple = None) -> Optional[dict]:
        """Execute a query and return a single result."""
        with self.transaction() as cur:
            cur.execute(query, params)
            if cur.description:
                return cur.fetchone()
            return None

    def execute_rowcount(self, query, params: tuple = None) -> int:
        """Execute a write and return the number of affected rows."""
        with self.transaction() as cur:
            cur.execute(query, params)
            return cur.rowcount

    def health_check(self) -> bool:
        """Check if database is accessible."""
        try:
            result = self.execute_one("SELECT 1 as healthy")
            return result is not None and result.get("healthy") == 1
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
