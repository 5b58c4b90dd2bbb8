"""
Deadline sweeper.

Periodically delivers timeout events to instances whose wait has expired
and re-drives instances left running by a crashed process.
"""

import logging
import signal
import threading
from typing import Optional

from review_workflows.config import Config, get_config

logger = logging.getLogger(__name__)


class DeadlineSweeper:
    """
    Background loop around WorkflowEngine.sweep_expired.

    Features:
    - Graceful shutdown on SIGTERM/SIGINT
    - Stalled-instance recovery on every pass
    - Errors in one pass are logged and the loop keeps going
    """

    def __init__(self, engine, config: Optional[Config] = None, database=None):
        self.engine = engine
        self.config = config or get_config()
        self.database = database

        self._running = False
        self._shutdown_event = threading.Event()
        self._passes = 0
        self._timeouts_delivered = 0
        self._recovered = 0

    def start(self) -> None:
        """Run sweep passes until stopped."""
        self._running = True
        self._setup_signal_handlers()

        logger.info(f"Sweeper started, sweeping every {self.config.SWEEP_INTERVAL}s")

        while self._running:
            self.run_once()
            if self._shutdown_event.wait(self.config.SWEEP_INTERVAL):
                break

        logger.info("Sweeper stopped")

    def stop(self) -> None:
        """Stop the sweeper gracefully."""
        logger.info("Stopping sweeper...")
        self._running = False
        self._shutdown_event.set()

    def run_once(self) -> int:
        """
        Run a single sweep pass.

        Returns the number of timeouts delivered plus instances recovered.
        """
        fired = 0
        recovered = 0
        try:
            fired = self.engine.sweep_expired()
        except Exception as e:
            logger.exception(f"Error sweeping expired waits: {e}")
        try:
            recovered = self.engine.recover_stalled()
        except Exception as e:
            logger.exception(f"Error recovering stalled instances: {e}")

        self._passes += 1
        self._timeouts_delivered += fired
        self._recovered += recovered
        return fired + recovered

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        def handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            self.stop()

        signal.signal(signal.SIGTERM, handler)
        signal.signal(signal.SIGINT, handler)

    @property
    def is_healthy(self) -> bool:
        if self.database is None:
            return True
        return self.database.health_check()

    def get_stats(self) -> dict:
        """Get sweeper statistics."""
        return {
            "running": self._running,
            "passes": self._passes,
            "timeouts_delivered": self._timeouts_delivered,
            "recovered": self._recovered,
        }


def run_sweeper() -> None:
    """Entry point for running the sweeper."""
    from review_workflows.services import build_runtime

    config = get_config()
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

    runtime = build_runtime(config)
    sweeper = DeadlineSweeper(runtime.engine, config=config, database=runtime.database)
    try:
        sweeper.start()
    finally:
        runtime.close()


if __name__ == "__main__":
    run_sweeper()
