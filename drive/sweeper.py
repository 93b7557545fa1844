"""Background task that sweeps automation rules on a fixed cadence."""

import asyncio
from typing import Optional

from common.logging_config import get_logger
from drive.config import Config
from drive.domain import SweepResult

logger = get_logger(__name__)


class RuleSweeper:
    """
    Periodically calls ``sweep_once`` on a condition engine (or anything
    exposing it, such as a StorageCatalog).
    """

    def __init__(self, engine, interval_seconds: Optional[float] = None, config: Optional[Config] = None):
        """
        Initialize sweeper task.

        Args:
            engine: Object with ``async sweep_once() -> SweepResult``
            interval_seconds: Time between sweeps; defaults to the configured
                sweep interval (5 minutes unless overridden)
            config: Settings to read the default interval from
        """
        if interval_seconds is None:
            interval_seconds = (config or Config()).get_sweep_interval()
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.last_result: Optional[SweepResult] = None
        self.sweep_count = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            logger.warning("Rule sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started rule sweeper (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped rule sweeper")

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                self.last_result = await self.engine.sweep_once()
                self.sweep_count += 1

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in rule sweeper: {e}", exc_info=True)
