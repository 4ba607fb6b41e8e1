"""Periodic jobs driving background refreshes, retries and cleanup."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from termail.core.sync.engine import SyncEngine
from termail.utils.config import SyncConfig
from termail.utils.errors import ConfigurationError, InvalidConfigError
from termail.utils.logging import get_logger, log_call

logger = get_logger(__name__)

VALID_INTERVAL_UNITS = ["seconds", "minutes", "hours", "days"]


@dataclass(frozen=True)
class RefreshRequested:
    """Signal that the label on screen should be refreshed."""

    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _validate_interval(job_name: str, interval: Tuple[int, str]) -> None:
    """Validate an interval tuple of (value, unit)."""
    value, unit = interval

    if not isinstance(value, int) or value <= 0:
        raise InvalidConfigError(
            f"Invalid interval value for {job_name}: {value} (must be positive integer)"
        )
    if unit not in VALID_INTERVAL_UNITS:
        raise InvalidConfigError(
            f"Invalid interval unit for {job_name}: {unit} "
            f"(must be one of {VALID_INTERVAL_UNITS})"
        )


class RefreshPoller:
    """Schedules the engine's periodic work on an APScheduler event loop scheduler.

    Jobs:
        refresh_requested: emits a RefreshRequested signal every poll interval
        sync_all: refreshes labels and stale priority labels
        retry_pending: re-issues unconfirmed archive/delete calls
        cleanup: retention sweep of old cached messages

    Signals are coalesced: at most one is queued at a time.
    """

    def __init__(
        self,
        engine: SyncEngine,
        config: Optional[SyncConfig] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.engine = engine
        self.config = config or engine.config
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.signals: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._dispatcher: Optional[asyncio.Task] = None

    def _jobs(self) -> List[Tuple[str, Callable, Tuple[int, str]]]:
        return [
            (
                "refresh_requested",
                self._request_refresh,
                (self.config.poll_interval_seconds, "seconds"),
            ),
            ("sync_all", self.engine.sync_all, (self.config.stale_after_seconds, "seconds")),
            (
                "retry_pending",
                self._retry_pending,
                (self.config.poll_interval_seconds, "seconds"),
            ),
            ("cleanup", self.engine.cleanup, (self.config.cleanup_interval_hours, "hours")),
        ]

    # Jobs are coroutines so the scheduler runs them on the event loop.
    async def _request_refresh(self) -> None:
        self.emit_refresh_requested()

    async def _retry_pending(self) -> None:
        self.engine.retry_pending()

    def emit_refresh_requested(self) -> bool:
        """Queue a refresh signal unless one is already waiting."""
        try:
            self.signals.put_nowait(RefreshRequested())
            return True
        except asyncio.QueueFull:
            return False

    async def dispatch_once(self) -> RefreshRequested:
        """Wait for the next signal and hand it to the engine."""
        signal = await self.signals.get()
        try:
            await self.engine.handle_refresh_requested()
        finally:
            self.signals.task_done()
        return signal

    async def _dispatch_forever(self) -> None:
        while True:
            await self.dispatch_once()

    @log_call
    def start(self) -> None:
        """Register every job and start the scheduler on the running loop."""
        if self.scheduler.running:
            logger.info("Poller is already running")
            return

        for job_id, func, interval in self._jobs():
            _validate_interval(job_id, interval)
            value, unit = interval
            try:
                self.scheduler.add_job(
                    func,
                    "interval",
                    **{unit: value},
                    id=job_id,
                    replace_existing=True,
                    coalesce=True,
                    max_instances=1,
                )
            except (ValueError, TypeError, LookupError) as e:
                raise ConfigurationError(f"Failed to add job {job_id}: {e}") from e
            logger.info(f"Added job: {job_id} (interval: {value} {unit})")

        self.scheduler.start()
        self._dispatcher = asyncio.create_task(self._dispatch_forever())
        logger.info(f"Poller started with {len(self._jobs())} job(s)")

    @log_call
    def stop(self) -> None:
        """Stop the scheduler and the signal dispatcher."""
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            self._dispatcher = None

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Poller stopped")
