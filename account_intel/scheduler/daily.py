"""
Daily Scheduler

Fires a job once a day at a fixed local wall-clock time. The delay is
recomputed from the clock after every run, so a slow job or a DST switch
does not make the schedule drift.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional


logger = logging.getLogger(__name__)


def seconds_until_next_run(hour: int, minute: int, now: datetime) -> float:
    """
    Seconds from `now` to the next hour:minute.

    A target equal to or earlier than now is scheduled for tomorrow, so
    at 07:00 with a 06:00 target the wait is 23 hours.
    """
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class DailyScheduler:
    """
    Self-rescheduling daily job runner.

    Usage:
        scheduler = DailyScheduler(job, hour=6, minute=0)
        scheduler.start()
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[object]],
        hour: int = 6,
        minute: int = 0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Invalid daily run time {hour:02d}:{minute:02d}")

        self.job = job
        self.hour = hour
        self.minute = minute
        self._clock = clock

        self.run_count = 0
        self.next_run_at: Optional[datetime] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_job(self) -> None:
        """Run the job once. Failures are logged and do not propagate."""
        try:
            await self.job()
        except Exception as e:
            logger.error(f"Daily job failed: {e}")
        finally:
            self.run_count += 1

    async def _loop(self):
        while self._running:
            now = self._clock()
            delay = seconds_until_next_run(self.hour, self.minute, now)
            self.next_run_at = now + timedelta(seconds=delay)
            logger.info(
                f"Next daily run at {self.next_run_at:%Y-%m-%d %H:%M} "
                f"(in {delay / 3600:.1f}h)"
            )
            await asyncio.sleep(delay)
            await self.run_job()

    def start(self):
        """Start the background loop. Requires a running event loop."""
        if self._running:
            logger.warning("Daily scheduler already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Daily scheduler started ({self.hour:02d}:{self.minute:02d})")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Daily scheduler stopped")
