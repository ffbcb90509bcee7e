"""Background schedulers started after the first successful warmup."""

from .daily import DailyScheduler, seconds_until_next_run
from .periodic import PeriodicRefreshScheduler, RefreshResult

__all__ = [
    "DailyScheduler",
    "seconds_until_next_run",
    "PeriodicRefreshScheduler",
    "RefreshResult",
]
