"""
History cleanup.

Body of the `cleanup` job: removes health snapshots and uptime checks older
than the retention window and caps how many of each are kept per domain, so
the state file stops growing with every sweep.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import RetentionConfig
from .event_logger import ComponentLogging, EventLogger
from .interfaces import HistoryRetentionStore
from .models import CleanupStats


class HistoryCleanup(ComponentLogging):
    """Prunes the health and uptime histories."""

    COMPONENT = "cleanup"

    def __init__(
        self,
        store: HistoryRetentionStore,
        config: Optional[RetentionConfig] = None,
        logger: Optional[EventLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._config = config or RetentionConfig()
        self._logger = logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self) -> CleanupStats:
        days = max(1, self._config.history_days)
        keep = max(1, self._config.max_entries_per_domain)
        cutoff = self._clock() - timedelta(days=days)

        self._log_info("Running history cleanup", {"retention_days": days, "max_entries_per_domain": keep})
        stats = CleanupStats(
            health_deleted=self._store.prune_snapshots(cutoff, keep),
            uptime_deleted=self._store.prune_uptime_checks(cutoff, keep),
        )
        self._log_info(
            "History cleanup completed",
            {"health_deleted": stats.health_deleted, "uptime_deleted": stats.uptime_deleted},
        )
        return stats
