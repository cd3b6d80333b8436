"""
Retention Sweeper: daily purge of old terminal trips and notification logs.

Trips that are COMPLETED or CANCELLED and ended before the cutoff, and
notification records sent before the cutoff, are deleted in one atomic batch.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from rientro.core.database import TripStore
from rientro.core.deadlines import run_blocking
from rientro.core.exceptions import RientroException
from rientro.core.results import HandlerResult
from rientro.models.enums import TripStatus
from rientro.models.schemas import ensure_utc, utc_now


logger = logging.getLogger(__name__)


TERMINAL_STATUSES = (TripStatus.COMPLETED, TripStatus.CANCELLED)


@dataclass
class RetentionReport(HandlerResult):
    cutoff: Optional[datetime] = None
    trips_deleted: int = 0
    notifications_deleted: int = 0


class RetentionSweeper:
    """Deletes records older than `retention_days`."""

    def __init__(
        self,
        store: TripStore,
        retention_days: int = 30,
        store_timeout: float = 30.0,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.retention_days = retention_days
        self.store_timeout = store_timeout
        self.clock = clock

    def cutoff_for(self, now: datetime) -> datetime:
        return ensure_utc(now) - timedelta(days=self.retention_days)

    async def run(self, now: Optional[datetime] = None) -> RetentionReport:
        now = ensure_utc(now) if now is not None else self.clock()
        cutoff = self.cutoff_for(now)
        report = RetentionReport(handler="retention_cleanup", cutoff=cutoff)

        try:
            trip_ids = await run_blocking(
                "store.list_purgeable_trip_ids",
                self.store.list_purgeable_trip_ids,
                TERMINAL_STATUSES,
                cutoff,
                timeout=self.store_timeout
            )
            notification_ids = await run_blocking(
                "store.list_purgeable_notification_ids",
                self.store.list_purgeable_notification_ids,
                cutoff,
                timeout=self.store_timeout
            )
            await run_blocking(
                "store.purge",
                self.store.purge,
                trip_ids,
                notification_ids,
                timeout=self.store_timeout
            )
        except RientroException as e:
            logger.error(f"Retention cleanup failed, nothing deleted: {e.message}")
            return report.fail(e)

        report.trips_deleted = len(trip_ids)
        report.notifications_deleted = len(notification_ids)
        report.details = {
            "cutoff": cutoff.isoformat(),
            "trips_deleted": report.trips_deleted,
            "notifications_deleted": report.notifications_deleted,
        }
        logger.info(
            f"Deleted {report.trips_deleted} trips and "
            f"{report.notifications_deleted} notifications older than {cutoff.isoformat()}"
        )
        return report
