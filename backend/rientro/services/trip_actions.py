"""
Traveler actions on a trip: check-in, SOS, complete, cancel.

These are plain store writes. Notifications are not sent from here; the
update hook observes the resulting status change like any other write.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from rientro.core.database import TripStore
from rientro.core.deadlines import run_blocking
from rientro.core.exceptions import InvalidTransitionError, TripNotFoundError
from rientro.models.enums import EscalationLevel, TripStatus
from rientro.models.schemas import GeoPoint, Trip, ensure_utc, utc_now


logger = logging.getLogger(__name__)


class TripActions:
    """Writes performed on behalf of the traveler."""

    def __init__(
        self,
        store: TripStore,
        store_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.store_timeout = store_timeout
        self.clock = clock

    async def check_in(
        self,
        trip_id: str,
        location: Optional[GeoPoint] = None,
        now: Optional[datetime] = None
    ) -> Trip:
        """Record a liveness signal and reset the escalation ladder."""
        trip = await self._load(trip_id)
        if trip.status.is_terminal or trip.status == TripStatus.EMERGENCY:
            raise InvalidTransitionError(trip_id, trip.status.value, "check in")

        at = ensure_utc(now) if now is not None else self.clock()
        changes: dict[str, Any] = {
            "last_ping": at.isoformat(),
            "last_check_in": at.isoformat(),
            "status": TripStatus.ACTIVE.value,
            "escalation_level": int(EscalationLevel.NONE),
        }
        if location is not None:
            changes["last_known_location"] = location.model_dump()

        return await self._write(trip, changes, "check in")

    async def trigger_sos(self, trip_id: str, location: Optional[GeoPoint] = None) -> Trip:
        """Manual SOS: straight to EMERGENCY / SOS, bypassing the evaluator."""
        trip = await self._load(trip_id)
        if trip.status.is_terminal:
            raise InvalidTransitionError(trip_id, trip.status.value, "trigger SOS on")

        changes: dict[str, Any] = {
            "status": TripStatus.EMERGENCY.value,
            "escalation_level": int(EscalationLevel.SOS),
        }
        if location is not None:
            changes["last_known_location"] = location.model_dump()

        logger.warning(f"SOS triggered for trip {trip_id}")
        return await self._write(trip, changes, "trigger SOS on")

    async def complete(self, trip_id: str, now: Optional[datetime] = None) -> Trip:
        return await self._close(trip_id, TripStatus.COMPLETED, "complete", now)

    async def cancel(self, trip_id: str, now: Optional[datetime] = None) -> Trip:
        return await self._close(trip_id, TripStatus.CANCELLED, "cancel", now)

    async def _close(
        self,
        trip_id: str,
        status: TripStatus,
        action: str,
        now: Optional[datetime]
    ) -> Trip:
        trip = await self._load(trip_id)
        if trip.status.is_terminal:
            raise InvalidTransitionError(trip_id, trip.status.value, action)

        at = ensure_utc(now) if now is not None else self.clock()
        return await self._write(
            trip,
            {"status": status.value, "actual_end_time": at.isoformat()},
            action
        )

    async def _load(self, trip_id: str) -> Trip:
        trip = await run_blocking(
            "store.get_trip", self.store.get_trip, trip_id, timeout=self.store_timeout
        )
        if trip is None:
            raise TripNotFoundError(trip_id)
        return trip

    async def _write(self, trip: Trip, changes: dict[str, Any], action: str) -> Trip:
        # Conditional on the status we validated against
        updated = await run_blocking(
            "store.update_trip",
            self.store.update_trip,
            trip.id,
            changes,
            trip.status,
            timeout=self.store_timeout
        )
        if updated is None:
            raise InvalidTransitionError(trip.id, "changed concurrently", action)
        return updated
