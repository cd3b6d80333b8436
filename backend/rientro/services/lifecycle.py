"""
Lifecycle Hooks: react to trips being created or updated by any writer.

- created                -> contacts get `rientro_started` (respects silent mode)
- status -> EMERGENCY    -> contacts get `emergency` or `sos` (always sent)
- level -> SOS while already EMERGENCY -> contacts get `sos` (always sent)
- status -> COMPLETED    -> contacts get `rientro_completed` (respects silent mode)
- newer check-in / ping  -> logged only; the next sweep finds no lateness

This is the only place contacts are told about an emergency, whether the
sweep raised it or the traveler pressed SOS.
"""
import logging
from typing import Optional

from rientro.core.database import TripStore
from rientro.core.deadlines import run_blocking
from rientro.core.exceptions import RientroException
from rientro.core.results import HandlerResult
from rientro.models.enums import EscalationLevel, TripStatus
from rientro.models.schemas import Trip, UserProfile, resolve_display_name

from .notifications import AlertTemplates, DispatchResult, NotificationDispatcher


logger = logging.getLogger(__name__)


class HookResult(HandlerResult):
    """Outcome of a lifecycle hook invocation."""

    def record_dispatch(self, result: DispatchResult) -> None:
        self.details.setdefault("dispatches", []).append(result.summary())
        for failed in result.failures:
            self.add_failure(failed.recipient_id, failed.error)


class TripLifecycleHooks:
    """Handlers for the trip create / update triggers."""

    def __init__(
        self,
        store: TripStore,
        dispatcher: NotificationDispatcher,
        store_timeout: float = 10.0
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.store_timeout = store_timeout

    async def on_trip_created(self, trip: Trip) -> HookResult:
        result = HookResult(handler="on_trip_created", details={"trip_id": trip.id})
        logger.info(f"New trip created: {trip.id}")

        try:
            if trip.contact_ids:
                owner_name = await self._owner_name(trip, result)
                dispatch = await self.dispatcher.dispatch(
                    trip.contact_ids,
                    AlertTemplates.rientro_started(trip, owner_name),
                    silent_mode=trip.silent_mode
                )
                result.record_dispatch(dispatch)
        except RientroException as e:
            logger.error(f"on_trip_created failed for trip {trip.id}: {e.message}")
            return result.fail(e)

        # No per-trip timer: the shared periodic sweep picks the trip up
        logger.info(f"Trip {trip.id} handed off to the periodic sweep")
        return result

    async def on_trip_updated(self, before: Trip, after: Trip) -> HookResult:
        result = HookResult(handler="on_trip_updated", details={"trip_id": after.id})

        entered_emergency = (
            before.status != TripStatus.EMERGENCY and after.status == TripStatus.EMERGENCY
        )
        raised_to_sos = (
            before.status == TripStatus.EMERGENCY == after.status
            and before.escalation_level < EscalationLevel.SOS == after.escalation_level
        )
        entered_completed = (
            before.status != TripStatus.COMPLETED and after.status == TripStatus.COMPLETED
        )

        try:
            if entered_emergency or raised_to_sos or entered_completed:
                owner_name = await self._owner_name(after, result)

            if entered_emergency or raised_to_sos:
                if after.escalation_level == EscalationLevel.SOS:
                    message = AlertTemplates.sos(after, owner_name)
                else:
                    message = AlertTemplates.emergency(after, owner_name)
                logger.warning(f"Trip {after.id} in EMERGENCY, alerting contacts ({message.type.value})")
                dispatch = await self.dispatcher.dispatch(
                    after.contact_ids, message, silent_mode=False
                )
                result.record_dispatch(dispatch)

            if entered_completed:
                dispatch = await self.dispatcher.dispatch(
                    after.contact_ids,
                    AlertTemplates.rientro_completed(after, owner_name),
                    silent_mode=after.silent_mode
                )
                result.record_dispatch(dispatch)
        except RientroException as e:
            logger.error(f"on_trip_updated failed for trip {after.id}: {e.message}")
            return result.fail(e)

        if _is_newer(after.last_check_in, before.last_check_in) or _is_newer(after.last_ping, before.last_ping):
            logger.info(f"Check-in received for trip {after.id}")
            result.details["check_in"] = True

        return result

    async def _owner_name(self, trip: Trip, result: HookResult) -> str:
        """Resolve the traveler name; a failed lookup must not block the alert."""
        try:
            user: Optional[UserProfile] = await run_blocking(
                "store.get_user", self.store.get_user, trip.owner_id, timeout=self.store_timeout
            )
        except RientroException as e:
            logger.error(f"Could not load traveler {trip.owner_id}: {e.message}")
            result.add_failure(trip.owner_id, e)
            user = None
        return resolve_display_name(user)


def _is_newer(after, before) -> bool:
    if after is None:
        return False
    return before is None or after > before
