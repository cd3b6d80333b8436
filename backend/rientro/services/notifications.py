"""
Notification Dispatcher for Rientro.

Composes alert payloads and delivers them to a set of recipients:
- Emergency contacts (trip started / emergency / SOS / completed)
- The traveler (check-in reminder)

Rules:
- `emergency` and `sos` always go out, whatever the trip's silent mode
- every other type is dropped entirely when silent mode is on
- every recipient gets a NotificationRecord, pushed or not
- one recipient's failure never stops the others; no retries here
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from rientro.core.database import TripStore
from rientro.core.deadlines import await_with_deadline, run_blocking
from rientro.core.exceptions import PushDeliveryError, RientroException
from rientro.models.enums import NotificationType, SoundProfile, UrgencyTier
from rientro.models.schemas import GeoPoint, NotificationRecord, Trip, utc_now

from .push import PushMessage, PushTransport


# Configure logging
logger = logging.getLogger(__name__)


class DeliveryStatus(Enum):
    """Per-recipient delivery outcome."""
    DELIVERED = "DELIVERED"          # Pushed and recorded
    RECORDED_ONLY = "RECORDED_ONLY"  # No push address, record only
    FAILED = "FAILED"                # Push errored, recorded as undelivered
    MISSING = "MISSING"              # Recipient document not found
    ERROR = "ERROR"                  # Store failure before anything was sent


@dataclass
class AlertMessage:
    """What to tell recipients about a trip."""
    title: str
    body: str
    type: NotificationType
    trip_id: str
    owner_id: str
    owner_name: str = ""
    location: Optional[GeoPoint] = None

    @property
    def urgency_tier(self) -> UrgencyTier:
        if self.type.overrides_silent_mode:
            return UrgencyTier.CRITICAL
        return UrgencyTier.HIGH

    @property
    def sound_profile(self) -> SoundProfile:
        if self.urgency_tier == UrgencyTier.CRITICAL:
            return SoundProfile.CRITICAL
        return SoundProfile.DEFAULT

    def data_payload(self) -> dict[str, str]:
        """Push `data` block; FCM only accepts string values."""
        data = {
            "type": self.type.value,
            "tripId": self.trip_id,
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
        }
        if self.location is not None:
            data["lat"] = str(self.location.lat)
            data["lng"] = str(self.location.lng)
            data["mapsUrl"] = self.location.maps_url
        return data

    def to_push(self, destination: str) -> PushMessage:
        return PushMessage(
            destination=destination,
            title=self.title,
            body=self.body,
            data=self.data_payload(),
            urgency_tier=self.urgency_tier,
            sound_profile=self.sound_profile,
        )


@dataclass
class RecipientOutcome:
    """Result of notifying one recipient."""
    recipient_id: str
    status: DeliveryStatus
    recorded: bool = False
    message_id: Optional[str] = None
    error: Optional[RientroException] = None

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


@dataclass
class DispatchResult:
    """Result of one dispatch call."""
    type: NotificationType
    trip_id: str
    suppressed: bool = False
    outcomes: list[RecipientOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def delivered_count(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)

    @property
    def failures(self) -> list[RecipientOutcome]:
        return [o for o in self.outcomes if o.error is not None]

    @property
    def success(self) -> bool:
        return not self.failures

    def summary(self) -> dict:
        return {
            "type": self.type.value,
            "trip_id": self.trip_id,
            "suppressed": self.suppressed,
            "attempted": self.attempted,
            "delivered": self.delivered_count,
            "failed": len(self.failures),
        }


# ==========================================
# ALERT TEMPLATES
# ==========================================

class AlertTemplates:
    """Titles and bodies for every notification type."""

    @classmethod
    def rientro_started(cls, trip: Trip, owner_name: str) -> AlertMessage:
        return AlertMessage(
            title="Trip started",
            body=f"{owner_name} started a trip and added you as an emergency contact.",
            type=NotificationType.RIENTRO_STARTED,
            trip_id=trip.id,
            owner_id=trip.owner_id,
            owner_name=owner_name,
        )

    @classmethod
    def emergency(cls, trip: Trip, owner_name: str) -> AlertMessage:
        return AlertMessage(
            title="⚠️ EMERGENCY",
            body=f"{owner_name} may need help. They have not responded for a while.",
            type=NotificationType.EMERGENCY,
            trip_id=trip.id,
            owner_id=trip.owner_id,
            owner_name=owner_name,
            location=trip.last_known_location,
        )

    @classmethod
    def sos(cls, trip: Trip, owner_name: str) -> AlertMessage:
        return AlertMessage(
            title="🆘 SOS ACTIVATED",
            body=f"{owner_name} manually triggered the emergency signal.",
            type=NotificationType.SOS,
            trip_id=trip.id,
            owner_id=trip.owner_id,
            owner_name=owner_name,
            location=trip.last_known_location,
        )

    @classmethod
    def rientro_completed(cls, trip: Trip, owner_name: str) -> AlertMessage:
        return AlertMessage(
            title="Trip completed ✓",
            body=f"{owner_name} arrived safely.",
            type=NotificationType.RIENTRO_COMPLETED,
            trip_id=trip.id,
            owner_id=trip.owner_id,
            owner_name=owner_name,
        )

    @classmethod
    def check_in(cls, trip: Trip, owner_name: str = "") -> AlertMessage:
        return AlertMessage(
            title="Everything OK?",
            body="We haven't heard from you in a while. Confirm that you are fine.",
            type=NotificationType.CHECK_IN,
            trip_id=trip.id,
            owner_id=trip.owner_id,
            owner_name=owner_name,
        )


# ==========================================
# DISPATCHER
# ==========================================

class NotificationDispatcher:
    """
    Delivers AlertMessages to contacts or to the traveler.

    Store and transport are injected; every call to either runs under a
    bounded deadline so one stuck recipient cannot hold up the batch.
    """

    def __init__(
        self,
        store: TripStore,
        transport: PushTransport,
        max_concurrency: int = 8,
        store_timeout: float = 10.0,
        push_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.transport = transport
        self.max_concurrency = max(1, max_concurrency)
        self.store_timeout = store_timeout
        self.push_timeout = push_timeout
        self.clock = clock

    async def dispatch(
        self,
        recipient_ids: list[str],
        message: AlertMessage,
        silent_mode: bool
    ) -> DispatchResult:
        """
        Send `message` to every contact in `recipient_ids`.

        Silent mode suppresses the whole call unless the type is an emergency.
        """
        result = DispatchResult(type=message.type, trip_id=message.trip_id)

        if silent_mode and not message.type.overrides_silent_mode:
            logger.info(f"Silent mode: suppressed '{message.type.value}' for trip {message.trip_id}")
            result.suppressed = True
            return result

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(contact_id: str) -> RecipientOutcome:
            async with semaphore:
                try:
                    return await self._notify_contact(contact_id, message)
                except Exception as e:
                    logger.exception(f"Unexpected error notifying contact {contact_id}")
                    return RecipientOutcome(
                        contact_id, DeliveryStatus.ERROR, error=RientroException(str(e))
                    )

        result.outcomes = list(await asyncio.gather(*(_bounded(cid) for cid in recipient_ids)))

        logger.info(
            f"Dispatched '{message.type.value}' for trip {message.trip_id}: "
            f"{result.delivered_count}/{result.attempted} delivered, {len(result.failures)} failed"
        )
        return result

    async def send_check_in_reminder(self, trip: Trip) -> DispatchResult:
        """Remind the traveler to check in. Silent mode always suppresses it."""
        result = DispatchResult(type=NotificationType.CHECK_IN, trip_id=trip.id)

        if trip.silent_mode:
            logger.info(f"Silent mode: skipped check-in reminder for trip {trip.id}")
            result.suppressed = True
            return result

        result.outcomes = [await self._notify_traveler(trip)]
        return result

    # ==========================================
    # PER-RECIPIENT PROCESSING
    # ==========================================

    async def _notify_contact(self, contact_id: str, message: AlertMessage) -> RecipientOutcome:
        try:
            contact = await self._store_call("get_contact", self.store.get_contact, contact_id)
        except RientroException as e:
            logger.error(f"Failed to load contact {contact_id}: {e.message}")
            return RecipientOutcome(contact_id, DeliveryStatus.ERROR, error=e)

        if contact is None:
            logger.warning(f"Contact {contact_id} not found; nothing sent for trip {message.trip_id}")
            return RecipientOutcome(contact_id, DeliveryStatus.MISSING)

        return await self._deliver(
            recipient_id=contact.id,
            destination=contact.fcm_token,
            message=message,
            record_owner={"contact_id": contact.id},
            touch=lambda at: self._store_call(
                "touch_contact", self.store.touch_contact, contact.id, at
            ),
        )

    async def _notify_traveler(self, trip: Trip) -> RecipientOutcome:
        try:
            user = await self._store_call("get_user", self.store.get_user, trip.owner_id)
        except RientroException as e:
            logger.error(f"Failed to load traveler {trip.owner_id}: {e.message}")
            return RecipientOutcome(trip.owner_id, DeliveryStatus.ERROR, error=e)

        if user is None:
            logger.warning(f"Traveler {trip.owner_id} not found; no reminder for trip {trip.id}")
            return RecipientOutcome(trip.owner_id, DeliveryStatus.MISSING)

        return await self._deliver(
            recipient_id=user.id,
            destination=user.fcm_token,
            message=AlertTemplates.check_in(trip, user.resolved_name),
            record_owner={"user_id": user.id},
        )

    async def _deliver(
        self,
        recipient_id: str,
        destination: Optional[str],
        message: AlertMessage,
        record_owner: dict[str, str],
        touch: Optional[Callable[[datetime], Awaitable[None]]] = None
    ) -> RecipientOutcome:
        """Push (when an address exists), then record, then touch."""
        outcome = RecipientOutcome(recipient_id, DeliveryStatus.RECORDED_ONLY)

        if destination:
            try:
                outcome.message_id = await await_with_deadline(
                    "push.send",
                    self.transport.send(message.to_push(destination)),
                    timeout=self.push_timeout
                )
                outcome.status = DeliveryStatus.DELIVERED
            except RientroException as e:
                logger.error(f"Push to {recipient_id} failed for trip {message.trip_id}: {e.message}")
                outcome.status = DeliveryStatus.FAILED
                outcome.error = e
            except Exception as e:
                logger.error(f"Push to {recipient_id} failed for trip {message.trip_id}: {e}")
                outcome.status = DeliveryStatus.FAILED
                outcome.error = PushDeliveryError("Push transport error", original_error=str(e))

        now = self.clock()
        record = NotificationRecord(
            trip_id=message.trip_id,
            type=message.type,
            title=message.title,
            body=message.body,
            sent_at=now,
            delivered=outcome.delivered,
            **record_owner
        )

        try:
            await self._store_call("insert_notification", self.store.insert_notification, record)
            outcome.recorded = True
        except RientroException as e:
            logger.error(f"Failed to record notification for {recipient_id}: {e.message}")
            outcome.error = outcome.error or e

        if touch is not None:
            try:
                await touch(now)
            except RientroException as e:
                logger.error(f"Failed to update last_notified_at for {recipient_id}: {e.message}")
                outcome.error = outcome.error or e

        return outcome

    async def _store_call(self, operation: str, func, *args):
        return await run_blocking(
            f"store.{operation}", func, *args, timeout=self.store_timeout
        )
