"""
Test helper functions for Rientro.

Row builders that produce documents shaped like the Supabase tables, plus
a push transport that records what it was asked to send.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from rientro.core.exceptions import PushDeliveryError
from rientro.services.push import PushMessage, PushTransport


# Fixed reference instant used across the suite
NOW = datetime(2025, 4, 14, 20, 0, 0, tzinfo=timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def minutes_ago(minutes: float, now: datetime = NOW) -> datetime:
    return now - timedelta(minutes=minutes)


def make_trip_row(
    *,
    trip_id: str = None,
    owner_id: str = "user-1",
    contact_ids: Optional[List[str]] = None,
    status: str = "active",
    escalation_level: int = 0,
    expected_end_time: datetime = None,
    actual_end_time: datetime = None,
    last_ping: datetime = None,
    last_check_in: datetime = None,
    silent_mode: bool = False,
    last_known_location: Optional[Dict[str, float]] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build a `trips` row.

    By default the trip is 30 minutes overdue at NOW and has never pinged.
    """
    return {
        "id": trip_id or f"trip-{uuid4().hex[:8]}",
        "owner_id": owner_id,
        "contact_ids": ["contact-1", "contact-2"] if contact_ids is None else contact_ids,
        "status": status,
        "escalation_level": escalation_level,
        "expected_end_time": iso(expected_end_time or minutes_ago(30)),
        "actual_end_time": iso(actual_end_time),
        "last_ping": iso(last_ping),
        "last_check_in": iso(last_check_in),
        "silent_mode": silent_mode,
        "last_known_location": last_known_location,
        "created_at": iso(minutes_ago(180)),
        **kwargs
    }


def make_contact_row(
    contact_id: str,
    *,
    owner_id: str = "user-1",
    name: str = None,
    fcm_token: Optional[str] = "token",
    **kwargs
) -> Dict[str, Any]:
    return {
        "id": contact_id,
        "owner_id": owner_id,
        "name": name or f"Contact {contact_id}",
        "fcm_token": f"{fcm_token}-{contact_id}" if fcm_token and fcm_token.strip() else fcm_token,
        "last_notified_at": None,
        **kwargs
    }


def make_user_row(
    user_id: str = "user-1",
    *,
    display_name: Optional[str] = "Giulia",
    email: Optional[str] = "giulia@example.com",
    fcm_token: Optional[str] = "traveler-token",
) -> Dict[str, Any]:
    return {
        "id": user_id,
        "display_name": display_name,
        "email": email,
        "fcm_token": fcm_token,
    }


def make_notification_row(trip_id: str, sent_at: datetime, **kwargs) -> Dict[str, Any]:
    return {
        "id": f"notif-{uuid4().hex[:8]}",
        "trip_id": trip_id,
        "contact_id": "contact-1",
        "user_id": None,
        "type": "rientro_started",
        "title": "Trip started",
        "body": "",
        "sent_at": iso(sent_at),
        "delivered": True,
        **kwargs
    }


class RecordingPushTransport(PushTransport):
    """
    Push transport that keeps every message it was asked to send.

    Destinations in `fail_for` raise PushDeliveryError; destinations in
    `hang_for` never answer, to exercise call deadlines.
    """

    def __init__(self):
        self.sent: List[PushMessage] = []
        self.fail_for: set = set()
        self.hang_for: set = set()
        self.closed = False

    async def send(self, message: PushMessage) -> str:
        if message.destination in self.hang_for:
            await asyncio.sleep(3600)
        if message.destination in self.fail_for:
            raise PushDeliveryError(
                "provider rejected token",
                destination=message.destination,
                provider_status=404
            )
        self.sent.append(message)
        return f"projects/test/messages/{len(self.sent)}"

    async def aclose(self) -> None:
        self.closed = True

    def destinations(self) -> List[str]:
        return [m.destination for m in self.sent]

    def types(self) -> List[str]:
        return [m.data.get("type") for m in self.sent]
