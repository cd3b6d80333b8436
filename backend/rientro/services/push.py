"""
Push transport for Rientro.

The engine decides *what* to send and with which urgency tier; the
transport decides how that maps onto a platform and performs one HTTP call.
Delivery is fire-and-forget: a failed call raises PushDeliveryError and is
never retried here.

Transports:
- FcmPushTransport: Firebase Cloud Messaging HTTP v1 API via httpx
- LoggingPushTransport: development fallback when FCM is not configured
"""
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from rientro.core.config import Settings
from rientro.core.exceptions import PushDeliveryError
from rientro.models.enums import NotificationType, SoundProfile, UrgencyTier


# Configure logging
logger = logging.getLogger(__name__)


CHANNEL_DEFAULT = "rientro_default"
CHANNEL_EMERGENCY = "rientro_emergency"
CHANNEL_CHECK_IN = "rientro_checkin"


@dataclass
class PushMessage:
    """Outbound payload handed to the push gateway."""
    destination: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    urgency_tier: UrgencyTier = UrgencyTier.HIGH
    sound_profile: SoundProfile = SoundProfile.DEFAULT

    @property
    def channel_id(self) -> str:
        if self.urgency_tier == UrgencyTier.CRITICAL:
            return CHANNEL_EMERGENCY
        if self.data.get("type") == NotificationType.CHECK_IN.value:
            return CHANNEL_CHECK_IN
        return CHANNEL_DEFAULT


def build_fcm_message(message: PushMessage) -> dict[str, Any]:
    """Map a PushMessage onto an FCM v1 `message` object."""
    is_critical = message.urgency_tier == UrgencyTier.CRITICAL

    apns: dict[str, Any] = {
        "payload": {
            "aps": {
                "sound": message.sound_profile.value,
                "badge": 1,
                "content-available": 1,
            }
        }
    }
    if is_critical:
        apns["headers"] = {"apns-priority": "10"}

    return {
        "token": message.destination,
        "notification": {
            "title": message.title,
            "body": message.body,
        },
        "data": dict(message.data),
        "android": {
            "priority": "high",
            "notification": {
                "channel_id": message.channel_id,
                "notification_priority": "PRIORITY_MAX" if is_critical else "PRIORITY_HIGH",
            },
        },
        "apns": apns,
    }


class PushTransport(ABC):
    """Push gateway capability the dispatcher depends on."""

    @abstractmethod
    async def send(self, message: PushMessage) -> str:
        """Send one message; return the provider message id or raise PushDeliveryError."""

    async def aclose(self) -> None:
        """Release any held connections."""
        return None


class FcmPushTransport(PushTransport):
    """
    Firebase Cloud Messaging HTTP v1 transport.

    TODO: mint the OAuth access token from a service account instead of
    reading a pre-issued FCM_ACCESS_TOKEN from settings.
    """

    def __init__(
        self,
        project_id: str,
        access_token: str,
        endpoint: str = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = endpoint.format(project_id=project_id)
        self.access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FcmPushTransport":
        return cls(
            project_id=settings.fcm_project_id,
            access_token=settings.fcm_access_token,
            endpoint=settings.fcm_endpoint,
            timeout=settings.push_call_timeout_seconds,
        )

    async def send(self, message: PushMessage) -> str:
        try:
            response = await self._client.post(
                self.url,
                json={"message": build_fcm_message(message)},
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise PushDeliveryError(
                "FCM request failed",
                destination=message.destination,
                original_error=str(e)
            ) from e

        if response.status_code != 200:
            raise PushDeliveryError(
                f"FCM error: {response.status_code} - {response.text}",
                destination=message.destination,
                provider_status=response.status_code
            )

        try:
            return response.json().get("name", "")
        except ValueError:
            return ""

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingPushTransport(PushTransport):
    """Logs instead of sending; used when FCM is not configured."""

    async def send(self, message: PushMessage) -> str:
        logger.warning(f"Push not configured. Would send to: {message.destination[:12]}...")
        logger.info(f"[{message.urgency_tier.value}] {message.title} - {message.body}")
        return f"dev-{hashlib.md5(message.title.encode()).hexdigest()[:8]}"


def build_push_transport(settings: Settings) -> PushTransport:
    """Pick the transport for the current configuration."""
    if settings.push_enabled:
        return FcmPushTransport.from_settings(settings)
    logger.warning("FCM not configured; push notifications will only be logged")
    return LoggingPushTransport()
