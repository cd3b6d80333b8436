"""
Pydantic schemas for the documents the engine reads and writes.

Rows coming out of Supabase are validated here, at the store boundary,
so the evaluator and dispatcher only ever see typed records.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rientro.core.exceptions import MalformedRecordError

from .enums import EscalationLevel, NotificationType, TripStatus


MAPS_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query={lat},{lng}"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in exc.errors()
    ]


class GeoPoint(BaseModel):
    """Last known coordinate pair of the traveler."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    @property
    def maps_url(self) -> str:
        return MAPS_SEARCH_URL.format(lat=self.lat, lng=self.lng)


# ==========================================
# TRIP
# ==========================================

class Trip(BaseModel):
    """A trip (rientro) as stored in the `trips` table."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    contact_ids: list[str] = Field(default_factory=list)
    status: TripStatus
    escalation_level: EscalationLevel = EscalationLevel.NONE
    expected_end_time: datetime
    actual_end_time: Optional[datetime] = None
    last_ping: Optional[datetime] = None
    last_check_in: Optional[datetime] = None
    silent_mode: bool = False
    last_known_location: Optional[GeoPoint] = None
    created_at: Optional[datetime] = None

    @field_validator("contact_ids", mode="before")
    @classmethod
    def normalize_contact_ids(cls, value: Any) -> list[str]:
        """Null becomes empty; duplicates are dropped keeping first occurrence."""
        if value is None:
            return []
        seen: dict[str, None] = {}
        for contact_id in value:
            if contact_id:
                seen.setdefault(str(contact_id), None)
        return list(seen)

    @field_validator("escalation_level", mode="before")
    @classmethod
    def default_level(cls, value: Any) -> Any:
        return EscalationLevel.NONE if value is None else value

    @field_validator("silent_mode", mode="before")
    @classmethod
    def default_silent(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator(
        "expected_end_time", "actual_end_time", "last_ping", "last_check_in", "created_at"
    )
    @classmethod
    def normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Trip":
        """Build a Trip from a raw row, raising MalformedRecordError on bad data."""
        try:
            return cls.model_validate(record)
        except ValidationError as e:
            raise MalformedRecordError(
                "Trip record failed validation",
                table="trips",
                record_id=str(record.get("id")) if isinstance(record, dict) else None,
                errors=_validation_errors(e)
            ) from e


# ==========================================
# CONTACTS & USERS
# ==========================================

class Contact(BaseModel):
    """An emergency contact. No push token means record-only notifications."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    owner_id: Optional[str] = None
    name: Optional[str] = None
    fcm_token: Optional[str] = None
    last_notified_at: Optional[datetime] = None

    @field_validator("fcm_token", mode="before")
    @classmethod
    def blank_token_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("last_notified_at")
    @classmethod
    def normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def has_push(self) -> bool:
        return self.fcm_token is not None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Contact":
        try:
            return cls.model_validate(record)
        except ValidationError as e:
            raise MalformedRecordError(
                "Contact record failed validation",
                table="contacts",
                record_id=str(record.get("id")),
                errors=_validation_errors(e)
            ) from e


class UserProfile(BaseModel):
    """The traveler's profile, used for the display name and reminder token."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    fcm_token: Optional[str] = None

    @field_validator("fcm_token", "display_name", mode="before")
    @classmethod
    def blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_name(self) -> str:
        return resolve_display_name(self)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "UserProfile":
        try:
            return cls.model_validate(record)
        except ValidationError as e:
            raise MalformedRecordError(
                "User record failed validation",
                table="users",
                record_id=str(record.get("id")),
                errors=_validation_errors(e)
            ) from e


FALLBACK_DISPLAY_NAME = "Someone"


def resolve_display_name(user: Optional[UserProfile]) -> str:
    """display_name, then the local part of the email, then a generic name."""
    if user is None:
        return FALLBACK_DISPLAY_NAME
    if user.display_name:
        return user.display_name
    if user.email and user.email.split("@")[0]:
        return user.email.split("@")[0]
    return FALLBACK_DISPLAY_NAME


# ==========================================
# NOTIFICATION LOG
# ==========================================

class NotificationRecord(BaseModel):
    """Append-only log entry, one per recipient per dispatch."""

    trip_id: str
    type: NotificationType
    title: str
    body: str
    sent_at: datetime
    delivered: bool
    contact_id: Optional[str] = None
    user_id: Optional[str] = None  # Set instead of contact_id for traveler reminders

    def to_record(self) -> dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "user_id": self.user_id,
            "trip_id": self.trip_id,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "sent_at": ensure_utc(self.sent_at).isoformat(),
            "delivered": self.delivered,
        }
