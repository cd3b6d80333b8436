# Data models - Enums and Pydantic Schemas
from .enums import (
    TripStatus,
    EscalationLevel,
    NotificationType,
    UrgencyTier,
    SoundProfile,
)
from .schemas import (
    GeoPoint,
    Trip,
    Contact,
    UserProfile,
    NotificationRecord,
    resolve_display_name,
)

__all__ = [
    # Enums
    "TripStatus",
    "EscalationLevel",
    "NotificationType",
    "UrgencyTier",
    "SoundProfile",
    # Schemas
    "GeoPoint",
    "Trip",
    "Contact",
    "UserProfile",
    "NotificationRecord",
    "resolve_display_name",
]
