"""
Enum types that match the values stored in Supabase.
These must stay in sync with the database schema.
"""
from enum import Enum, IntEnum


class TripStatus(str, Enum):
    """
    Trip status values.
    Matches: check (status in ('active', 'late', 'emergency', 'completed', 'cancelled'))
    """
    ACTIVE = "active"
    LATE = "late"
    EMERGENCY = "emergency"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TripStatus.COMPLETED, TripStatus.CANCELLED)

    @property
    def is_in_progress(self) -> bool:
        """Statuses the periodic sweep evaluates."""
        return self in (TripStatus.ACTIVE, TripStatus.LATE)


class EscalationLevel(IntEnum):
    """
    Ordinal urgency of a trip. Stored as an integer column.
    """
    NONE = 0
    SOFT = 1       # First reminder to the traveler
    URGENT = 2     # Second, more insistent reminder
    EMERGENCY = 3  # Emergency contacts are alerted
    SOS = 4        # Manual SOS from the traveler


class NotificationType(str, Enum):
    """Value of the `type` field on payloads and notification records."""
    RIENTRO_STARTED = "rientro_started"
    EMERGENCY = "emergency"
    SOS = "sos"
    RIENTRO_COMPLETED = "rientro_completed"
    CHECK_IN = "check_in"

    @property
    def overrides_silent_mode(self) -> bool:
        return self in (NotificationType.EMERGENCY, NotificationType.SOS)


class UrgencyTier(str, Enum):
    """Delivery urgency decided by the engine; the transport maps it to a platform priority."""
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SoundProfile(str, Enum):
    DEFAULT = "default"
    CRITICAL = "critical"
