"""
Escalation Evaluator.

Pure decision function: given a trip and the current instant, decide the
trip's next (status, escalation level). No I/O and no clock access, so the
same inputs always produce the same decision.

Escalation ladder (defaults):
- overdue and silent for > 20 min  -> SOFT
- overdue and silent for > 40 min  -> URGENT
- overdue and silent for > 65 min  -> EMERGENCY (status becomes EMERGENCY)

SOS is never produced here; only the traveler can raise it.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from rientro.core.config import Settings
from rientro.models.enums import EscalationLevel, TripStatus
from rientro.models.schemas import Trip, ensure_utc


@dataclass(frozen=True)
class EscalationThresholds:
    """Timing constants, in minutes."""
    check_interval: int = 15
    grace_period: int = 5
    escalation_delay: int = 10

    @property
    def soft_after(self) -> int:
        return self.check_interval + self.grace_period

    @property
    def urgent_after(self) -> int:
        return 2 * self.check_interval + self.escalation_delay

    @property
    def emergency_after(self) -> int:
        return 3 * self.check_interval + 2 * self.escalation_delay

    @classmethod
    def from_settings(cls, settings: Settings) -> "EscalationThresholds":
        return cls(
            check_interval=settings.check_interval_minutes,
            grace_period=settings.grace_period_minutes,
            escalation_delay=settings.escalation_delay_minutes,
        )


@dataclass(frozen=True)
class EscalationDecision:
    """What the evaluator decided for one trip."""
    status: TripStatus
    level: EscalationLevel
    minutes_late: int
    minutes_since_last_ping: float  # math.inf when the trip never pinged

    def changed_from(self, trip: Trip) -> bool:
        return self.status != trip.status or self.level != trip.escalation_level


def whole_minutes_between(start: datetime, end: datetime) -> int:
    """Floor of the elapsed minutes from start to end."""
    return math.floor((ensure_utc(end) - ensure_utc(start)).total_seconds() / 60)


def minutes_since(last_ping: Optional[datetime], now: datetime) -> float:
    """Minutes since the last ping; infinitely long if there never was one."""
    if last_ping is None:
        return math.inf
    return whole_minutes_between(last_ping, now)


def evaluate(
    trip: Trip,
    now: datetime,
    thresholds: EscalationThresholds = EscalationThresholds()
) -> EscalationDecision:
    """
    Compute the next (status, level) for a trip.

    Level never decreases. EMERGENCY and terminal statuses are fixed points:
    they come back unchanged and require a manual action to leave.
    """
    silent_for = minutes_since(trip.last_ping, now)
    minutes_late = max(0, whole_minutes_between(trip.expected_end_time, now))

    status = trip.status
    level = trip.escalation_level

    if status == TripStatus.EMERGENCY or status.is_terminal or minutes_late == 0:
        return EscalationDecision(status, level, minutes_late, silent_for)

    if status == TripStatus.ACTIVE:
        status = TripStatus.LATE

    if silent_for > thresholds.soft_after and level < EscalationLevel.SOFT:
        level = EscalationLevel.SOFT

    if silent_for > thresholds.urgent_after and level < EscalationLevel.URGENT:
        level = EscalationLevel.URGENT

    if silent_for > thresholds.emergency_after and level < EscalationLevel.EMERGENCY:
        level = EscalationLevel.EMERGENCY
        status = TripStatus.EMERGENCY

    return EscalationDecision(status, level, minutes_late, silent_for)
