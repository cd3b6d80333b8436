"""
Sweep Scheduler: one periodic pass of the evaluator over in-progress trips.

For every ACTIVE or LATE trip:
1. Evaluate (pure)
2. If (status, level) changed, persist with a compare-and-set write
3. After a successful write at SOFT or URGENT, remind the traveler

EMERGENCY is not notified here. The trip update hook sees the
status change and alerts the contacts, the same way it does for a manual SOS.

The write happens before the reminder: a crash in between loses that
reminder but never repeats an escalation on the next sweep.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from rientro.core.database import TripStore
from rientro.core.deadlines import run_blocking
from rientro.core.exceptions import RientroException
from rientro.core.results import HandlerResult
from rientro.models.enums import EscalationLevel, TripStatus
from rientro.models.schemas import Trip, ensure_utc, utc_now

from .evaluator import EscalationThresholds, evaluate
from .notifications import DispatchResult, NotificationDispatcher


logger = logging.getLogger(__name__)


IN_PROGRESS_STATUSES = tuple(s for s in TripStatus if s.is_in_progress)


@dataclass
class TripSweepOutcome:
    """What happened to one trip during a sweep."""
    trip_id: str
    previous_status: TripStatus
    previous_level: EscalationLevel
    status: TripStatus
    level: EscalationLevel
    written: bool = False
    conflict: bool = False
    reminder: Optional[DispatchResult] = None

    @property
    def escalated(self) -> bool:
        return self.written and self.level > self.previous_level


@dataclass
class SweepReport(HandlerResult):
    """Summary of one sweep."""
    started_at: Optional[datetime] = None
    checked: int = 0
    updated: int = 0
    escalated: int = 0
    conflicts: int = 0
    reminders_sent: int = 0
    quarantined: int = 0
    outcomes: list[TripSweepOutcome] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "escalated": self.escalated,
            "conflicts": self.conflicts,
            "reminders_sent": self.reminders_sent,
            "quarantined": self.quarantined,
            "failed": len(self.failures),
        }


class EscalationSweeper:
    """Runs the evaluator over all in-progress trips and persists changes."""

    def __init__(
        self,
        store: TripStore,
        dispatcher: NotificationDispatcher,
        thresholds: EscalationThresholds = EscalationThresholds(),
        max_concurrency: int = 8,
        store_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.thresholds = thresholds
        self.max_concurrency = max(1, max_concurrency)
        self.store_timeout = store_timeout
        self.clock = clock

    async def run(self, now: Optional[datetime] = None) -> SweepReport:
        """Sweep every ACTIVE/LATE trip once."""
        now = ensure_utc(now) if now is not None else self.clock()
        report = SweepReport(handler="escalation_sweep", started_at=now)

        try:
            batch = await run_blocking(
                "store.list_trips_by_status",
                self.store.list_trips_by_status,
                IN_PROGRESS_STATUSES,
                timeout=self.store_timeout
            )
        except RientroException as e:
            logger.error(f"Sweep aborted, could not list trips: {e.message}")
            return report.fail(e)

        for malformed in batch.quarantined:
            report.quarantined += 1
            report.add_failure(str(malformed.details.get("record_id", "unknown")), malformed)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(trip: Trip) -> Optional[TripSweepOutcome]:
            async with semaphore:
                try:
                    return await self.check_trip(trip, now)
                except RientroException as e:
                    logger.error(f"Sweep failed for trip {trip.id}: {e.message}")
                    report.add_failure(trip.id, e)
                except Exception as e:
                    logger.exception(f"Unexpected error sweeping trip {trip.id}")
                    report.add_failure(trip.id, RientroException(str(e)))
                return None

        results = await asyncio.gather(*(_bounded(trip) for trip in batch.trips))

        report.checked = len(batch.trips)
        for outcome in results:
            if outcome is None:
                continue
            report.outcomes.append(outcome)
            report.updated += int(outcome.written)
            report.escalated += int(outcome.escalated)
            report.conflicts += int(outcome.conflict)
            if outcome.reminder is not None:
                report.reminders_sent += outcome.reminder.delivered_count
                for failed in outcome.reminder.failures:
                    report.add_failure(outcome.trip_id, failed.error)

        report.details = report.summary()
        logger.info(f"Checked {report.checked} trips: {report.details}")
        return report

    async def check_trip(self, trip: Trip, now: datetime) -> TripSweepOutcome:
        """Evaluate one trip, persist a changed state, send a reminder if due."""
        decision = evaluate(trip, now, self.thresholds)
        outcome = TripSweepOutcome(
            trip_id=trip.id,
            previous_status=trip.status,
            previous_level=trip.escalation_level,
            status=decision.status,
            level=decision.level,
        )

        silent = decision.minutes_since_last_ping
        silent_label = "never pinged" if math.isinf(silent) else f"{silent:g}m"
        logger.debug(
            f"Trip {trip.id}: late={decision.minutes_late}m "
            f"silent={silent_label} "
            f"level {trip.escalation_level.name} -> {decision.level.name}"
        )

        if not decision.changed_from(trip):
            return outcome

        written = await run_blocking(
            "store.compare_and_set_escalation",
            self.store.compare_and_set_escalation,
            trip,
            decision.status,
            decision.level,
            timeout=self.store_timeout
        )
        if not written:
            # Someone else moved this trip since we read it; next sweep re-reads it
            logger.info(f"Trip {trip.id} changed concurrently, skipped this cycle")
            outcome.conflict = True
            return outcome

        outcome.written = True
        logger.info(
            f"Trip {trip.id} escalated: {trip.status.value}/{trip.escalation_level.name} "
            f"-> {decision.status.value}/{decision.level.name}"
        )

        if EscalationLevel.NONE < decision.level < EscalationLevel.EMERGENCY:
            updated = trip.model_copy(
                update={"status": decision.status, "escalation_level": decision.level}
            )
            outcome.reminder = await self.dispatcher.send_check_in_reminder(updated)

        return outcome
