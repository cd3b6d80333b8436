"""
Supabase-backed document store for trips, contacts and the notification log.

The engine depends on the TripStore interface only; SupabaseTripStore is the
production implementation and is handed to the engine at construction time.

Features:
- Typed records built at the store boundary (malformed rows are quarantined)
- Compare-and-set escalation writes
- Paged status queries
- Atomic retention purge via a Postgres function
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Iterable, Optional

from supabase import create_client, Client

from rientro.models.enums import EscalationLevel, TripStatus
from rientro.models.schemas import Contact, NotificationRecord, Trip, UserProfile, ensure_utc

from .config import settings
from .exceptions import ConfigurationError, MalformedRecordError, RientroException, StoreError


logger = logging.getLogger(__name__)


TRIPS_TABLE = "trips"
CONTACTS_TABLE = "contacts"
USERS_TABLE = "users"
NOTIFICATIONS_TABLE = "notifications"
PURGE_FUNCTION = "purge_rientro_history"

PAGE_SIZE = 500


@dataclass
class TripBatch:
    """Result of a status query: valid trips plus rows that failed validation."""
    trips: list[Trip] = field(default_factory=list)
    quarantined: list[MalformedRecordError] = field(default_factory=list)


class TripStore(ABC):
    """Document store capabilities the engine needs."""

    @abstractmethod
    def list_trips_by_status(self, statuses: Iterable[TripStatus]) -> TripBatch:
        """Return every trip whose status is in `statuses`."""

    @abstractmethod
    def get_trip(self, trip_id: str) -> Optional[Trip]:
        """Point read by id."""

    @abstractmethod
    def compare_and_set_escalation(
        self,
        trip: Trip,
        new_status: TripStatus,
        new_level: EscalationLevel
    ) -> bool:
        """
        Write (status, escalation_level) only if the stored values still equal
        the ones on `trip`. Returns False when the condition did not hold.
        """

    @abstractmethod
    def update_trip(
        self,
        trip_id: str,
        changes: dict[str, Any],
        expected_status: Optional[TripStatus] = None
    ) -> Optional[Trip]:
        """Update fields on a trip, optionally conditional on its status."""

    @abstractmethod
    def get_contact(self, contact_id: str) -> Optional[Contact]:
        """Point read by id."""

    @abstractmethod
    def touch_contact(self, contact_id: str, notified_at: datetime) -> None:
        """Set last_notified_at on a contact."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[UserProfile]:
        """Point read of the traveler profile."""

    @abstractmethod
    def insert_notification(self, record: NotificationRecord) -> None:
        """Append to the notification log."""

    @abstractmethod
    def list_purgeable_trip_ids(
        self,
        statuses: Iterable[TripStatus],
        cutoff: datetime
    ) -> list[str]:
        """Ids of trips in `statuses` whose end time is before `cutoff`."""

    @abstractmethod
    def list_purgeable_notification_ids(self, cutoff: datetime) -> list[str]:
        """Ids of notification records sent before `cutoff`."""

    @abstractmethod
    def purge(self, trip_ids: list[str], notification_ids: list[str]) -> None:
        """Delete both sets as one atomic batch."""


class SupabaseTripStore(TripStore):
    """
    TripStore on top of the Supabase (PostgREST) client.

    Every call is translated into StoreError on failure so callers see a
    single error type regardless of the underlying client exception.
    """

    def __init__(self, client: Client, page_size: int = PAGE_SIZE):
        self._client = client
        self.page_size = page_size

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        return self._client

    def _execute(self, table: str, operation: str, query) -> Any:
        try:
            return query.execute()
        except RientroException:
            raise
        except Exception as e:
            raise StoreError(
                f"Supabase {operation} on '{table}' failed",
                table=table,
                operation=operation,
                original_error=str(e)
            ) from e

    # ==========================================
    # TRIP OPERATIONS
    # ==========================================

    def list_trips_by_status(self, statuses: Iterable[TripStatus]) -> TripBatch:
        status_values = [TripStatus(s).value for s in statuses]
        batch = TripBatch()
        start = 0

        while True:
            response = self._execute(
                TRIPS_TABLE,
                "select",
                self.client.table(TRIPS_TABLE)
                .select("*")
                .in_("status", status_values)
                .order("id")
                .range(start, start + self.page_size - 1)
            )
            rows = response.data or []

            for row in rows:
                try:
                    batch.trips.append(Trip.from_record(row))
                except MalformedRecordError as e:
                    logger.warning(f"Quarantined trip {row.get('id')}: {e.details.get('errors')}")
                    batch.quarantined.append(e)

            if len(rows) < self.page_size:
                break
            start += self.page_size

        return batch

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        response = self._execute(
            TRIPS_TABLE,
            "select",
            self.client.table(TRIPS_TABLE).select("*").eq("id", trip_id)
        )
        if not response.data:
            return None
        return Trip.from_record(response.data[0])

    def compare_and_set_escalation(
        self,
        trip: Trip,
        new_status: TripStatus,
        new_level: EscalationLevel
    ) -> bool:
        response = self._execute(
            TRIPS_TABLE,
            "update",
            self.client.table(TRIPS_TABLE)
            .update({
                "status": TripStatus(new_status).value,
                "escalation_level": int(new_level),
            })
            .eq("id", trip.id)
            .eq("status", trip.status.value)
            .eq("escalation_level", int(trip.escalation_level))
        )
        return bool(response.data)

    def update_trip(
        self,
        trip_id: str,
        changes: dict[str, Any],
        expected_status: Optional[TripStatus] = None
    ) -> Optional[Trip]:
        query = self.client.table(TRIPS_TABLE).update(changes).eq("id", trip_id)
        if expected_status is not None:
            query = query.eq("status", TripStatus(expected_status).value)

        response = self._execute(TRIPS_TABLE, "update", query)
        if not response.data:
            return None
        return Trip.from_record(response.data[0])

    # ==========================================
    # CONTACT & USER OPERATIONS
    # ==========================================

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        response = self._execute(
            CONTACTS_TABLE,
            "select",
            self.client.table(CONTACTS_TABLE).select("*").eq("id", contact_id)
        )
        if not response.data:
            return None
        return Contact.from_record(response.data[0])

    def touch_contact(self, contact_id: str, notified_at: datetime) -> None:
        self._execute(
            CONTACTS_TABLE,
            "update",
            self.client.table(CONTACTS_TABLE)
            .update({"last_notified_at": ensure_utc(notified_at).isoformat()})
            .eq("id", contact_id)
        )

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        response = self._execute(
            USERS_TABLE,
            "select",
            self.client.table(USERS_TABLE).select("*").eq("id", user_id)
        )
        if not response.data:
            return None
        return UserProfile.from_record(response.data[0])

    # ==========================================
    # NOTIFICATION LOG
    # ==========================================

    def insert_notification(self, record: NotificationRecord) -> None:
        self._execute(
            NOTIFICATIONS_TABLE,
            "insert",
            self.client.table(NOTIFICATIONS_TABLE).insert(record.to_record())
        )

    # ==========================================
    # RETENTION
    # ==========================================

    def list_purgeable_trip_ids(
        self,
        statuses: Iterable[TripStatus],
        cutoff: datetime
    ) -> list[str]:
        status_values = [TripStatus(s).value for s in statuses]
        cutoff_iso = ensure_utc(cutoff).isoformat()

        ids = self._select_ids(
            TRIPS_TABLE,
            lambda: self.client.table(TRIPS_TABLE)
            .select("id")
            .in_("status", status_values)
            .lt("actual_end_time", cutoff_iso)
        )
        # Trips closed without an actual end time fall back to the deadline
        ids.extend(self._select_ids(
            TRIPS_TABLE,
            lambda: self.client.table(TRIPS_TABLE)
            .select("id")
            .in_("status", status_values)
            .is_("actual_end_time", "null")
            .lt("expected_end_time", cutoff_iso)
        ))
        return ids

    def list_purgeable_notification_ids(self, cutoff: datetime) -> list[str]:
        cutoff_iso = ensure_utc(cutoff).isoformat()
        return self._select_ids(
            NOTIFICATIONS_TABLE,
            lambda: self.client.table(NOTIFICATIONS_TABLE)
            .select("id")
            .lt("sent_at", cutoff_iso)
        )

    def _select_ids(self, table: str, build_query: Callable[[], Any]) -> list[str]:
        """Collect `id` from every page of a query; PostgREST caps each response."""
        ids: list[str] = []
        start = 0

        while True:
            response = self._execute(
                table,
                "select",
                build_query().order("id").range(start, start + self.page_size - 1)
            )
            rows = response.data or []
            ids.extend(row["id"] for row in rows)

            if len(rows) < self.page_size:
                break
            start += self.page_size

        return ids

    def purge(self, trip_ids: list[str], notification_ids: list[str]) -> None:
        if not trip_ids and not notification_ids:
            return
        self._execute(
            PURGE_FUNCTION,
            "rpc",
            self.client.rpc(PURGE_FUNCTION, {
                "trip_ids": trip_ids,
                "notification_ids": notification_ids,
            })
        )


@lru_cache
def get_supabase_client() -> Client:
    """Get the shared Supabase client built from settings."""
    if not settings.supabase_url:
        raise ConfigurationError("SUPABASE_URL is not set", setting="supabase_url")
    if not settings.supabase_service_role_key:
        raise ConfigurationError(
            "SUPABASE_SERVICE_ROLE_KEY is not set",
            setting="supabase_service_role_key"
        )
    return create_client(settings.supabase_url, settings.supabase_service_role_key)
