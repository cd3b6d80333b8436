"""
Pytest fixtures and configuration for Rientro tests.

Provides:
- Mock Supabase client for isolated testing
- Store, dispatcher and engine wired to the mock and a recording transport
- Test client with dependency overrides
"""
import pytest
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional, Set, Tuple
from uuid import uuid4

from fastapi.testclient import TestClient

from rientro.core.config import Settings, get_settings
from rientro.core.database import PURGE_FUNCTION, SupabaseTripStore
from rientro.main import app
from rientro.services.engine import RientroEngine, get_engine
from rientro.services.notifications import NotificationDispatcher

from helpers import NOW, RecordingPushTransport, make_contact_row, make_user_row


WEBHOOK_SECRET = "test-webhook-secret"


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)

    def execute(self):
        return self


def _comparable(value: Any) -> Any:
    """Timestamps are stored as ISO strings; compare them as instants."""
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


class MockSupabaseTable:
    """Mock Supabase table operations (filters are applied on execute)."""

    def __init__(self, table_name: str, client: "MockSupabaseClient"):
        self.table_name = table_name
        self.client = client
        self._filters = []
        self._order_by = None
        self._range_start = 0
        self._range_end = None
        self._operation = "select"
        self._payload = None

    def select(self, fields: str = "*", count: str = None):
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def in_(self, column: str, values: list):
        self._filters.append(("in", column, values))
        return self

    def lt(self, column: str, value: Any):
        self._filters.append(("lt", column, value))
        return self

    def is_(self, column: str, value: Any):
        """IS filter (for null checks)."""
        self._filters.append(("is", column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self._order_by = column
        return self

    def range(self, start: int, end: int):
        self._range_start = start
        self._range_end = end
        return self

    def insert(self, data: dict):
        self._operation = "insert"
        self._payload = data
        return self

    def update(self, data: dict):
        self._operation = "update"
        self._payload = data
        return self

    def delete(self):
        self._operation = "delete"
        return self

    def _apply_filters(self, rows: list) -> list:
        for op, column, value in self._filters:
            if op == "eq":
                rows = [r for r in rows if r.get(column) == value]
            elif op == "in":
                rows = [r for r in rows if r.get(column) in value]
            elif op == "lt":
                rows = [
                    r for r in rows
                    if r.get(column) is not None and _comparable(r[column]) < _comparable(value)
                ]
            elif op == "is" and value == "null":
                rows = [r for r in rows if r.get(column) is None]
        return rows

    def execute(self):
        self.client.calls.append((self.table_name, self._operation))
        self.client.maybe_fail(self.table_name, self._operation)

        table_data = self.client.mock_data.setdefault(self.table_name, [])

        if self._operation == "insert":
            row = dict(self._payload)
            row.setdefault("id", str(uuid4()))
            table_data.append(row)
            return MockSupabaseResponse([row])

        rows = self._apply_filters(list(table_data))

        if self._operation == "update":
            for row in rows:
                row.update(self._payload)
            return MockSupabaseResponse([dict(r) for r in rows])

        if self._operation == "delete":
            for row in rows:
                table_data.remove(row)
            return MockSupabaseResponse(rows)

        if self._order_by:
            rows.sort(key=lambda r: str(r.get(self._order_by) or ""))
        if self._range_end is not None:
            rows = rows[self._range_start:self._range_end + 1]

        return MockSupabaseResponse([dict(r) for r in rows])


class MockRpcCall:
    """Mock of a Postgres function call; only the purge function is known."""

    def __init__(self, client: "MockSupabaseClient", function_name: str, params: dict):
        self.client = client
        self.function_name = function_name
        self.params = params or {}

    def execute(self):
        self.client.calls.append((self.function_name, "rpc"))
        self.client.maybe_fail(self.function_name, "rpc")

        if self.function_name == PURGE_FUNCTION:
            trip_ids = set(self.params.get("trip_ids", []))
            notification_ids = set(self.params.get("notification_ids", []))
            self.client.mock_data["trips"] = [
                r for r in self.client.mock_data.get("trips", []) if r["id"] not in trip_ids
            ]
            self.client.mock_data["notifications"] = [
                r for r in self.client.mock_data.get("notifications", [])
                if r["id"] not in notification_ids
            ]
        return MockSupabaseResponse([])


class MockSupabaseClient:
    """
    Mock Supabase client with the `table()` / `rpc()` surface the store uses.

    Add `(table, operation)` pairs to `fail_on` to make those calls raise.
    """

    def __init__(self):
        self.mock_data: Dict[str, list] = {
            "trips": [],
            "contacts": [],
            "users": [],
            "notifications": [],
        }
        self.fail_on: Set[Tuple[str, str]] = set()
        self.calls: List[Tuple[str, str]] = []

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self)

    def rpc(self, function_name: str, params: dict = None) -> MockRpcCall:
        return MockRpcCall(self, function_name, params)

    def maybe_fail(self, table: str, operation: str) -> None:
        if (table, operation) in self.fail_on:
            raise RuntimeError(f"connection reset during {operation} on {table}")

    def trip(self, trip_id: str) -> Optional[dict]:
        """Current stored row for a trip."""
        for row in self.mock_data["trips"]:
            if row["id"] == trip_id:
                return row
        return None


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture(scope="function")
def fresh_mock_client() -> MockSupabaseClient:
    """Function-scoped fresh mock client (clean for each test)."""
    return MockSupabaseClient()


@pytest.fixture(scope="function")
def mock_data(fresh_mock_client) -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return fresh_mock_client.mock_data


@pytest.fixture
def seeded_people(mock_data) -> Dict[str, list]:
    """Traveler `user-1` with two push-enabled contacts."""
    mock_data["users"].append(make_user_row("user-1"))
    mock_data["contacts"].extend([
        make_contact_row("contact-1"),
        make_contact_row("contact-2"),
    ])
    return mock_data


@pytest.fixture
def store(fresh_mock_client) -> SupabaseTripStore:
    return SupabaseTripStore(fresh_mock_client, page_size=2)


@pytest.fixture
def push_transport() -> RecordingPushTransport:
    return RecordingPushTransport()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        webhook_secret=WEBHOOK_SECRET,
        store_call_timeout_seconds=2.0,
        push_call_timeout_seconds=0.2,
        run_scheduler=False,
    )


@pytest.fixture
def dispatcher(store, push_transport) -> NotificationDispatcher:
    return NotificationDispatcher(
        store,
        push_transport,
        store_timeout=2.0,
        push_timeout=0.2,
        clock=lambda: NOW
    )


@pytest.fixture
def engine(test_settings, store, push_transport) -> RientroEngine:
    return RientroEngine.build(test_settings, store=store, transport=push_transport)


@pytest.fixture(scope="function")
def client(engine, test_settings) -> Generator[TestClient, None, None]:
    """Test client with the engine and settings overridden."""
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as test_client:
        yield test_client

    # Clear overrides after test
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"X-Webhook-Secret": WEBHOOK_SECRET}


# ==========================================
# PYTEST CONFIGURATION
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (engine + mock store)")
    config.addinivalue_line("markers", "edge: Edge case tests")
    config.addinivalue_line("markers", "security: Security-related tests")
