"""
Pytest fixtures and configuration for the SLA engine tests.

Provides:
- In-memory mock of the Supabase query builder, wired into the real
  SupabaseClient wrapper so every query chain is exercised
- Test client with the mock patched in
- Time freezing utilities
- Ticket / calendar / rule factories
"""
import pytest
from contextlib import ExitStack
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import patch
from uuid import uuid4

from fastapi.testclient import TestClient
from freezegun import freeze_time

from sla_engine.core.database import SupabaseClient
from sla_engine.main import app
from sla_engine.services.working_calendar import clear_calendar_cache


# Every module that imports get_supabase_client by name
SUPABASE_CLIENT_TARGETS = [
    "sla_engine.core.database.get_supabase_client",
    "sla_engine.services.working_calendar.get_supabase_client",
    "sla_engine.services.notifications.get_supabase_client",
    "sla_engine.services.pause_ledger.get_supabase_client",
    "sla_engine.services.escalation.get_supabase_client",
    "sla_engine.services.sweep.get_supabase_client",
    "sla_engine.api.routes.sla_routes.get_supabase_client",
]


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


def _is_match(row_value: Any, value: Any) -> bool:
    """PostgREST IS semantics for the literals the engine uses."""
    if value in ("null", None):
        return row_value is None
    if value in ("true", True):
        return row_value is True
    if value in ("false", False):
        return row_value is False
    return row_value == value


class MockNotFilter:
    """Handles negated filters like .not_.in_() and .not_.is_()."""

    def __init__(self, table: "MockSupabaseTable"):
        self._table = table

    def in_(self, column: str, values: list):
        self._table._filters.append(("not_in", column, values))
        return self._table

    def eq(self, column: str, value: Any):
        self._table._filters.append(("not_eq", column, value))
        return self._table

    def is_(self, column: str, value: Any):
        self._table._filters.append(("not_is", column, value))
        return self._table


class MockSupabaseTable:
    """Mock Supabase table operations."""

    def __init__(self, table_name: str, store: "MockSupabaseClientInner"):
        self.table_name = table_name
        self.store = store
        self.mock_data = store.mock_data
        self._filters = []
        self._or_filters: List[tuple] = []
        self._order_by = None
        self._order_desc = False
        self._limit = None
        self._range_start = 0
        self._range_end = None

    def select(self, fields: str = "*", count: str = None):
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self._filters.append(("neq", column, value))
        return self

    def in_(self, column: str, values: list):
        self._filters.append(("in", column, values))
        return self

    def gte(self, column: str, value: Any):
        self._filters.append(("gte", column, value))
        return self

    def lte(self, column: str, value: Any):
        self._filters.append(("lte", column, value))
        return self

    def is_(self, column: str, value: Any):
        self._filters.append(("is", column, value))
        return self

    def or_(self, filter_str: str):
        """Parse 'col.op.value,col.op.value' (eq / is only)."""
        for clause in filter_str.split(","):
            column, op, value = clause.split(".", 2)
            self._or_filters.append((op, column, value))
        return self

    @property
    def not_(self):
        return MockNotFilter(self)

    def order(self, column: str, desc: bool = False):
        self._order_by = column
        self._order_desc = desc
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range_start = start
        self._range_end = end
        return self

    def insert(self, data: Any):
        """Mock insert operation."""
        self.store.check_failure(self.table_name, "insert", data)
        rows = data if isinstance(data, list) else [data]
        for row in rows:
            row.setdefault("id", str(uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.mock_data.setdefault(self.table_name, []).extend(rows)
        return MockSupabaseResponse(rows)

    def update(self, data: dict):
        """Mock update operation - returns self for chaining."""
        self._update_data = data
        return self

    def _matches(self, row: dict) -> bool:
        for op, column, value in self._filters:
            row_value = row.get(column)
            if op == "eq" and row_value != value:
                return False
            if op == "neq" and row_value == value:
                return False
            if op == "in" and row_value not in value:
                return False
            if op == "not_in" and row_value in value:
                return False
            if op == "not_eq" and row_value == value:
                return False
            if op == "is" and not _is_match(row_value, value):
                return False
            if op == "not_is" and _is_match(row_value, value):
                return False
            if op == "gte" and (row_value is None or row_value < value):
                return False
            if op == "lte" and (row_value is None or row_value > value):
                return False

        if self._or_filters:
            return any(
                str(row.get(column)) == value if op == "eq" else _is_match(row.get(column), value)
                for op, column, value in self._or_filters
            )
        return True

    def execute(self):
        """Execute the query and return results."""
        self.store.check_failure(self.table_name, "execute", None)
        results = [row for row in self.mock_data.get(self.table_name, []) if self._matches(row)]

        if hasattr(self, "_update_data"):
            for row in results:
                row.update(self._update_data)
            return MockSupabaseResponse([dict(row) for row in results])

        if self._order_by:
            results.sort(
                key=lambda x: x.get(self._order_by) or "",
                reverse=self._order_desc
            )

        total_count = len(results)

        if self._range_end is not None:
            results = results[self._range_start:self._range_end + 1]
        elif self._limit:
            results = results[:self._limit]

        return MockSupabaseResponse([dict(row) for row in results], count=total_count)


class MockSupabaseClientInner:
    """Mock of the supabase-py Client (the object with table())."""

    def __init__(self, mock_data: Dict[str, list]):
        self.mock_data = mock_data
        # (table, stage) -> predicate(payload) deciding whether the call fails
        self.failures: Dict[tuple, Callable[[Any], bool]] = {}

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self)

    def fail(self, table: str, stage: str = "execute", when: Optional[Callable[[Any], bool]] = None):
        """Make calls on a table raise, optionally only for matching payloads."""
        self.failures[(table, stage)] = when or (lambda payload: True)

    def check_failure(self, table: str, stage: str, payload: Any) -> None:
        predicate = self.failures.get((table, stage))
        if predicate and predicate(payload):
            raise ConnectionError(f"simulated {stage} failure on {table}")


def make_mock_supabase_client() -> SupabaseClient:
    """
    A real SupabaseClient wrapper backed by the in-memory mock.

    Bypasses the singleton so no network client is created.
    """
    wrapper = object.__new__(SupabaseClient)
    wrapper._client = MockSupabaseClientInner({
        "maintenance_requests": [],
        "job_pauses": [],
        "branch_working_hours": [],
        "holidays": [],
        "escalation_rules": [],
        "profiles": [],
        "notifications": [],
    })
    return wrapper


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture(scope="function")
def fresh_mock_client():
    """Function-scoped mock client, patched into every caller."""
    mock_client = make_mock_supabase_client()
    with ExitStack() as stack:
        for target in SUPABASE_CLIENT_TARGETS:
            stack.enter_context(patch(target, return_value=mock_client))
        yield mock_client


@pytest.fixture(scope="function")
def mock_db(fresh_mock_client) -> MockSupabaseClientInner:
    """The inner mock, for failure injection."""
    return fresh_mock_client.client


@pytest.fixture(scope="function")
def mock_data(fresh_mock_client) -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return fresh_mock_client.client.mock_data


@pytest.fixture(scope="function")
def client(fresh_mock_client) -> Generator[TestClient, None, None]:
    """Test client with the mocked Supabase client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def clear_caches():
    """Calendar lookups are cached per branch; never share them between tests."""
    clear_calendar_cache()
    yield
    clear_calendar_cache()


# ==========================================
# TIME FIXTURES
# ==========================================

# Friday 2025-04-18 16:00 UTC
FRIDAY_4PM = datetime(2025, 4, 18, 16, 0, tzinfo=timezone.utc)


@pytest.fixture
def frozen_friday_afternoon():
    """Freeze time at Friday 16:00 UTC (April 18, 2025)."""
    with freeze_time(FRIDAY_4PM):
        yield FRIDAY_4PM


# ==========================================
# FACTORIES
# ==========================================

@pytest.fixture
def create_ticket(mock_data):
    """Factory fixture to create ticket rows."""
    def _create(
        created_at: datetime,
        due_at: Optional[datetime],
        status: str = "assigned",
        sla_status: Optional[str] = None,
        sla_mode: str = "calendar",
        **overrides: Any
    ) -> Dict[str, Any]:
        ticket = {
            "id": str(uuid4()),
            "title": "Air conditioner leaking",
            "created_at": created_at.isoformat(),
            "due_at": due_at.isoformat() if due_at else None,
            "status": status,
            "sla_status": sla_status,
            "sla_mode": sla_mode,
            "sla_hours": 4,
            "branch_id": "branch-1",
            "is_paused": False,
            "sla_paused_at": None,
            "sla_paused_duration": 0,
            "pause_count": 0,
            "assigned_user_id": "tech-1",
            "created_by": "requester-1",
        }
        ticket.update(overrides)
        mock_data["maintenance_requests"].append(ticket)
        return ticket

    return _create


@pytest.fixture
def create_escalation_rules(mock_data):
    """Factory fixture for the standard 75/90/100 escalation tiers."""
    def _create(
        thresholds: tuple = (75, 90, 100),
        notify_roles: Optional[list] = None
    ) -> List[Dict[str, Any]]:
        rules = []
        for threshold in thresholds:
            rule = {
                "id": str(uuid4()),
                "name": f"SLA {threshold}%",
                "threshold_percent": threshold,
                "notify_roles": notify_roles if notify_roles is not None else ["manager"],
                "is_active": True,
                "action_type": "notify",
            }
            mock_data["escalation_rules"].append(rule)
            rules.append(rule)
        return rules

    return _create


@pytest.fixture
def create_profile(mock_data):
    """Factory fixture to create user profiles."""
    def _create(role: str = "manager", user_id: Optional[str] = None, **overrides: Any) -> Dict[str, Any]:
        profile = {"id": user_id or str(uuid4()), "role": role, **overrides}
        mock_data["profiles"].append(profile)
        return profile

    return _create


# ==========================================
# MARKERS
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (mock database)")
    config.addinivalue_line("markers", "edge: Edge case tests")
