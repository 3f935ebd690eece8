"""Tests for the PostgreSQL stores against a recording connection."""

from datetime import UTC, datetime, timedelta, timezone

import psycopg
import pytest

from formtrack.auth import PostgresFormDirectory
from formtrack.db.events import PostgresEventStore
from formtrack.db.schema import SCHEMA_SQL, ensure_schema
from formtrack.db.sessions import PostgresSessionStore
from formtrack.errors import StorageError
from formtrack.sessions import SessionAggregate, SessionDelta
from formtrack.tests.conftest import BASE_TS


class MockAsyncCursor:

    def __init__(self, rows=None):
        self.rows = rows or []
        self._index = 0

    async def fetchone(self):
        if self.rows:
            return self.rows[0]
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index >= len(self.rows):
            raise StopAsyncIteration
        row = self.rows[self._index]
        self._index += 1
        return row


class MockAsyncConnection:

    def __init__(self, cursor_results=None, error=None):
        self.cursor_results = cursor_results or []
        self.error = error
        self.executed = []
        self.autocommit = False
        self._call_index = 0

    async def set_autocommit(self, value):
        self.autocommit = value

    async def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if self.error is not None:
            raise self.error
        if self._call_index < len(self.cursor_results):
            result = self.cursor_results[self._call_index]
            self._call_index += 1
            return MockAsyncCursor(result)
        return MockAsyncCursor([])


class MockPool:

    def __init__(self, cursor_results=None, error=None):
        self.conn = MockAsyncConnection(cursor_results, error)

    def connection(self):
        conn = self.conn

        class _Ctx:
            async def __aenter__(self):
                return conn

            async def __aexit__(self, *args):
                return None

        return _Ctx()

    @property
    def executed(self):
        return self.conn.executed


def _session_row(fields=("name",), time=5, completed=False, ended_at=None):
    return (
        "form-1",
        "S",
        list(fields),
        time,
        completed,
        BASE_TS.astimezone(timezone(timedelta(hours=2))),
        ended_at,
        {"deviceType": "tablet"},
        "Mozilla/5.0",
        "10.0.0.1",
    )


class TestPostgresEventStore:

    @pytest.mark.asyncio
    async def test_append_returns_event_with_id(self, make_event):
        pool = MockPool(cursor_results=[[(41,)]])
        event = make_event("field_blur", field_id="email", time_spent=4, device_info={"deviceType": "mobile"})

        stored = await PostgresEventStore(pool).append(event)

        assert stored.id == 41
        assert stored.field_id == "email"
        assert pool.conn.autocommit is True
        sql, params = pool.executed[0]
        assert "INSERT INTO form_events" in sql
        assert "RETURNING id" in sql
        assert params[:5] == ("form-1", "S", "field_blur", "email", 4)
        assert params[5].obj == {"deviceType": "mobile"}
        assert params[8] == BASE_TS

    @pytest.mark.asyncio
    async def test_append_non_field_event_has_null_field(self, make_event):
        pool = MockPool(cursor_results=[[(1,)]])
        await PostgresEventStore(pool).append(make_event("view"))
        _, params = pool.executed[0]
        assert params[3] is None
        assert params[5] is None

    @pytest.mark.asyncio
    async def test_append_without_returned_id_fails(self, make_event):
        with pytest.raises(StorageError):
            await PostgresEventStore(MockPool()).append(make_event("view"))

    @pytest.mark.asyncio
    async def test_append_database_error(self, make_event):
        pool = MockPool(error=psycopg.OperationalError("server closed the connection"))
        with pytest.raises(StorageError) as exc_info:
            await PostgresEventStore(pool).append(make_event("view"))
        assert exc_info.value.context == {"form_id": "form-1"}

    @pytest.mark.asyncio
    async def test_list_between_builds_typed_events(self):
        rows = [
            (1, "form-1", "S", "view", None, 0, None, None, None, BASE_TS),
            (2, "form-1", "S", "field_focus", "name", 3, {"deviceType": "mobile"}, "ua", "1.2.3.4", BASE_TS),
            (3, "form-1", "S", "submit", "stale", 7, None, None, None, BASE_TS + timedelta(seconds=9)),
        ]
        pool = MockPool(cursor_results=[rows])
        end = BASE_TS + timedelta(days=1)

        events = await PostgresEventStore(pool).list_between("form-1", BASE_TS, end)

        assert [e.event_type for e in events] == ["view", "field_focus", "submit"]
        assert events[1].field_id == "name"
        assert not hasattr(events[2], "field_id")
        assert events[2].occurred_at.tzinfo is UTC
        sql, params = pool.executed[0]
        assert "ORDER BY occurred_at ASC, id ASC" in sql
        assert "ANY" not in sql
        assert params == ("form-1", BASE_TS, end)

    @pytest.mark.asyncio
    async def test_list_between_filters_types(self):
        pool = MockPool(cursor_results=[[]])
        await PostgresEventStore(pool).list_between("form-1", BASE_TS, BASE_TS, event_types=["view", "submit"])
        sql, params = pool.executed[0]
        assert "event_type = ANY(%s)" in sql
        assert params[-1] == ["view", "submit"]


class TestPostgresSessionStore:

    def _seed(self):
        return SessionAggregate(
            form_id="form-1",
            session_id="S",
            started_at=BASE_TS,
            device_info={"deviceType": "tablet"},
            user_agent="Mozilla/5.0",
            ip_address="10.0.0.1",
        )

    @pytest.mark.asyncio
    async def test_create_inserted(self):
        pool = MockPool(cursor_results=[[("form-1",)]])
        assert await PostgresSessionStore(pool).create(self._seed()) is True
        sql, params = pool.executed[0]
        assert "ON CONFLICT (form_id, session_id) DO NOTHING" in sql
        assert params[:5] == ("form-1", "S", [], 0, False)

    @pytest.mark.asyncio
    async def test_create_existing(self):
        assert await PostgresSessionStore(MockPool()).create(self._seed()) is False

    @pytest.mark.asyncio
    async def test_merge_is_one_upsert_statement(self):
        pool = MockPool(cursor_results=[[_session_row(fields=("email", "name"), time=8)]])
        delta = SessionDelta(add_fields=frozenset({"name", "email"}), add_time=3)

        merged = await PostgresSessionStore(pool).merge(self._seed(), delta)

        assert len(pool.executed) == 1
        sql, params = pool.executed[0]
        assert "ON CONFLICT (form_id, session_id) DO UPDATE" in sql
        assert "WHERE NOT s.is_completed" in sql
        assert params[:7] == ("form-1", "S", ["email", "name"], 3, False, BASE_TS, None)
        assert merged.fields_interacted == {"name", "email"}
        assert merged.total_time_spent == 8
        assert merged.started_at == BASE_TS
        assert merged.started_at.tzinfo is UTC

    @pytest.mark.asyncio
    async def test_merge_completion_params(self):
        end = BASE_TS + timedelta(seconds=10)
        pool = MockPool(cursor_results=[[_session_row(completed=True, ended_at=end)]])

        merged = await PostgresSessionStore(pool).merge(self._seed(), SessionDelta(add_time=3, complete_at=end))

        _, params = pool.executed[0]
        assert params[4] is True
        assert params[6] == end
        assert merged.is_completed is True
        assert merged.ended_at == end

    @pytest.mark.asyncio
    async def test_merge_into_completed_row_returns_none(self):
        merged = await PostgresSessionStore(MockPool()).merge(self._seed(), SessionDelta(add_time=1))
        assert merged is None

    @pytest.mark.asyncio
    async def test_merge_database_error(self):
        pool = MockPool(error=psycopg.errors.SerializationFailure("could not serialize access"))
        with pytest.raises(StorageError) as exc_info:
            await PostgresSessionStore(pool).merge(self._seed(), SessionDelta(add_time=1))
        assert exc_info.value.context == {"form_id": "form-1", "session_id": "S"}

    @pytest.mark.asyncio
    async def test_list_started_between(self):
        pool = MockPool(cursor_results=[[_session_row(), _session_row(time=0)]])
        found = await PostgresSessionStore(pool).list_started_between("form-1", BASE_TS, BASE_TS)
        assert [s.total_time_spent for s in found] == [5, 0]
        assert found[0].device_info == {"deviceType": "tablet"}
        sql, _ = pool.executed[0]
        assert "ORDER BY started_at ASC, session_id ASC" in sql

    @pytest.mark.asyncio
    async def test_get_missing(self):
        assert await PostgresSessionStore(MockPool()).get("form-1", "nope") is None


class TestSchema:

    @pytest.mark.asyncio
    async def test_ensure_schema_is_idempotent_ddl(self):
        pool = MockPool()
        await ensure_schema(pool)
        sql, _ = pool.executed[0]
        assert sql == SCHEMA_SQL
        assert "CREATE TABLE IF NOT EXISTS form_events" in SCHEMA_SQL
        assert "CREATE TABLE IF NOT EXISTS form_sessions" in SCHEMA_SQL
        assert "PRIMARY KEY (form_id, session_id)" in SCHEMA_SQL


class TestPostgresFormDirectory:

    @pytest.mark.asyncio
    async def test_owner_lookup(self):
        pool = MockPool(cursor_results=[[("user-1",)]])
        assert await PostgresFormDirectory(pool).owner_of("form-1") == "user-1"
        assert pool.executed[0][1] == ("form-1",)

    @pytest.mark.asyncio
    async def test_missing_form(self):
        assert await PostgresFormDirectory(MockPool()).owner_of("form-1") is None

    @pytest.mark.asyncio
    async def test_database_error(self):
        pool = MockPool(error=psycopg.OperationalError("timeout"))
        with pytest.raises(StorageError):
            await PostgresFormDirectory(pool).owner_of("form-1")
