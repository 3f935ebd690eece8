"""PostgreSQL session aggregates.

Every mutation is a single ``INSERT ... ON CONFLICT`` statement, so the row
lock taken by the upsert is the only serialisation point. Concurrent merges
for the same session queue on that lock and each one sees the value left by
the previous, which keeps both set unions and time increments.
"""

from datetime import UTC, datetime
from typing import Any

import psycopg
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from formtrack.db.core import get_connection
from formtrack.errors import StorageError
from formtrack.sessions import SessionAggregate, SessionDelta

_SESSION_COLUMNS = (
    "form_id, session_id, fields_interacted, total_time_spent, is_completed, "
    "started_at, ended_at, device_info, user_agent, ip_address"
)

CREATE_SQL = f"""
INSERT INTO form_sessions ({_SESSION_COLUMNS})
VALUES (%s, %s, %s::text[], %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (form_id, session_id) DO NOTHING
RETURNING form_id
"""

# Mirrors formtrack.sessions.apply_delta; the WHERE clause makes completed rows terminal.
MERGE_SQL = f"""
INSERT INTO form_sessions AS s ({_SESSION_COLUMNS})
VALUES (%s, %s, %s::text[], %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (form_id, session_id) DO UPDATE SET
    fields_interacted = ARRAY(
        SELECT DISTINCT f FROM unnest(s.fields_interacted || EXCLUDED.fields_interacted) AS f
        ORDER BY f
    ),
    total_time_spent = s.total_time_spent + EXCLUDED.total_time_spent,
    is_completed = EXCLUDED.is_completed,
    ended_at = CASE WHEN EXCLUDED.is_completed THEN EXCLUDED.ended_at ELSE s.ended_at END
WHERE NOT s.is_completed
RETURNING {", ".join("s." + c.strip() for c in _SESSION_COLUMNS.split(","))}
"""


def _row_to_session(row: tuple[Any, ...]) -> SessionAggregate:
    return SessionAggregate(
        form_id=row[0],
        session_id=row[1],
        fields_interacted=frozenset(row[2] or ()),
        total_time_spent=int(row[3] or 0),
        is_completed=bool(row[4]),
        started_at=row[5].astimezone(UTC),
        ended_at=row[6].astimezone(UTC) if row[6] else None,
        device_info=row[7],
        user_agent=row[8],
        ip_address=row[9],
    )


def _session_params(aggregate: SessionAggregate) -> tuple[Any, ...]:
    return (
        aggregate.form_id,
        aggregate.session_id,
        sorted(aggregate.fields_interacted),
        aggregate.total_time_spent,
        aggregate.is_completed,
        aggregate.started_at,
        aggregate.ended_at,
        Json(aggregate.device_info) if aggregate.device_info is not None else None,
        aggregate.user_agent,
        aggregate.ip_address,
    )


class PostgresSessionStore:
    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def create(self, aggregate: SessionAggregate) -> bool:
        try:
            async with get_connection(self._pool) as conn:
                rows = await conn.execute(CREATE_SQL, _session_params(aggregate))
                return (await rows.fetchone()) is not None
        except psycopg.Error as e:
            raise StorageError(
                detail=f"Failed to create session: {e}",
                form_id=aggregate.form_id,
                session_id=aggregate.session_id,
            ) from e

    async def merge(self, seed: SessionAggregate, delta: SessionDelta) -> SessionAggregate | None:
        # The inserted values are the seed with the delta applied; on conflict
        # the same values act as the increment.
        params = (
            seed.form_id,
            seed.session_id,
            sorted(delta.add_fields),
            delta.add_time,
            delta.completes,
            seed.started_at,
            delta.complete_at,
            Json(seed.device_info) if seed.device_info is not None else None,
            seed.user_agent,
            seed.ip_address,
        )
        try:
            async with get_connection(self._pool) as conn:
                rows = await conn.execute(MERGE_SQL, params)
                row = await rows.fetchone()
        except psycopg.Error as e:
            raise StorageError(
                detail=f"Failed to merge session: {e}",
                form_id=seed.form_id,
                session_id=seed.session_id,
            ) from e
        return _row_to_session(row) if row else None

    async def get(self, form_id: str, session_id: str) -> SessionAggregate | None:
        try:
            async with get_connection(self._pool) as conn:
                rows = await conn.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM form_sessions WHERE form_id = %s AND session_id = %s",
                    (form_id, session_id),
                )
                row = await rows.fetchone()
        except psycopg.Error as e:
            raise StorageError(detail=f"Failed to read session: {e}", form_id=form_id) from e
        return _row_to_session(row) if row else None

    async def list_started_between(
        self, form_id: str, start: datetime, end: datetime
    ) -> list[SessionAggregate]:
        sql = f"""
            SELECT {_SESSION_COLUMNS}
            FROM form_sessions
            WHERE form_id = %s AND started_at >= %s AND started_at <= %s
            ORDER BY started_at ASC, session_id ASC
        """
        try:
            async with get_connection(self._pool) as conn:
                rows = await conn.execute(sql, (form_id, start, end))
                result: list[SessionAggregate] = []
                async for row in rows:
                    result.append(_row_to_session(row))
                return result
        except psycopg.Error as e:
            raise StorageError(detail=f"Failed to read sessions: {e}", form_id=form_id) from e
