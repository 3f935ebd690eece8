"""PostgreSQL event log."""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import psycopg
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from formtrack.db.core import get_connection
from formtrack.errors import StorageError
from formtrack.events import InteractionEvent, build_event, field_id_of

_EVENT_COLUMNS = (
    "id, form_id, session_id, event_type, field_id, time_spent, "
    "device_info, user_agent, ip_address, occurred_at"
)


def _row_to_event(row: tuple[Any, ...]) -> InteractionEvent:
    return build_event(
        id=row[0],
        form_id=row[1],
        session_id=row[2],
        event_type=row[3],
        field_id=row[4],
        time_spent=row[5],
        device_info=row[6],
        user_agent=row[7],
        ip_address=row[8],
        occurred_at=row[9].astimezone(UTC),
    )


class PostgresEventStore:
    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def append(self, event: InteractionEvent) -> InteractionEvent:
        try:
            async with get_connection(self._pool) as conn:
                rows = await conn.execute(
                    """
                    INSERT INTO form_events (
                        form_id, session_id, event_type, field_id, time_spent,
                        device_info, user_agent, ip_address, occurred_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        event.form_id,
                        event.session_id,
                        event.event_type,
                        field_id_of(event),
                        event.time_spent,
                        Json(event.device_info) if event.device_info is not None else None,
                        event.user_agent,
                        event.ip_address,
                        event.occurred_at,
                    ),
                )
                row = await rows.fetchone()
        except psycopg.Error as e:
            raise StorageError(detail=f"Failed to append event: {e}", form_id=event.form_id) from e
        if not row:
            raise StorageError(detail="Event insert returned no id", form_id=event.form_id)
        return event.model_copy(update={"id": row[0]})

    async def list_between(
        self,
        form_id: str,
        start: datetime,
        end: datetime,
        event_types: Iterable[str] | None = None,
    ) -> list[InteractionEvent]:
        clauses = ["form_id = %s", "occurred_at >= %s", "occurred_at <= %s"]
        params: list[Any] = [form_id, start, end]
        if event_types is not None:
            clauses.append("event_type = ANY(%s)")
            params.append(list(event_types))
        where = " AND ".join(clauses)
        sql = f"SELECT {_EVENT_COLUMNS} FROM form_events WHERE {where} ORDER BY occurred_at ASC, id ASC"
        try:
            async with get_connection(self._pool) as conn:
                rows = await conn.execute(sql, tuple(params))
                result: list[InteractionEvent] = []
                async for row in rows:
                    result.append(_row_to_event(row))
                return result
        except psycopg.Error as e:
            raise StorageError(detail=f"Failed to read events: {e}", form_id=form_id) from e
