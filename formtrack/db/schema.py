"""Idempotent creation of the analytics tables.

The ``forms`` table read by the ownership check belongs to the form CRUD
service and is not created here.
"""

import logging

from psycopg_pool import AsyncConnectionPool

from formtrack.db.core import get_connection

logger = logging.getLogger("formtrack.db.schema")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS form_events (
    id BIGSERIAL PRIMARY KEY,
    form_id TEXT NOT NULL,
    session_id TEXT NULL,
    event_type TEXT NOT NULL
        CHECK (event_type IN ('view', 'field_focus', 'field_blur', 'submit', 'abandon')),
    field_id TEXT NULL,
    time_spent INTEGER NOT NULL DEFAULT 0 CHECK (time_spent >= 0),
    device_info JSONB NULL,
    user_agent TEXT NULL,
    ip_address TEXT NULL,
    occurred_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_form_events_form_ts ON form_events (form_id, occurred_at);

CREATE TABLE IF NOT EXISTS form_sessions (
    form_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    fields_interacted TEXT[] NOT NULL DEFAULT '{}',
    total_time_spent BIGINT NOT NULL DEFAULT 0 CHECK (total_time_spent >= 0),
    is_completed BOOLEAN NOT NULL DEFAULT FALSE,
    started_at TIMESTAMPTZ NOT NULL,
    ended_at TIMESTAMPTZ NULL,
    device_info JSONB NULL,
    user_agent TEXT NULL,
    ip_address TEXT NULL,
    PRIMARY KEY (form_id, session_id)
);
CREATE INDEX IF NOT EXISTS idx_form_sessions_form_started ON form_sessions (form_id, started_at);
"""


async def ensure_schema(pool: AsyncConnectionPool) -> None:
    """Create the event log and session tables if they are missing.

    Safe to call on every start-up.
    """
    async with get_connection(pool) as conn:
        await conn.execute(SCHEMA_SQL)
    logger.info("Analytics schema ensured")
