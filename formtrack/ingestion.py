"""Event ingestion: validate, normalise, log, then merge into the session.

The event log append is the only step whose failure reaches the caller.
Session merging is best effort: its errors are logged and swallowed, and it
is shielded from request cancellation so a started write is not abandoned
half way.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as SchemaError

from formtrack.db.base import EventStore
from formtrack.errors import StorageError, ValidationError
from formtrack.events import EVENT_TYPES, FIELD_EVENT_TYPES, InteractionEvent, build_event
from formtrack.models.tracking import TrackEventRequest
from formtrack.sessions import SessionTracker

logger = logging.getLogger("formtrack.ingestion")

# form_events.time_spent is a PostgreSQL INTEGER
MAX_TIME_SPENT = 2**31 - 1


def utcnow() -> datetime:
    return datetime.now(UTC)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _normalize_time_spent(raw: Any) -> int:
    if raw is None:
        return 0
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise ValidationError(detail="timeSpent must be a non-negative number of seconds")
    if isinstance(raw, float) and not math.isfinite(raw):
        raise ValidationError(detail="timeSpent must be a finite number")
    if raw < 0:
        raise ValidationError(detail="timeSpent must not be negative")
    if raw > MAX_TIME_SPENT:
        raise ValidationError(detail=f"timeSpent must not exceed {MAX_TIME_SPENT} seconds")
    return int(raw)


def normalize_event(
    body: TrackEventRequest,
    occurred_at: datetime,
    client_ip: str | None = None,
) -> InteractionEvent:
    """Turn an untrusted tracking request into a typed event.

    Raises ``ValidationError`` when ``formId``/``action`` are missing or any
    optional field has the wrong shape.
    """
    form_id = _clean(body.form_id)
    action = _clean(body.action)
    if not form_id or not action:
        raise ValidationError(detail="Form ID and action are required")
    if action not in EVENT_TYPES:
        raise ValidationError(
            detail=f"Unknown action '{action}'; expected one of {', '.join(sorted(EVENT_TYPES))}"
        )

    field_id = _clean(body.field_id)
    if action in FIELD_EVENT_TYPES:
        if not field_id:
            raise ValidationError(detail=f"fieldId is required for {action} events")
    else:
        field_id = None

    device_info = body.device_info
    if device_info is not None and not isinstance(device_info, dict):
        raise ValidationError(detail="deviceInfo must be an object")

    try:
        return build_event(
            form_id=form_id,
            event_type=action,
            field_id=field_id,
            session_id=_clean(body.session_id),
            time_spent=_normalize_time_spent(body.time_spent),
            device_info=device_info,
            user_agent=body.user_agent,
            ip_address=_clean(body.ip_address) or client_ip,
            occurred_at=occurred_at,
        )
    except SchemaError as e:
        raise ValidationError(detail=f"Invalid event: {e.errors()[0].get('msg')}") from e


def _log_detached_merge(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("session.merge.failed (detached) err=%r", exc)


class EventIngestor:
    """Entry point used by the tracking endpoint."""

    def __init__(
        self,
        events: EventStore,
        tracker: SessionTracker,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._events = events
        self._tracker = tracker
        self._clock = clock

    async def ingest(self, body: TrackEventRequest, client_ip: str | None = None) -> InteractionEvent:
        event = normalize_event(body, self._clock(), client_ip)

        try:
            stored = await self._events.append(event)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(detail=f"Failed to log event: {e}", form_id=event.form_id) from e

        logger.info(
            "analytics.track form=%s action=%s field=%s session=%s",
            stored.form_id,
            stored.event_type,
            getattr(stored, "field_id", None),
            stored.session_id,
        )

        if stored.session_id:
            await self._merge_best_effort(stored)
        return stored

    async def _merge_best_effort(self, event: InteractionEvent) -> None:
        task = asyncio.ensure_future(self._tracker.apply(event))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(
                "session.merge.detached form=%s session=%s; request cancelled, merge continues",
                event.form_id,
                event.session_id,
            )
            task.add_done_callback(_log_detached_merge)
            raise
        except Exception:
            logger.exception(
                "session.merge.failed form=%s session=%s action=%s",
                event.form_id,
                event.session_id,
                event.event_type,
            )
