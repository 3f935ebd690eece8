"""Session Tracker: one canonical aggregate per (form, client session).

Events never rewrite an aggregate. Each one is turned into a ``SessionDelta``
and handed to the session store, which applies it atomically against the
stored value (row upsert, compare-and-swap, or per-key serialisation
depending on the backend). ``apply_delta`` is the single definition of the
merge rule; backends that cannot call it express the same rule in SQL.

Rules:
    view         create if absent, otherwise nothing
    field_focus  add field to the set, add time; creates the aggregate if absent
    field_blur   same as field_focus
    submit       add time, mark completed, set ended_at; creates if absent
    abandon      logged only

A completed aggregate is terminal and ignores every later delta.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from formtrack.events import (
    FIELD_EVENT_TYPES,
    EventType,
    InteractionEvent,
    field_id_of,
)

if TYPE_CHECKING:
    from formtrack.db.base import SessionStore

logger = logging.getLogger("formtrack.sessions")


@dataclass(frozen=True)
class SessionAggregate:
    form_id: str
    session_id: str
    started_at: datetime
    fields_interacted: frozenset[str] = field(default_factory=frozenset)
    total_time_spent: int = 0
    is_completed: bool = False
    ended_at: datetime | None = None
    device_info: dict[str, Any] | None = None
    user_agent: str | None = None
    ip_address: str | None = None

    @classmethod
    def start(cls, event: InteractionEvent) -> "SessionAggregate":
        """Empty aggregate for the event's session, started at its ingestion time."""
        if not event.session_id:
            raise ValueError("event has no session_id")
        return cls(
            form_id=event.form_id,
            session_id=event.session_id,
            started_at=event.occurred_at,
            device_info=event.device_info,
            user_agent=event.user_agent,
            ip_address=event.ip_address,
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.form_id, self.session_id)


@dataclass(frozen=True)
class SessionDelta:
    """Contribution of one event to an aggregate."""

    add_fields: frozenset[str] = field(default_factory=frozenset)
    add_time: int = 0
    complete_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.add_time < 0:
            raise ValueError("add_time must be non-negative")

    @property
    def completes(self) -> bool:
        return self.complete_at is not None


def delta_for_event(event: InteractionEvent) -> SessionDelta | None:
    """Translate an event into a merge, or None for events that only create or only log."""
    if event.event_type in FIELD_EVENT_TYPES:
        return SessionDelta(
            add_fields=frozenset({field_id_of(event)}),
            add_time=event.time_spent,
        )
    if event.event_type == EventType.SUBMIT.value:
        return SessionDelta(add_time=event.time_spent, complete_at=event.occurred_at)
    return None


def apply_delta(aggregate: SessionAggregate, delta: SessionDelta) -> SessionAggregate | None:
    """Merge ``delta`` into ``aggregate``.

    Returns the new aggregate, or None when ``aggregate`` is already completed
    and therefore must not change.
    """
    if aggregate.is_completed:
        return None
    return replace(
        aggregate,
        fields_interacted=aggregate.fields_interacted | delta.add_fields,
        total_time_spent=aggregate.total_time_spent + delta.add_time,
        is_completed=delta.completes,
        ended_at=delta.complete_at if delta.completes else aggregate.ended_at,
    )


class SessionTracker:
    """Applies interaction events to the session store."""

    def __init__(self, store: "SessionStore") -> None:
        self._store = store

    @property
    def store(self) -> "SessionStore":
        return self._store

    async def apply(self, event: InteractionEvent) -> SessionAggregate | None:
        """Fold ``event`` into its session.

        Returns the aggregate as stored after the event when the event changed
        it, else None (no session id, duplicate view, abandon, or a session
        that was already completed). Store failures propagate as
        ``StorageError``.
        """
        if not event.session_id:
            return None

        if event.event_type == EventType.VIEW.value:
            seed = SessionAggregate.start(event)
            created = await self._store.create(seed)
            if not created:
                logger.debug(
                    "session.view.duplicate form=%s session=%s", event.form_id, event.session_id
                )
                return None
            return seed

        delta = delta_for_event(event)
        if delta is None:
            return None

        merged = await self._store.merge(SessionAggregate.start(event), delta)
        if merged is None:
            logger.debug(
                "session.merge.ignored form=%s session=%s type=%s reason=completed",
                event.form_id,
                event.session_id,
                event.event_type,
            )
        return merged
