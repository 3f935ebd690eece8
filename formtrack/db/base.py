"""Storage interfaces for the event log and the session aggregates."""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from formtrack.events import InteractionEvent
from formtrack.sessions import SessionAggregate, SessionDelta


class EventStore(Protocol):
    """Append-only event log partitioned by form."""

    async def append(self, event: InteractionEvent) -> InteractionEvent:
        """Persist ``event`` and return it with its store-assigned ``id``."""
        ...

    async def list_between(
        self,
        form_id: str,
        start: datetime,
        end: datetime,
        event_types: Iterable[str] | None = None,
    ) -> list[InteractionEvent]:
        """Events of ``form_id`` with ``start <= occurred_at <= end``, oldest first."""
        ...


class SessionStore(Protocol):
    """One aggregate per (form_id, session_id); every mutation is atomic."""

    async def create(self, aggregate: SessionAggregate) -> bool:
        """Insert ``aggregate`` unless its key exists. True when inserted."""
        ...

    async def merge(self, seed: SessionAggregate, delta: SessionDelta) -> SessionAggregate | None:
        """Apply ``delta`` to the stored aggregate for ``seed.key`` in one atomic step.

        When no aggregate exists, ``seed`` with ``delta`` applied is inserted.
        Returns the stored result, or None when the stored aggregate is
        completed and was left untouched.
        """
        ...

    async def get(self, form_id: str, session_id: str) -> SessionAggregate | None:
        ...

    async def list_started_between(
        self, form_id: str, start: datetime, end: datetime
    ) -> list[SessionAggregate]:
        """Aggregates of ``form_id`` with ``start <= started_at <= end``."""
        ...
