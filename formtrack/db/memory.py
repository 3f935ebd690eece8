"""In-process stores.

Used for local development and as test doubles. The session store serialises
mutations per key with an ``asyncio.Lock``; ``latency`` widens the window
between reading and writing an aggregate so tests can force interleaving.
"""

import asyncio
import itertools
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from formtrack.events import InteractionEvent
from formtrack.sessions import SessionAggregate, SessionDelta, apply_delta


class InMemoryEventStore:
    def __init__(self) -> None:
        self._events: dict[str, list[InteractionEvent]] = defaultdict(list)
        self._ids = itertools.count(1)

    async def append(self, event: InteractionEvent) -> InteractionEvent:
        stored = event.model_copy(update={"id": next(self._ids)})
        self._events[stored.form_id].append(stored)
        return stored

    async def list_between(
        self,
        form_id: str,
        start: datetime,
        end: datetime,
        event_types: Iterable[str] | None = None,
    ) -> list[InteractionEvent]:
        wanted = set(event_types) if event_types is not None else None
        selected = [
            e
            for e in self._events.get(form_id, [])
            if start <= e.occurred_at <= end and (wanted is None or e.event_type in wanted)
        ]
        selected.sort(key=lambda e: (e.occurred_at, e.id or 0))
        return selected

    def count(self, form_id: str | None = None) -> int:
        if form_id is not None:
            return len(self._events.get(form_id, []))
        return sum(len(v) for v in self._events.values())


class InMemorySessionStore:
    def __init__(self, latency: float = 0.0) -> None:
        self._sessions: dict[tuple[str, str], SessionAggregate] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._latency = latency

    def _lock_for(self, key: tuple[str, str]) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def _pause(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)

    async def create(self, aggregate: SessionAggregate) -> bool:
        async with self._lock_for(aggregate.key):
            if aggregate.key in self._sessions:
                return False
            await self._pause()
            self._sessions[aggregate.key] = aggregate
            return True

    async def merge(self, seed: SessionAggregate, delta: SessionDelta) -> SessionAggregate | None:
        async with self._lock_for(seed.key):
            current = self._sessions.get(seed.key, seed)
            await self._pause()
            merged = apply_delta(current, delta)
            if merged is not None:
                self._sessions[seed.key] = merged
            return merged

    async def get(self, form_id: str, session_id: str) -> SessionAggregate | None:
        return self._sessions.get((form_id, session_id))

    async def list_started_between(
        self, form_id: str, start: datetime, end: datetime
    ) -> list[SessionAggregate]:
        found = [
            s
            for (fid, _), s in self._sessions.items()
            if fid == form_id and start <= s.started_at <= end
        ]
        found.sort(key=lambda s: (s.started_at, s.session_id))
        return found

    def __len__(self) -> int:
        return len(self._sessions)
