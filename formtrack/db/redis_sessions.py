"""Redis session aggregates with optimistic compare-and-swap.

Each aggregate is one JSON string at
``{prefix}:session:{len(form_id)}:{form_id}:{session_id}``; a sorted set ``{prefix}:sessions:{form_id}`` indexes session ids by start
time. A merge WATCHes the aggregate key, applies ``apply_delta`` to what it
read, and writes inside MULTI/EXEC. If another writer touched the key in
between, EXEC fails with ``WatchError`` and the merge starts over from the
new value.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from formtrack.errors import StorageError
from formtrack.sessions import SessionAggregate, SessionDelta, apply_delta

logger = logging.getLogger("formtrack.db.redis")


def _encode(aggregate: SessionAggregate) -> str:
    return json.dumps(
        {
            "form_id": aggregate.form_id,
            "session_id": aggregate.session_id,
            "fields_interacted": sorted(aggregate.fields_interacted),
            "total_time_spent": aggregate.total_time_spent,
            "is_completed": aggregate.is_completed,
            "started_at": aggregate.started_at.isoformat(),
            "ended_at": aggregate.ended_at.isoformat() if aggregate.ended_at else None,
            "device_info": aggregate.device_info,
            "user_agent": aggregate.user_agent,
            "ip_address": aggregate.ip_address,
        },
        sort_keys=True,
    )


def _decode(raw: str | bytes) -> SessionAggregate:
    data: dict[str, Any] = json.loads(raw)
    return SessionAggregate(
        form_id=data["form_id"],
        session_id=data["session_id"],
        fields_interacted=frozenset(data.get("fields_interacted") or ()),
        total_time_spent=int(data.get("total_time_spent") or 0),
        is_completed=bool(data.get("is_completed")),
        started_at=datetime.fromisoformat(data["started_at"]),
        ended_at=datetime.fromisoformat(data["ended_at"]) if data.get("ended_at") else None,
        device_info=data.get("device_info"),
        user_agent=data.get("user_agent"),
        ip_address=data.get("ip_address"),
    )


class RedisSessionStore:
    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "formtrack",
        max_retries: int = 10,
    ) -> None:
        self._redis = redis_client
        self._prefix = key_prefix
        self._max_retries = max_retries

    def session_key(self, form_id: str, session_id: str) -> str:
        # form_id is length-prefixed so ids containing ':' cannot collide
        return f"{self._prefix}:session:{len(form_id)}:{form_id}:{session_id}"

    def index_key(self, form_id: str) -> str:
        return f"{self._prefix}:sessions:{form_id}"

    @staticmethod
    def _score(ts: datetime) -> float:
        return ts.astimezone(UTC).timestamp()

    @staticmethod
    def _decode_for(raw: str | bytes, form_id: str, session_id: str) -> SessionAggregate:
        aggregate = _decode(raw)
        if aggregate.key != (form_id, session_id):
            raise StorageError(
                detail="Stored session does not match its key",
                form_id=form_id,
                session_id=session_id,
            )
        return aggregate

    async def create(self, aggregate: SessionAggregate) -> bool:
        key = self.session_key(*aggregate.key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for _ in range(self._max_retries):
                    try:
                        await pipe.watch(key)
                        if await pipe.exists(key):
                            await pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.set(key, _encode(aggregate))
                        pipe.zadd(
                            self.index_key(aggregate.form_id),
                            {aggregate.session_id: self._score(aggregate.started_at)},
                        )
                        await pipe.execute()
                        return True
                    except WatchError:
                        continue
        except RedisError as e:
            raise StorageError(
                detail=f"Failed to create session: {e}",
                form_id=aggregate.form_id,
                session_id=aggregate.session_id,
            ) from e
        raise StorageError(
            detail="Session create kept conflicting",
            form_id=aggregate.form_id,
            session_id=aggregate.session_id,
        )

    async def merge(self, seed: SessionAggregate, delta: SessionDelta) -> SessionAggregate | None:
        key = self.session_key(*seed.key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for attempt in range(1, self._max_retries + 1):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        current = self._decode_for(raw, *seed.key) if raw else seed
                        merged = apply_delta(current, delta)
                        if merged is None:
                            await pipe.unwatch()
                            return None
                        pipe.multi()
                        pipe.set(key, _encode(merged))
                        if raw is None:
                            pipe.zadd(
                                self.index_key(seed.form_id),
                                {seed.session_id: self._score(seed.started_at)},
                            )
                        await pipe.execute()
                        return merged
                    except WatchError:
                        logger.debug(
                            "session.merge.conflict form=%s session=%s attempt=%d",
                            seed.form_id,
                            seed.session_id,
                            attempt,
                        )
                        continue
        except RedisError as e:
            raise StorageError(
                detail=f"Failed to merge session: {e}",
                form_id=seed.form_id,
                session_id=seed.session_id,
            ) from e
        raise StorageError(
            detail=f"Session merge still conflicting after {self._max_retries} attempts",
            form_id=seed.form_id,
            session_id=seed.session_id,
        )

    async def get(self, form_id: str, session_id: str) -> SessionAggregate | None:
        try:
            raw = await self._redis.get(self.session_key(form_id, session_id))
        except RedisError as e:
            raise StorageError(detail=f"Failed to read session: {e}", form_id=form_id) from e
        return self._decode_for(raw, form_id, session_id) if raw else None

    async def list_started_between(
        self, form_id: str, start: datetime, end: datetime
    ) -> list[SessionAggregate]:
        try:
            session_ids = await self._redis.zrangebyscore(
                self.index_key(form_id), self._score(start), self._score(end)
            )
            if not session_ids:
                return []
            keys = [
                self.session_key(form_id, sid.decode() if isinstance(sid, bytes) else sid)
                for sid in session_ids
            ]
            raws = await self._redis.mget(keys)
        except RedisError as e:
            raise StorageError(detail=f"Failed to read sessions: {e}", form_id=form_id) from e
        found = [_decode(raw) for raw in raws if raw]
        found.sort(key=lambda s: (s.started_at, s.session_id))
        return found
