"""Identity and form-ownership collaborators.

Authentication happens upstream: the identity provider in front of the
service forwards the authenticated user id in a trusted header. The service
only asks one question of it, "who is calling", and one of the form store,
"who owns this form".
"""

import logging
from typing import Protocol

import psycopg
from fastapi import Request
from psycopg_pool import AsyncConnectionPool

from formtrack.db.core import get_connection
from formtrack.errors import AuthorizationError, ForbiddenError, NotFoundError, StorageError

logger = logging.getLogger("formtrack.auth")


class FormDirectory(Protocol):
    async def owner_of(self, form_id: str) -> str | None:
        """Owner user id of ``form_id``, or None when the form does not exist."""
        ...


class InMemoryFormDirectory:
    def __init__(self, owners: dict[str, str] | None = None) -> None:
        self._owners: dict[str, str] = dict(owners or {})

    def register(self, form_id: str, owner_id: str) -> None:
        self._owners[form_id] = owner_id

    async def owner_of(self, form_id: str) -> str | None:
        return self._owners.get(form_id)


class PostgresFormDirectory:
    """Reads ownership from the ``forms`` table of the form CRUD service."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def owner_of(self, form_id: str) -> str | None:
        try:
            async with get_connection(self._pool) as conn:
                rows = await conn.execute(
                    "SELECT owner_id FROM forms WHERE id = %s LIMIT 1", (form_id,)
                )
                row = await rows.fetchone()
        except psycopg.Error as e:
            raise StorageError(detail=f"Failed to look up form: {e}", form_id=form_id) from e
        return row[0] if row else None


def caller_id(request: Request, header: str) -> str:
    """Authenticated user id forwarded by the identity provider."""
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise AuthorizationError(detail="Missing authenticated user")
    return user_id


async def ensure_form_access(
    directory: FormDirectory,
    form_id: str,
    user_id: str,
    reveal_existence: bool = False,
) -> None:
    """Raise unless ``user_id`` owns ``form_id``.

    A form owned by someone else is reported exactly like a missing one unless
    ``reveal_existence`` is set, in which case the caller gets a 403.
    """
    owner = await directory.owner_of(form_id)
    if owner is None:
        raise NotFoundError(detail="Form not found", form_id=form_id)
    if owner != user_id:
        logger.info("auth.denied form=%s user=%s", form_id, user_id)
        if reveal_existence:
            raise ForbiddenError(detail="Not allowed to view analytics for this form")
        raise NotFoundError(detail="Form not found", form_id=form_id)
