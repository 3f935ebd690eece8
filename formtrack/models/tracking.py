"""Request and response models for event tracking."""

from typing import Any

from pydantic import AliasChoices, Field

from formtrack.models.analytics import CamelModel


class TrackEventRequest(CamelModel):
    """Body of POST /analytics/track.

    Everything is optional at this layer; required fields and value ranges are
    checked by the ingestion step so that callers get a 400 with a readable
    reason instead of a schema dump.
    """

    form_id: str | None = None
    action: str | None = Field(
        default=None,
        validation_alias=AliasChoices("action", "eventType", "event_type"),
    )
    field_id: str | None = None
    time_spent: Any = None
    device_info: Any = None
    user_agent: str | None = None
    ip_address: str | None = None
    session_id: str | None = None


class TrackedEvent(CamelModel):
    form_id: str
    action: str
    field_id: str | None = None
    session_id: str | None = None


class TrackEventResponse(CamelModel):
    """Response model for POST /analytics/track."""

    message: str
    data: TrackedEvent
