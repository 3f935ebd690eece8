"""Interaction events as tagged variants.

Each event type is its own model sharing a common base; ``InteractionEvent``
is the discriminated union on ``event_type``. Only the field variants carry
a ``field_id``.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Final, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class EventType(str, Enum):
    VIEW = "view"
    FIELD_FOCUS = "field_focus"
    FIELD_BLUR = "field_blur"
    SUBMIT = "submit"
    ABANDON = "abandon"


EVENT_TYPES: Final[frozenset[str]] = frozenset(e.value for e in EventType)
FIELD_EVENT_TYPES: Final[frozenset[str]] = frozenset(
    {EventType.FIELD_FOCUS.value, EventType.FIELD_BLUR.value}
)


class _BaseEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int | None = None
    form_id: str = Field(min_length=1)
    session_id: str | None = None
    time_spent: int = Field(default=0, ge=0)
    device_info: dict[str, Any] | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    occurred_at: datetime


class ViewEvent(_BaseEvent):
    event_type: Literal["view"] = "view"


class FieldFocusEvent(_BaseEvent):
    event_type: Literal["field_focus"] = "field_focus"
    field_id: str = Field(min_length=1)


class FieldBlurEvent(_BaseEvent):
    event_type: Literal["field_blur"] = "field_blur"
    field_id: str = Field(min_length=1)


class SubmitEvent(_BaseEvent):
    event_type: Literal["submit"] = "submit"


class AbandonEvent(_BaseEvent):
    event_type: Literal["abandon"] = "abandon"


# Discriminated union of every event the log may hold
InteractionEvent = Annotated[
    Union[ViewEvent, FieldFocusEvent, FieldBlurEvent, SubmitEvent, AbandonEvent],
    Field(discriminator="event_type"),
]

_event_adapter: TypeAdapter[InteractionEvent] = TypeAdapter(InteractionEvent)


def build_event(**fields: Any) -> InteractionEvent:
    """Build the variant matching ``fields["event_type"]``.

    ``field_id`` is dropped for variants that cannot carry one, so rows read
    back from storage never fail on a stray column value.
    """
    if fields.get("event_type") not in FIELD_EVENT_TYPES:
        fields.pop("field_id", None)
    return _event_adapter.validate_python(fields)


def field_id_of(event: InteractionEvent) -> str | None:
    return getattr(event, "field_id", None)
