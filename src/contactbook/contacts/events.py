"""Audit event models.

Events come in two shapes, discriminated by ``kind``:

- :class:`TransitionEvent` for whole-record transitions (created, deleted, ...)
- :class:`FieldEvent` for field-level changes, carrying the property key and
  the previous/current values

Both are frozen; an appended event is never edited.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class EventState(enum.StrEnum):
    """Closed set of audit event states."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    TAG_ADD = "TAG_ADD"
    TAG_REMOVED = "TAG_REMOVED"
    PROP_ADD = "PROP_ADD"
    PROP_REMOVED = "PROP_REMOVED"
    REVERTED = "REVERTED"
    DUPLICATED = "DUPLICATED"
    MERGED = "MERGED"
    MERGE_TAG_ADD = "MERGE_TAG_ADD"
    MERGE_PROP_ADD = "MERGE_PROP_ADD"
    MERGE_UPDATED = "MERGE_UPDATED"


TRANSITION_STATES = frozenset(
    {
        EventState.CREATED,
        EventState.DELETED,
        EventState.REVERTED,
        EventState.DUPLICATED,
        EventState.MERGED,
    }
)
FIELD_STATES = frozenset(EventState) - TRANSITION_STATES


class _BaseEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: str
    contact_id: str
    state: EventState
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TransitionEvent(_BaseEvent):
    """A contact moved between lifecycle states."""

    kind: Literal["transition"] = "transition"

    @model_validator(mode="after")
    def _check_state(self) -> TransitionEvent:
        if self.state not in TRANSITION_STATES:
            raise ValueError(f"{self.state} is not a whole-record transition state")
        return self


class FieldEvent(_BaseEvent):
    """A single tag, property, or title changed."""

    kind: Literal["field"] = "field"
    prop_key: str
    prev_state: str = ""
    current_state: str = ""

    @model_validator(mode="after")
    def _check_state(self) -> FieldEvent:
        if self.state not in FIELD_STATES:
            raise ValueError(f"{self.state} is not a field-level state")
        return self


AuditEvent = Annotated[TransitionEvent | FieldEvent, Field(discriminator="kind")]

audit_event_adapter: TypeAdapter[TransitionEvent | FieldEvent] = TypeAdapter(AuditEvent)
