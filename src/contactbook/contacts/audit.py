"""Audit recorder: builds change events and appends them to the audit log.

The recorder is only driven from :class:`~contactbook.contacts.lifecycle.ContactLifecycle`.
Diff helpers must be called with the pre-mutation record so the events
describe the change being applied.
"""

from __future__ import annotations

import logging

from contactbook.contacts.events import EventState, FieldEvent, TransitionEvent
from contactbook.contacts.models import Contact
from contactbook.store.base import AuditLog

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Appends transition and field events for a tenant's contacts."""

    def __init__(self, log: AuditLog) -> None:
        self._log = log

    async def record(
        self, tenant: str, user: str, contact_id: str, state: EventState
    ) -> TransitionEvent:
        """Append a whole-record transition event."""
        event = TransitionEvent(user=user, contact_id=contact_id, state=state)
        await self._log.append(tenant, event)
        logger.debug("Recorded %s for contact %s", state, contact_id)
        return event

    async def record_field(
        self,
        tenant: str,
        user: str,
        contact_id: str,
        state: EventState,
        prop_key: str,
        prev_state: str = "",
        current_state: str = "",
    ) -> FieldEvent:
        """Append a field-level event."""
        event = FieldEvent(
            user=user,
            contact_id=contact_id,
            state=state,
            prop_key=prop_key,
            prev_state=prev_state,
            current_state=current_state,
        )
        await self._log.append(tenant, event)
        logger.debug("Recorded %s(%s) for contact %s", state, prop_key, contact_id)
        return event

    async def history(self, tenant: str, contact_id: str) -> list[TransitionEvent | FieldEvent]:
        return await self._log.for_contact(tenant, contact_id)

    # ------------------------------------------------------------------
    # Update diffs
    # ------------------------------------------------------------------

    async def diff_tags(
        self, existing: Contact, incoming: Contact, user: str
    ) -> list[FieldEvent]:
        """TAG_ADD for tags only on *incoming*, TAG_REMOVED for tags only on *existing*."""
        events: list[FieldEvent] = []
        for tag in incoming.tags:
            if tag not in existing.tags:
                events.append(
                    await self.record_field(
                        existing.tenant, user, existing.id, EventState.TAG_ADD, tag
                    )
                )
        for tag in existing.tags:
            if tag not in incoming.tags:
                events.append(
                    await self.record_field(
                        existing.tenant, user, existing.id, EventState.TAG_REMOVED, tag
                    )
                )
        return events

    async def diff_props(
        self, existing: Contact, incoming: Contact, user: str
    ) -> list[FieldEvent]:
        """PROP_ADD for new or changed keys, PROP_REMOVED for keys *incoming* dropped."""
        events: list[FieldEvent] = []
        for key, value in incoming.props.items():
            previous = existing.props.get(key)
            if previous != value:
                events.append(
                    await self.record_field(
                        existing.tenant,
                        user,
                        existing.id,
                        EventState.PROP_ADD,
                        key,
                        previous or "",
                        value,
                    )
                )
        for key, value in existing.props.items():
            if key not in incoming.props:
                events.append(
                    await self.record_field(
                        existing.tenant, user, existing.id, EventState.PROP_REMOVED, key, value, ""
                    )
                )
        return events

    # ------------------------------------------------------------------
    # Merge diffs
    # ------------------------------------------------------------------

    async def diff_tags_merging(
        self, target: Contact, source: Contact, user: str
    ) -> list[FieldEvent]:
        """MERGE_TAG_ADD for every source tag the target does not carry yet."""
        events: list[FieldEvent] = []
        for tag in source.tags:
            if tag not in target.tags:
                events.append(
                    await self.record_field(
                        target.tenant, user, target.id, EventState.MERGE_TAG_ADD, tag
                    )
                )
        return events

    async def diff_props_merging(
        self, target: Contact, source: Contact, user: str
    ) -> list[FieldEvent]:
        """Compare *source* props against *target* before they are merged.

        A key missing from the target yields MERGE_PROP_ADD. A key both carry
        with different values yields MERGE_UPDATED with the target value as
        ``prev_state`` and the source value as ``current_state``; the merged
        record still keeps the target value.
        """
        events: list[FieldEvent] = []
        for key, value in source.props.items():
            previous = target.props.get(key)
            if previous == value:
                continue
            state = EventState.MERGE_PROP_ADD if previous is None else EventState.MERGE_UPDATED
            events.append(
                await self.record_field(
                    target.tenant, user, target.id, state, key, previous or "", value
                )
            )
        return events
