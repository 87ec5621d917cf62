"""In-process implementations of the storage interfaces.

Records are copied on the way in and out so callers never hold a reference
into the store.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict

from contactbook.contacts.events import FieldEvent, TransitionEvent
from contactbook.contacts.models import Contact
from contactbook.store.base import AuditLog, CollectionKind, RecordStore, TagRegistry

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed record store.

    A tenant's collections only exist after :meth:`provision`.
    """

    def __init__(self) -> None:
        self._collections: dict[tuple[str, CollectionKind], dict[str, Contact]] = {}

    def provision(
        self,
        tenant: str,
        kinds: tuple[CollectionKind, ...] = (CollectionKind.ACTIVE, CollectionKind.DELETED),
    ) -> None:
        for kind in kinds:
            self._collections.setdefault((tenant, kind), {})
        logger.info("Provisioned in-memory collections %s for tenant %s", list(kinds), tenant)

    def _collection(self, tenant: str, kind: CollectionKind) -> dict[str, Contact]:
        try:
            return self._collections[(tenant, kind)]
        except KeyError:
            raise LookupError(f"Collection {kind!s} not provisioned for tenant {tenant!r}")

    async def exists(self, tenant: str, kind: CollectionKind) -> bool:
        return (tenant, kind) in self._collections

    async def get(self, tenant: str, kind: CollectionKind, contact_id: str) -> Contact | None:
        record = self._collection(tenant, kind).get(contact_id)
        return record.model_copy(deep=True) if record is not None else None

    async def list_all(self, tenant: str, kind: CollectionKind) -> list[Contact]:
        return [r.model_copy(deep=True) for r in self._collection(tenant, kind).values()]

    async def save(self, tenant: str, kind: CollectionKind, record: Contact) -> None:
        self._collection(tenant, kind)[record.id] = record.model_copy(deep=True)

    async def remove(self, tenant: str, kind: CollectionKind, record: Contact) -> None:
        self._collection(tenant, kind).pop(record.id, None)

    async def move(
        self,
        tenant: str,
        record: Contact,
        source: CollectionKind,
        destination: CollectionKind,
    ) -> None:
        # Both lookups happen before either write, and nothing is awaited in
        # between, so the move is atomic with respect to other coroutines.
        src = self._collection(tenant, source)
        dst = self._collection(tenant, destination)
        src.pop(record.id, None)
        dst[record.id] = record.model_copy(deep=True)


class InMemoryAuditLog(AuditLog):
    """List-backed audit log."""

    def __init__(self) -> None:
        self._events: dict[str, list[TransitionEvent | FieldEvent]] = defaultdict(list)

    async def append(self, tenant: str, event: TransitionEvent | FieldEvent) -> None:
        self._events[tenant].append(event)

    async def for_contact(
        self, tenant: str, contact_id: str
    ) -> list[TransitionEvent | FieldEvent]:
        return [e for e in self._events.get(tenant, []) if e.contact_id == contact_id]

    async def all(self, tenant: str) -> list[TransitionEvent | FieldEvent]:
        return list(self._events.get(tenant, []))


class InMemoryTagRegistry(TagRegistry):
    """Reference-counted tags and a label set per tenant.

    Each ``add_tags`` call adds one count per tag and each ``remove_tags`` call
    takes one away; a tag is unregistered when its count reaches zero. Counts
    follow create, revert and soft-delete only. Tags that ``update`` or
    ``merge`` put on a contact are not counted, so the registry can drop a tag
    some active contact still carries.
    """

    def __init__(self) -> None:
        self.tags: dict[str, Counter[str]] = defaultdict(Counter)
        self.labels: dict[str, set[str]] = defaultdict(set)

    async def add_tags(self, tenant: str, tags: list[str]) -> None:
        self.tags[tenant].update(tags)

    async def remove_tags(self, tenant: str, tags: list[str]) -> None:
        counts = self.tags[tenant]
        counts.subtract(tags)
        for tag in [t for t, n in counts.items() if n <= 0]:
            del counts[tag]

    async def add_labels(self, tenant: str, labels: list[str]) -> None:
        self.labels[tenant].update(labels)

    def registered_tags(self, tenant: str) -> set[str]:
        return set(self.tags.get(tenant, {}))
