"""Abstract storage interfaces consumed by the contact core.

Three collaborators are injected into the core at construction:

- :class:`RecordStore` holds each tenant's active and deleted contacts
- :class:`AuditLog` holds each tenant's append-only event trail
- :class:`TagRegistry` is the tenant's shared tag/label registry
"""

from __future__ import annotations

import abc
import enum

from contactbook.contacts.events import FieldEvent, TransitionEvent
from contactbook.contacts.models import Contact


class CollectionKind(enum.StrEnum):
    """The two record partitions every tenant owns."""

    ACTIVE = "active"
    DELETED = "deleted"


class RecordStore(abc.ABC):
    """Per-tenant pair of contact collections."""

    @abc.abstractmethod
    async def exists(self, tenant: str, kind: CollectionKind) -> bool:
        """Return True if *tenant*'s collection of *kind* is provisioned."""
        ...

    @abc.abstractmethod
    async def get(self, tenant: str, kind: CollectionKind, contact_id: str) -> Contact | None:
        """Return the contact with *contact_id*, or None."""
        ...

    @abc.abstractmethod
    async def list_all(self, tenant: str, kind: CollectionKind) -> list[Contact]:
        """Return every contact in the collection."""
        ...

    @abc.abstractmethod
    async def save(self, tenant: str, kind: CollectionKind, record: Contact) -> None:
        """Insert or replace *record* by id."""
        ...

    @abc.abstractmethod
    async def remove(self, tenant: str, kind: CollectionKind, record: Contact) -> None:
        """Remove *record* by id; a missing record is not an error."""
        ...

    @abc.abstractmethod
    async def move(
        self,
        tenant: str,
        record: Contact,
        source: CollectionKind,
        destination: CollectionKind,
    ) -> None:
        """Atomically remove *record* from *source* and save it to *destination*.

        Observers never see the record in both collections or in neither.
        """
        ...


class AuditLog(abc.ABC):
    """Append-only store of audit events."""

    @abc.abstractmethod
    async def append(self, tenant: str, event: TransitionEvent | FieldEvent) -> None: ...

    @abc.abstractmethod
    async def for_contact(
        self, tenant: str, contact_id: str
    ) -> list[TransitionEvent | FieldEvent]:
        """Events referencing *contact_id*, oldest first."""
        ...

    @abc.abstractmethod
    async def all(self, tenant: str) -> list[TransitionEvent | FieldEvent]:
        """Every event for *tenant*, oldest first."""
        ...


class TagRegistry(abc.ABC):
    """Tenant-wide registry of tags in use and property labels seen."""

    @abc.abstractmethod
    async def add_tags(self, tenant: str, tags: list[str]) -> None: ...

    @abc.abstractmethod
    async def remove_tags(self, tenant: str, tags: list[str]) -> None: ...

    @abc.abstractmethod
    async def add_labels(self, tenant: str, labels: list[str]) -> None: ...
