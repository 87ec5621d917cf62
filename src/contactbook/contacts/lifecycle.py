"""Contact lifecycle operations over the active and deleted collections.

A contact lives in exactly one of a tenant's two collections:

    create ──► ACTIVE ──soft_delete──► DELETED ──purge──► (gone)
                  ▲                        │
                  └────────revert──────────┘

A merge permanently removes the source contact from ACTIVE without passing
through DELETED.

Every operation checks that the tenant's collections exist before looking at
identifiers or content, and raises :class:`~contactbook.errors.SchemaMissingError`
when they do not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from contactbook.contacts.audit import AuditRecorder
from contactbook.contacts.events import EventState, FieldEvent, TransitionEvent
from contactbook.contacts.models import Contact, ImportRecord, generate_contact_id
from contactbook.core.telemetry import operation_span
from contactbook.errors import (
    AlreadyExistsError,
    NotFoundError,
    SchemaMissingError,
    ValidationError,
)
from contactbook.store.base import CollectionKind, RecordStore, TagRegistry

logger = logging.getLogger(__name__)

ACTIVE = CollectionKind.ACTIVE
DELETED = CollectionKind.DELETED

# Attempts at drawing an identifier suffix that is not already taken
_MAX_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class Lookup:
    """Outcome of looking up one identifier in a bulk operation."""

    contact_id: str
    record: Contact | None

    @property
    def found(self) -> bool:
        return self.record is not None


def _require(value: str | None, message: str) -> str:
    if value is None or not value.strip():
        logger.warning(message)
        raise ValidationError(message)
    return value


class ContactLifecycle:
    """Orchestrates contact mutations against the record store.

    Parameters
    ----------
    store:
        Tenant record collections.
    audit:
        Recorder for lifecycle and field events.
    registry:
        Tenant tag/label registry. Only ever added to on create/revert/update
        and removed from on soft delete.
    """

    def __init__(self, store: RecordStore, audit: AuditRecorder, registry: TagRegistry) -> None:
        self._store = store
        self._audit = audit
        self._registry = registry

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_collections(self, tenant: str, *kinds: CollectionKind) -> None:
        for kind in kinds:
            if not await self._store.exists(tenant, kind):
                logger.warning("Collection %s does not exist for tenant %s", kind, tenant)
                raise SchemaMissingError(tenant, str(kind))

    async def _load(self, tenant: str, kind: CollectionKind, contact_id: str) -> Contact:
        record = await self._store.get(tenant, kind, contact_id)
        if record is None:
            logger.warning("Contact %s not found in %s collection", contact_id, kind)
            raise NotFoundError(f"Contact {contact_id} not found")
        return record

    async def _assign_id(self, tenant: str, title: str) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            contact_id = generate_contact_id(title)
            if await self._store.get(tenant, ACTIVE, contact_id) is None:
                return contact_id
        raise AlreadyExistsError(f"Could not allocate a free identifier for {title!r}")

    async def _insert(self, record: Contact, user: str, state: EventState) -> Contact:
        tenant = record.tenant
        record.id = await self._assign_id(tenant, record.title)
        record.created_at = datetime.now(UTC)
        record.refresh_attributes()
        await self._store.save(tenant, ACTIVE, record)
        await self._registry.add_tags(tenant, list(record.tags))
        await self._registry.add_labels(tenant, list(record.props))
        await self._audit.record(tenant, user, record.id, state)
        logger.info("Contact created with id %s for tenant %s", record.id, tenant)
        return record

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, record: Contact, user: str, duplicate: bool = False) -> Contact:
        """Create a contact in the active collection.

        Any client-supplied ``id`` is only used for the collision check; the
        stored contact always receives a freshly generated identifier.

        Raises:
            ValidationError: Tenant or title is blank.
            SchemaMissingError: The tenant's active collection is missing.
            AlreadyExistsError: The supplied ``id`` is already active.
        """
        tenant = _require(record.tenant, "Tenant name is empty")
        with operation_span("create", tenant=tenant, duplicate=duplicate):
            await self._require_collections(tenant, ACTIVE)
            _require(record.title, "Contact title is empty")
            if record.id and await self._store.get(tenant, ACTIVE, record.id) is not None:
                logger.warning("Contact %s already exists for tenant %s", record.id, tenant)
                raise AlreadyExistsError(f"Contact {record.id} already exists")

            stored = record.model_copy(deep=True)
            stored.user = user
            state = EventState.DUPLICATED if duplicate else EventState.CREATED
            return await self._insert(stored, user, state)

    async def save_all(self, records: list[ImportRecord | Contact]) -> list[Contact]:
        """Bulk entry point for import parsers.

        Every record is validated before any is written. No duplicate or
        existing-id checks are made; each record gets a CREATED event
        attributed to its own ``user``.
        """
        contacts = [
            r.model_copy(deep=True) if isinstance(r, Contact) else Contact.from_import(r)
            for r in records
        ]
        for contact in contacts:
            tenant = _require(contact.tenant, "Tenant name is empty")
            await self._require_collections(tenant, ACTIVE)
            _require(contact.title, "Contact title is empty")

        saved: list[Contact] = []
        for contact in contacts:
            with operation_span("save_all", tenant=contact.tenant):
                saved.append(await self._insert(contact, contact.user, EventState.CREATED))
        logger.info("Bulk saved %d contacts", len(saved))
        return saved

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, tenant: str, contact_id: str) -> Contact:
        """Return one active contact."""
        _require(tenant, "Tenant name is empty")
        with operation_span("get", tenant=tenant, contact_id=contact_id):
            await self._require_collections(tenant, ACTIVE)
            _require(contact_id, "Contact id is empty")
            return await self._load(tenant, ACTIVE, contact_id)

    async def list_contacts(self, tenant: str, deleted: bool = False) -> list[Contact]:
        """Return every contact in the active, or the deleted, collection."""
        _require(tenant, "Tenant name is empty")
        with operation_span("list", tenant=tenant, deleted=deleted):
            await self._require_collections(tenant, ACTIVE)
            if deleted:
                await self._require_collections(tenant, DELETED)
                return await self._store.list_all(tenant, DELETED)
            return await self._store.list_all(tenant, ACTIVE)

    async def find_many(self, tenant: str, contact_ids: list[str]) -> list[Contact]:
        """Active contacts for *contact_ids* in request order; unknown ids are skipped."""
        _require(tenant, "Tenant name is empty")
        with operation_span("find_many", tenant=tenant):
            await self._require_collections(tenant, ACTIVE)
            lookups = [await self._lookup(tenant, cid) for cid in contact_ids]
            return [lk.record for lk in lookups if lk.record is not None]

    async def history(self, tenant: str, contact_id: str) -> list[TransitionEvent | FieldEvent]:
        """Audit events referencing *contact_id*, oldest first."""
        _require(tenant, "Tenant name is empty")
        _require(contact_id, "Contact id is empty")
        return await self._audit.history(tenant, contact_id)

    async def _lookup(self, tenant: str, contact_id: str) -> Lookup:
        return Lookup(contact_id, await self._store.get(tenant, ACTIVE, contact_id))

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, record: Contact, user: str) -> Contact:
        """Overwrite an active contact's title, comments, tags and props.

        Events are emitted against the stored record before each field is
        overwritten: the title change first, then tag diffs, then prop diffs.
        """
        tenant = _require(record.tenant, "Tenant name is empty")
        with operation_span("update", tenant=tenant, contact_id=record.id):
            await self._require_collections(tenant, ACTIVE)
            _require(record.id, "Contact id is empty")
            _require(record.title, "Contact title is empty")
            existing = await self._load(tenant, ACTIVE, record.id)

            if existing.title != record.title:
                await self._audit.record_field(
                    tenant,
                    user,
                    existing.id,
                    EventState.UPDATED,
                    "Title",
                    existing.title,
                    record.title,
                )
            existing.title = record.title
            existing.comments = record.comments

            await self._audit.diff_tags(existing, record, user)
            existing.tags = list(record.tags)

            await self._audit.diff_props(existing, record, user)
            existing.props = dict(record.props)

            existing.refresh_attributes()
            await self._registry.add_labels(tenant, list(record.props))
            await self._store.save(tenant, ACTIVE, existing)
            logger.info("Contact updated with id %s for tenant %s", existing.id, tenant)
            return existing

    # ------------------------------------------------------------------
    # Soft delete / revert / purge
    # ------------------------------------------------------------------

    async def _soft_delete_one(self, tenant: str, record: Contact, user: str) -> None:
        await self._store.move(tenant, record, ACTIVE, DELETED)
        await self._audit.record(tenant, user, record.id, EventState.DELETED)
        await self._registry.remove_tags(tenant, list(record.tags))
        logger.info("Contact %s moved to deleted collection for tenant %s", record.id, tenant)

    async def soft_delete(self, tenant: str, contact_id: str, user: str) -> Contact:
        """Move an active contact to the deleted collection."""
        _require(tenant, "Tenant name is empty")
        with operation_span("soft_delete", tenant=tenant, contact_id=contact_id):
            await self._require_collections(tenant, ACTIVE, DELETED)
            _require(contact_id, "Contact id is empty")
            record = await self._load(tenant, ACTIVE, contact_id)
            await self._soft_delete_one(tenant, record, user)
            return record

    async def soft_delete_many(
        self, tenant: str, contact_ids: list[str], user: str
    ) -> list[Contact]:
        """Soft-delete every id that is active, skipping the rest.

        Repeated ids are handled once, in first-seen order.

        Raises:
            NotFoundError: None of *contact_ids* is active.
        """
        _require(tenant, "Tenant name is empty")
        with operation_span("soft_delete_many", tenant=tenant, requested=len(contact_ids)):
            await self._require_collections(tenant, ACTIVE, DELETED)
            if not contact_ids:
                logger.warning("No contact ids supplied for bulk delete")
                raise ValidationError("No contact ids supplied")

            lookups = [await self._lookup(tenant, cid) for cid in dict.fromkeys(contact_ids)]
            missing = [lk.contact_id for lk in lookups if not lk.found]
            if missing:
                logger.info("Skipping %d unknown contact ids: %s", len(missing), missing)
            found = [lk.record for lk in lookups if lk.record is not None]
            if not found:
                logger.warning("No contacts found for the provided ids")
                raise NotFoundError("No contacts found for the provided IDs")

            for record in found:
                await self._soft_delete_one(tenant, record, user)
            return found

    async def revert(self, tenant: str, contact_id: str, user: str) -> Contact:
        """Move a soft-deleted contact back to the active collection."""
        _require(tenant, "Tenant name is empty")
        with operation_span("revert", tenant=tenant, contact_id=contact_id):
            await self._require_collections(tenant, ACTIVE, DELETED)
            _require(contact_id, "Contact id is empty")
            record = await self._load(tenant, DELETED, contact_id)
            await self._store.move(tenant, record, DELETED, ACTIVE)
            await self._audit.record(tenant, user, record.id, EventState.REVERTED)
            await self._registry.add_tags(tenant, list(record.tags))
            logger.info("Contact %s reverted for tenant %s", record.id, tenant)
            return record

    async def purge(self, tenant: str, contact_id: str, user: str) -> None:
        """Permanently remove a soft-deleted contact. No event is recorded."""
        _require(tenant, "Tenant name is empty")
        with operation_span("purge", tenant=tenant, contact_id=contact_id):
            await self._require_collections(tenant, ACTIVE, DELETED)
            _require(contact_id, "Contact id is empty")
            record = await self._load(tenant, DELETED, contact_id)
            await self._store.remove(tenant, DELETED, record)
            logger.info(
                "Contact %s purged from deleted collection for tenant %s by %s",
                record.id,
                tenant,
                user,
            )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge(self, target_id: str, source_id: str, tenant: str, user: str) -> Contact:
        """Fold *source* into *target* and drop *source*.

        Tags are unioned (target order first); props take every source key
        the target lacks, the target value wins on conflicts. The source
        never passes through the deleted collection. Merged tags and labels
        are not registered with the tag registry.
        """
        _require(tenant, "Tenant name is empty")
        with operation_span("merge", tenant=tenant, target_id=target_id, source_id=source_id):
            await self._require_collections(tenant, ACTIVE)
            _require(target_id, "Target contact id is empty")
            _require(source_id, "Source contact id is empty")
            if target_id == source_id:
                logger.warning("Refusing to merge contact %s into itself", target_id)
                raise ValidationError("Target and source contact must be different")

            target = await self._store.get(tenant, ACTIVE, target_id)
            source = await self._store.get(tenant, ACTIVE, source_id)
            if target is None or source is None:
                logger.warning("One or both contacts not found: %s, %s", target_id, source_id)
                raise NotFoundError("One or both contacts not found")

            merged_tags = list(target.tags)
            merged_tags.extend(t for t in source.tags if t not in target.tags)
            await self._audit.diff_tags_merging(target, source, user)
            target.tags = merged_tags

            merged_props = dict(target.props)
            for key, value in source.props.items():
                merged_props.setdefault(key, value)
            await self._audit.diff_props_merging(target, source, user)
            target.props = merged_props

            target.refresh_attributes()
            await self._store.save(tenant, ACTIVE, target)
            await self._audit.record(tenant, user, source.id, EventState.MERGED)
            await self._store.remove(tenant, ACTIVE, source)
            logger.info("Merged contact %s into %s for tenant %s", source.id, target.id, tenant)
            return target
