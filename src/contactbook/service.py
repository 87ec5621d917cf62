"""Access-checked entry points for a transport layer.

:class:`ContactService` pairs every core operation with the capability check
the caller must pass first. Apart from its collaborators it only keeps the
default sort order for ad-hoc searches.
"""

from __future__ import annotations

import logging

from contactbook.access import AccessPolicy, require_contact_access, require_tenant_access
from contactbook.config import ContactBookConfig
from contactbook.contacts.audit import AuditRecorder
from contactbook.contacts.duplicates import DuplicateDetector
from contactbook.contacts.events import FieldEvent, TransitionEvent
from contactbook.contacts.lifecycle import ContactLifecycle
from contactbook.contacts.models import Contact, ImportRecord, SearchRequest, SortOrientation
from contactbook.contacts.query import OrGuard, QueryEngine
from contactbook.store.base import AuditLog, RecordStore, TagRegistry

logger = logging.getLogger(__name__)


class ContactService:
    """One object per deployment; every method takes the verified *user*."""

    def __init__(
        self,
        store: RecordStore,
        audit_log: AuditLog,
        registry: TagRegistry,
        policy: AccessPolicy,
        *,
        or_guard: OrGuard = OrGuard.LEGACY,
        default_sort: SortOrientation = SortOrientation.ASC,
    ) -> None:
        self.policy = policy
        self.default_sort = SortOrientation(default_sort)
        self.lifecycle = ContactLifecycle(store, AuditRecorder(audit_log), registry)
        self.query = QueryEngine(store, or_guard=or_guard)
        self.duplicates = DuplicateDetector(store)

    @classmethod
    def from_config(
        cls,
        config: ContactBookConfig,
        store: RecordStore,
        audit_log: AuditLog,
        registry: TagRegistry,
        policy: AccessPolicy,
    ) -> ContactService:
        return cls(
            store,
            audit_log,
            registry,
            policy,
            or_guard=config.search.or_guard,
            default_sort=config.search.default_sort,
        )

    async def get_contact(self, user: str, tenant: str, contact_id: str) -> Contact:
        require_contact_access(self.policy, user, tenant)
        return await self.lifecycle.get(tenant, contact_id)

    async def list_contacts(self, user: str, tenant: str, deleted: bool = False) -> list[Contact]:
        require_contact_access(self.policy, user, tenant)
        return await self.lifecycle.list_contacts(tenant, deleted=deleted)

    async def create_contact(self, user: str, record: Contact, duplicate: bool = False) -> Contact:
        require_contact_access(self.policy, user, record.tenant)
        return await self.lifecycle.create(record, user, duplicate=duplicate)

    async def import_contacts(
        self, user: str, tenant: str, records: list[ImportRecord]
    ) -> list[Contact]:
        """Bulk-save parser output; every record is pinned to *tenant* and *user*."""
        require_contact_access(self.policy, user, tenant)
        pinned = [r.model_copy(update={"tenant": tenant, "user": user}) for r in records]
        return await self.lifecycle.save_all(pinned)

    async def update_contact(self, user: str, record: Contact) -> Contact:
        require_contact_access(self.policy, user, record.tenant)
        return await self.lifecycle.update(record, user)

    async def delete_contact(self, user: str, tenant: str, contact_id: str) -> Contact:
        require_contact_access(self.policy, user, tenant)
        return await self.lifecycle.soft_delete(tenant, contact_id, user)

    async def delete_contacts(
        self, user: str, tenant: str, contact_ids: list[str]
    ) -> list[Contact]:
        require_contact_access(self.policy, user, tenant)
        return await self.lifecycle.soft_delete_many(tenant, contact_ids, user)

    async def purge_contact(self, user: str, tenant: str, contact_id: str) -> None:
        require_contact_access(self.policy, user, tenant)
        await self.lifecycle.purge(tenant, contact_id, user)

    async def revert_contact(self, user: str, tenant: str, contact_id: str) -> Contact:
        require_contact_access(self.policy, user, tenant)
        return await self.lifecycle.revert(tenant, contact_id, user)

    async def merge_contacts(
        self, user: str, tenant: str, target_id: str, source_id: str
    ) -> Contact:
        require_contact_access(self.policy, user, tenant)
        return await self.lifecycle.merge(target_id, source_id, tenant, user)

    async def search(self, user: str, request: SearchRequest) -> list[Contact]:
        require_contact_access(self.policy, user, request.tenant)
        return await self.query.search(request)

    async def quick_search(
        self,
        user: str,
        tenant: str,
        query: str = "",
        tags: list[str] | None = None,
        sort: SortOrientation | None = None,
    ) -> list[Contact]:
        """Ad-hoc search; *sort* falls back to the configured default."""
        request = SearchRequest(
            tenant=tenant, query=query, filter=tags or [], sort=sort or self.default_sort
        )
        return await self.search(user, request)

    async def find_duplicates(self, user: str, tenant: str) -> dict[str, list[Contact]]:
        require_contact_access(self.policy, user, tenant)
        return await self.duplicates.find_duplicates(tenant)

    async def contact_history(
        self, user: str, tenant: str, contact_id: str
    ) -> list[TransitionEvent | FieldEvent]:
        require_contact_access(self.policy, user, tenant)
        return await self.lifecycle.history(tenant, contact_id)

    async def export_selection(
        self, user: str, tenant: str, tenant_id: str, contact_ids: list[str]
    ) -> list[Contact]:
        """Records handed to the export renderer; needs tenant and contact access."""
        require_tenant_access(self.policy, user, tenant_id)
        require_contact_access(self.policy, user, tenant)
        contacts = await self.lifecycle.find_many(tenant, contact_ids)
        logger.info("Selected %d contacts for export on tenant %s", len(contacts), tenant)
        return contacts
