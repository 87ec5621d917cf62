"""Duplicate detection: cluster active contacts by title and by email."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable

from contactbook.contacts.models import Contact
from contactbook.core.telemetry import operation_span
from contactbook.errors import SchemaMissingError, ValidationError
from contactbook.store.base import CollectionKind, RecordStore

logger = logging.getLogger(__name__)

EMAIL_PROP = "email"


def _group(
    contacts: list[Contact], key: Callable[[Contact], str]
) -> dict[str, list[Contact]]:
    groups: dict[str, list[Contact]] = defaultdict(list)
    for contact in contacts:
        groups[key(contact)].append(contact)
    return groups


def cluster_duplicates(contacts: list[Contact]) -> dict[str, list[Contact]]:
    """Group candidate duplicates.

    Title clusters (case-insensitive) come first. An email cluster is only
    added when none of its members is already in a cluster; one overlapping
    member discards the whole email cluster.
    """
    clusters: dict[str, list[Contact]] = {}
    for title, members in _group(contacts, lambda c: c.title.lower()).items():
        if len(members) > 1:
            clusters[title] = members

    with_email = [c for c in contacts if EMAIL_PROP in c.props]
    for email, members in _group(with_email, lambda c: c.props[EMAIL_PROP].lower()).items():
        if len(members) < 2:
            continue
        clustered = {c.id for group in clusters.values() for c in group}
        if any(c.id in clustered for c in members):
            logger.debug("Discarding email cluster %s: overlaps an existing cluster", email)
            continue
        clusters.setdefault(email, []).extend(members)
    return clusters


class DuplicateDetector:
    """Finds candidate duplicates among a tenant's active contacts."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def find_duplicates(self, tenant: str) -> dict[str, list[Contact]]:
        if not tenant or not tenant.strip():
            logger.warning("Tenant name is empty")
            raise ValidationError("Tenant name is empty")
        with operation_span("find_duplicates", tenant=tenant):
            if not await self._store.exists(tenant, CollectionKind.ACTIVE):
                logger.warning("Collection active does not exist for tenant %s", tenant)
                raise SchemaMissingError(tenant, str(CollectionKind.ACTIVE))
            contacts = await self._store.list_all(tenant, CollectionKind.ACTIVE)
            clusters = cluster_duplicates(contacts)
            logger.info("Found %d duplicate clusters for tenant %s", len(clusters), tenant)
            return clusters
