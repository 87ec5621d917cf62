"""Search over a tenant's active contacts.

The search grammar is deliberately small:

- ``a&b&c``: every token must appear (AND)
- ``a|b|c``: any token may appear (OR)
- anything else: the expression is one token

Matching is a case-insensitive substring test against each contact's
attribute string. The tag filter is applied afterwards and requires every
filter tag to be present. Results are sorted by title.
"""

from __future__ import annotations

import enum
import logging

from contactbook.contacts.models import Contact, SearchRequest, SortOrientation
from contactbook.core.telemetry import operation_span
from contactbook.errors import SchemaMissingError, ValidationError
from contactbook.store.base import CollectionKind, RecordStore

logger = logging.getLogger(__name__)

_AND = "&"
_OR = "|"
_ESCAPED_OR = "\\|"


class OrGuard(enum.StrEnum):
    """How a query without ``&`` is split into OR tokens.

    ``LEGACY`` keeps the historical guard: the query is split on ``|`` unless
    it contains the two characters ``\\|``, in which case the whole query is
    matched as one literal substring. ``STRICT`` always splits on ``|``.
    """

    LEGACY = "legacy"
    STRICT = "strict"


def _matches_all(attributes: str, tokens: list[str]) -> bool:
    haystack = attributes.lower()
    return all(token.lower() in haystack for token in tokens)


def _matches_any(attributes: str, tokens: list[str]) -> bool:
    haystack = attributes.lower()
    return any(token.lower() in haystack for token in tokens)


def match_query(
    contacts: list[Contact], query: str, or_guard: OrGuard = OrGuard.LEGACY
) -> list[Contact]:
    """Return the contacts whose attribute string satisfies *query*."""
    if _AND in query:
        tokens = query.split(_AND)
        return [c for c in contacts if _matches_all(c.attributes, tokens)]
    if or_guard == OrGuard.STRICT or _ESCAPED_OR not in query:
        tokens = query.split(_OR)
        return [c for c in contacts if _matches_any(c.attributes, tokens)]
    return [c for c in contacts if query.lower() in c.attributes.lower()]


def sort_by_title(contacts: list[Contact], orientation: SortOrientation) -> list[Contact]:
    return sorted(contacts, key=lambda c: c.title, reverse=orientation == SortOrientation.DESC)


class QueryEngine:
    """Read-only search over the active collection."""

    def __init__(self, store: RecordStore, or_guard: OrGuard = OrGuard.LEGACY) -> None:
        self._store = store
        self.or_guard = OrGuard(or_guard)

    async def search(self, request: SearchRequest) -> list[Contact]:
        if not request.tenant.strip():
            logger.warning("Search tenant is empty")
            raise ValidationError("Search tenant is empty")
        tenant = request.tenant
        with operation_span("search", tenant=tenant, or_guard=str(self.or_guard)):
            if not await self._store.exists(tenant, CollectionKind.ACTIVE):
                logger.warning("Collection active does not exist for tenant %s", tenant)
                raise SchemaMissingError(tenant, str(CollectionKind.ACTIVE))

            candidates = await self._store.list_all(tenant, CollectionKind.ACTIVE)
            if request.query:
                candidates = match_query(candidates, request.query, self.or_guard)
            else:
                logger.debug("Search query is empty; filtering by tags only")
            if request.filter:
                candidates = [c for c in candidates if c.has_tags(request.filter)]

            results = sort_by_title(candidates, request.sort)
            logger.info("Search on tenant %s returned %d contacts", tenant, len(results))
            return results
