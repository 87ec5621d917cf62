"""Capability checks consulted before any contact operation.

Token verification and access decisions belong to the caller; the core only
sees an already verified identity and asks an :class:`AccessPolicy` yes/no.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from contactbook.errors import AccessDeniedError

logger = logging.getLogger(__name__)


class AccessPolicy(Protocol):
    def has_access_to_contact(self, user: str, tenant: str) -> bool: ...

    def has_access_to_tenant(self, user: str, tenant_id: str) -> bool: ...


class StaticAccessPolicy:
    """Grants each user access to an explicit set of tenants.

    The same mapping answers both contact-level and tenant-level checks.
    """

    def __init__(self, grants: Mapping[str, set[str] | frozenset[str] | list[str]]) -> None:
        self._grants = {user: frozenset(tenants) for user, tenants in grants.items()}

    def has_access_to_contact(self, user: str, tenant: str) -> bool:
        return tenant in self._grants.get(user, frozenset())

    def has_access_to_tenant(self, user: str, tenant_id: str) -> bool:
        return tenant_id in self._grants.get(user, frozenset())


def require_contact_access(policy: AccessPolicy, user: str, tenant: str) -> None:
    """Raise :class:`AccessDeniedError` unless *user* may act on *tenant*'s contacts."""
    if not policy.has_access_to_contact(user, tenant):
        logger.warning("Access denied for user %s to tenant %s", user, tenant)
        raise AccessDeniedError(f"User {user} has no access to tenant {tenant}")


def require_tenant_access(policy: AccessPolicy, user: str, tenant_id: str) -> None:
    """Raise :class:`AccessDeniedError` unless *user* may act on the tenant itself."""
    if not policy.has_access_to_tenant(user, tenant_id):
        logger.warning("Access denied for user %s to tenant id %s", user, tenant_id)
        raise AccessDeniedError(f"User {user} has no access to tenant {tenant_id}")
