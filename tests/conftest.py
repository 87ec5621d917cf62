"""Shared fixtures for the contactbook test suite.

In-memory stores back the unit tests. The PostgreSQL fixtures start a
testcontainer once per session and are skipped when Docker is unavailable.
"""

from __future__ import annotations

import shutil
import uuid
from collections.abc import AsyncIterator, Iterator
from typing import TYPE_CHECKING

import pytest

from contactbook.contacts.audit import AuditRecorder
from contactbook.contacts.lifecycle import ContactLifecycle
from contactbook.contacts.models import Contact
from contactbook.store.memory import InMemoryAuditLog, InMemoryRecordStore, InMemoryTagRegistry

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

docker_available = shutil.which("docker") is not None

TENANT = "acme"
USER = "alice"


def make_contact(title: str, **kwargs) -> Contact:
    """Build an unsaved contact for the default tenant."""
    kwargs.setdefault("tenant", TENANT)
    kwargs.setdefault("user", USER)
    return Contact(title=title, **kwargs)


# ---------------------------------------------------------------------------
# In-memory backends
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryRecordStore:
    """Record store with both collections provisioned for ``acme``."""
    s = InMemoryRecordStore()
    s.provision(TENANT)
    return s


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def registry() -> InMemoryTagRegistry:
    return InMemoryTagRegistry()


@pytest.fixture
def lifecycle(
    store: InMemoryRecordStore, audit_log: InMemoryAuditLog, registry: InMemoryTagRegistry
) -> ContactLifecycle:
    return ContactLifecycle(store, AuditRecorder(audit_log), registry)


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------


def _unique_db_name() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Start one PostgreSQL container for the whole session."""
    if not docker_available:
        pytest.skip("Docker not available")
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
async def pg_pool(postgres_container: PostgresContainer) -> AsyncIterator[Pool]:
    """Provision a fresh database and return a pool connected to it."""
    from contactbook.db import Database

    db = Database(
        db_name=_unique_db_name(),
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        user=postgres_container.username,
        password=postgres_container.password,
        min_pool_size=1,
        max_pool_size=3,
    )
    await db.provision()
    pool = await db.connect()
    yield pool
    await db.close()
