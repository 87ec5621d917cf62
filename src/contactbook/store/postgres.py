"""PostgreSQL implementations of the storage interfaces.

Each tenant owns one schema (see :func:`contactbook.db.tenant_schema`) with
these tables:

- ``contacts_active`` / ``contacts_deleted``: the two record collections
- ``contact_events``: the append-only audit trail
- ``tags`` / ``labels``: the tag/label registry

Provisioning a tenant (:func:`provision_tenant`) is idempotent. The stores
never create tables on their own; a missing table is reported by
:meth:`PostgresRecordStore.exists`.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg

from contactbook.contacts.events import FieldEvent, TransitionEvent, audit_event_adapter
from contactbook.contacts.models import Contact
from contactbook.db import DEFAULT_SCHEMA_PREFIX, tenant_schema
from contactbook.store.base import AuditLog, CollectionKind, RecordStore, TagRegistry

logger = logging.getLogger(__name__)

_TABLES: dict[CollectionKind, str] = {
    CollectionKind.ACTIVE: "contacts_active",
    CollectionKind.DELETED: "contacts_deleted",
}

_CONTACT_COLUMNS = "id, title, owner, tenant, comments, created_at, tags, props, attributes"

_CONTACT_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        owner TEXT NOT NULL DEFAULT '',
        tenant TEXT NOT NULL,
        comments TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        tags JSONB NOT NULL DEFAULT '[]',
        props JSONB NOT NULL DEFAULT '{{}}',
        attributes TEXT NOT NULL DEFAULT ''
    )
"""


def _parse_json_field(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _parse_contact(row: asyncpg.Record) -> Contact:
    """Convert a contact row to a :class:`Contact`."""
    d = dict(row)
    return Contact(
        id=d["id"],
        title=d["title"],
        user=d["owner"],
        tenant=d["tenant"],
        comments=d["comments"],
        created_at=d["created_at"],
        tags=_parse_json_field(d.get("tags"), []),
        props=_parse_json_field(d.get("props"), {}),
        attributes=d["attributes"],
    )


def _contact_values(record: Contact) -> tuple[Any, ...]:
    return (
        record.id,
        record.title,
        record.user,
        record.tenant,
        record.comments,
        record.created_at,
        json.dumps(record.tags),
        json.dumps(record.props),
        record.attributes,
    )


def _upsert_sql(qualified_table: str) -> str:
    return f"""
        INSERT INTO {qualified_table} ({_CONTACT_COLUMNS})
        VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8::jsonb, $9)
        ON CONFLICT (id) DO UPDATE SET
            title = EXCLUDED.title,
            owner = EXCLUDED.owner,
            tenant = EXCLUDED.tenant,
            comments = EXCLUDED.comments,
            created_at = EXCLUDED.created_at,
            tags = EXCLUDED.tags,
            props = EXCLUDED.props,
            attributes = EXCLUDED.attributes
    """  # noqa: S608


async def provision_tenant(
    pool: asyncpg.Pool, tenant: str, *, schema_prefix: str = DEFAULT_SCHEMA_PREFIX
) -> str:
    """Create the schema and every table for *tenant*. Returns the schema name."""
    schema = tenant_schema(tenant, schema_prefix)
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(f'CREATE SCHEMA IF NOT EXISTS "{schema}"')
            for table in _TABLES.values():
                await conn.execute(_CONTACT_TABLE_DDL.format(table=f'"{schema}".{table}'))
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS "{schema}".contact_events (
                    seq BIGSERIAL PRIMARY KEY,
                    kind TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    contact_id TEXT NOT NULL,
                    state TEXT NOT NULL,
                    prop_key TEXT,
                    prev_state TEXT,
                    current_state TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_contact_events_contact
                    ON "{schema}".contact_events (contact_id, seq)
            """)
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS "{schema}".tags (
                    tag TEXT PRIMARY KEY,
                    usage INTEGER NOT NULL DEFAULT 0
                )
            """)
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS "{schema}".labels (
                    label TEXT PRIMARY KEY
                )
            """)
    logger.info("Provisioned tenant %s in schema %s", tenant, schema)
    return schema


class _TenantSchemas:
    """Shared helper: qualified table names for a tenant."""

    def __init__(self, pool: asyncpg.Pool, schema_prefix: str = DEFAULT_SCHEMA_PREFIX) -> None:
        self.pool = pool
        self.schema_prefix = schema_prefix

    def _schema(self, tenant: str) -> str:
        return tenant_schema(tenant, self.schema_prefix)

    def _table(self, tenant: str, table: str) -> str:
        return f'"{self._schema(tenant)}".{table}'


class PostgresRecordStore(_TenantSchemas, RecordStore):
    """Record store backed by one schema per tenant."""

    async def exists(self, tenant: str, kind: CollectionKind) -> bool:
        try:
            schema = self._schema(tenant)
        except ValueError:
            logger.warning("Tenant %r has no valid schema name", tenant)
            return False
        return await self.pool.fetchval(
            """
            SELECT EXISTS (
                SELECT 1
                FROM information_schema.tables
                WHERE table_schema = $1 AND table_name = $2
            )
            """,
            schema,
            _TABLES[kind],
        )

    async def get(self, tenant: str, kind: CollectionKind, contact_id: str) -> Contact | None:
        row = await self.pool.fetchrow(
            f"SELECT {_CONTACT_COLUMNS} FROM {self._table(tenant, _TABLES[kind])} WHERE id = $1",  # noqa: S608
            contact_id,
        )
        return _parse_contact(row) if row is not None else None

    async def list_all(self, tenant: str, kind: CollectionKind) -> list[Contact]:
        rows = await self.pool.fetch(
            f"SELECT {_CONTACT_COLUMNS} FROM {self._table(tenant, _TABLES[kind])} ORDER BY created_at, id"  # noqa: S608, E501
        )
        return [_parse_contact(row) for row in rows]

    async def save(self, tenant: str, kind: CollectionKind, record: Contact) -> None:
        await self.pool.execute(
            _upsert_sql(self._table(tenant, _TABLES[kind])),
            *_contact_values(record),
        )

    async def remove(self, tenant: str, kind: CollectionKind, record: Contact) -> None:
        await self.pool.execute(
            f"DELETE FROM {self._table(tenant, _TABLES[kind])} WHERE id = $1",  # noqa: S608
            record.id,
        )

    async def move(
        self,
        tenant: str,
        record: Contact,
        source: CollectionKind,
        destination: CollectionKind,
    ) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"DELETE FROM {self._table(tenant, _TABLES[source])} WHERE id = $1",  # noqa: S608
                    record.id,
                )
                await conn.execute(
                    _upsert_sql(self._table(tenant, _TABLES[destination])),
                    *_contact_values(record),
                )


class PostgresAuditLog(_TenantSchemas, AuditLog):
    """Audit trail stored in the tenant's ``contact_events`` table."""

    async def append(self, tenant: str, event: TransitionEvent | FieldEvent) -> None:
        prop_key = prev_state = current_state = None
        if isinstance(event, FieldEvent):
            prop_key = event.prop_key
            prev_state = event.prev_state
            current_state = event.current_state
        await self.pool.execute(
            f"""
            INSERT INTO {self._table(tenant, "contact_events")} (
                kind, actor, contact_id, state, prop_key, prev_state, current_state, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,  # noqa: S608
            event.kind,
            event.user,
            event.contact_id,
            str(event.state),
            prop_key,
            prev_state,
            current_state,
            event.created_at,
        )

    async def for_contact(
        self, tenant: str, contact_id: str
    ) -> list[TransitionEvent | FieldEvent]:
        rows = await self.pool.fetch(
            f"SELECT * FROM {self._table(tenant, 'contact_events')} WHERE contact_id = $1 ORDER BY seq",  # noqa: S608, E501
            contact_id,
        )
        return [_parse_event(row) for row in rows]

    async def all(self, tenant: str) -> list[TransitionEvent | FieldEvent]:
        rows = await self.pool.fetch(
            f"SELECT * FROM {self._table(tenant, 'contact_events')} ORDER BY seq"  # noqa: S608
        )
        return [_parse_event(row) for row in rows]


def _parse_event(row: asyncpg.Record) -> TransitionEvent | FieldEvent:
    d = dict(row)
    payload: dict[str, Any] = {
        "kind": d["kind"],
        "user": d["actor"],
        "contact_id": d["contact_id"],
        "state": d["state"],
        "created_at": d["created_at"],
    }
    if d["kind"] == "field":
        payload["prop_key"] = d["prop_key"] or ""
        payload["prev_state"] = d["prev_state"] or ""
        payload["current_state"] = d["current_state"] or ""
    return audit_event_adapter.validate_python(payload)


class PostgresTagRegistry(_TenantSchemas, TagRegistry):
    """Reference-counted tag registry and label set in the tenant schema."""

    async def add_tags(self, tenant: str, tags: list[str]) -> None:
        if not tags:
            return
        table = self._table(tenant, "tags")
        async with self.pool.acquire() as conn:
            await conn.executemany(
                f"""
                INSERT INTO {table} AS t (tag, usage) VALUES ($1, 1)
                ON CONFLICT (tag) DO UPDATE SET usage = t.usage + 1
                """,  # noqa: S608
                [(tag,) for tag in tags],
            )

    async def remove_tags(self, tenant: str, tags: list[str]) -> None:
        if not tags:
            return
        table = self._table(tenant, "tags")
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"UPDATE {table} SET usage = usage - 1 WHERE tag = ANY($1::text[])",  # noqa: S608
                    list(tags),
                )
                await conn.execute(f"DELETE FROM {table} WHERE usage <= 0")  # noqa: S608

    async def add_labels(self, tenant: str, labels: list[str]) -> None:
        if not labels:
            return
        async with self.pool.acquire() as conn:
            await conn.executemany(
                f"INSERT INTO {self._table(tenant, 'labels')} (label) VALUES ($1) ON CONFLICT DO NOTHING",  # noqa: S608, E501
                [(label,) for label in labels],
            )

    async def registered_tags(self, tenant: str) -> set[str]:
        rows = await self.pool.fetch(f"SELECT tag FROM {self._table(tenant, 'tags')}")  # noqa: S608
        return {row["tag"] for row in rows}

    async def registered_labels(self, tenant: str) -> set[str]:
        rows = await self.pool.fetch(f"SELECT label FROM {self._table(tenant, 'labels')}")  # noqa: S608
        return {row["label"] for row in rows}
