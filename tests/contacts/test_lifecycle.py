"""Tests for ContactLifecycle against the in-memory backends."""

from __future__ import annotations

import re

import pytest
from conftest import TENANT, USER, make_contact

from contactbook.contacts.events import EventState, FieldEvent
from contactbook.contacts.models import Contact, ImportRecord
from contactbook.errors import (
    AlreadyExistsError,
    NotFoundError,
    SchemaMissingError,
    ValidationError,
)
from contactbook.store.base import CollectionKind

pytestmark = pytest.mark.unit

ACTIVE = CollectionKind.ACTIVE
DELETED = CollectionKind.DELETED


async def _ids(store, kind: CollectionKind) -> set[str]:
    return {c.id for c in await store.list_all(TENANT, kind)}


async def _states(audit_log, contact_id: str) -> list[EventState]:
    return [e.state for e in await audit_log.for_contact(TENANT, contact_id)]


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_assigns_id_and_stores(self, lifecycle, store, audit_log):
        created = await lifecycle.create(make_contact("Acme Corp", tags=["vip"]), "bob")

        assert re.fullmatch(r"acme-corp-[0-9a-f]{8}", created.id)
        assert created.user == "bob"
        assert created.attributes == "acme corp vip"
        assert await _ids(store, ACTIVE) == {created.id}
        assert await _states(audit_log, created.id) == [EventState.CREATED]

    async def test_duplicate_flag_records_duplicated(self, lifecycle, audit_log):
        created = await lifecycle.create(make_contact("Acme"), USER, duplicate=True)
        assert await _states(audit_log, created.id) == [EventState.DUPLICATED]

    async def test_registers_tags_and_labels(self, lifecycle, registry):
        await lifecycle.create(
            make_contact("Acme", tags=["vip", "east"], props={"email": "a@acme.com"}), USER
        )
        assert registry.registered_tags(TENANT) == {"vip", "east"}
        assert registry.labels[TENANT] == {"email"}

    async def test_does_not_mutate_input(self, lifecycle):
        record = make_contact("Acme")
        await lifecycle.create(record, "bob")
        assert record.id == ""
        assert record.user == USER

    async def test_supplied_id_is_replaced(self, lifecycle):
        created = await lifecycle.create(make_contact("Acme", id="my-own-id"), USER)
        assert created.id != "my-own-id"

    async def test_existing_active_id_rejected(self, lifecycle):
        first = await lifecycle.create(make_contact("Acme"), USER)
        with pytest.raises(AlreadyExistsError):
            await lifecycle.create(make_contact("Acme", id=first.id), USER)

    async def test_blank_title_rejected(self, lifecycle, store):
        with pytest.raises(ValidationError):
            await lifecycle.create(make_contact("   "), USER)
        assert await _ids(store, ACTIVE) == set()

    async def test_blank_tenant_rejected(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.create(make_contact("Acme", tenant=""), USER)

    async def test_missing_schema_wins_over_blank_title(self, lifecycle):
        with pytest.raises(SchemaMissingError):
            await lifecycle.create(make_contact("", tenant="nowhere"), USER)


class TestSaveAll:
    async def test_saves_import_records(self, lifecycle, store, audit_log):
        records = [
            ImportRecord(title="Acme", user="importer", tenant=TENANT, tags=["csv"]),
            ImportRecord(title="Beta", user="importer", tenant=TENANT),
        ]

        saved = await lifecycle.save_all(records)

        assert [c.title for c in saved] == ["Acme", "Beta"]
        assert await _ids(store, ACTIVE) == {c.id for c in saved}
        for contact in saved:
            events = await audit_log.for_contact(TENANT, contact.id)
            assert [(e.state, e.user) for e in events] == [(EventState.CREATED, "importer")]

    async def test_invalid_record_aborts_whole_batch(self, lifecycle, store):
        records = [
            ImportRecord(title="Acme", user="importer", tenant=TENANT),
            ImportRecord(title="", user="importer", tenant=TENANT),
        ]
        with pytest.raises(ValidationError):
            await lifecycle.save_all(records)
        assert await _ids(store, ACTIVE) == set()

    async def test_accepts_contacts(self, lifecycle):
        saved = await lifecycle.save_all([make_contact("Acme")])
        assert saved[0].id


# ---------------------------------------------------------------------------
# read
# ---------------------------------------------------------------------------


class TestRead:
    async def test_get(self, lifecycle):
        created = await lifecycle.create(make_contact("Acme"), USER)
        fetched = await lifecycle.get(TENANT, created.id)
        assert fetched == created

    async def test_get_unknown(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.get(TENANT, "ghost")

    async def test_get_blank_id(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.get(TENANT, "")

    async def test_get_missing_schema(self, lifecycle):
        with pytest.raises(SchemaMissingError):
            await lifecycle.get("nowhere", "")

    async def test_list_active_and_deleted(self, lifecycle):
        keep = await lifecycle.create(make_contact("Keep"), USER)
        drop = await lifecycle.create(make_contact("Drop"), USER)
        await lifecycle.soft_delete(TENANT, drop.id, USER)

        assert [c.id for c in await lifecycle.list_contacts(TENANT)] == [keep.id]
        assert [c.id for c in await lifecycle.list_contacts(TENANT, deleted=True)] == [drop.id]

    async def test_find_many_keeps_request_order(self, lifecycle):
        a = await lifecycle.create(make_contact("A"), USER)
        b = await lifecycle.create(make_contact("B"), USER)
        found = await lifecycle.find_many(TENANT, [b.id, "ghost", a.id])
        assert [c.id for c in found] == [b.id, a.id]


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


class TestUpdate:
    async def test_emits_events_in_order(self, lifecycle, audit_log):
        created = await lifecycle.create(
            make_contact("Acme", tags=["a", "b"], props={"email": "old@acme.com", "fax": "1"}),
            USER,
        )
        change = created.model_copy(deep=True)
        change.title = "Acme Corp"
        change.tags = ["b", "c"]
        change.props = {"email": "new@acme.com"}

        await lifecycle.update(change, "bob")

        events = [e for e in await audit_log.for_contact(TENANT, created.id)]
        fields = [(e.state, e.prop_key) for e in events if isinstance(e, FieldEvent)]
        assert fields == [
            (EventState.UPDATED, "Title"),
            (EventState.TAG_ADD, "c"),
            (EventState.TAG_REMOVED, "a"),
            (EventState.PROP_ADD, "email"),
            (EventState.PROP_REMOVED, "fax"),
        ]
        title_event = events[1]
        assert (title_event.prev_state, title_event.current_state) == ("Acme", "Acme Corp")

    async def test_overwrites_and_refreshes_attributes(self, lifecycle):
        created = await lifecycle.create(make_contact("Acme", comments="old"), USER)
        change = created.model_copy(update={"comments": "new", "tags": ["vip"]})

        updated = await lifecycle.update(change, USER)

        assert updated.comments == "new"
        assert updated.tags == ["vip"]
        assert updated.attributes == "acme new vip"
        assert await lifecycle.get(TENANT, created.id) == updated

    async def test_keeps_owner_and_created_at(self, lifecycle):
        created = await lifecycle.create(make_contact("Acme"), "bob")
        change = created.model_copy(update={"user": "mallory", "title": "Acme 2"})
        updated = await lifecycle.update(change, "carol")
        assert updated.user == "bob"
        assert updated.created_at == created.created_at

    async def test_unchanged_title_emits_no_title_event(self, lifecycle, audit_log):
        created = await lifecycle.create(make_contact("Acme"), USER)
        await lifecycle.update(created.model_copy(), USER)
        assert await _states(audit_log, created.id) == [EventState.CREATED]

    async def test_registers_new_labels(self, lifecycle, registry):
        created = await lifecycle.create(make_contact("Acme"), USER)
        await lifecycle.update(created.model_copy(update={"props": {"phone": "555"}}), USER)
        assert "phone" in registry.labels[TENANT]

    async def test_unknown_contact(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.update(make_contact("Acme", id="ghost"), USER)

    async def test_blank_id(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.update(make_contact("Acme"), USER)


# ---------------------------------------------------------------------------
# soft delete / revert / purge
# ---------------------------------------------------------------------------


class TestSoftDelete:
    async def test_moves_to_deleted(self, lifecycle, store, audit_log, registry):
        created = await lifecycle.create(make_contact("Acme", tags=["vip"]), USER)

        deleted = await lifecycle.soft_delete(TENANT, created.id, "bob")

        assert deleted.id == created.id
        assert await _ids(store, ACTIVE) == set()
        assert await _ids(store, DELETED) == {created.id}
        assert await _states(audit_log, created.id) == [EventState.CREATED, EventState.DELETED]
        assert registry.registered_tags(TENANT) == set()

    async def test_shared_tag_stays_registered(self, lifecycle, registry):
        first = await lifecycle.create(make_contact("A", tags=["vip"]), USER)
        await lifecycle.create(make_contact("B", tags=["vip"]), USER)
        await lifecycle.soft_delete(TENANT, first.id, USER)
        assert registry.registered_tags(TENANT) == {"vip"}

    async def test_unknown_contact(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.soft_delete(TENANT, "ghost", USER)

    async def test_missing_deleted_collection(self, store, lifecycle):
        store.provision("half", kinds=(ACTIVE,))
        with pytest.raises(SchemaMissingError) as exc_info:
            await lifecycle.soft_delete("half", "x", USER)
        assert exc_info.value.kind == "deleted"


class TestSoftDeleteMany:
    async def test_skips_unknown_ids(self, lifecycle, store):
        a = await lifecycle.create(make_contact("A"), USER)
        b = await lifecycle.create(make_contact("B"), USER)

        deleted = await lifecycle.soft_delete_many(TENANT, [a.id, "ghost", b.id], USER)

        assert [c.id for c in deleted] == [a.id, b.id]
        assert await _ids(store, DELETED) == {a.id, b.id}

    async def test_repeated_ids_deleted_once(self, lifecycle, audit_log, registry):
        x = await lifecycle.create(make_contact("X", tags=["vip"]), USER)
        await lifecycle.create(make_contact("Y", tags=["vip"]), USER)

        deleted = await lifecycle.soft_delete_many(TENANT, [x.id, x.id], USER)

        assert [c.id for c in deleted] == [x.id]
        assert await _states(audit_log, x.id) == [EventState.CREATED, EventState.DELETED]
        assert registry.registered_tags(TENANT) == {"vip"}

    async def test_none_found(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.soft_delete_many(TENANT, ["ghost", "phantom"], USER)

    async def test_empty_ids(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.soft_delete_many(TENANT, [], USER)


class TestRevert:
    async def test_round_trip(self, lifecycle, store, audit_log, registry):
        created = await lifecycle.create(make_contact("Acme", tags=["vip"]), USER)
        await lifecycle.soft_delete(TENANT, created.id, USER)

        reverted = await lifecycle.revert(TENANT, created.id, "bob")

        assert reverted == created
        assert await _ids(store, ACTIVE) == {created.id}
        assert await _ids(store, DELETED) == set()
        assert registry.registered_tags(TENANT) == {"vip"}
        assert await _states(audit_log, created.id) == [
            EventState.CREATED,
            EventState.DELETED,
            EventState.REVERTED,
        ]

    async def test_active_contact_cannot_be_reverted(self, lifecycle):
        created = await lifecycle.create(make_contact("Acme"), USER)
        with pytest.raises(NotFoundError):
            await lifecycle.revert(TENANT, created.id, USER)


class TestPurge:
    async def test_removes_without_event(self, lifecycle, store, audit_log):
        created = await lifecycle.create(make_contact("Acme"), USER)
        await lifecycle.soft_delete(TENANT, created.id, USER)

        await lifecycle.purge(TENANT, created.id, USER)

        assert await _ids(store, DELETED) == set()
        assert await _ids(store, ACTIVE) == set()
        assert await _states(audit_log, created.id) == [EventState.CREATED, EventState.DELETED]

    async def test_active_contact_cannot_be_purged(self, lifecycle):
        created = await lifecycle.create(make_contact("Acme"), USER)
        with pytest.raises(NotFoundError):
            await lifecycle.purge(TENANT, created.id, USER)


# ---------------------------------------------------------------------------
# merge
# ---------------------------------------------------------------------------


class TestMerge:
    async def test_union_of_tags_and_props(self, lifecycle, store, audit_log):
        target = await lifecycle.create(
            make_contact("Acme", tags=["a", "b"], props={"email": "t@acme.com"}), USER
        )
        source = await lifecycle.create(
            make_contact("ACME Inc", tags=["b", "c"], props={"email": "s@acme.com", "fax": "9"}),
            USER,
        )

        merged = await lifecycle.merge(target.id, source.id, TENANT, "bob")

        assert merged.id == target.id
        assert merged.tags == ["a", "b", "c"]
        assert merged.props == {"email": "t@acme.com", "fax": "9"}
        assert merged.attributes == "acme a b c t@acme.com 9"
        assert await _ids(store, ACTIVE) == {target.id}
        assert await _ids(store, DELETED) == set()

        target_fields = [
            (e.state, e.prop_key)
            for e in await audit_log.for_contact(TENANT, target.id)
            if isinstance(e, FieldEvent)
        ]
        assert target_fields == [
            (EventState.MERGE_TAG_ADD, "c"),
            (EventState.MERGE_UPDATED, "email"),
            (EventState.MERGE_PROP_ADD, "fax"),
        ]
        assert await _states(audit_log, source.id) == [EventState.CREATED, EventState.MERGED]

    async def test_does_not_touch_registry(self, lifecycle, registry):
        target = await lifecycle.create(make_contact("A", tags=["a"]), USER)
        source = await lifecycle.create(make_contact("B", tags=["b"]), USER)
        before = dict(registry.tags[TENANT])
        await lifecycle.merge(target.id, source.id, TENANT, USER)
        assert dict(registry.tags[TENANT]) == before

    async def test_unknown_source(self, lifecycle):
        target = await lifecycle.create(make_contact("A"), USER)
        with pytest.raises(NotFoundError, match="One or both contacts not found"):
            await lifecycle.merge(target.id, "ghost", TENANT, USER)

    async def test_self_merge_rejected(self, lifecycle):
        target = await lifecycle.create(make_contact("A"), USER)
        with pytest.raises(ValidationError):
            await lifecycle.merge(target.id, target.id, TENANT, USER)


# ---------------------------------------------------------------------------
# Exclusivity across sequences of operations
# ---------------------------------------------------------------------------


class TestExclusivity:
    async def test_contact_is_never_in_both_collections(self, lifecycle, store):
        contacts: list[Contact] = [
            await lifecycle.create(make_contact(f"Contact {i}"), USER) for i in range(4)
        ]
        await lifecycle.soft_delete(TENANT, contacts[0].id, USER)
        await lifecycle.soft_delete_many(TENANT, [contacts[1].id, contacts[2].id], USER)
        await lifecycle.revert(TENANT, contacts[1].id, USER)
        await lifecycle.purge(TENANT, contacts[2].id, USER)

        active = await _ids(store, ACTIVE)
        deleted = await _ids(store, DELETED)
        assert not active & deleted
        assert active == {contacts[1].id, contacts[3].id}
        assert deleted == {contacts[0].id}


class TestMergeUnionLaws:
    async def test_target_wins_and_source_is_gone(self, lifecycle, store):
        target = await lifecycle.create(make_contact("T", tags=["a", "b"], props={"x": "1"}), USER)
        source = await lifecycle.create(
            make_contact("S", tags=["b", "c"], props={"x": "2", "y": "3"}), USER
        )

        merged = await lifecycle.merge(target.id, source.id, TENANT, USER)

        assert set(merged.tags) == {"a", "b", "c"}
        assert merged.props == {"x": "1", "y": "3"}
        assert await store.get(TENANT, ACTIVE, source.id) is None
        assert await store.get(TENANT, DELETED, source.id) is None

    async def test_prop_conflict_recorded_as_merge_update(self, lifecycle, audit_log):
        target = await lifecycle.create(make_contact("T", props={"x": "1"}), USER)
        source = await lifecycle.create(make_contact("S", props={"x": "2", "y": "3"}), USER)

        await lifecycle.merge(target.id, source.id, TENANT, USER)

        field_events = [
            (e.state, e.prop_key, e.prev_state, e.current_state)
            for e in await audit_log.for_contact(TENANT, target.id)
            if isinstance(e, FieldEvent)
        ]
        assert field_events == [
            (EventState.MERGE_UPDATED, "x", "1", "2"),
            (EventState.MERGE_PROP_ADD, "y", "", "3"),
        ]


class TestTagDiffOnUpdate:
    async def test_one_add_one_remove(self, lifecycle, audit_log, store):
        created = await lifecycle.create(make_contact("Acme", tags=["a", "b"]), USER)

        await lifecycle.update(created.model_copy(update={"tags": ["b", "c"]}), USER)

        tag_events = [
            (e.state, e.prop_key)
            for e in await audit_log.for_contact(TENANT, created.id)
            if e.state in (EventState.TAG_ADD, EventState.TAG_REMOVED)
        ]
        assert tag_events == [(EventState.TAG_ADD, "c"), (EventState.TAG_REMOVED, "a")]
        assert set((await store.get(TENANT, ACTIVE, created.id)).tags) == {"b", "c"}
