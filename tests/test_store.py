"""
Tests for the encrypted vault store.

Covers: item CRUD, starring, listing filters and ordering, title search,
counts, settings, encryption at rest, the locked-vault guard and change
feed publication.
"""

import sqlite3

import pytest

from skyview.vault import NotFound, StorageError, VaultItem, VaultItemType, VaultLocked
from skyview.vault.changes import ITEMS, SETTINGS


@pytest.fixture
def published(store):
    changes = []
    store.feed.subscribe(changes.append)
    return changes


class TestItems:

    def test_create_and_get(self, store):
        item = store.create_item(
            VaultItemType.NOTE, "Groceries", b"milk, eggs", metadata={"pinned": True}
        )
        fetched = store.get_item(item.id)
        assert fetched.title == "Groceries"
        assert fetched.content == b"milk, eggs"
        assert fetched.type == VaultItemType.NOTE
        assert fetched.metadata == {"pinned": True}
        assert fetched.folder_id is None
        assert fetched.starred is False
        assert fetched.created_at == fetched.updated_at == fetched.accessed_at

    def test_create_in_unknown_folder(self, store):
        with pytest.raises(NotFound):
            store.create_item(VaultItemType.NOTE, "Orphan", b"", folder_id="missing")
        assert store.count_items() == 0

    def test_get_missing_returns_none(self, store):
        assert store.get_item("does-not-exist") is None

    def test_get_does_not_touch_access_time(self, store, ms_clock):
        item = store.create_item(VaultItemType.NOTE, "Quiet", b"")
        ms_clock.advance(5_000)
        store.get_item(item.id)
        assert store.get_item(item.id).accessed_at == item.accessed_at

    def test_update_bumps_updated_at(self, store, ms_clock):
        item = store.create_item(VaultItemType.NOTE, "Draft", b"v1")
        ms_clock.advance(1_000)
        updated = store.update_item(item.id, title="Final", content=b"v2")
        assert updated.title == "Final"
        assert updated.content == b"v2"
        assert updated.updated_at == item.created_at + 1_000
        assert updated.created_at == item.created_at

    def test_update_keeps_unspecified_fields(self, store):
        item = store.create_item(VaultItemType.NOTE, "Keep", b"body", metadata={"a": 1})
        updated = store.update_item(item.id, title="Renamed")
        assert updated.content == b"body"
        assert updated.metadata == {"a": 1}

    def test_update_missing(self, store):
        with pytest.raises(NotFound):
            store.update_item("missing", title="x")

    def test_delete_then_get(self, store):
        item = store.create_item(VaultItemType.NOTE, "Gone", b"")
        store.delete_item(item.id)
        assert store.get_item(item.id) is None
        with pytest.raises(NotFound):
            store.delete_item(item.id)

    def test_toggle_starred_twice(self, store):
        item = store.create_item(VaultItemType.PHOTO, "Beach", b"\x89PNG")
        assert store.toggle_starred(item.id) is True
        assert store.toggle_starred(item.id) is False
        assert store.get_item(item.id).starred is False

    def test_toggle_missing(self, store):
        with pytest.raises(NotFound):
            store.toggle_starred("missing")

    def test_move_item(self, store, folders):
        folder = folders.create_folder("Finance")
        item = store.create_item(VaultItemType.DOCUMENT, "Tax return", b"pdf")
        store.move_item(item.id, folder.id)
        assert store.get_item(item.id).folder_id == folder.id
        store.move_item(item.id, None)
        assert store.get_item(item.id).folder_id is None

    def test_move_to_unknown_folder(self, store):
        item = store.create_item(VaultItemType.NOTE, "Stay", b"")
        with pytest.raises(NotFound):
            store.move_item(item.id, "missing")
        assert store.get_item(item.id).folder_id is None

    def test_update_access_time(self, store):
        item = store.create_item(VaultItemType.NOTE, "Seen", b"")
        store.update_access_time(item.id, 42)
        assert store.get_item(item.id).accessed_at == 42


class TestListings:

    def test_newest_first(self, store, ms_clock):
        for title in ("first", "second", "third"):
            store.create_item(VaultItemType.NOTE, title, b"")
            ms_clock.advance(10)
        assert [i.title for i in store.list_items()] == ["third", "second", "first"]

    def test_same_timestamp_keeps_insert_order(self, store):
        store.create_item(VaultItemType.NOTE, "a", b"")
        store.create_item(VaultItemType.NOTE, "b", b"")
        assert [i.title for i in store.list_items()] == ["b", "a"]

    def test_listings_omit_content(self, store):
        store.create_item(VaultItemType.NOTE, "Secret", b"payload")
        assert store.list_items()[0].content is None

    def test_filters(self, store, folders):
        folder = folders.create_folder("Work")
        note = store.create_item(VaultItemType.NOTE, "root note", b"")
        doc = store.create_item(VaultItemType.DOCUMENT, "filed doc", b"", folder_id=folder.id)
        store.toggle_starred(doc.id)

        assert [i.id for i in store.list_items(type=VaultItemType.NOTE)] == [note.id]
        assert [i.id for i in store.list_items(folder_id=folder.id)] == [doc.id]
        assert [i.id for i in store.list_items(folder_id=None)] == [note.id]
        assert [i.id for i in store.list_items(starred=True)] == [doc.id]

    def test_by_access_with_limit(self, store, ms_clock):
        old = store.create_item(VaultItemType.NOTE, "old", b"")
        ms_clock.advance(10)
        store.create_item(VaultItemType.NOTE, "new", b"")
        ms_clock.advance(10)
        store.update_access_time(old.id)
        assert [i.title for i in store.list_items(by_access=True, limit=1)] == ["old"]

    def test_search_is_case_insensitive(self, store):
        store.create_item(VaultItemType.DOCUMENT, "Passport scan", b"")
        store.create_item(VaultItemType.NOTE, "Shopping", b"")
        assert [i.title for i in store.search_items("PASS")] == ["Passport scan"]
        assert store.search_items("nothing") == []


class TestCounts:

    def test_counts(self, store, folders):
        folder = folders.create_folder("F")
        store.create_item(VaultItemType.NOTE, "n1", b"")
        store.create_item(VaultItemType.NOTE, "n2", b"", folder_id=folder.id)
        photo = store.create_item(VaultItemType.PHOTO, "p", b"")
        store.toggle_starred(photo.id)

        assert store.count_items() == 3
        assert store.count_items(VaultItemType.NOTE) == 2
        assert store.count_items_in_folder(folder.id) == 1
        assert store.count_starred() == 1
        assert store.count_folders() == 1
        assert store.count_trash() == 0

    def test_count_by_type_includes_zeros(self, store):
        store.create_item(VaultItemType.AUDIO, "memo", b"")
        counts = store.count_items_by_type()
        assert counts["audio"] == 1
        assert counts["video"] == 0
        assert set(counts) == {t.value for t in VaultItemType}


class TestSettings:

    def test_upsert(self, store):
        assert store.get_setting("sort") is None
        assert store.get_setting("sort", "date") == "date"
        store.set_setting("sort", "name")
        store.set_setting("sort", "type")
        assert store.get_setting("sort") == "type"
        assert store.get_all_settings() == {"sort": "type"}

    def test_delete(self, store):
        store.set_setting("grid", "on")
        assert store.delete_setting("grid") is True
        assert store.delete_setting("grid") is False
        assert store.get_setting("grid") is None


class TestEncryptionAtRest:

    def test_no_plaintext_in_database(self, store, vault_path):
        store.create_item(
            VaultItemType.CREDENTIAL, "Bank login", b"hunter2-secret", metadata={"user": "alice"}
        )
        store.set_setting("theme", "midnight")

        raw = sqlite3.connect(str(vault_path))
        blobs = []
        for table, columns in (
            ("vault_items", "title, content, metadata"),
            ("vault_settings", "value"),
        ):
            for row in raw.execute(f"SELECT {columns} FROM {table}"):
                blobs.extend(bytes(value) for value in row if value is not None)
        raw.close()

        joined = b"".join(blobs)
        for secret in (b"Bank login", b"hunter2-secret", b"alice", b"midnight"):
            assert secret not in joined

    def test_tampered_row_raises_storage_error(self, store, vault_path):
        item = store.create_item(VaultItemType.NOTE, "Tamper", b"x")
        raw = sqlite3.connect(str(vault_path))
        raw.execute("UPDATE vault_items SET title = ? WHERE id = ?", (b"\x00" * 40, item.id))
        raw.commit()
        raw.close()
        with pytest.raises(StorageError):
            store.get_item(item.id)


class TestLockedVault:

    def test_every_operation_refuses(self, store, unlocked):
        item = store.create_item(VaultItemType.NOTE, "Locked away", b"")
        unlocked.lock()

        calls = [
            lambda: store.get_item(item.id),
            lambda: store.list_items(),
            lambda: store.search_items("Locked"),
            lambda: store.count_items(),
            lambda: store.create_item(VaultItemType.NOTE, "x", b""),
            lambda: store.toggle_starred(item.id),
            lambda: store.get_setting("k"),
            lambda: store.set_setting("k", "v"),
        ]
        for call in calls:
            with pytest.raises(VaultLocked):
                call()

    def test_locked_beats_not_found(self, store, unlocked):
        unlocked.lock()
        with pytest.raises(VaultLocked):
            store.delete_item("does-not-exist")
        with pytest.raises(VaultLocked):
            store.update_item("does-not-exist", title="x")


class TestChangeFeed:

    def test_publishes_after_commit(self, store, published):
        store.create_item(VaultItemType.NOTE, "n", b"")
        store.set_setting("k", "v")
        assert [c.operation for c in published] == ["create_item", "set_setting"]
        assert ITEMS in published[0].tables
        assert SETTINGS in published[1].tables
        assert published[1].seq == published[0].seq + 1

    def test_failed_transaction_publishes_nothing(self, store, published):
        with pytest.raises(NotFound):
            store.update_item("missing", title="x")
        assert published == []

    def test_rollback_on_error_inside_transaction(self, store, published):
        with pytest.raises(RuntimeError):
            with store.transaction("test_rollback", ITEMS) as tx:
                tx.insert_item(VaultItem(id="tmp", type=VaultItemType.NOTE, title="tmp"))
                raise RuntimeError("abort")
        assert store.get_item("tmp") is None
        assert published == []

    def test_noop_write_publishes_nothing(self, store, published):
        assert store.delete_setting("never-set") is False
        assert published == []

    def test_lock_transition_published(self, store, published, unlocked):
        unlocked.lock()
        assert published[-1].operation == "locked"
