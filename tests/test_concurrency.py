"""
Tests for concurrent access to the vault store and the weather locations.

Writers are serialised; readers use their own WAL connections and never
wait for an unrelated write. A writer stuck behind the commit lock gives up
with StorageError after db_timeout instead of hanging.
"""

import threading

import pytest

from skyview.vault import StorageError, TrashManager, VaultItemType, VaultQuery, VaultStore
from skyview.vault.changes import SETTINGS, ChangeFeed
from skyview.vault.trash import DAY_MS
from skyview.weather import SavedLocationStore


@pytest.fixture
def impatient_store(vault_path, unlocked, ms_clock):
    return VaultStore(vault_path, unlocked, feed=ChangeFeed(), db_timeout=0.2, clock=ms_clock)


def _hold_open_write(store, opened, release):
    with store.transaction("slow_write", SETTINGS) as tx:
        tx.execute(
            "INSERT INTO vault_settings (key, value) VALUES (?, ?)",
            ("pending", tx.encrypt_text("x")),
        )
        opened.set()
        release.wait(5)


# ===================================================================
# Reads alongside writes
# ===================================================================


class TestReadsDuringWrites:

    def test_read_completes_while_write_is_open(self, store):
        item = store.create_item(VaultItemType.NOTE, "Groceries", b"eggs")
        opened, release = threading.Event(), threading.Event()
        writer = threading.Thread(target=_hold_open_write, args=(store, opened, release))
        writer.start()
        assert opened.wait(5)

        results = []

        def reader():
            results.append(store.get_item(item.id))
            results.append(store.get_setting("pending"))

        r = threading.Thread(target=reader)
        r.start()
        r.join(timeout=2)
        blocked = r.is_alive()

        release.set()
        writer.join()
        r.join()

        assert not blocked
        # The uncommitted setting is invisible to the reader
        assert results == [item, None]
        assert store.get_setting("pending") == "x"

    def test_many_readers_during_writes(self, store, query):
        for i in range(5):
            store.create_item(VaultItemType.NOTE, f"note {i}", b"")

        errors = []
        counts = []

        def writer():
            try:
                for i in range(10):
                    store.create_item(VaultItemType.CREDENTIAL, f"pw {i}", b"secret")
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(10):
                    counts.append(query.count_by_type(VaultItemType.NOTE))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert set(counts) == {5}
        assert query.total_count() == 15


# ===================================================================
# Bounded waits on the commit lock
# ===================================================================


class TestCommitLockTimeout:

    def test_writer_gives_up_while_lock_is_held(self, impatient_store):
        held, release = threading.Event(), threading.Event()

        def holder():
            with impatient_store.commit_lock("hold"):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        assert held.wait(5)
        try:
            with pytest.raises(StorageError, match="timed out"):
                impatient_store.create_item(VaultItemType.NOTE, "late", b"")
        finally:
            release.set()
            t.join()

        assert impatient_store.create_item(VaultItemType.NOTE, "on time", b"").title == "on time"

    def test_slow_subscriber_does_not_hang_other_writers(self, impatient_store):
        query = VaultQuery(impatient_store)
        entered, release = threading.Event(), threading.Event()
        calls = []

        def on_result(result):
            calls.append(result)
            if len(calls) > 1:
                entered.set()
                release.wait(5)

        subscription = query.watch("search", "late", on_result=on_result)
        first = threading.Thread(
            target=impatient_store.create_item, args=(VaultItemType.NOTE, "first", b"")
        )
        first.start()
        assert entered.wait(5)
        try:
            with pytest.raises(StorageError):
                impatient_store.create_item(VaultItemType.NOTE, "second", b"")
            # Reads still go through
            assert [i.title for i in query.all_items()] == ["first"]
        finally:
            release.set()
            first.join()
            subscription.cancel()


# ===================================================================
# Racing writers
# ===================================================================


class TestRacingWriters:

    def test_sweep_racing_soft_delete_loses_nothing(self, store, ms_clock):
        trash = TrashManager(store, retention_ms=DAY_MS)
        old = [store.create_item(VaultItemType.NOTE, f"old {i}", b"") for i in range(3)]
        for item in old:
            trash.soft_delete_item(item.id)
        ms_clock.advance(2 * DAY_MS)
        fresh = [store.create_item(VaultItemType.NOTE, f"fresh {i}", b"") for i in range(10)]

        errors = []
        purged = []
        start = threading.Barrier(2)

        def deleter():
            start.wait()
            try:
                for item in fresh:
                    trash.soft_delete_item(item.id)
            except Exception as e:
                errors.append(e)

        def sweeper():
            start.wait()
            try:
                for _ in range(10):
                    purged.append(trash.sweep_expired())
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=deleter), threading.Thread(target=sweeper)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sum(purged) == 3
        assert {e.original_id for e in trash.list_trash()} == {i.id for i in fresh}

    def test_concurrent_default_swaps_leave_one_default(self, tmp_path):
        locations = SavedLocationStore(tmp_path / "weather_cache.db")
        ids = [locations.add_location(f"L{i}", float(i), float(i)).id for i in range(5)]

        errors = []
        start = threading.Barrier(len(ids))

        def make_default(location_id):
            start.wait()
            try:
                for _ in range(5):
                    locations.set_default_location(location_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=make_default, args=(i,)) for i in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        defaults = [loc for loc in locations.list_locations() if loc.is_default]
        assert len(defaults) == 1
