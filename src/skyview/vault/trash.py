# Vault - Trash Lifecycle
#
# Soft delete moves an item (or a whole folder subtree) into vault_trash as
# an encrypted JSON snapshot, in the same transaction that removes the live
# rows. Restore replays the snapshot under the original ids; a parent that
# no longer exists sends the restored entity to the root instead.
#
# Entries expire once now - deleted_at exceeds the retention window
# (30 days by default). TrashSweeper reaps them in the background.

import logging
import threading
import uuid
from typing import List, Optional, Union

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.config import (
    DEFAULT_MAX_FOLDER_DEPTH,
    DEFAULT_SWEEP_INTERVAL,
    DEFAULT_TRASH_RETENTION_DAYS,
)
from ..core.db import delete_expired
from . import changes
from .encryption import EncryptionService
from .errors import NotFound, VaultLocked
from .folders import delete_subtree
from .models import TrashKind, VaultFolder, VaultItem, VaultItemType, VaultTrashEntry
from .store import VaultSession, VaultStore

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_RETENTION_MS = DEFAULT_TRASH_RETENTION_DAYS * DAY_MS

SNAPSHOT_VERSION = 1


# ── Snapshot encoding ────────────────────────────────────────────────

def _item_snapshot(item: VaultItem) -> dict:
    return {
        "id": item.id,
        "type": item.type.value,
        "title": item.title,
        "content": EncryptionService.encode_for_storage(item.content or b""),
        "folder_id": item.folder_id,
        "starred": item.starred,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
        "accessed_at": item.accessed_at,
        "metadata": item.metadata,
    }


def _item_from_snapshot(data: dict) -> VaultItem:
    return VaultItem(
        id=data["id"],
        type=VaultItemType(data["type"]),
        title=data["title"],
        content=EncryptionService.decode_from_storage(data["content"]),
        folder_id=data["folder_id"],
        starred=data["starred"],
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        accessed_at=data["accessed_at"],
        metadata=data.get("metadata") or {},
    )


def _folder_from_snapshot(data: dict) -> VaultFolder:
    return VaultFolder(**data)


def _height(folders: List[VaultFolder]) -> int:
    """Levels in a snapshot subtree (folders[0] is its top)."""
    depth = {folders[0].id: 1}
    for folder in folders[1:]:
        depth[folder.id] = depth[folder.parent_id] + 1
    return max(depth.values())


class TrashManager:
    """
    Soft delete, restore, purge and expiry for vault entities.

    Args:
        store: The vault store.
        retention_ms: Default retention window for sweep_expired().
        max_depth: A restored folder subtree that would end up deeper than
            this under its old parent goes to the root instead.
    """

    def __init__(
        self,
        store: VaultStore,
        retention_ms: int = DEFAULT_RETENTION_MS,
        max_depth: int = DEFAULT_MAX_FOLDER_DEPTH,
    ):
        self.store = store
        self.retention_ms = retention_ms
        self.max_depth = max_depth
        self.logger = get_audit_logger()

    @staticmethod
    def _insert_entry(
        tx: VaultSession,
        kind: TrashKind,
        original_id: str,
        title: str,
        snapshot: dict,
        original_folder_id: Optional[str],
    ) -> VaultTrashEntry:
        entry = VaultTrashEntry(
            id=str(uuid.uuid4()),
            kind=kind,
            original_id=original_id,
            title=title,
            deleted_at=tx.now,
            original_folder_id=original_folder_id,
        )
        tx.execute(
            """
            INSERT INTO vault_trash
            (id, kind, original_id, title, snapshot, original_folder_id, deleted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                kind.value,
                original_id,
                tx.encrypt_text(title),
                tx.encrypt_json({"version": SNAPSHOT_VERSION, **snapshot}),
                original_folder_id,
                entry.deleted_at,
            ),
        )
        return entry

    @staticmethod
    def _row_to_entry(tx: VaultSession, row) -> VaultTrashEntry:
        return VaultTrashEntry(
            id=row["id"],
            kind=TrashKind(row["kind"]),
            original_id=row["original_id"],
            title=tx.decrypt_text(row["title"]),
            deleted_at=row["deleted_at"],
            original_folder_id=row["original_folder_id"],
        )

    # ── Soft delete ──────────────────────────────────────────────────

    def soft_delete_item(self, item_id: str) -> VaultTrashEntry:
        """Move an item to the trash."""
        with self.store.transaction("soft_delete_item", changes.ITEMS, changes.TRASH) as tx:
            item = tx.row_to_item(tx.require_item_row(item_id), with_content=True)
            entry = self._insert_entry(
                tx, TrashKind.ITEM, item.id, item.title,
                {"item": _item_snapshot(item)}, item.folder_id,
            )
            tx.execute("DELETE FROM vault_items WHERE id = ?", (item_id,))

        self.logger.log_event(
            event_type=EventType.TRASH_ADDED,
            severity=EventSeverity.INFO,
            message="Item moved to trash",
            details={"entry_id": entry.id, "item_id": item_id},
        )
        return entry

    def soft_delete_folder(self, folder_id: str) -> VaultTrashEntry:
        """Move a folder with its subfolders and items to the trash."""
        with self.store.transaction(
            "soft_delete_folder", changes.FOLDERS, changes.ITEMS, changes.TRASH
        ) as tx:
            root = tx.row_to_folder(tx.require_folder_row(folder_id))
            descendants = tx.descendant_folder_ids(folder_id)
            # Parents before children so restore can insert in order
            folder_ids = [folder_id] + [fid for fid, _ in reversed(descendants)]

            folders = [root.to_dict()] + [
                tx.row_to_folder(tx.folder_row(fid)).to_dict() for fid in folder_ids[1:]
            ]
            items = []
            for fid in folder_ids:
                rows = tx.execute(
                    "SELECT * FROM vault_items WHERE folder_id = ?", (fid,)
                ).fetchall()
                items.extend(
                    _item_snapshot(tx.row_to_item(row, with_content=True)) for row in rows
                )

            entry = self._insert_entry(
                tx, TrashKind.FOLDER, folder_id, root.name,
                {"folders": folders, "items": items}, root.parent_id,
            )
            counts = delete_subtree(tx, folder_id)

        self.logger.log_event(
            event_type=EventType.TRASH_ADDED,
            severity=EventSeverity.INFO,
            message="Folder moved to trash",
            details={"entry_id": entry.id, "folder_id": folder_id, **counts},
        )
        return entry

    # ── Restore / purge ──────────────────────────────────────────────

    def restore(self, entry_id: str) -> Union[VaultItem, VaultFolder]:
        """
        Put a trashed entity back under its original id and remove the entry.

        An item whose folder is gone lands at the root; so does a folder
        whose parent is gone. Returns the restored item or top folder.
        """
        with self.store.transaction(
            "restore", changes.ITEMS, changes.FOLDERS, changes.TRASH
        ) as tx:
            row = tx.execute(
                "SELECT * FROM vault_trash WHERE id = ?", (entry_id,)
            ).fetchone()
            if row is None:
                raise NotFound("trash entry", entry_id)
            snapshot = tx.decrypt_json(row["snapshot"])

            if row["kind"] == TrashKind.ITEM.value:
                restored = _item_from_snapshot(snapshot["item"])
                if restored.folder_id is not None and not tx.folder_exists(restored.folder_id):
                    restored.folder_id = None
                tx.insert_item(restored)
            else:
                folders = [_folder_from_snapshot(f) for f in snapshot["folders"]]
                restored = folders[0]
                if restored.parent_id is not None and (
                    not tx.folder_exists(restored.parent_id)
                    or tx.folder_depth(restored.parent_id) + _height(folders) > self.max_depth
                ):
                    restored.parent_id = None
                for folder in folders:
                    tx.insert_folder(folder)
                for data in snapshot["items"]:
                    tx.insert_item(_item_from_snapshot(data))

            tx.execute("DELETE FROM vault_trash WHERE id = ?", (entry_id,))

        self.logger.log_event(
            event_type=EventType.TRASH_RESTORED,
            severity=EventSeverity.INFO,
            message="Trash entry restored",
            details={"entry_id": entry_id, "kind": row["kind"], "original_id": row["original_id"]},
        )
        return restored

    def purge(self, entry_id: str) -> None:
        """Permanently delete one trash entry."""
        with self.store.transaction("purge", changes.TRASH) as tx:
            cur = tx.execute("DELETE FROM vault_trash WHERE id = ?", (entry_id,))
            if cur.rowcount == 0:
                raise NotFound("trash entry", entry_id)

        self.logger.log_event(
            event_type=EventType.TRASH_PURGED,
            severity=EventSeverity.INFO,
            message="Trash entry purged",
            details={"entry_id": entry_id},
        )

    def empty_trash(self) -> int:
        with self.store.transaction("empty_trash", changes.TRASH) as tx:
            count = tx.execute("DELETE FROM vault_trash").rowcount

        self.logger.log_event(
            event_type=EventType.TRASH_EMPTIED,
            severity=EventSeverity.INFO,
            message="Trash emptied",
            details={"purged": count},
        )
        return count

    def sweep_expired(self, now: Optional[int] = None, retention: Optional[int] = None) -> int:
        """
        Purge entries deleted more than `retention` ms before `now`.

        Running it again with nothing newly expired returns 0.
        """
        retention = self.retention_ms if retention is None else retention
        with self.store.transaction("sweep_expired", changes.TRASH) as tx:
            cutoff = (tx.now if now is None else now) - retention
            count = delete_expired(tx.conn, "vault_trash", "deleted_at", cutoff)

        if count:
            self.logger.log_event(
                event_type=EventType.TRASH_SWEPT,
                severity=EventSeverity.INFO,
                message="Expired trash entries purged",
                details={"purged": count},
            )
        return count

    # ── Reads ────────────────────────────────────────────────────────

    def list_trash(self) -> List[VaultTrashEntry]:
        """Trash entries, most recently deleted first."""
        with self.store.read("list_trash") as tx:
            rows = tx.execute(
                "SELECT * FROM vault_trash ORDER BY deleted_at DESC, rowid DESC"
            ).fetchall()
            return [self._row_to_entry(tx, row) for row in rows]

    def get_entry(self, entry_id: str) -> Optional[VaultTrashEntry]:
        with self.store.read("get_trash_entry") as tx:
            row = tx.execute(
                "SELECT * FROM vault_trash WHERE id = ?", (entry_id,)
            ).fetchone()
            return self._row_to_entry(tx, row) if row else None


class TrashSweeper:
    """Background thread that runs sweep_expired() every `interval` seconds."""

    def __init__(self, trash: TrashManager, interval: float = DEFAULT_SWEEP_INTERVAL):
        self.trash = trash
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="vault-trash-sweeper", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def run_once(self) -> int:
        """One sweep. Returns 0 without touching the vault while it is locked."""
        try:
            return self.trash.sweep_expired()
        except VaultLocked:
            logger.debug("Trash sweep skipped: vault is locked")
            return 0

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Trash sweep failed")
            self._stop.wait(self.interval)
