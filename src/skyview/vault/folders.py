# Vault - Folder Hierarchy
#
# Folders form a forest: parent_id None is a root. The manager keeps it
# acyclic and no deeper than max_folder_depth, and deletes a folder together
# with its whole subtree in one transaction.
#
# Names are encrypted, so sibling ordering (order_index, then name) is
# applied after decryption.

import logging
import uuid
from typing import Dict, List, Optional

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.config import DEFAULT_MAX_FOLDER_DEPTH
from . import changes
from .errors import CyclicMove, FolderDepthExceeded, NotFound
from .models import VaultFolder
from .store import VaultSession, VaultStore

logger = logging.getLogger(__name__)


def _sort_key(folder: VaultFolder):
    return (folder.order_index, folder.name.casefold(), folder.created_at)


class FolderManager:
    """Create, rename, move and cascade-delete vault folders."""

    def __init__(self, store: VaultStore, max_depth: int = DEFAULT_MAX_FOLDER_DEPTH):
        self.store = store
        self.max_depth = max_depth
        self.logger = get_audit_logger()

    def _check_depth(self, tx: VaultSession, parent_id: Optional[str], subtree_height: int) -> None:
        depth = tx.folder_depth(parent_id) + subtree_height
        if depth > self.max_depth:
            raise FolderDepthExceeded(
                f"Folders can be nested at most {self.max_depth} levels deep"
            )

    # ── Mutations ────────────────────────────────────────────────────

    def create_folder(
        self,
        name: str,
        parent_id: Optional[str] = None,
        color: Optional[str] = None,
        order_index: int = 0,
    ) -> VaultFolder:
        """
        Raises:
            NotFound: parent_id does not resolve
            FolderDepthExceeded: the new folder would sit below max_depth
        """
        with self.store.transaction("create_folder", changes.FOLDERS) as tx:
            if parent_id is not None:
                tx.require_folder_row(parent_id)
            self._check_depth(tx, parent_id, 1)
            folder = VaultFolder(
                id=str(uuid.uuid4()),
                name=name,
                parent_id=parent_id,
                order_index=order_index,
                created_at=tx.now,
                color=color,
            )
            tx.insert_folder(folder)

        self.logger.log_event(
            event_type=EventType.FOLDER_CREATED,
            severity=EventSeverity.INFO,
            message="Vault folder created",
            details={"folder_id": folder.id, "parent_id": parent_id},
        )
        return folder

    def rename_folder(self, folder_id: str, name: str) -> VaultFolder:
        with self.store.transaction("rename_folder", changes.FOLDERS) as tx:
            tx.require_folder_row(folder_id)
            tx.execute(
                "UPDATE vault_folders SET name = ? WHERE id = ?",
                (tx.encrypt_text(name), folder_id),
            )
            return tx.row_to_folder(tx.folder_row(folder_id))

    def update_folder(
        self,
        folder_id: str,
        *,
        color: Optional[str] = None,
        order_index: Optional[int] = None,
    ) -> VaultFolder:
        """Change a folder's color and/or sibling position."""
        with self.store.transaction("update_folder", changes.FOLDERS) as tx:
            row = tx.require_folder_row(folder_id)
            tx.execute(
                "UPDATE vault_folders SET color = ?, order_index = ? WHERE id = ?",
                (
                    color if color is not None else row["color"],
                    order_index if order_index is not None else row["order_index"],
                    folder_id,
                ),
            )
            return tx.row_to_folder(tx.folder_row(folder_id))

    def move_folder(self, folder_id: str, new_parent_id: Optional[str]) -> None:
        """
        Re-parent a folder (None moves it to the root).

        Raises:
            NotFound: folder or new parent does not resolve
            CyclicMove: new parent is the folder itself or one of its descendants
            FolderDepthExceeded: the moved subtree would end up too deep
        """
        with self.store.transaction("move_folder", changes.FOLDERS) as tx:
            tx.require_folder_row(folder_id)
            descendants = tx.descendant_folder_ids(folder_id)
            if new_parent_id is not None:
                if new_parent_id == folder_id or new_parent_id in {d for d, _ in descendants}:
                    raise CyclicMove(folder_id, new_parent_id)
                tx.require_folder_row(new_parent_id)

            height = 1 + max((depth for _, depth in descendants), default=0)
            self._check_depth(tx, new_parent_id, height)
            tx.execute(
                "UPDATE vault_folders SET parent_id = ? WHERE id = ?",
                (new_parent_id, folder_id),
            )

        self.logger.log_event(
            event_type=EventType.FOLDER_MOVED,
            severity=EventSeverity.INFO,
            message="Vault folder moved",
            details={"folder_id": folder_id, "parent_id": new_parent_id},
        )

    def delete_folder(self, folder_id: str) -> Dict[str, int]:
        """
        Permanently delete a folder, its subfolders and every contained item.

        Items go first, then folders deepest-first, all in one transaction:
        any failure leaves the tree exactly as it was.

        Returns:
            {"folders": n, "items": m} rows removed
        """
        with self.store.transaction("delete_folder", changes.FOLDERS, changes.ITEMS) as tx:
            tx.require_folder_row(folder_id)
            counts = delete_subtree(tx, folder_id)

        self.logger.log_event(
            event_type=EventType.FOLDER_DELETED,
            severity=EventSeverity.INFO,
            message="Vault folder deleted with its contents",
            details={"folder_id": folder_id, **counts},
        )
        return counts

    # ── Reads ────────────────────────────────────────────────────────

    def get_folder(self, folder_id: str) -> Optional[VaultFolder]:
        with self.store.read("get_folder") as tx:
            row = tx.folder_row(folder_id)
            return tx.row_to_folder(row) if row else None

    def list_folders(self) -> List[VaultFolder]:
        with self.store.read("list_folders") as tx:
            rows = tx.execute("SELECT * FROM vault_folders").fetchall()
            folders = [tx.row_to_folder(row) for row in rows]
        return sorted(folders, key=_sort_key)

    def root_folders(self) -> List[VaultFolder]:
        with self.store.read("root_folders") as tx:
            rows = tx.execute(
                "SELECT * FROM vault_folders WHERE parent_id IS NULL"
            ).fetchall()
            folders = [tx.row_to_folder(row) for row in rows]
        return sorted(folders, key=_sort_key)

    def subfolders(self, parent_id: str) -> List[VaultFolder]:
        with self.store.read("subfolders") as tx:
            rows = tx.execute(
                "SELECT * FROM vault_folders WHERE parent_id = ?", (parent_id,)
            ).fetchall()
            folders = [tx.row_to_folder(row) for row in rows]
        return sorted(folders, key=_sort_key)

    def descendant_ids(self, folder_id: str) -> List[str]:
        """Ids of every folder below folder_id (not including it)."""
        with self.store.read("descendant_ids") as tx:
            tx.require_folder_row(folder_id)
            return [fid for fid, _ in tx.descendant_folder_ids(folder_id)]


def delete_subtree(tx: VaultSession, folder_id: str) -> Dict[str, int]:
    """Delete folder_id, its descendants and their items inside tx."""
    folder_ids = [fid for fid, _ in tx.descendant_folder_ids(folder_id)]
    folder_ids.append(folder_id)

    items = 0
    for fid in folder_ids:
        items += tx.execute(
            "DELETE FROM vault_items WHERE folder_id = ?", (fid,)
        ).rowcount
    # Deepest first, so no parent row disappears before its children
    for fid in folder_ids:
        tx.execute("DELETE FROM vault_folders WHERE id = ?", (fid,))
    return {"folders": len(folder_ids), "items": items}
