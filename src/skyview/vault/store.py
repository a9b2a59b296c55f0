# Vault - Encrypted Store
#
# SQLite database with AES-256-GCM encrypted fields.
# Four data tables: vault_items, vault_folders, vault_settings, vault_trash
# (key material lives in vault_config, owned by KeyManager).
#
# Encrypted columns: item title/content/metadata, folder name, setting
# value, trash title/snapshot. Plaintext columns: ids, item type, starred,
# folder links and timestamps, which is what listings filter and order by.
# Title search is a linear decrypt-and-scan.
#
# Every operation checks the key first, so a locked vault always raises
# VaultLocked before any I/O. Writes run in BEGIN IMMEDIATE transactions
# serialised by a store-wide lock (bounded by db_timeout); every commit is
# published on the change feed while that lock is still held. Reads never
# take that lock.

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from cryptography.exceptions import InvalidTag

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.config import DEFAULT_DB_TIMEOUT
from ..core.db import connect as db_connect
from . import changes
from .changes import ChangeFeed
from .encryption import EncryptionService
from .errors import NotFound, StorageError, VaultError
from .key_manager import KeyManager, VaultState
from .models import VaultFolder, VaultItem, VaultItemType, now_ms

logger = logging.getLogger(__name__)

RECENT_ITEMS_LIMIT = 10

# Sentinel: "no folder filter" (None means "root folder")
ANY_FOLDER = object()

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS vault_folders (
        id TEXT PRIMARY KEY,
        name BLOB NOT NULL,
        parent_id TEXT REFERENCES vault_folders(id),
        order_index INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        color TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_folders_parent ON vault_folders(parent_id)",
    """
    CREATE TABLE IF NOT EXISTS vault_items (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        title BLOB NOT NULL,
        folder_id TEXT REFERENCES vault_folders(id),
        content BLOB NOT NULL,
        metadata BLOB,
        starred INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        accessed_at INTEGER
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_items_folder ON vault_items(folder_id)",
    "CREATE INDEX IF NOT EXISTS idx_items_type ON vault_items(type)",
    "CREATE INDEX IF NOT EXISTS idx_items_starred ON vault_items(starred)",
    "CREATE INDEX IF NOT EXISTS idx_items_created ON vault_items(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_items_accessed ON vault_items(accessed_at)",
    """
    CREATE TABLE IF NOT EXISTS vault_settings (
        key TEXT PRIMARY KEY,
        value BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS vault_trash (
        id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        original_id TEXT NOT NULL,
        title BLOB NOT NULL,
        snapshot BLOB NOT NULL,
        original_folder_id TEXT,
        deleted_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trash_deleted ON vault_trash(deleted_at)",
)


class VaultSession:
    """A connection plus the data key, scoped to one transaction.

    Handed out by VaultStore.transaction() and VaultStore.read(). The
    folder and trash managers do their multi-statement work through it.
    """

    def __init__(self, conn: sqlite3.Connection, key: bytes, now: int):
        self.conn = conn
        self._key = key
        self.now = now

    def execute(self, sql: str, params=()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)

    # ── Encryption boundary ──────────────────────────────────────────

    def encrypt(self, data: bytes) -> bytes:
        return EncryptionService.encrypt(data, self._key)

    def decrypt(self, blob: bytes) -> bytes:
        try:
            return EncryptionService.decrypt(bytes(blob), self._key)
        except (InvalidTag, ValueError) as e:
            raise StorageError("Vault record failed authentication") from e

    def encrypt_text(self, text: str) -> bytes:
        return self.encrypt(text.encode("utf-8"))

    def decrypt_text(self, blob: bytes) -> str:
        return self.decrypt(blob).decode("utf-8")

    def encrypt_json(self, value: Any) -> bytes:
        return self.encrypt(json.dumps(value, separators=(",", ":")).encode("utf-8"))

    def decrypt_json(self, blob: bytes) -> Any:
        try:
            return json.loads(self.decrypt(blob).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError("Vault record is not valid JSON") from e

    # ── Row access ───────────────────────────────────────────────────

    def item_row(self, item_id: str) -> Optional[sqlite3.Row]:
        return self.execute("SELECT * FROM vault_items WHERE id = ?", (item_id,)).fetchone()

    def folder_row(self, folder_id: str) -> Optional[sqlite3.Row]:
        return self.execute("SELECT * FROM vault_folders WHERE id = ?", (folder_id,)).fetchone()

    def folder_exists(self, folder_id: str) -> bool:
        return self.execute(
            "SELECT 1 FROM vault_folders WHERE id = ?", (folder_id,)
        ).fetchone() is not None

    def require_item_row(self, item_id: str) -> sqlite3.Row:
        row = self.item_row(item_id)
        if row is None:
            raise NotFound("item", item_id)
        return row

    def require_folder_row(self, folder_id: str) -> sqlite3.Row:
        row = self.folder_row(folder_id)
        if row is None:
            raise NotFound("folder", folder_id)
        return row

    def descendant_folder_ids(self, folder_id: str) -> List[tuple]:
        """(id, depth) for every folder strictly below folder_id, deepest first."""
        rows = self.execute(
            """
            WITH RECURSIVE subtree(id, depth) AS (
                SELECT id, 1 FROM vault_folders WHERE parent_id = ?
                UNION ALL
                SELECT f.id, s.depth + 1
                FROM vault_folders f JOIN subtree s ON f.parent_id = s.id
            )
            SELECT id, depth FROM subtree ORDER BY depth DESC
            """,
            (folder_id,),
        ).fetchall()
        return [(row[0], row[1]) for row in rows]

    def folder_depth(self, folder_id: Optional[str]) -> int:
        """Number of folders on the path from the root to folder_id (0 for root)."""
        if folder_id is None:
            return 0
        row = self.execute(
            """
            WITH RECURSIVE ancestry(id, parent_id, depth) AS (
                SELECT id, parent_id, 1 FROM vault_folders WHERE id = ?
                UNION ALL
                SELECT f.id, f.parent_id, a.depth + 1
                FROM vault_folders f JOIN ancestry a ON f.id = a.parent_id
            )
            SELECT MAX(depth) FROM ancestry
            """,
            (folder_id,),
        ).fetchone()
        return row[0] or 0

    # ── Row <-> model ────────────────────────────────────────────────

    def row_to_item(self, row: sqlite3.Row, with_content: bool = False) -> VaultItem:
        return VaultItem(
            id=row["id"],
            type=VaultItemType(row["type"]),
            title=self.decrypt_text(row["title"]),
            content=self.decrypt(row["content"]) if with_content else None,
            folder_id=row["folder_id"],
            starred=bool(row["starred"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            accessed_at=row["accessed_at"],
            metadata=self.decrypt_json(row["metadata"]) if row["metadata"] is not None else {},
        )

    def row_to_folder(self, row: sqlite3.Row) -> VaultFolder:
        return VaultFolder(
            id=row["id"],
            name=self.decrypt_text(row["name"]),
            parent_id=row["parent_id"],
            order_index=row["order_index"],
            created_at=row["created_at"],
            color=row["color"],
        )

    def insert_item(self, item: VaultItem) -> None:
        self.execute(
            """
            INSERT INTO vault_items
            (id, type, title, folder_id, content, metadata, starred,
             created_at, updated_at, accessed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.type.value,
                self.encrypt_text(item.title),
                item.folder_id,
                self.encrypt(item.content or b""),
                self.encrypt_json(item.metadata) if item.metadata else None,
                int(item.starred),
                item.created_at,
                item.updated_at,
                item.accessed_at,
            ),
        )

    def insert_folder(self, folder: VaultFolder) -> None:
        self.execute(
            """
            INSERT INTO vault_folders
            (id, name, parent_id, order_index, created_at, color)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                folder.id,
                self.encrypt_text(folder.name),
                folder.parent_id,
                folder.order_index,
                folder.created_at,
                folder.color,
            ),
        )


class VaultStore:
    """
    Durable, encrypted, transactional storage for the vault.

    Args:
        vault_path: SQLite file (shared with KeyManager's vault_config).
        key_manager: Source of the data key; the store refuses all work
            while it is locked.
        feed: Change feed to publish commits on. Created if None.
        db_timeout: Seconds to wait on a busy database before failing
            with StorageError.
        clock: Epoch-millisecond clock used for every timestamp.
    """

    def __init__(
        self,
        vault_path: Path,
        key_manager: KeyManager,
        feed: Optional[ChangeFeed] = None,
        db_timeout: float = DEFAULT_DB_TIMEOUT,
        clock: Callable[[], int] = now_ms,
    ):
        self.vault_path = Path(vault_path)
        self.vault_path.parent.mkdir(parents=True, exist_ok=True)
        self.keys = key_manager
        self.feed = feed or ChangeFeed()
        self._db_timeout = db_timeout
        self._clock = clock
        self._last_ts = 0
        self._clock_lock = threading.Lock()
        self._write_lock = threading.RLock()
        self.logger = get_audit_logger()

        self._init_database()
        self.keys.add_state_listener(self._on_key_state)

    # ── Plumbing ─────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        return db_connect(
            self.vault_path,
            row_factory=True,
            timeout=self._db_timeout,
            isolation_level=None,
        )

    def _init_database(self) -> None:
        try:
            conn = self._connect()
            try:
                for statement in _SCHEMA:
                    conn.execute(statement)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open vault database: {e}") from e

    def _now(self) -> int:
        """Clock reading that never goes backwards within this process."""
        with self._clock_lock:
            self._last_ts = max(self._clock(), self._last_ts)
            return self._last_ts

    @contextmanager
    def commit_lock(self, operation: str) -> Iterator[None]:
        """
        Hold the lock that serialises commits and their change publication.

        Waits at most db_timeout seconds, like the database itself.

        Raises:
            StorageError: another commit held the lock for too long
        """
        if not self._write_lock.acquire(timeout=self._db_timeout):
            error = StorageError(f"{operation} timed out waiting for the vault write lock")
            self.logger.log_vault_error(operation, error)
            raise error
        try:
            yield
        finally:
            self._write_lock.release()

    def _on_key_state(self, state: VaultState) -> None:
        try:
            with self.commit_lock(state.value):
                self.feed.publish(state.value, changes.KEYS)
        except StorageError:
            # Listings must still flip on lock/unlock; the feed orders publishes itself
            logger.warning("Publishing %s without the commit lock", state.value)
            self.feed.publish(state.value, changes.KEYS)

    @contextmanager
    def transaction(self, operation: str, *tables: str) -> Iterator[VaultSession]:
        """
        Scoped write transaction: BEGIN IMMEDIATE ... COMMIT, or ROLLBACK
        on any exception. Publishes `operation` on the change feed after a
        commit that changed at least one row.

        Raises:
            VaultLocked: before anything else, if the vault is locked
            StorageError: for any sqlite failure (the transaction is rolled back)
        """
        key = self.keys.require_key()
        with self.commit_lock(operation):
            try:
                conn = self._connect()
            except sqlite3.Error as e:
                self.logger.log_vault_error(operation, e)
                raise StorageError(f"Cannot open vault database: {e}") from e
            try:
                conn.execute("BEGIN IMMEDIATE")
                before = conn.total_changes
                yield VaultSession(conn, key, self._now())
                changed = conn.total_changes != before
                conn.execute("COMMIT")
            except VaultError:
                self._rollback(conn)
                raise
            except sqlite3.Error as e:
                self._rollback(conn)
                self.logger.log_vault_error(operation, e)
                raise StorageError(f"{operation} failed: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise
            finally:
                conn.close()

            if changed:
                self.feed.publish(operation, *tables)

    @contextmanager
    def read(self, operation: str = "read") -> Iterator[VaultSession]:
        """Read-only snapshot. Never publishes, never writes."""
        key = self.keys.require_key()
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open vault database: {e}") from e
        try:
            conn.execute("BEGIN")
            yield VaultSession(conn, key, self._now())
        except sqlite3.Error as e:
            self.logger.log_vault_error(operation, e)
            raise StorageError(f"{operation} failed: {e}") from e
        finally:
            self._rollback(conn)
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.exception("Rollback failed")

    # ── Items ────────────────────────────────────────────────────────

    def create_item(
        self,
        type: VaultItemType,
        title: str,
        content: bytes,
        folder_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        starred: bool = False,
    ) -> VaultItem:
        """Encrypt and insert a new item.

        Raises:
            NotFound: folder_id does not resolve to an existing folder
        """
        with self.transaction("create_item", changes.ITEMS) as tx:
            if folder_id is not None and not tx.folder_exists(folder_id):
                raise NotFound("folder", folder_id)
            item = VaultItem(
                id=str(uuid.uuid4()),
                type=VaultItemType(type),
                title=title,
                content=bytes(content),
                folder_id=folder_id,
                starred=starred,
                created_at=tx.now,
                updated_at=tx.now,
                accessed_at=tx.now,
                metadata=dict(metadata or {}),
            )
            tx.insert_item(item)

        self.logger.log_event(
            event_type=EventType.ITEM_CREATED,
            severity=EventSeverity.INFO,
            message="Item added to vault",
            details={"item_id": item.id, "type": item.type.value},
        )
        return item

    def get_item(self, item_id: str) -> Optional[VaultItem]:
        """Fetch and decrypt one item. Does not touch accessed_at."""
        with self.read("get_item") as tx:
            row = tx.item_row(item_id)
            return tx.row_to_item(row, with_content=True) if row else None

    def update_item(
        self,
        item_id: str,
        *,
        title: Optional[str] = None,
        content: Optional[bytes] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> VaultItem:
        """Replace any of title/content/metadata. Bumps updated_at."""
        with self.transaction("update_item", changes.ITEMS) as tx:
            tx.require_item_row(item_id)
            assignments = ["updated_at = ?"]
            params: list = [tx.now]
            if title is not None:
                assignments.append("title = ?")
                params.append(tx.encrypt_text(title))
            if content is not None:
                assignments.append("content = ?")
                params.append(tx.encrypt(bytes(content)))
            if metadata is not None:
                assignments.append("metadata = ?")
                params.append(tx.encrypt_json(metadata) if metadata else None)
            params.append(item_id)
            tx.execute(
                f"UPDATE vault_items SET {', '.join(assignments)} WHERE id = ?", params
            )
            item = tx.row_to_item(tx.item_row(item_id), with_content=True)

        self.logger.log_event(
            event_type=EventType.ITEM_UPDATED,
            severity=EventSeverity.INFO,
            message="Vault item updated",
            details={"item_id": item_id},
        )
        return item

    def move_item(self, item_id: str, folder_id: Optional[str]) -> None:
        """Re-parent an item. folder_id None moves it to the root."""
        with self.transaction("move_item", changes.ITEMS) as tx:
            tx.require_item_row(item_id)
            if folder_id is not None and not tx.folder_exists(folder_id):
                raise NotFound("folder", folder_id)
            tx.execute(
                "UPDATE vault_items SET folder_id = ?, updated_at = ? WHERE id = ?",
                (folder_id, tx.now, item_id),
            )

    def delete_item(self, item_id: str) -> None:
        """Permanently delete an item (no trash entry)."""
        with self.transaction("delete_item", changes.ITEMS) as tx:
            cur = tx.execute("DELETE FROM vault_items WHERE id = ?", (item_id,))
            if cur.rowcount == 0:
                raise NotFound("item", item_id)

        self.logger.log_event(
            event_type=EventType.ITEM_DELETED,
            severity=EventSeverity.INFO,
            message="Item permanently deleted from vault",
            details={"item_id": item_id},
        )

    def toggle_starred(self, item_id: str) -> bool:
        """Flip the starred flag in a single UPDATE. Returns the new value."""
        with self.transaction("toggle_starred", changes.ITEMS) as tx:
            cur = tx.execute(
                "UPDATE vault_items SET starred = NOT starred WHERE id = ?", (item_id,)
            )
            if cur.rowcount == 0:
                raise NotFound("item", item_id)
            row = tx.execute(
                "SELECT starred FROM vault_items WHERE id = ?", (item_id,)
            ).fetchone()
            return bool(row["starred"])

    def update_access_time(self, item_id: str, timestamp: Optional[int] = None) -> None:
        with self.transaction("update_access_time", changes.ITEMS) as tx:
            cur = tx.execute(
                "UPDATE vault_items SET accessed_at = ? WHERE id = ?",
                (timestamp if timestamp is not None else tx.now, item_id),
            )
            if cur.rowcount == 0:
                raise NotFound("item", item_id)

    def list_items(
        self,
        *,
        type: Optional[VaultItemType] = None,
        folder_id: Any = ANY_FOLDER,
        starred: Optional[bool] = None,
        by_access: bool = False,
        limit: Optional[int] = None,
    ) -> List[VaultItem]:
        """
        List items without decrypting their content.

        Ordered newest-first by created_at, or by accessed_at when
        by_access is set. folder_id=None selects root items; leave it at
        ANY_FOLDER for no folder filter.
        """
        clauses: list = []
        params: list = []
        if type is not None:
            clauses.append("type = ?")
            params.append(VaultItemType(type).value)
        if folder_id is None:
            clauses.append("folder_id IS NULL")
        elif folder_id is not ANY_FOLDER:
            clauses.append("folder_id = ?")
            params.append(folder_id)
        if starred is not None:
            clauses.append("starred = ?")
            params.append(int(starred))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = "accessed_at DESC" if by_access else "created_at DESC"
        sql = f"SELECT * FROM vault_items {where} ORDER BY {order}, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self.read("list_items") as tx:
            rows = tx.execute(sql, params).fetchall()
            return [tx.row_to_item(row) for row in rows]

    def search_items(self, query: str) -> List[VaultItem]:
        """Case-insensitive title substring search (decrypt-and-scan)."""
        needle = query.casefold()
        with self.read("search_items") as tx:
            rows = tx.execute(
                "SELECT * FROM vault_items ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            results = []
            for row in rows:
                if needle in tx.decrypt_text(row["title"]).casefold():
                    results.append(tx.row_to_item(row))
            return results

    # ── Counts ───────────────────────────────────────────────────────

    def count_items(self, type: Optional[VaultItemType] = None) -> int:
        with self.read("count_items") as tx:
            if type is None:
                row = tx.execute("SELECT COUNT(*) FROM vault_items").fetchone()
            else:
                row = tx.execute(
                    "SELECT COUNT(*) FROM vault_items WHERE type = ?",
                    (VaultItemType(type).value,),
                ).fetchone()
            return row[0]

    def count_items_by_type(self) -> Dict[str, int]:
        with self.read("count_items_by_type") as tx:
            rows = tx.execute(
                "SELECT type, COUNT(*) AS n FROM vault_items GROUP BY type"
            ).fetchall()
        counts = {t.value: 0 for t in VaultItemType}
        counts.update({row["type"]: row["n"] for row in rows})
        return counts

    def count_items_in_folder(self, folder_id: str) -> int:
        with self.read("count_items_in_folder") as tx:
            return tx.execute(
                "SELECT COUNT(*) FROM vault_items WHERE folder_id = ?", (folder_id,)
            ).fetchone()[0]

    def count_starred(self) -> int:
        with self.read("count_starred") as tx:
            return tx.execute(
                "SELECT COUNT(*) FROM vault_items WHERE starred = 1"
            ).fetchone()[0]

    def count_folders(self) -> int:
        with self.read("count_folders") as tx:
            return tx.execute("SELECT COUNT(*) FROM vault_folders").fetchone()[0]

    def count_trash(self) -> int:
        with self.read("count_trash") as tx:
            return tx.execute("SELECT COUNT(*) FROM vault_trash").fetchone()[0]

    # ── Settings ─────────────────────────────────────────────────────

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self.read("get_setting") as tx:
            row = tx.execute(
                "SELECT value FROM vault_settings WHERE key = ?", (key,)
            ).fetchone()
            return tx.decrypt_text(row["value"]) if row else default

    def set_setting(self, key: str, value: str) -> None:
        """Insert or overwrite a setting."""
        with self.transaction("set_setting", changes.SETTINGS) as tx:
            tx.execute(
                """INSERT INTO vault_settings (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                (key, tx.encrypt_text(value)),
            )

    def delete_setting(self, key: str) -> bool:
        """Delete a setting. Returns True if the key existed."""
        with self.transaction("delete_setting", changes.SETTINGS) as tx:
            cur = tx.execute("DELETE FROM vault_settings WHERE key = ?", (key,))
            return cur.rowcount > 0

    def get_all_settings(self) -> Dict[str, str]:
        with self.read("get_all_settings") as tx:
            rows = tx.execute("SELECT key, value FROM vault_settings").fetchall()
            return {row["key"]: tx.decrypt_text(row["value"]) for row in rows}
