"""Vault data model: items, folders, trash entries, statistics.

All timestamps are epoch milliseconds. `content` and `metadata` are the
decrypted values; the store only ever persists their ciphertext.
"""

import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class VaultItemType(str, Enum):
    """Kinds of vault items."""

    NOTE = "note"
    CREDENTIAL = "credential"
    DOCUMENT = "document"
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    CONTACT = "contact"
    OTHER = "other"


class TrashKind(str, Enum):
    ITEM = "item"
    FOLDER = "folder"


@dataclass
class VaultItem:
    """A decrypted vault item.

    Listings leave `content` as None; only get_item() and open_item()
    decrypt the payload.
    """

    id: str
    type: VaultItemType
    title: str
    content: Optional[bytes] = None
    folder_id: Optional[str] = None
    starred: bool = False
    created_at: int = 0
    updated_at: int = 0
    accessed_at: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_content: bool = False) -> dict:
        data = {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "folder_id": self.folder_id,
            "starred": self.starred,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "accessed_at": self.accessed_at,
            "metadata": self.metadata,
        }
        if include_content and self.content is not None:
            data["content"] = base64.b64encode(self.content).decode("ascii")
        return data


@dataclass
class VaultFolder:
    """A folder node. parent_id None means the folder sits at the root."""

    id: str
    name: str
    parent_id: Optional[str] = None
    order_index: int = 0
    created_at: int = 0
    color: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "parent_id": self.parent_id,
            "order_index": self.order_index,
            "created_at": self.created_at,
            "color": self.color,
        }


@dataclass
class VaultTrashEntry:
    """A soft-deleted item or folder subtree awaiting restore or purge."""

    id: str
    kind: TrashKind
    original_id: str
    title: str
    deleted_at: int
    original_folder_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "original_id": self.original_id,
            "title": self.title,
            "deleted_at": self.deleted_at,
            "original_folder_id": self.original_folder_id,
        }


@dataclass
class VaultStats:
    total_items: int
    counts_by_type: Dict[str, int]
    folder_count: int
    trash_count: int
    starred_count: int

    def to_dict(self) -> dict:
        return {
            "total_items": self.total_items,
            "counts_by_type": dict(self.counts_by_type),
            "folder_count": self.folder_count,
            "trash_count": self.trash_count,
            "starred_count": self.starred_count,
        }
