# Vault Module - Encrypted Local Item Store
#
# Items, folders, settings and trash in one SQLite file, every sensitive
# field sealed with AES-256-GCM under a data key that only exists in memory
# while the vault is unlocked.

from .changes import ChangeFeed, VaultChange
from .encryption import EncryptionService, verify_master_credential
from .errors import (
    AuthError,
    CyclicMove,
    FolderDepthExceeded,
    LocationLimitReached,
    NotFound,
    StorageError,
    VaultError,
    VaultLocked,
    WeakCredential,
)
from .folders import FolderManager
from .key_manager import AuthenticationGate, KeyManager, UnlockPrompt, VaultState, unlock_prompt
from .models import TrashKind, VaultFolder, VaultItem, VaultItemType, VaultStats, VaultTrashEntry
from .query import Subscription, VaultQuery
from .store import VaultStore
from .trash import TrashManager, TrashSweeper

__all__ = [
    "AuthenticationGate",
    "AuthError",
    "ChangeFeed",
    "CyclicMove",
    "EncryptionService",
    "FolderDepthExceeded",
    "FolderManager",
    "KeyManager",
    "LocationLimitReached",
    "NotFound",
    "StorageError",
    "Subscription",
    "TrashKind",
    "TrashManager",
    "TrashSweeper",
    "UnlockPrompt",
    "VaultChange",
    "VaultError",
    "VaultFolder",
    "VaultItem",
    "VaultItemType",
    "VaultLocked",
    "VaultQuery",
    "VaultState",
    "VaultStats",
    "VaultStore",
    "VaultTrashEntry",
    "WeakCredential",
    "unlock_prompt",
    "verify_master_credential",
]
