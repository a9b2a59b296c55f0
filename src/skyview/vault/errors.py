"""
Vault Exception Classes

Messages never carry titles, contents or credentials: a locked vault must
look like "no data" apart from the explicit error type.
"""


class VaultError(Exception):
    """Base exception for vault operations"""
    pass


class VaultLocked(VaultError):
    """Raised when an operation is attempted before the vault is unlocked"""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class AuthError(VaultError):
    """Raised when an unlock credential is rejected or key derivation fails"""
    pass


class WeakCredential(VaultError):
    """Raised when a new master credential does not meet strength rules"""
    pass


class NotFound(VaultError):
    """Raised when an entity id does not resolve"""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class CyclicMove(VaultError):
    """Raised when a folder move would make a folder its own ancestor"""

    def __init__(self, folder_id: str, new_parent_id: str):
        self.folder_id = folder_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move folder {folder_id} under {new_parent_id}: would create a cycle"
        )


class FolderDepthExceeded(VaultError):
    """Raised when a folder would be nested deeper than allowed"""
    pass


class LocationLimitReached(VaultError):
    """Raised when adding a saved location beyond the maximum"""
    pass


class StorageError(VaultError):
    """Raised for underlying I/O, encryption or transaction failures"""
    pass
