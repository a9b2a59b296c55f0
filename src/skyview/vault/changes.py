"""Vault change feed: commit notifications for live listings.

The store publishes one VaultChange per committed transaction, while it
still holds its write lock, so subscribers see changes in commit order.
Lock/unlock transitions are published too: a live listing must flip to the
VaultLocked signal as soon as the key is gone.

Subscribers are plain callables. They run on the committing thread and
must not block: other writers give up with StorageError after db_timeout.
Async consumers hop onto their event loop with
``loop.call_soon_threadsafe`` (see VaultQuery.stream).
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List

logger = logging.getLogger(__name__)

# Tables named in VaultChange.tables
ITEMS = "vault_items"
FOLDERS = "vault_folders"
SETTINGS = "vault_settings"
TRASH = "vault_trash"
KEYS = "vault_keys"


@dataclass(frozen=True)
class VaultChange:
    """One committed change. ``seq`` increases by one per publish."""

    seq: int
    operation: str
    tables: FrozenSet[str] = field(default_factory=frozenset)


ChangeCallback = Callable[[VaultChange], None]


class ChangeFeed:
    """Thread-safe publish/subscribe hub for VaultChange events."""

    def __init__(self):
        self._lock = threading.RLock()
        self._subscribers: List[ChangeCallback] = []
        self._seq = 0

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: ChangeCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._seq

    def publish(self, operation: str, *tables: str) -> VaultChange:
        """Notify every subscriber of a committed change."""
        with self._lock:
            self._seq += 1
            change = VaultChange(seq=self._seq, operation=operation, tables=frozenset(tables))
            subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(change)
                except Exception:
                    # One broken subscriber must not stop delivery to the rest
                    logger.exception("Change subscriber failed for %s", operation)
        return change
