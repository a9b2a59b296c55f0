# Vault - Query / Search Facade
#
# Read-side entry point for the UI. Listings are newest-first by created_at
# and never decrypt item content or touch accessed_at; open_item() is the
# only call here that writes.
#
# Live listings: watch() re-runs a listing after every committed change and
# every lock/unlock transition, delivering results in commit order. While
# the vault is locked the subscriber receives VaultLocked instead of data.

import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Callable, List, Optional, Union

from ..core import EventSeverity, EventType, get_audit_logger
from . import changes
from .changes import VaultChange
from .errors import VaultLocked
from .models import VaultItem, VaultItemType, VaultStats
from .store import RECENT_ITEMS_LIMIT, VaultStore

logger = logging.getLogger(__name__)

LIVE_LISTINGS = frozenset({
    "all_items",
    "items_by_type",
    "items_in_folder",
    "starred_items",
    "recent_items",
    "search",
    "count_by_type",
    "total_count",
    "stats",
})


class Subscription:
    """Handle for a live listing. cancel() stops delivery; nothing else changes."""

    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe = unsubscribe
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._unsubscribe()


class VaultQuery:
    """Listings, search, counts and live subscriptions over a VaultStore."""

    def __init__(self, store: VaultStore):
        self.store = store
        self.logger = get_audit_logger()

    # ── Listings ─────────────────────────────────────────────────────

    def all_items(self) -> List[VaultItem]:
        return self.store.list_items()

    def items_by_type(self, item_type: VaultItemType) -> List[VaultItem]:
        return self.store.list_items(type=item_type)

    def items_in_folder(self, folder_id: Optional[str]) -> List[VaultItem]:
        """Items directly inside folder_id (None lists root items)."""
        return self.store.list_items(folder_id=folder_id)

    def starred_items(self) -> List[VaultItem]:
        return self.store.list_items(starred=True)

    def recent_items(self) -> List[VaultItem]:
        return self.store.list_items(by_access=True, limit=RECENT_ITEMS_LIMIT)

    def search(self, query: str) -> List[VaultItem]:
        return self.store.search_items(query)

    # ── Counts ───────────────────────────────────────────────────────

    def count_by_type(self, item_type: VaultItemType) -> int:
        return self.store.count_items(item_type)

    def total_count(self) -> int:
        return self.store.count_items()

    def stats(self) -> VaultStats:
        by_type = self.store.count_items_by_type()
        return VaultStats(
            total_items=sum(by_type.values()),
            counts_by_type=by_type,
            folder_count=self.store.count_folders(),
            trash_count=self.store.count_trash(),
            starred_count=self.store.count_starred(),
        )

    # ── Open ─────────────────────────────────────────────────────────

    def open_item(self, item_id: str) -> VaultItem:
        """Decrypt an item for viewing and record the access.

        Raises:
            NotFound: unknown item id
        """
        with self.store.transaction("open_item", changes.ITEMS) as tx:
            tx.require_item_row(item_id)
            tx.execute(
                "UPDATE vault_items SET accessed_at = ? WHERE id = ?", (tx.now, item_id)
            )
            item = tx.row_to_item(tx.item_row(item_id), with_content=True)

        self.logger.log_event(
            event_type=EventType.ITEM_ACCESSED,
            severity=EventSeverity.INFO,
            message="Vault item opened",
            details={"item_id": item_id},
        )
        return item

    # ── Live listings ────────────────────────────────────────────────

    def _resolve(self, listing: str) -> Callable[..., Any]:
        if listing not in LIVE_LISTINGS:
            raise ValueError(f"Unknown listing: {listing}")
        return getattr(self, listing)

    def watch(
        self,
        listing: str,
        *args: Any,
        on_result: Callable[[Any], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Subscription:
        """
        Subscribe to a listing by name, e.g. watch("items_by_type", "note", on_result=cb).

        on_result receives the current result immediately, then again after
        every commit and lock transition. Errors (VaultLocked while locked)
        go to on_error; without one they are logged and dropped.
        """
        fn = self._resolve(listing)

        def evaluate(change: Optional[VaultChange] = None) -> None:
            try:
                result = fn(*args)
            except Exception as e:
                if on_error is not None:
                    on_error(e)
                elif not isinstance(e, VaultLocked):
                    logger.warning("Live listing %s failed: %s", listing, type(e).__name__)
                return
            on_result(result)

        # Subscribe and take the first reading under the commit lock so no
        # commit can slip between them out of order
        with self.store.commit_lock("watch"):
            unsubscribe = self.store.feed.subscribe(evaluate)
            evaluate()
        return Subscription(unsubscribe)

    async def stream(self, listing: str, *args: Any) -> AsyncIterator[Union[Any, VaultLocked]]:
        """
        Async generator over a live listing.

        Yields each fresh result, or a VaultLocked instance while the vault
        is locked. Any other error is raised. Closing the generator cancels
        the subscription.
        """
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[Any]" = asyncio.Queue()

        def push(value: Any) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, value)

        subscription = self.watch(listing, *args, on_result=push, on_error=push)
        try:
            while True:
                value = await queue.get()
                if isinstance(value, Exception) and not isinstance(value, VaultLocked):
                    raise value
                yield value
        finally:
            subscription.cancel()
