"""Statistics aggregation service for item count and average price."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from app.core.config import get_settings
from app.core.observability import (
    record_stats_failure,
    record_stats_lookup,
    record_stats_recompute,
)
from app.schemas.items import Item
from app.schemas.stats import AggregateStats
from app.services.item_store import (
    ItemStoreError,
    StoreChanged,
    StoreChangeHandler,
    StoreWatch,
    get_item_store,
)

settings = get_settings()
logger = structlog.get_logger()


class ItemSource(Protocol):
    """What the aggregator needs from an item store."""

    async def read(self) -> list[Item]: ...

    def watch(self, handler: StoreChangeHandler, interval: float = 1.0) -> StoreWatch: ...


class ChangeOutcome(str, Enum):
    """How a store change notification was handled."""

    IGNORED = "ignored"  # marker did not move
    UNCHANGED = "unchanged"  # re-read, nothing relevant differed
    INCREMENTAL = "incremental"
    FULL = "full"
    FAILED = "failed"


@dataclass
class RunningTotals:
    """Count and price sum mirroring the last known item collection."""

    count: int = 0
    price_sum: float = 0.0
    initialized: bool = False

    def reset(self, items: list[Item]) -> None:
        self.count = len(items)
        self.price_sum = sum(item.price for item in items)
        self.initialized = True

    def add(self, item: Item) -> bool:
        if not self.initialized:
            return False
        self.count += 1
        self.price_sum += item.price
        return True

    def remove(self, item_id: int, snapshot: dict[int, Item]) -> bool:
        """Remove the item with ``item_id`` as it was in ``snapshot``.

        An id missing from the snapshot is treated as already consistent.
        """
        if not self.initialized:
            return False
        item = snapshot.get(item_id)
        if item is None:
            return False
        self.count -= 1
        self.price_sum -= item.price
        return True

    def modify(self, old: Item, new: Item) -> bool:
        if not self.initialized:
            return False
        # Only price affects the aggregates
        if old.price != new.price:
            self.price_sum += new.price - old.price
        return True

    def to_stats(self) -> AggregateStats:
        average = self.price_sum / self.count if self.count > 0 else 0.0
        return AggregateStats(total=self.count, average_price=average)


@dataclass(frozen=True)
class CacheEntry:
    """Stats value and the clock reading at which it was known to be exact."""

    value: AggregateStats
    timestamp: float


@dataclass
class ItemDiff:
    """Identity-based difference between two item collections."""

    added: list[Item] = field(default_factory=list)
    removed: list[Item] = field(default_factory=list)
    modified: list[tuple[Item, Item]] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)


def diff_items(previous: dict[int, Item], current: dict[int, Item]) -> ItemDiff:
    """Compare two collections keyed by item id.

    Only a price change counts as a modification; other field edits do not
    affect the aggregates.
    """
    diff = ItemDiff()
    for item_id, item in previous.items():
        if item_id not in current:
            diff.removed.append(item)
    for item_id, item in current.items():
        old = previous.get(item_id)
        if old is None:
            diff.added.append(item)
        elif old.price != item.price:
            diff.modified.append((old, item))
    return diff


class StatsAggregator:
    """Cached aggregate statistics over the item store.

    Serves stats from a TTL cache, serving stale values while a background
    refresh runs. Store changes are diffed against the previous snapshot and
    applied incrementally when the batch is small, otherwise the cache is
    rebuilt from a full scan. A periodic loop rebuilds the cache when it has
    gone stale in case change notifications were missed.

    All writes to the cache, running totals and snapshot happen while
    holding a single lock, so a full rebuild and an incremental update never
    interleave.

    Usage:
        aggregator = StatsAggregator(store)
        await aggregator.start()  # Warms cache, starts watch and periodic refresh
        stats = await aggregator.get_stats()
        # ... later ...
        await aggregator.stop()
    """

    def __init__(
        self,
        store: ItemSource | None = None,
        cache_ttl: float | None = None,
        incremental_threshold: int | None = None,
        watch_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the aggregator.

        Args:
            store: Item store to aggregate. Defaults to the global JSON store.
            cache_ttl: Seconds a cached value stays fresh.
            incremental_threshold: Largest change batch applied incrementally.
            watch_interval: Seconds between store modification checks.
            clock: Monotonic time source for cache timestamps.
        """
        self._store = store if store is not None else get_item_store()
        self._cache_ttl = cache_ttl if cache_ttl is not None else settings.stats_cache_ttl
        self._threshold = (
            incremental_threshold
            if incremental_threshold is not None
            else settings.stats_incremental_threshold
        )
        self._watch_interval = (
            watch_interval if watch_interval is not None else settings.stats_watch_interval
        )
        self._clock = clock

        self._cache: CacheEntry | None = None
        self._totals = RunningTotals()
        self._snapshot: dict[int, Item] | None = None
        self._lock = asyncio.Lock()
        self._warming = False

        self._running = False
        self._watch: StoreWatch | None = None
        self._periodic_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None

        self._full_recomputes = 0
        self._incremental_updates = 0
        self._changes_ignored = 0
        self._change_failures = 0

    async def start(self) -> None:
        """Watch the store, warm the cache and start the periodic refresh."""
        if self._running:
            return

        self._running = True

        # Watch first so a write landing during warm-up is still reported
        self._watch = self._store.watch(self.handle_change, interval=self._watch_interval)
        await self._watch.start()

        await self.recompute_full()

        self._periodic_task = asyncio.create_task(self._periodic_loop())

        logger.info(
            "Stats aggregator started",
            cache_ttl=self._cache_ttl,
            incremental_threshold=self._threshold,
        )

    async def stop(self) -> None:
        """Stop the periodic refresh and unregister the store watch."""
        if not self._running:
            return

        self._running = False

        if self._watch:
            await self._watch.stop()
            self._watch = None

        for task in [self._periodic_task, self._refresh_task]:
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._periodic_task = None
        self._refresh_task = None

        logger.info(
            "Stats aggregator stopped",
            full_recomputes=self._full_recomputes,
            incremental_updates=self._incremental_updates,
        )

    async def get_stats(self) -> AggregateStats:
        """Get aggregate stats, from cache when possible.

        A fresh cache is returned without touching the store. A stale cache
        is returned as-is while a background rebuild is scheduled. Only when
        nothing has ever been cached does the caller wait for a rebuild.

        Raises:
            ItemStoreError: If the cache is empty and the store cannot be read.
        """
        entry = self._cache
        if entry is not None and self._is_fresh(entry):
            record_stats_lookup("hit")
            return entry.value

        if entry is not None:
            record_stats_lookup("stale")
            self._schedule_refresh()
            return entry.value

        record_stats_lookup("cold")
        async with self._lock:
            # Another writer may have filled the cache while we waited
            if self._cache is not None:
                return self._cache.value
            return await self._rebuild_from_store()

    async def recompute_full(self) -> AggregateStats | None:
        """Rebuild the cache from a full scan of the store.

        Returns:
            The new stats, or None if a rebuild was already in progress or
            the store could not be read. Prior cache state is kept on failure.
        """
        if self._warming:
            logger.debug("Stats cache warming already in progress")
            return None

        self._warming = True
        try:
            async with self._lock:
                return await self._rebuild_from_store()
        except ItemStoreError as e:
            logger.error("Stats cache warming failed", error=str(e))
            record_stats_failure("recompute")
            return None
        finally:
            self._warming = False

    async def refresh_if_stale(self) -> bool:
        """Rebuild the cache if it is missing or past its TTL.

        Returns:
            True if a rebuild was attempted.
        """
        entry = self._cache
        if entry is not None and self._is_fresh(entry):
            return False
        await self.recompute_full()
        return True

    async def handle_change(self, event: StoreChanged) -> ChangeOutcome:
        """Bring the cache up to date after the item store changed.

        Small change batches (at most ``incremental_threshold`` added, removed
        or re-priced items) are applied to the running totals; anything
        larger, or a change arriving before the totals were initialized,
        triggers a full rebuild. On a store failure the cache is dropped and
        a rebuild is attempted; if that fails too the next ``get_stats`` call
        rebuilds synchronously.
        """
        if event.is_noop:
            self._changes_ignored += 1
            return ChangeOutcome.IGNORED

        logger.info("Item store changed, updating stats cache")

        async with self._lock:
            try:
                items = await self._store.read()
            except ItemStoreError as e:
                logger.error("Error processing item store change", error=str(e))
                record_stats_failure("change")
                self._change_failures += 1
                self._invalidate()
                try:
                    await self._rebuild_from_store()
                except ItemStoreError as retry_error:
                    logger.error(
                        "Stats cache rebuild after failed change failed",
                        error=str(retry_error),
                    )
                    record_stats_failure("recompute")
                return ChangeOutcome.FAILED

            return self._apply_change(items)

    def _apply_change(self, items: list[Item]) -> ChangeOutcome:
        """Diff ``items`` against the snapshot and update totals (lock held)."""
        current = {item.id: item for item in items}

        if self._snapshot is None or not self._totals.initialized:
            self._rebuild(items)
            return ChangeOutcome.FULL

        if len(current) != len(items):
            logger.warning("Duplicate item ids in store, performing full recalculation")
            self._rebuild(items)
            return ChangeOutcome.FULL

        previous = self._snapshot
        diff = diff_items(previous, current)

        if diff.size == 0:
            self._snapshot = current
            logger.debug("Item store change did not affect stats")
            return ChangeOutcome.UNCHANGED

        if diff.size > self._threshold:
            logger.info(
                "Too many changes, performing full recalculation",
                changes=diff.size,
                threshold=self._threshold,
            )
            self._rebuild(items)
            return ChangeOutcome.FULL

        for item in diff.removed:
            self._totals.remove(item.id, previous)
        for item in diff.added:
            self._totals.add(item)
        for old, new in diff.modified:
            self._totals.modify(old, new)

        self._cache = CacheEntry(value=self._totals.to_stats(), timestamp=self._clock())
        self._snapshot = current
        self._incremental_updates += 1
        record_stats_recompute("incremental")

        logger.info(
            "Performing incremental update",
            added=len(diff.added),
            removed=len(diff.removed),
            modified=len(diff.modified),
            total=self._totals.count,
        )
        return ChangeOutcome.INCREMENTAL

    async def _rebuild_from_store(self) -> AggregateStats:
        """Read the store and rebuild everything from it (lock held)."""
        started = time.perf_counter()
        items = await self._store.read()
        return self._rebuild(items, started=started)

    def _rebuild(self, items: list[Item], started: float | None = None) -> AggregateStats:
        """Overwrite totals, cache and snapshot from a full collection (lock held)."""
        self._totals.reset(items)
        stats = self._totals.to_stats()
        self._cache = CacheEntry(value=stats, timestamp=self._clock())

        snapshot = {item.id: item for item in items}
        # With duplicate ids the snapshot cannot mirror the totals
        self._snapshot = snapshot if len(snapshot) == len(items) else None

        self._full_recomputes += 1
        duration = time.perf_counter() - started if started is not None else None
        record_stats_recompute("full", duration)

        logger.info(
            "Stats cache warmed",
            total=stats.total,
            average_price=stats.average_price,
            duration_ms=round(duration * 1000, 2) if duration is not None else None,
        )
        return stats

    def _invalidate(self) -> None:
        self._cache = None
        self._snapshot = None
        self._totals = RunningTotals()

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp < self._cache_ttl

    def _schedule_refresh(self) -> None:
        """Start a background rebuild unless one is already pending."""
        if self._warming:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.create_task(self.recompute_full())

    async def _periodic_loop(self) -> None:
        """Background loop rebuilding a stale or missing cache every TTL."""
        try:
            while self._running:
                await asyncio.sleep(self._cache_ttl)
                try:
                    await self.refresh_if_stale()
                except Exception as e:
                    logger.error("Periodic stats refresh failed", error=str(e))
        except asyncio.CancelledError:
            pass

    @property
    def cache_entry(self) -> CacheEntry | None:
        """Current cache entry, if any."""
        return self._cache

    @property
    def totals(self) -> RunningTotals:
        """Copy of the running totals."""
        return RunningTotals(
            count=self._totals.count,
            price_sum=self._totals.price_sum,
            initialized=self._totals.initialized,
        )

    @property
    def is_warming(self) -> bool:
        return self._warming

    @property
    def stats(self) -> dict:
        """Get aggregator statistics."""
        return {
            "running": self._running,
            "full_recomputes": self._full_recomputes,
            "incremental_updates": self._incremental_updates,
            "changes_ignored": self._changes_ignored,
            "change_failures": self._change_failures,
            "cache_age_seconds": (
                round(self._clock() - self._cache.timestamp, 3) if self._cache else None
            ),
        }


# Global aggregator instance
_aggregator: StatsAggregator | None = None


def get_aggregator() -> StatsAggregator:
    """Get the global aggregator instance."""
    global _aggregator
    if _aggregator is None:
        _aggregator = StatsAggregator()
    return _aggregator


async def start_aggregator() -> None:
    """Start the global aggregator."""
    aggregator = get_aggregator()
    await aggregator.start()


async def stop_aggregator() -> None:
    """Stop the global aggregator."""
    aggregator = get_aggregator()
    await aggregator.stop()
