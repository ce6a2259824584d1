"""JSON-file backed item store with modification-marker watching."""

import asyncio
import json
import os
import tempfile
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from pathlib import Path

import structlog
from pydantic import TypeAdapter, ValidationError

from app.core.config import get_settings
from app.schemas.items import Item, ItemCreate

settings = get_settings()
logger = structlog.get_logger()

_items_adapter = TypeAdapter(list[Item])


class ItemStoreError(Exception):
    """Base class for item store failures."""


class ItemStoreReadError(ItemStoreError):
    """The item store could not be read (missing file, permissions, ...)."""


class ItemStoreParseError(ItemStoreError):
    """The item store content is not a valid list of items."""


class ItemStoreWriteError(ItemStoreError):
    """The item store could not be written."""


@dataclass(frozen=True)
class StoreChanged:
    """Notification that the store's modification marker moved.

    Carries no item payload; receivers re-read the store.
    """

    previous: int | None
    current: int | None

    @property
    def is_noop(self) -> bool:
        return self.previous == self.current


# Type alias for store change handlers
StoreChangeHandler = Callable[[StoreChanged], Coroutine[None, None, object]]


class StoreWatch:
    """Polling watch over a store's modification marker.

    The handler is awaited only when the marker differs from the last
    observed value, so rewriting the file without touching its mtime is
    never reported.

    Usage:
        watch = store.watch(handler, interval=1.0)
        await watch.start()
        # ... later ...
        await watch.stop()
    """

    def __init__(
        self,
        marker: Callable[[], int | None],
        handler: StoreChangeHandler,
        interval: float = 1.0,
    ):
        self._marker = marker
        self._handler = handler
        self._interval = interval
        self._last_marker: int | None = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._changes_delivered = 0

    async def start(self) -> None:
        """Record the current marker and start polling."""
        if self._running:
            return

        self._last_marker = self._marker()
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.debug("Store watch started", interval=self._interval)

    async def stop(self) -> None:
        """Stop polling. Safe to call more than once."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.debug("Store watch stopped", changes_delivered=self._changes_delivered)

    async def poll(self) -> bool:
        """Check the marker once and deliver a change if it moved.

        Returns:
            True if a change was delivered to the handler.
        """
        current = self._marker()
        event = StoreChanged(previous=self._last_marker, current=current)
        if event.is_noop:
            return False

        self._last_marker = current
        self._changes_delivered += 1
        logger.info("Item store changed", previous=event.previous, current=event.current)

        try:
            await self._handler(event)
        except Exception as e:
            logger.error("Store change handler failed", error=str(e))
        return True

    async def _poll_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self._interval)
                await self.poll()
        except asyncio.CancelledError:
            pass

    @property
    def is_running(self) -> bool:
        return self._running


class JSONItemStore:
    """Item collection persisted as a JSON array in a single file.

    Reads and writes run in a worker thread so the event loop is never
    blocked on disk I/O. Writes are serialized with a lock and land through
    an atomic rename, so readers never see a partially written file.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._write_lock = asyncio.Lock()

    async def read(self) -> list[Item]:
        """Read and validate the full item collection.

        Raises:
            ItemStoreReadError: If the file cannot be read.
            ItemStoreParseError: If the content is not a JSON list of items.
        """
        records = await self._read_records()
        return self._validate(records)

    async def _read_records(self) -> list:
        """Read the raw JSON records without validating them."""
        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
        except OSError as e:
            raise ItemStoreReadError(f"Cannot read item store {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ItemStoreParseError(f"Invalid JSON in item store: {e}") from e

        if not isinstance(data, list):
            raise ItemStoreParseError("Invalid item store: expected a JSON list")
        return data

    def _validate(self, records: list) -> list[Item]:
        try:
            return _items_adapter.validate_python(records)
        except ValidationError as e:
            raise ItemStoreParseError(f"Invalid item records: {e}") from e

    async def get(self, item_id: int) -> Item | None:
        """Get a single item by id, or None if it does not exist."""
        items = await self.read()
        for item in items:
            if item.id == item_id:
                return item
        return None

    async def append(self, item_data: ItemCreate) -> Item:
        """Append a new item and return it with its assigned id.

        Existing records are written back exactly as they were read; only
        the new record is added. The id is the current time in milliseconds,
        bumped past the largest existing id when needed so ids stay unique.
        """
        async with self._write_lock:
            records = await self._read_records()
            items = self._validate(records)

            new_id = int(time.time() * 1000)
            max_id = max((i.id for i in items), default=0)
            if new_id <= max_id:
                new_id = max_id + 1

            record = {**item_data.model_dump(), "id": new_id}
            item = Item.model_validate(record)
            records.append(record)

            payload = json.dumps(records, indent=2, ensure_ascii=False)
            try:
                await asyncio.to_thread(self._replace_file, payload)
            except OSError as e:
                raise ItemStoreWriteError(f"Cannot write item store {self.path}: {e}") from e

        logger.info("Item appended", item_id=item.id, total_items=len(records))
        return item

    def _replace_file(self, payload: str) -> None:
        """Write ``payload`` to a sibling temp file and rename it over the store."""
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def marker(self) -> int | None:
        """Return the store's modification marker, or None if it is missing."""
        try:
            return self.path.stat().st_mtime_ns
        except OSError:
            return None

    def watch(self, handler: StoreChangeHandler, interval: float = 1.0) -> StoreWatch:
        """Create a watch that calls ``handler`` whenever the marker changes."""
        return StoreWatch(self.marker, handler, interval=interval)


# Global store instance
_item_store: JSONItemStore | None = None


def get_item_store() -> JSONItemStore:
    """Get the global item store instance."""
    global _item_store
    if _item_store is None:
        _item_store = JSONItemStore(settings.data_path)
    return _item_store
