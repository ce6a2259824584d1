"""Catalog business logic services."""

from app.services.item_store import (
    ItemStoreError,
    ItemStoreParseError,
    ItemStoreReadError,
    ItemStoreWriteError,
    JSONItemStore,
    StoreChanged,
    StoreWatch,
    get_item_store,
)

__all__ = [
    "ItemStoreError",
    "ItemStoreParseError",
    "ItemStoreReadError",
    "ItemStoreWriteError",
    "JSONItemStore",
    "StoreChanged",
    "StoreWatch",
    "get_item_store",
]
