"""Pydantic schemas for the catalog API."""

from app.schemas.items import Item, ItemCreate, ItemListResponse
from app.schemas.stats import AggregateStats

__all__ = [
    "Item",
    "ItemCreate",
    "ItemListResponse",
    "AggregateStats",
]
