"""Item listing, lookup and creation endpoints."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.observability import record_item_operation
from app.schemas import Item, ItemCreate, ItemListResponse
from app.services.item_store import (
    ItemStoreError,
    ItemStoreWriteError,
    JSONItemStore,
    get_item_store,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/items", tags=["items"])

ItemStore = Annotated[JSONItemStore, Depends(get_item_store)]


def filter_items(items: list[Item], q: str | None) -> list[Item]:
    """Case-insensitive substring match on item name."""
    if not q:
        return items
    needle = q.lower()
    return [item for item in items if needle in item.name.lower()]


def paginate(items: list[Item], limit: int | None, offset: int | None) -> list[Item]:
    """Slice items; without limit and offset the list is returned whole."""
    if limit is None and offset is None:
        return items
    start = offset or 0
    end = start + limit if limit is not None else None
    return items[start:end]


@router.get("", response_model=ItemListResponse)
async def list_items(
    store: ItemStore,
    q: Annotated[str | None, Query(description="Search term matched against item names")] = None,
    limit: Annotated[int | None, Query(ge=1, description="Max items to return")] = None,
    offset: Annotated[int | None, Query(ge=0, description="Items to skip")] = None,
) -> ItemListResponse:
    """List items, optionally filtered by name and paginated.

    ``total`` is the number of matches before pagination is applied.
    """
    try:
        items = await store.read()
    except ItemStoreError as e:
        logger.error("Failed to list items", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read item store",
        )

    filtered = filter_items(items, q)
    record_item_operation("list")

    return ItemListResponse(
        total=len(filtered),
        results=paginate(filtered, limit, offset),
    )


@router.get("/{item_id}", response_model=Item)
async def get_item(item_id: int, store: ItemStore) -> Item:
    """Get a specific item by ID."""
    try:
        item = await store.get(item_id)
    except ItemStoreError as e:
        logger.error("Failed to read item", item_id=item_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read item store",
        )

    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Item not found",
        )
    record_item_operation("get")
    return item


@router.post("", response_model=Item, status_code=status.HTTP_201_CREATED)
async def create_item(item_data: ItemCreate, store: ItemStore) -> Item:
    """Create a new item.

    The stats cache picks the new item up through the store watch.
    """
    try:
        item = await store.append(item_data)
    except ItemStoreWriteError as e:
        logger.error("Failed to write item", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to write item store",
        )
    except ItemStoreError as e:
        logger.error("Failed to read item store before write", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read item store",
        )

    logger.info("Item created", item_id=item.id, name=item.name)
    record_item_operation("create")
    return item
