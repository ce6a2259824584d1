"""Item Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Item(BaseModel):
    """A catalog item as stored in the JSON item store.

    Fields other than ``id``, ``name`` and ``price`` (``category``,
    ``description``, ...) are kept as-is so they round-trip through the store.
    """

    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    price: float = Field(ge=0, strict=True)


class ItemCreate(BaseModel):
    """Schema for creating a new item."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1, description="Item name")
    price: float = Field(ge=0, strict=True, description="Item price, must be a number and not negative")
    description: str = Field(default="", description="Optional description")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject names that are only whitespace."""
        if not v.strip():
            raise ValueError("Name is required")
        return v


class ItemListResponse(BaseModel):
    """Filtered, optionally paginated item list."""

    total: int = Field(description="Number of items matching the query before pagination")
    results: list[Item]
