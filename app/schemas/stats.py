"""Pydantic schemas for aggregate item statistics."""

from pydantic import BaseModel, ConfigDict, Field


class AggregateStats(BaseModel):
    """Aggregate statistics over the whole item collection."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    total: int = Field(default=0, description="Number of items")
    average_price: float = Field(
        default=0.0,
        alias="averagePrice",
        description="Mean item price, 0 when there are no items",
    )
