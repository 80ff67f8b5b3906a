"""Item and auction-snapshot records written by the item and auction workers."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

# Connected-realm id used for the region-wide commodity market.
COMMODITY_REALM_ID = 0


class Item(BaseModel):
    """Static item metadata from the Item API."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: Optional[str] = None
    quality: Optional[str] = None
    item_class: Optional[str] = None
    item_subclass: Optional[str] = None
    level: Optional[int] = None
    is_stackable: bool = False

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"item id must be positive, got {v}.")
        return v


class AuctionSnapshot(BaseModel):
    """Bookkeeping for one fetched auction house dump."""

    model_config = ConfigDict(frozen=True)

    snapshot_key: str
    connected_realm_id: int
    last_modified: Optional[datetime] = None
    auction_count: int = 0
    fetched_at: datetime
