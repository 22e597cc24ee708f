"""
Gift catalog and placement models.

A placement attaches one catalog gift to a named slot of a memorial scene
for a number of calendar months. Placements are never edited; whether one
is still active is computed from expires_at at read time.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from petmemorial.core.config import settings
from petmemorial.models.user import OwnerSummary


class GiftCatalogItem(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    code: str
    name: str
    price: int = Field(ge=0, description="Price in coins per month")
    model_url: Optional[str] = None
    created_at: Optional[datetime] = None


class GiftPlacement(BaseModel):
    """Placement joined with its gift and owner for display."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    pet_id: str
    gift_id: str
    owner_id: str
    slot_name: str
    placed_at: datetime
    expires_at: Optional[datetime] = Field(default=None, description="None means permanent")
    active: bool
    gift: GiftCatalogItem
    owner: OwnerSummary


class PlacementResult(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    placement: GiftPlacement
    coin_balance: int = Field(description="Owner balance after the debit")
    spent: int


class GiftPlacementRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner_id: str = Field(min_length=1, max_length=200)
    gift_id: str = Field(min_length=1, max_length=36)
    slot_name: str = Field(min_length=1, max_length=100)
    months: Optional[int] = Field(default=None, ge=1)
    # Accepted for client compatibility; the scene decides rendering size.
    size: Optional[str] = Field(default=None, max_length=20)

    @field_validator("owner_id", "gift_id", "slot_name")
    @classmethod
    def _trim(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("months")
    @classmethod
    def _max_months(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value > settings.GIFT_MAX_MONTHS:
            raise ValueError(f"months must be at most {settings.GIFT_MAX_MONTHS}")
        return value
