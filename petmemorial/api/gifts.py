"""
petmemorial/api/gifts.py
Gift catalog and gift placement endpoints.
"""

from typing import Dict, List

from fastapi import APIRouter

from petmemorial.features.gifts.service import list_catalog, place_gift
from petmemorial.models.gift import GiftPlacementRequest

router = APIRouter(tags=["gifts"])


@router.get("/gifts")
def get_catalog() -> List[Dict]:
    """Catalog ordered by ascending price."""
    return [item.model_dump(by_alias=True, mode="json") for item in list_catalog()]


@router.post("/pets/{pet_id}/gifts")
def create_placement(pet_id: str, body: GiftPlacementRequest) -> Dict:
    """Place a gift on a memorial slot, paid from the owner's coins.

    Errors carry a typed code: not_found (404), slot_occupied or
    insufficient_funds (400).
    """
    result = place_gift(
        pet_id=pet_id,
        owner_id=body.owner_id,
        gift_id=body.gift_id,
        slot_name=body.slot_name,
        months=body.months,
    )
    return result.model_dump(by_alias=True, mode="json")
