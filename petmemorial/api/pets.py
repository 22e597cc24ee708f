"""
petmemorial/api/pets.py
Memorial CRUD endpoints.
"""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Query

from petmemorial.core.errors import ValidationError
from petmemorial.features.pets.service import (
    VISIBILITY_FILTERS,
    create_pet,
    delete_pet,
    get_pet,
    list_pets,
    update_pet,
)
from petmemorial.models.pet import PetCreateRequest, PetUpdateRequest

router = APIRouter(prefix="/pets", tags=["pets"])


@router.post("")
def create_pet_endpoint(body: PetCreateRequest) -> Dict:
    return create_pet(body).model_dump(by_alias=True, mode="json")


@router.get("")
def list_pets_endpoint(
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    visibility: Optional[str] = Query(None),
) -> List[Dict]:
    if visibility is not None and visibility not in VISIBILITY_FILTERS:
        raise ValidationError("visibility must be 'public' or 'private'")
    return [pet.model_dump(by_alias=True, mode="json") for pet in list_pets(owner_id, visibility)]


@router.get("/{pet_id}")
def get_pet_endpoint(
    pet_id: str,
    now: Optional[str] = Query(None, description="Fixed timestamp for deterministic testing (ISO format)"),
) -> Dict:
    """Pet with memorial, marker, owner and gift placements (active flag computed at `now`)."""
    now_dt = None
    if now:
        try:
            now_dt = datetime.fromisoformat(now.replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError("Invalid ISO timestamp format for 'now' parameter")
    return get_pet(pet_id, now=now_dt).model_dump(by_alias=True, mode="json")


@router.patch("/{pet_id}")
def update_pet_endpoint(pet_id: str, body: PetUpdateRequest) -> Dict:
    return update_pet(pet_id, body).model_dump(by_alias=True, mode="json")


@router.delete("/{pet_id}")
def delete_pet_endpoint(pet_id: str) -> Dict:
    return delete_pet(pet_id).model_dump(by_alias=True, mode="json")
