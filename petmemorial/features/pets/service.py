"""
petmemorial/features/pets/service.py

Memorial CRUD: a pet row plus its memorial scene and optional map marker.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4
from sqlalchemy import select, insert, update, delete
from sqlalchemy.orm import Session

from petmemorial.core.database import (
    get_db_session,
    pets,
    memorials,
    map_markers,
    gift_placements,
    gift_slots,
    users as app_users,
)
from petmemorial.core.errors import NotFoundError, ValidationError
from petmemorial.core.logging import log_event
from petmemorial.core.timeutils import as_utc, utc_now
from petmemorial.features.gifts.service import list_pet_placements
from petmemorial.features.users.service import get_or_create_user
from petmemorial.models.pet import (
    MarkerInfo,
    MemorialScene,
    Pet,
    PetCreateRequest,
    PetDetail,
    PetUpdateRequest,
)
from petmemorial.models.user import OwnerSummary

PET_NOT_FOUND_MESSAGE = "Pet not found"

VISIBILITY_FILTERS = {"public": True, "private": False}

_DESCRIPTIVE_FIELDS = (
    "name",
    "species",
    "birth_date",
    "death_date",
    "epitaph",
    "favorite_treats",
    "favorite_toys",
    "favorite_sleep_places",
    "story",
    "is_public",
)


def _memorial_from_row(row) -> Optional[MemorialScene]:
    if row is None:
        return None
    return MemorialScene(
        environment_id=row.environment_id,
        house_id=row.house_id,
        scene_json=row.scene_json,
    )


def _marker_from_row(row) -> Optional[MarkerInfo]:
    if row is None:
        return None
    return MarkerInfo(id=row.id, lat=row.lat, lng=row.lng, marker_style=row.marker_style)


def _pet_fields(row) -> Dict:
    return {
        "id": row.id,
        "owner_id": row.owner_id,
        "name": row.name,
        "species": row.species,
        "birth_date": row.birth_date,
        "death_date": row.death_date,
        "epitaph": row.epitaph,
        "favorite_treats": row.favorite_treats,
        "favorite_toys": row.favorite_toys,
        "favorite_sleep_places": row.favorite_sleep_places,
        "story": row.story,
        "is_public": bool(row.is_public),
        "created_at": as_utc(row.created_at),
        "updated_at": as_utc(row.updated_at),
    }


def _load_children(session: Session, pet_ids: List[str]):
    """Fetch memorial and marker rows for many pets in two queries."""
    if not pet_ids:
        return {}, {}
    memorial_rows = session.execute(
        select(memorials).where(memorials.c.pet_id.in_(pet_ids))
    ).all()
    marker_rows = session.execute(
        select(map_markers).where(map_markers.c.pet_id.in_(pet_ids))
    ).all()
    return (
        {row.pet_id: row for row in memorial_rows},
        {row.pet_id: row for row in marker_rows},
    )


def _get_pet_row(session: Session, pet_id: str):
    row = session.execute(select(pets).where(pets.c.id == pet_id)).first()
    if not row:
        raise NotFoundError(PET_NOT_FOUND_MESSAGE)
    return row


def _build_detail(session: Session, pet_id: str, now: Optional[datetime]) -> PetDetail:
    row = _get_pet_row(session, pet_id)
    memorials_by_pet, markers_by_pet = _load_children(session, [pet_id])
    owner = session.execute(
        select(app_users.c.user_id, app_users.c.email, app_users.c.login).where(
            app_users.c.user_id == row.owner_id
        )
    ).one()
    return PetDetail(
        **_pet_fields(row),
        memorial=_memorial_from_row(memorials_by_pet.get(pet_id)),
        marker=_marker_from_row(markers_by_pet.get(pet_id)),
        owner=OwnerSummary(id=owner.user_id, email=owner.email, login=owner.login),
        gifts=list_pet_placements(pet_id, now=now, session=session),
    )


def create_pet(request: PetCreateRequest) -> PetDetail:
    """Create pet, memorial scene and (when coordinates are given) a map marker."""
    if (request.lat is None) != (request.lng is None):
        raise ValidationError("lat and lng must be provided together")

    now = utc_now()
    pet_id = str(uuid4())
    with get_db_session() as session:
        owner = get_or_create_user(request.owner_id, session=session)
        session.execute(
            insert(pets).values(
                id=pet_id,
                owner_id=owner.user_id,
                name=request.name,
                species=request.species,
                birth_date=request.birth_date,
                death_date=request.death_date,
                epitaph=request.epitaph,
                favorite_treats=request.favorite_treats,
                favorite_toys=request.favorite_toys,
                favorite_sleep_places=request.favorite_sleep_places,
                story=request.story,
                is_public=request.is_public,
                created_at=now,
                updated_at=now,
            )
        )
        session.execute(
            insert(memorials).values(
                pet_id=pet_id,
                environment_id=request.environment_id,
                house_id=request.house_id,
                scene_json=request.scene_json,
                created_at=now,
            )
        )
        if request.has_coordinates():
            session.execute(
                insert(map_markers).values(
                    pet_id=pet_id,
                    lat=request.lat,
                    lng=request.lng,
                    marker_style=request.marker_style,
                    created_at=now,
                )
            )
        detail = _build_detail(session, pet_id, now)

    log_event("info", "pet.created", user_id=owner.user_id, pet_id=pet_id, event_type="pet.created")
    return detail


def list_pets(owner_id: Optional[str] = None, visibility: Optional[str] = None) -> List[Pet]:
    """List pets, newest first. visibility is 'public', 'private' or None for all."""
    query = select(pets)
    if owner_id:
        query = query.where(pets.c.owner_id == owner_id.strip())
    if visibility in VISIBILITY_FILTERS:
        query = query.where(pets.c.is_public == VISIBILITY_FILTERS[visibility])
    query = query.order_by(pets.c.created_at.desc(), pets.c.id)

    with get_db_session() as session:
        rows = session.execute(query).all()
        memorials_by_pet, markers_by_pet = _load_children(session, [row.id for row in rows])
        return [
            Pet(
                **_pet_fields(row),
                memorial=_memorial_from_row(memorials_by_pet.get(row.id)),
                marker=_marker_from_row(markers_by_pet.get(row.id)),
            )
            for row in rows
        ]


def get_pet(pet_id: str, *, now: Optional[datetime] = None) -> PetDetail:
    with get_db_session() as session:
        return _build_detail(session, pet_id, now)


def update_pet(pet_id: str, request: PetUpdateRequest) -> PetDetail:
    """Partial update; fields absent from the request are left unchanged."""
    changes = request.model_dump(exclude_unset=True)
    values = {field: changes[field] for field in _DESCRIPTIVE_FIELDS if field in changes}
    # Explicit nulls only make sense for optional fields
    if values.get("name", "") is None or ("is_public" in values and values["is_public"] is None):
        raise ValidationError("name and isPublic cannot be null")

    with get_db_session() as session:
        current = _get_pet_row(session, pet_id)
        birth = values.get("birth_date", current.birth_date)
        death = values.get("death_date", current.death_date)
        if birth and death and death < birth:
            raise ValidationError("deathDate must not precede birthDate")
        if values:
            values["updated_at"] = utc_now()
            session.execute(update(pets).where(pets.c.id == pet_id).values(**values))
        detail = _build_detail(session, pet_id, None)

    log_event("info", "pet.updated", pet_id=pet_id, extra={"fields": sorted(values)})
    return detail


def delete_pet(pet_id: str) -> Pet:
    """Delete a pet with its placements, slots, marker and memorial."""
    with get_db_session() as session:
        row = _get_pet_row(session, pet_id)
        memorials_by_pet, markers_by_pet = _load_children(session, [pet_id])
        removed = Pet(
            **_pet_fields(row),
            memorial=_memorial_from_row(memorials_by_pet.get(pet_id)),
            marker=_marker_from_row(markers_by_pet.get(pet_id)),
        )
        session.execute(delete(gift_slots).where(gift_slots.c.pet_id == pet_id))
        session.execute(delete(gift_placements).where(gift_placements.c.pet_id == pet_id))
        session.execute(delete(map_markers).where(map_markers.c.pet_id == pet_id))
        session.execute(delete(memorials).where(memorials.c.pet_id == pet_id))
        session.execute(delete(pets).where(pets.c.id == pet_id))

    log_event("info", "pet.deleted", user_id=removed.owner_id, pet_id=pet_id, event_type="pet.deleted")
    return removed
