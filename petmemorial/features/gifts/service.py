"""
petmemorial/features/gifts/service.py

Gift catalog and gift placement.

place_gift() runs as a single database transaction:
1. pet exists                      -> NotFoundError
2. gift exists in the catalog      -> NotFoundError
3. slot has no active placement    -> SlotOccupiedError
4. owner can pay price * months    -> InsufficientFundsError
then claims the slot row, debits the balance and inserts the placement.
Any failure rolls back every write.

Slot exclusion does not rely on the read in step 3 alone: the gift_slots
row is claimed by primary-key insert or by an UPDATE that only matches an
expired occupant, so two concurrent requests cannot both take the slot.
The debit is a conditional UPDATE, so the balance never goes negative.
"""

from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4
from sqlalchemy import select, insert, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from petmemorial.core.database import (
    get_db_session,
    gift_catalog,
    gift_placements,
    gift_slots,
    pets,
    users as app_users,
)
from petmemorial.core.errors import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    SlotOccupiedError,
    ValidationError,
)
from petmemorial.core.logging import log_event
from petmemorial.core.timeutils import as_utc, utc_now
from petmemorial.features.users.service import get_or_create_user
from petmemorial.models.gift import GiftCatalogItem, GiftPlacement, PlacementResult
from petmemorial.models.user import OwnerSummary


DEFAULT_GIFTS = [
    {
        "code": "candle",
        "name": "Candle",
        "price": 20,
        "model_url": "/models/gifts/candle.glb",
    },
]

PET_NOT_FOUND_MESSAGE = "Memorial not found"
GIFT_NOT_FOUND_MESSAGE = "Gift not found"
SLOT_OCCUPIED_MESSAGE = "This slot is already occupied"
INSUFFICIENT_FUNDS_MESSAGE = "Not enough coins"


def add_months(value: datetime, months: int) -> datetime:
    """
    Add calendar months, rolling day-of-month overflow into the next month.

    31 Jan + 1 month is 3 Mar (2 Mar in a leap year), not 28 Feb.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    first_of_month = value.replace(year=year, month=month, day=1)
    return first_of_month + timedelta(days=value.day - 1)


def is_active(expires_at: Optional[datetime], now: datetime) -> bool:
    """A placement is active while it has no expiry or expires in the future."""
    if expires_at is None:
        return True
    return as_utc(expires_at) > as_utc(now)


def _row_to_catalog_item(row) -> GiftCatalogItem:
    return GiftCatalogItem(
        id=row.id,
        code=row.code,
        name=row.name,
        price=int(row.price),
        model_url=row.model_url,
        created_at=as_utc(row.created_at),
    )


def seed_catalog() -> int:
    """
    Seed the default catalog when it is empty (idempotent).

    Returns the number of inserted items.
    """
    now = utc_now()
    inserted = 0
    with get_db_session() as session:
        count = session.execute(select(func.count()).select_from(gift_catalog)).scalar_one()
        if count:
            return 0
        for gift in DEFAULT_GIFTS:
            try:
                with session.begin_nested():
                    session.execute(
                        insert(gift_catalog).values(id=str(uuid4()), created_at=now, **gift)
                    )
                inserted += 1
            except IntegrityError:
                # Seeded concurrently by another request
                continue
    if inserted:
        log_event("info", "gift.catalog_seeded", event_type="gift.catalog_seeded", extra={"inserted": inserted})
    return inserted


def list_catalog() -> List[GiftCatalogItem]:
    """Catalog ordered by ascending price."""
    seed_catalog()
    with get_db_session() as session:
        rows = session.execute(
            select(gift_catalog).order_by(gift_catalog.c.price.asc(), gift_catalog.c.code.asc())
        ).all()
        return [_row_to_catalog_item(row) for row in rows]


def _placement_select():
    joined = gift_placements.join(
        gift_catalog, gift_catalog.c.id == gift_placements.c.gift_id
    ).join(
        app_users, app_users.c.user_id == gift_placements.c.owner_id
    )
    return select(
        gift_placements,
        gift_catalog.c.code.label("gift_code"),
        gift_catalog.c.name.label("gift_name"),
        gift_catalog.c.price.label("gift_price"),
        gift_catalog.c.model_url.label("gift_model_url"),
        gift_catalog.c.created_at.label("gift_created_at"),
        app_users.c.email.label("owner_email"),
        app_users.c.login.label("owner_login"),
    ).select_from(joined)


def _row_to_placement(row, now: datetime) -> GiftPlacement:
    expires_at = as_utc(row.expires_at)
    return GiftPlacement(
        id=row.id,
        pet_id=row.pet_id,
        gift_id=row.gift_id,
        owner_id=row.owner_id,
        slot_name=row.slot_name,
        placed_at=as_utc(row.placed_at),
        expires_at=expires_at,
        active=is_active(expires_at, now),
        gift=GiftCatalogItem(
            id=row.gift_id,
            code=row.gift_code,
            name=row.gift_name,
            price=int(row.gift_price),
            model_url=row.gift_model_url,
            created_at=as_utc(row.gift_created_at),
        ),
        owner=OwnerSummary(id=row.owner_id, email=row.owner_email, login=row.owner_login),
    )


def list_pet_placements(
    pet_id: str,
    *,
    now: Optional[datetime] = None,
    active_only: bool = False,
    session: Optional[Session] = None,
) -> List[GiftPlacement]:
    """Placements for a pet, newest first, each flagged active or expired."""
    now = as_utc(now) or utc_now()
    query = _placement_select().where(gift_placements.c.pet_id == pet_id)
    if active_only:
        query = query.where(_active_clause(now))
    query = query.order_by(gift_placements.c.placed_at.desc(), gift_placements.c.id.desc())

    if session is not None:
        rows = session.execute(query).all()
        return [_row_to_placement(row, now) for row in rows]
    with get_db_session() as own_session:
        rows = own_session.execute(query).all()
        return [_row_to_placement(row, now) for row in rows]


def _active_clause(now: datetime):
    return or_(gift_placements.c.expires_at.is_(None), gift_placements.c.expires_at > now)


def _active_placement_exists(session: Session, pet_id: str, slot_name: str, now: datetime) -> bool:
    row = session.execute(
        select(gift_placements.c.id).where(
            gift_placements.c.pet_id == pet_id,
            gift_placements.c.slot_name == slot_name,
            _active_clause(now),
        ).limit(1)
    ).first()
    return row is not None


def _claim_slot(
    session: Session,
    pet_id: str,
    slot_name: str,
    placement_id: str,
    expires_at: Optional[datetime],
    now: datetime,
) -> bool:
    """
    Take the gift_slots row for (pet_id, slot_name).

    Reclaims a row whose occupant has expired, otherwise inserts a new one.
    Returns False when another placement holds the slot.
    """
    reclaimed = session.execute(
        update(gift_slots)
        .where(
            gift_slots.c.pet_id == pet_id,
            gift_slots.c.slot_name == slot_name,
            gift_slots.c.expires_at.is_not(None),
            gift_slots.c.expires_at <= now,
        )
        .values(placement_id=placement_id, expires_at=expires_at, updated_at=now)
    )
    if reclaimed.rowcount == 1:
        return True

    try:
        with session.begin_nested():
            session.execute(
                insert(gift_slots).values(
                    pet_id=pet_id,
                    slot_name=slot_name,
                    placement_id=placement_id,
                    expires_at=expires_at,
                    updated_at=now,
                )
            )
    except IntegrityError:
        return False
    return True


def _debit(session: Session, owner_id: str, amount: int) -> bool:
    """Atomically subtract `amount`; False if the balance would go negative."""
    result = session.execute(
        update(app_users)
        .where(app_users.c.user_id == owner_id, app_users.c.coin_balance >= amount)
        .values(coin_balance=app_users.c.coin_balance - amount)
    )
    return result.rowcount == 1


def _insert_placement(
    session: Session,
    *,
    placement_id: str,
    pet_id: str,
    gift_id: str,
    owner_id: str,
    slot_name: str,
    placed_at: datetime,
    expires_at: Optional[datetime],
) -> None:
    session.execute(
        insert(gift_placements).values(
            id=placement_id,
            pet_id=pet_id,
            gift_id=gift_id,
            owner_id=owner_id,
            slot_name=slot_name,
            placed_at=placed_at,
            expires_at=expires_at,
        )
    )


def _place_gift_tx(
    session: Session,
    *,
    pet_id: str,
    owner_id: str,
    gift_id: str,
    slot_name: str,
    months: int,
    now: datetime,
) -> PlacementResult:
    pet = session.execute(select(pets.c.id).where(pets.c.id == pet_id)).first()
    if not pet:
        raise NotFoundError(PET_NOT_FOUND_MESSAGE)

    gift = session.execute(select(gift_catalog).where(gift_catalog.c.id == gift_id)).first()
    if not gift:
        raise NotFoundError(GIFT_NOT_FOUND_MESSAGE)

    total_price = int(gift.price) * months

    if _active_placement_exists(session, pet_id, slot_name, now):
        raise SlotOccupiedError(SLOT_OCCUPIED_MESSAGE)

    owner = get_or_create_user(owner_id, session=session)
    if owner.coin_balance < total_price:
        raise InsufficientFundsError(INSUFFICIENT_FUNDS_MESSAGE)

    # months == 0 is a permanent placement; unreachable over HTTP (1..12)
    expires_at = add_months(now, months) if months else None
    placement_id = str(uuid4())

    if not _claim_slot(session, pet_id, slot_name, placement_id, expires_at, now):
        raise SlotOccupiedError(SLOT_OCCUPIED_MESSAGE)
    if not _debit(session, owner.user_id, total_price):
        raise InsufficientFundsError(INSUFFICIENT_FUNDS_MESSAGE)

    _insert_placement(
        session,
        placement_id=placement_id,
        pet_id=pet_id,
        gift_id=gift_id,
        owner_id=owner.user_id,
        slot_name=slot_name,
        placed_at=now,
        expires_at=expires_at,
    )

    coin_balance = session.execute(
        select(app_users.c.coin_balance).where(app_users.c.user_id == owner.user_id)
    ).scalar_one()
    row = session.execute(
        _placement_select().where(gift_placements.c.id == placement_id)
    ).one()

    return PlacementResult(
        placement=_row_to_placement(row, now),
        coin_balance=int(coin_balance),
        spent=total_price,
    )


def place_gift(
    pet_id: str,
    owner_id: str,
    gift_id: str,
    slot_name: str,
    months: Optional[int] = 1,
    *,
    now: Optional[datetime] = None,
) -> PlacementResult:
    """
    Attach a catalog gift to a pet's slot for `months` calendar months,
    paid from the owner's coin balance.

    The owner is auto-provisioned inside the same transaction, so a
    rejected placement leaves no new user behind.
    """
    now = as_utc(now) or utc_now()
    duration = 1 if months is None else months
    if duration < 0:
        raise ValidationError("months must not be negative")

    try:
        with get_db_session() as session:
            result = _place_gift_tx(
                session,
                pet_id=pet_id,
                owner_id=owner_id,
                gift_id=gift_id,
                slot_name=slot_name,
                months=duration,
                now=now,
            )
    except (NotFoundError, ConflictError) as exc:
        log_event(
            "warning",
            "gift.rejected",
            user_id=owner_id,
            pet_id=pet_id,
            event_type="gift.rejected",
            error_code=exc.code,
            extra={"gift_id": gift_id, "slot_name": slot_name, "months": duration},
        )
        raise

    log_event(
        "info",
        "gift.placed",
        user_id=result.placement.owner_id,
        pet_id=pet_id,
        event_type="gift.placed",
        extra={
            "placement_id": result.placement.id,
            "slot_name": slot_name,
            "spent": result.spent,
            "coin_balance": result.coin_balance,
        },
    )
    return result
