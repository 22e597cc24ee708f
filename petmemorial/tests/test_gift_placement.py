"""Tests for the gift placement transaction."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from petmemorial.core.database import get_db_session, gift_catalog, gift_placements, gift_slots
from petmemorial.core.errors import InsufficientFundsError, NotFoundError, SlotOccupiedError
from petmemorial.features.gifts import service as gift_service
from petmemorial.features.gifts.service import add_months, is_active, list_pet_placements, place_gift
from petmemorial.features.users.service import get_or_create_user, get_user
from petmemorial.features.wallet.service import get_balance

T0 = datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)


def _count(table, **filters) -> int:
    with get_db_session() as session:
        query = select(func.count()).select_from(table)
        for column, value in filters.items():
            query = query.where(table.c[column] == value)
        return session.execute(query).scalar_one()


def test_end_to_end_place_then_slot_occupied(make_pet, candle, fund):
    pet = make_pet()
    fund("alice", 25)

    before = datetime.now(timezone.utc)
    result = place_gift(pet.id, "alice", candle.id, "gift_slot_1", months=1)
    after = datetime.now(timezone.utc)

    assert result.spent == 20
    assert result.coin_balance == 5
    assert result.placement.slot_name == "gift_slot_1"
    assert result.placement.active is True
    assert add_months(before, 1) <= result.placement.expires_at <= add_months(after, 1)
    assert _count(gift_placements, pet_id=pet.id, slot_name="gift_slot_1") == 1

    with pytest.raises(SlotOccupiedError):
        place_gift(pet.id, "alice", candle.id, "gift_slot_1", months=1)
    assert get_balance("alice").coin_balance == 5
    assert _count(gift_placements, pet_id=pet.id) == 1


def test_placement_is_joined_with_gift_and_owner(make_pet, candle, fund):
    pet = make_pet()
    fund("bob", 40)

    placement = place_gift(pet.id, "bob", candle.id, "gift_slot_2", now=T0).placement

    assert placement.pet_id == pet.id
    assert placement.gift.code == "candle"
    assert placement.gift.price == 20
    assert placement.owner.id == "bob"
    assert placement.owner.email == "bob@dev.local"
    assert placement.placed_at == T0
    assert placement.expires_at == datetime(2026, 6, 10, 12, 0, tzinfo=timezone.utc)


def test_price_scales_with_months(make_pet, candle, fund):
    pet = make_pet()
    fund("carol", 100)

    result = place_gift(pet.id, "carol", candle.id, "gift_slot_1", months=3, now=T0)

    assert result.spent == 60
    assert result.coin_balance == 40
    assert result.placement.expires_at == datetime(2026, 8, 10, 12, 0, tzinfo=timezone.utc)


def test_months_none_defaults_to_one(make_pet, candle, fund):
    pet = make_pet()
    fund("dave", 20)

    result = place_gift(pet.id, "dave", candle.id, "gift_slot_1", months=None, now=T0)

    assert result.spent == 20
    assert result.placement.expires_at == add_months(T0, 1)


def test_insufficient_funds_leaves_no_trace(make_pet, candle, fund):
    pet = make_pet()
    fund("erin", 10)

    with pytest.raises(InsufficientFundsError):
        place_gift(pet.id, "erin", candle.id, "gift_slot_1")

    assert get_balance("erin").coin_balance == 10
    assert _count(gift_placements) == 0
    assert _count(gift_slots) == 0


def test_insufficient_funds_for_multiple_months(make_pet, candle, fund):
    pet = make_pet()
    fund("frank", 50)

    with pytest.raises(InsufficientFundsError):
        place_gift(pet.id, "frank", candle.id, "gift_slot_1", months=3)

    assert get_balance("frank").coin_balance == 50


def test_rejected_placement_does_not_provision_owner(make_pet, candle):
    pet = make_pet()

    with pytest.raises(InsufficientFundsError):
        place_gift(pet.id, "brand-new-owner", candle.id, "gift_slot_1")

    assert get_user("brand-new-owner") is None


def test_unknown_pet_is_not_found(candle, fund):
    fund("gina", 100)
    with pytest.raises(NotFoundError) as exc:
        place_gift("missing-pet", "gina", candle.id, "gift_slot_1")
    assert exc.value.message == gift_service.PET_NOT_FOUND_MESSAGE


def test_unknown_gift_is_not_found(make_pet, fund):
    pet = make_pet()
    fund("hank", 100)
    with pytest.raises(NotFoundError) as exc:
        place_gift(pet.id, "hank", "missing-gift", "gift_slot_1")
    assert exc.value.message == gift_service.GIFT_NOT_FOUND_MESSAGE
    assert get_balance("hank").coin_balance == 100


def test_slot_check_precedes_funds_check(make_pet, candle, fund):
    pet = make_pet()
    fund("ivy", 20)
    place_gift(pet.id, "ivy", candle.id, "gift_slot_1")

    # A broke second owner still gets the slot error first
    with pytest.raises(SlotOccupiedError):
        place_gift(pet.id, "penniless", candle.id, "gift_slot_1")


def test_price_is_read_at_evaluation_time(make_pet, candle, fund):
    pet = make_pet()
    fund("jack", 100)
    with get_db_session() as session:
        session.execute(update(gift_catalog).where(gift_catalog.c.id == candle.id).values(price=7))

    result = place_gift(pet.id, "jack", candle.id, "gift_slot_1", months=2)

    assert result.spent == 14
    assert result.coin_balance == 86


def test_slots_and_pets_are_independent(make_pet, candle, fund):
    first = make_pet(name="Murka")
    second = make_pet(name="Rex")
    fund("kate", 60)

    place_gift(first.id, "kate", candle.id, "gift_slot_1", now=T0)
    place_gift(first.id, "kate", candle.id, "gift_slot_2", now=T0)
    place_gift(second.id, "kate", candle.id, "gift_slot_1", now=T0)

    assert get_balance("kate").coin_balance == 0
    assert _count(gift_placements) == 3


def test_expired_placement_does_not_block(make_pet, candle, fund):
    pet = make_pet()
    fund("liam", 40)
    place_gift(pet.id, "liam", candle.id, "gift_slot_1", now=T0)

    later = T0 + timedelta(days=45)
    result = place_gift(pet.id, "liam", candle.id, "gift_slot_1", now=later)

    assert result.coin_balance == 0
    placements = list_pet_placements(pet.id, now=later)
    assert [p.active for p in placements] == [True, False]
    assert placements[0].id == result.placement.id


def test_future_expiry_blocks(make_pet, candle, fund):
    pet = make_pet()
    fund("mia", 40)
    place_gift(pet.id, "mia", candle.id, "gift_slot_1", now=T0)

    with pytest.raises(SlotOccupiedError):
        place_gift(pet.id, "mia", candle.id, "gift_slot_1", now=T0 + timedelta(days=30))
    assert get_balance("mia").coin_balance == 20


def test_slot_frees_exactly_at_expiry(make_pet, candle, fund):
    pet = make_pet()
    fund("nora", 40)
    first = place_gift(pet.id, "nora", candle.id, "gift_slot_1", now=T0)

    # expires_at > now is active, so at the expiry instant the slot is free
    place_gift(pet.id, "nora", candle.id, "gift_slot_1", now=first.placement.expires_at)
    assert get_balance("nora").coin_balance == 0


def test_permanent_placement_blocks_forever(make_pet, candle, fund):
    pet = make_pet()
    fund("omar", 20)

    permanent = place_gift(pet.id, "omar", candle.id, "gift_slot_1", months=0, now=T0)

    assert permanent.placement.expires_at is None
    assert permanent.spent == 0
    with pytest.raises(SlotOccupiedError):
        place_gift(pet.id, "omar", candle.id, "gift_slot_1", now=T0 + timedelta(days=3650))
    assert get_balance("omar").coin_balance == 20


def test_failure_after_debit_rolls_back_everything(make_pet, candle, fund, monkeypatch):
    pet = make_pet()
    fund("pia", 30)

    def crash(*args, **kwargs):
        raise RuntimeError("simulated crash before placement insert")

    monkeypatch.setattr(gift_service, "_insert_placement", crash)
    with pytest.raises(RuntimeError):
        place_gift(pet.id, "pia", candle.id, "gift_slot_1")

    assert get_balance("pia").coin_balance == 30
    assert _count(gift_placements) == 0
    assert _count(gift_slots) == 0

    monkeypatch.undo()
    result = place_gift(pet.id, "pia", candle.id, "gift_slot_1")
    assert result.coin_balance == 10


def test_owner_id_is_provisioned_inside_placement(make_pet, candle):
    pet = make_pet()
    # Free permanent placement succeeds with a zero balance
    result = place_gift(pet.id, "Jane Doe", candle.id, "gift_slot_1", months=0)

    assert result.placement.owner.email == "Jane_Doe@dev.local"
    assert get_or_create_user("Jane Doe").coin_balance == 0


class TestAddMonths:
    def test_simple_month(self):
        assert add_months(T0, 1) == datetime(2026, 6, 10, 12, 0, tzinfo=timezone.utc)

    def test_year_wrap(self):
        value = datetime(2026, 12, 15, 8, 30, tzinfo=timezone.utc)
        assert add_months(value, 1) == datetime(2027, 1, 15, 8, 30, tzinfo=timezone.utc)

    def test_twelve_months(self):
        value = datetime(2026, 10, 31, tzinfo=timezone.utc)
        assert add_months(value, 12) == datetime(2027, 10, 31, tzinfo=timezone.utc)

    def test_day_overflow_rolls_into_next_month(self):
        value = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)
        assert add_months(value, 1) == datetime(2026, 3, 3, 12, 0, tzinfo=timezone.utc)

    def test_day_overflow_in_leap_year(self):
        value = datetime(2028, 1, 31, tzinfo=timezone.utc)
        assert add_months(value, 1) == datetime(2028, 3, 2, tzinfo=timezone.utc)

    def test_day_overflow_into_thirty_day_month(self):
        value = datetime(2026, 3, 31, tzinfo=timezone.utc)
        assert add_months(value, 1) == datetime(2026, 5, 1, tzinfo=timezone.utc)

    def test_placement_uses_rollover(self, make_pet, candle, fund):
        pet = make_pet()
        fund("quinn", 20)
        now = datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc)

        result = place_gift(pet.id, "quinn", candle.id, "gift_slot_1", now=now)

        assert result.placement.expires_at == datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)


def test_is_active():
    assert is_active(None, T0) is True
    assert is_active(T0 + timedelta(seconds=1), T0) is True
    assert is_active(T0, T0) is False
    assert is_active(T0 - timedelta(days=1), T0) is False
    # Naive values read back from SQLite are treated as UTC
    assert is_active(datetime(2026, 5, 11), T0) is True
