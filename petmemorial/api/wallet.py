"""
petmemorial/api/wallet.py
Coin balance endpoints.
"""

from typing import Dict

from fastapi import APIRouter

from petmemorial.features.wallet.service import get_balance, top_up
from petmemorial.models.user import TopUpRequest

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/{owner_id}")
def get_wallet(owner_id: str) -> Dict:
    """Current coin balance (provisions unknown owners)."""
    return get_balance(owner_id).model_dump(by_alias=True, mode="json")


@router.post("/top-up")
def top_up_wallet(body: TopUpRequest) -> Dict:
    balance = top_up(body.owner_id, body.amount)
    return {"ok": True, "coinBalance": balance.coin_balance}
