"""
Coin wallet.

Balances only change through atomic UPDATE statements; top_up is the
only credit path, gift placement the only debit path.
"""

from sqlalchemy import select, update

from petmemorial.core.config import settings
from petmemorial.core.database import get_db_session, users as app_users
from petmemorial.core.errors import ValidationError
from petmemorial.core.logging import log_event
from petmemorial.features.users.service import get_or_create_user
from petmemorial.models.user import WalletBalance


def get_balance(owner_id: str) -> WalletBalance:
    user = get_or_create_user(owner_id)
    return WalletBalance(owner_id=user.user_id, coin_balance=user.coin_balance)


def top_up(owner_id: str, amount: int) -> WalletBalance:
    """Credit `amount` coins to the owner, provisioning them if needed."""
    if amount < 1 or amount > settings.TOP_UP_MAX_AMOUNT:
        raise ValidationError(f"Amount must be between 1 and {settings.TOP_UP_MAX_AMOUNT}")

    with get_db_session() as session:
        user = get_or_create_user(owner_id, session=session)
        session.execute(
            update(app_users)
            .where(app_users.c.user_id == user.user_id)
            .values(coin_balance=app_users.c.coin_balance + amount)
        )
        balance = session.execute(
            select(app_users.c.coin_balance).where(app_users.c.user_id == user.user_id)
        ).scalar_one()

    log_event(
        "info",
        "wallet.top_up",
        user_id=user.user_id,
        event_type="wallet.top_up",
        extra={"amount": amount, "coin_balance": balance},
    )
    return WalletBalance(owner_id=user.user_id, coin_balance=int(balance))
