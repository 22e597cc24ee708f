"""
User domain service.
- get_or_create_user(user_id): owner auto-provisioning (the only place users are created implicitly)
- get_user(user_id)
- update_profile(user_id, login, email)

Auto-provisioning trusts a client-supplied id and creates the row on first
reference. It stands in for a real identity system; do not rely on it for
authorization.
"""

import re
from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from petmemorial.core.config import settings
from petmemorial.core.database import get_db_session, users as app_users
from petmemorial.core.errors import ConflictError, ValidationError
from petmemorial.core.logging import log_event
from petmemorial.core.timeutils import as_utc, utc_now
from petmemorial.models.user import User


def synthesize_email(user_id: str) -> str:
    """Placeholder email for an auto-provisioned owner.

    Ids that already look like an email are used verbatim.
    """
    safe_id = user_id.strip()
    if "@" in safe_id:
        return safe_id
    placeholder = re.sub(r"\s+", "_", safe_id)
    return f"{placeholder}@{settings.PLACEHOLDER_EMAIL_DOMAIN}"


def _row_to_user(row) -> User:
    return User(
        user_id=row.user_id,
        email=row.email,
        login=row.login,
        coin_balance=int(row.coin_balance or 0),
        created_at=as_utc(row.created_at),
    )


def _select_user(session: Session, user_id: str):
    return session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()


def _get_or_create(session: Session, user_id: str) -> User:
    safe_id = (user_id or "").strip()
    if not safe_id:
        raise ValidationError("User id must not be blank")

    row = _select_user(session, safe_id)
    if row:
        return _row_to_user(row)

    now = utc_now()
    email = synthesize_email(safe_id)
    try:
        with session.begin_nested():
            session.execute(
                insert(app_users).values(
                    user_id=safe_id,
                    email=email,
                    coin_balance=0,
                    created_at=now,
                )
            )
    except IntegrityError:
        # Lost a race on the primary key, or the synthesized email collides
        row = _select_user(session, safe_id)
        if row:
            return _row_to_user(row)
        raise ConflictError(f"Email {email} is already used by another account", code="email_taken")

    log_event("info", "user.provisioned", user_id=safe_id, event_type="user.provisioned")
    return User(user_id=safe_id, email=email, login=None, coin_balance=0, created_at=now)


def get_or_create_user(user_id: str, session: Optional[Session] = None) -> User:
    """Return the user with this id, creating it if absent.

    Side effect: may insert a row. With `session` the insert joins the
    caller's transaction and is rolled back with it.
    """
    if session is not None:
        return _get_or_create(session, user_id)
    with get_db_session() as own_session:
        return _get_or_create(own_session, user_id)


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = _select_user(session, user_id.strip())
        if not row:
            return None
        return _row_to_user(row)


def update_profile(user_id: str, *, login: Optional[str] = None, email: Optional[str] = None) -> User:
    with get_db_session() as session:
        user = _get_or_create(session, user_id)
        values = {}

        if login:
            login = login.strip().lower()
            taken = session.execute(
                select(app_users.c.user_id).where(
                    app_users.c.login == login,
                    app_users.c.user_id != user.user_id,
                )
            ).first()
            if taken:
                raise ConflictError("Login is already taken", code="login_taken")
            values["login"] = login

        if email:
            email = email.strip().lower()
            taken = session.execute(
                select(app_users.c.user_id).where(
                    app_users.c.email == email,
                    app_users.c.user_id != user.user_id,
                )
            ).first()
            if taken:
                raise ConflictError("Email is already in use", code="email_taken")
            values["email"] = email

        if values:
            session.execute(
                update(app_users).where(app_users.c.user_id == user.user_id).values(**values)
            )
            log_event("info", "user.updated", user_id=user.user_id, extra={"fields": sorted(values)})

        return _row_to_user(_select_user(session, user.user_id))
