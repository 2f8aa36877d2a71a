"""
User domain service.
- upsert_user(identity)
- get_user(user_id)
- find_user_by_email / find_user_by_customer_id
- set_stripe_customer_id(user_id, customer_id)
- fetch_clerk_profile(user_id)
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy import and_, select, insert, update, func

from nextstep.core.auth import Identity
from nextstep.core.config import settings
from nextstep.core.database import get_db_session, users as app_users

logger = logging.getLogger("nextstep")


def _row_to_user(row) -> dict:
    return {
        "user_id": row.user_id,
        "email": row.email,
        "display_name": row.display_name,
        "stripe_customer_id": row.stripe_customer_id,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def get_user(user_id: str) -> Optional[dict]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        return _row_to_user(row) if row else None


def find_user_by_email(email: Optional[str]) -> Optional[dict]:
    if not email:
        return None
    with get_db_session() as session:
        row = session.execute(
            select(app_users).where(func.lower(app_users.c.email) == email.strip().lower())
        ).first()
        return _row_to_user(row) if row else None


def find_user_by_customer_id(customer_id: Optional[str]) -> Optional[dict]:
    if not customer_id:
        return None
    with get_db_session() as session:
        row = session.execute(
            select(app_users).where(app_users.c.stripe_customer_id == customer_id)
        ).first()
        return _row_to_user(row) if row else None


def _release_email(session, email: str, owner_id: str, now: datetime) -> None:
    """
    Detach `email` from any other row so `owner_id` can claim it.

    Happens when a Clerk account is recreated under a new subject or a user
    switches to an address an older row still holds. The token is the
    current truth; the stale row keeps its id, plan and history.
    """
    result = session.execute(
        update(app_users)
        .where(
            and_(
                func.lower(app_users.c.email) == email.strip().lower(),
                app_users.c.user_id != owner_id,
            )
        )
        .values(email=None, updated_at=now)
    )
    if result.rowcount:
        logger.warning("user.email_reassigned", extra={"user_id": owner_id, "released_rows": result.rowcount})


def upsert_user(identity: Identity) -> dict:
    """Create the user on first sight, otherwise refresh email/display name from the profile."""
    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        if identity.email:
            _release_email(session, identity.email, identity.user_id, now)
        existing = session.execute(
            select(app_users.c.user_id).where(app_users.c.user_id == identity.user_id)
        ).first()
        if existing:
            changes = {"updated_at": now}
            if identity.email:
                changes["email"] = identity.email
            if identity.display_name:
                changes["display_name"] = identity.display_name
            session.execute(
                update(app_users).where(app_users.c.user_id == identity.user_id).values(**changes)
            )
        else:
            session.execute(
                insert(app_users).values(
                    user_id=identity.user_id,
                    email=identity.email,
                    display_name=identity.display_name,
                    created_at=now,
                    updated_at=now,
                )
            )
    return get_user(identity.user_id)


def ensure_user(user_id: str) -> None:
    """Insert a bare user row if missing (foreign-key anchor for webhook-driven writes)."""
    with get_db_session() as session:
        existing = session.execute(
            select(app_users.c.user_id).where(app_users.c.user_id == user_id)
        ).first()
        if not existing:
            now = datetime.now(timezone.utc)
            session.execute(insert(app_users).values(user_id=user_id, created_at=now, updated_at=now))


def set_stripe_customer_id(user_id: str, customer_id: str) -> None:
    with get_db_session() as session:
        session.execute(
            update(app_users)
            .where(app_users.c.user_id == user_id)
            .values(stripe_customer_id=customer_id, updated_at=datetime.now(timezone.utc))
        )


def fetch_clerk_profile(user_id: str) -> Optional[Identity]:
    """
    Load email and name from the Clerk Backend API.

    Only used when the session token carries no email. Returns None when
    CLERK_API_URL/CLERK_SECRET_KEY are not configured or the call fails.
    """
    if not settings.CLERK_API_URL or not settings.CLERK_SECRET_KEY:
        return None

    url = f"{settings.CLERK_API_URL.rstrip('/')}/users/{user_id}"
    try:
        response = httpx.get(
            url,
            headers={"Authorization": f"Bearer {settings.CLERK_SECRET_KEY}"},
            timeout=5.0,
        )
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch Clerk profile for {user_id}: {e}")
        return None

    email = None
    primary_id = data.get("primary_email_address_id")
    for address in data.get("email_addresses", []):
        if address.get("id") == primary_id or email is None:
            email = address.get("email_address")
    name = " ".join(p for p in [data.get("first_name"), data.get("last_name")] if p) or None
    return Identity(user_id=user_id, email=email, display_name=name)


def sync_user_from_identity(identity: Identity) -> dict:
    """Upsert the caller, enriching a token without email from the Clerk profile."""
    if not identity.email:
        profile = fetch_clerk_profile(identity.user_id)
        if profile:
            identity = Identity(
                user_id=identity.user_id,
                email=profile.email,
                display_name=identity.display_name or profile.display_name,
            )
    return upsert_user(identity)
