"""
nextstep/features/entitlements/service.py

Entitlement tracker: per-user plan and daily usage quota.

Handles:
- Status reporting with lazy daily reset (no midnight job; stale counters
  read as zero and are only rewritten on the next increment)
- Admission check + usage increment for rate-limited operations
- Plan/status writes on behalf of the Stripe plan synchronizer

The default admission path reads, decides, then writes. Two concurrent
calls for the same FREE user can both see remaining > 0 and both
increment, overshooting the limit by one. check_and_increment_atomic folds
the reset-or-increment-with-ceiling into a single conditional UPDATE.
"""

from datetime import datetime, time, timezone
from typing import Optional
import logging

from sqlalchemy import select, insert, update, and_, or_, case
from sqlalchemy.exc import IntegrityError

from nextstep.core.config import settings
from nextstep.core.database import as_utc, get_db_session, entitlements
from nextstep.core.errors import QuotaExceededError
from nextstep.core.logging import log_event
from nextstep.models.entitlement import (
    Entitlement,
    EntitlementState,
    EntitlementStatus,
    Plan,
    UNLIMITED,
)


logger = logging.getLogger("nextstep")

FREE_DAILY_LIMIT = 5

QUOTA_EXCEEDED_MESSAGE = (
    f"You have reached your daily limit of {FREE_DAILY_LIMIT} actions. "
    "Please upgrade to Pro for unlimited access."
)


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    # Stored timestamps are UTC; SQLite drops the offset on write
    return now.astimezone(timezone.utc)


def local_day(moment: datetime):
    """Server-local calendar date of a timestamp."""
    return as_utc(moment).astimezone().date()


def local_day_start(now: datetime) -> datetime:
    """Start of the server-local day containing `now`, expressed in UTC."""
    local_now = _normalize_now(now).astimezone()
    midnight = datetime.combine(local_now.date(), time.min, tzinfo=local_now.tzinfo)
    return midnight.astimezone(timezone.utc)


def _is_today(last_usage: Optional[datetime], now: datetime) -> bool:
    return last_usage is not None and local_day(last_usage) == local_day(now)


def _row_to_entitlement(row) -> Entitlement:
    return Entitlement(
        user_id=row.user_id,
        plan=Plan(row.plan),
        status=EntitlementState(row.status),
        usage_count=row.usage_count,
        last_usage_date=as_utc(row.last_usage_date),
        period_end=as_utc(row.period_end),
    )


def get_entitlement(user_id: str) -> Optional[Entitlement]:
    """Stored entitlement row as-is (no lazy reset applied)."""
    with get_db_session() as session:
        row = session.execute(
            select(entitlements).where(entitlements.c.user_id == user_id)
        ).first()
        return _row_to_entitlement(row) if row else None


def _get_or_create_entitlement(user_id: str) -> Entitlement:
    existing = get_entitlement(user_id)
    if existing:
        return existing

    try:
        with get_db_session() as session:
            session.execute(
                insert(entitlements).values(
                    user_id=user_id,
                    plan=Plan.FREE.value,
                    status=EntitlementState.ACTIVE.value,
                    usage_count=0,
                    last_usage_date=None,
                )
            )
    except IntegrityError:
        # Another request created it first
        pass
    return get_entitlement(user_id)


def get_status(user_id: str, now: Optional[datetime] = None) -> EntitlementStatus:
    """
    Report {plan, usage_count, remaining, limit} for a user.

    Creates a FREE/ACTIVE entitlement if none exists. A counter from a
    previous day is reported as zero but not written back.
    """
    current = _normalize_now(now)
    ent = _get_or_create_entitlement(user_id)

    usage_count = ent.usage_count if _is_today(ent.last_usage_date, current) else 0

    if ent.plan == Plan.PRO:
        remaining = UNLIMITED
    else:
        remaining = max(0, FREE_DAILY_LIMIT - usage_count)

    return EntitlementStatus(
        plan=ent.plan,
        usage_count=usage_count,
        remaining=remaining,
        limit=FREE_DAILY_LIMIT,
    )


def check_and_increment(user_id: str, now: Optional[datetime] = None) -> bool:
    """
    Admission check for one rate-limited operation.

    PRO: always admitted; last_usage_date refreshed, counter untouched.
    FREE: denied without mutation when nothing remains today; otherwise
    the stored row is re-read and either reset to 1 (stale day) or
    incremented by 1.
    """
    current = _normalize_now(now)
    status = get_status(user_id, now=current)

    if status.plan == Plan.PRO:
        with get_db_session() as session:
            session.execute(
                update(entitlements)
                .where(entitlements.c.user_id == user_id)
                .values(last_usage_date=current)
            )
        return True

    if status.remaining <= 0:
        return False

    ent = get_entitlement(user_id)
    if ent is None:
        return False

    with get_db_session() as session:
        if not _is_today(ent.last_usage_date, current):
            session.execute(
                update(entitlements)
                .where(entitlements.c.user_id == user_id)
                .values(usage_count=1, last_usage_date=current)
            )
        else:
            session.execute(
                update(entitlements)
                .where(entitlements.c.user_id == user_id)
                .values(usage_count=entitlements.c.usage_count + 1, last_usage_date=current)
            )
    return True


def check_and_increment_atomic(user_id: str, now: Optional[datetime] = None) -> bool:
    """
    Admission check as one conditional UPDATE.

    Applies "reset to 1 if the stored day is stale, else increment if below
    the limit" and reports whether a row changed. PRO rows always match.
    """
    current = _normalize_now(now)
    day_start = local_day_start(current)
    _get_or_create_entitlement(user_id)

    stale = or_(
        entitlements.c.last_usage_date.is_(None),
        entitlements.c.last_usage_date < day_start,
    )
    with get_db_session() as session:
        result = session.execute(
            update(entitlements)
            .where(
                and_(
                    entitlements.c.user_id == user_id,
                    or_(
                        entitlements.c.plan == Plan.PRO.value,
                        stale,
                        entitlements.c.usage_count < FREE_DAILY_LIMIT,
                    ),
                )
            )
            .values(
                usage_count=case(
                    (entitlements.c.plan == Plan.PRO.value, entitlements.c.usage_count),
                    (stale, 1),
                    else_=entitlements.c.usage_count + 1,
                ),
                last_usage_date=current,
            )
        )
        return result.rowcount == 1


def admit_or_raise(user_id: str, now: Optional[datetime] = None) -> None:
    """Run the admission check; raise QuotaExceededError (403) when denied."""
    if settings.ATOMIC_ADMISSION:
        allowed = check_and_increment_atomic(user_id, now=now)
    else:
        allowed = check_and_increment(user_id, now=now)

    if not allowed:
        log_event(
            "info",
            "entitlement.quota_exceeded",
            user_id=user_id,
            error_code="quota_exceeded",
            extra={"limit": FREE_DAILY_LIMIT},
        )
        raise QuotaExceededError(QUOTA_EXCEEDED_MESSAGE)


def set_plan(
    user_id: str,
    plan: Plan,
    status: EntitlementState,
    period_end: Optional[datetime] = None,
) -> Entitlement:
    """
    Set plan/status/period_end (upsert). Usage fields are never touched.

    A set-to-value write, so replaying the same billing event converges.
    period_end is left as stored when not given.
    """
    values = {"plan": plan.value, "status": status.value}
    if period_end is not None:
        values["period_end"] = period_end
    with get_db_session() as session:
        result = session.execute(
            update(entitlements).where(entitlements.c.user_id == user_id).values(**values)
        )
        if result.rowcount == 0:
            session.execute(
                insert(entitlements).values(user_id=user_id, usage_count=0, **values)
            )
    logger.info(
        "entitlement.plan_set",
        extra={"user_id": user_id, "plan": plan.value, "entitlement_status": status.value},
    )
    return get_entitlement(user_id)
