"""
Quota Ledger

Tracks per-user monthly consumption (uploads, generations, storage bytes)
against the limits of the user's subscription tier.

The ledger does not deduplicate: callers guarantee a single consume() per
billable event.
"""

import logging
from typing import Dict, Any, Union
from datetime import datetime
from sqlalchemy import case
from sqlalchemy.orm import Session

from app.models.models import Subscription, UsageCounters
from app.services.errors import QuotaExceeded

logger = logging.getLogger(__name__)


# =============================================================================
# TIER CONFIGURATION
# =============================================================================

UNLIMITED = float('inf')

MB = 1024 * 1024
GB = 1024 * MB

TIER_LIMITS = {
    "free": {
        "uploads": 5,
        "generations": 15,
        "storage": 100 * MB,
    },
    "pro": {
        "uploads": 30,
        "generations": 100,
        "storage": 2 * GB,
    },
    "unlimited": {
        "uploads": UNLIMITED,
        "generations": UNLIMITED,
        "storage": 10 * GB,
    },
}

# Resource name -> UsageCounters column
RESOURCE_COLUMNS = {
    "uploads": "monthly_uploads_used",
    "generations": "monthly_generations_used",
    "storage": "storage_used_bytes",
}


def get_tier_limits(tier: str) -> Dict[str, float]:
    """Get limits for a tier. Unknown tiers get the free limits."""
    return TIER_LIMITS.get(tier, TIER_LIMITS["free"])


def _column_for(resource: str):
    column_name = RESOURCE_COLUMNS.get(resource)
    if column_name is None:
        raise ValueError(f"Unknown quota resource: {resource}")
    return getattr(UsageCounters, column_name)


# =============================================================================
# TIER & COUNTERS
# =============================================================================

def get_user_tier(db: Session, user_id: str) -> str:
    """Get user's current subscription tier."""
    subscription = db.query(Subscription).filter(
        Subscription.user_id == user_id
    ).first()

    if not subscription:
        return "free"

    # Expired paid plans read as free
    if subscription.expires_at and subscription.expires_at < datetime.utcnow():
        return "free"

    return subscription.tier


def get_or_create_usage(db: Session, user_id: str, commit: bool = True) -> UsageCounters:
    """
    Get user's usage counters, creating a zeroed row if none exists.

    With commit=False a new row is only flushed into the caller's transaction.
    """
    usage = db.query(UsageCounters).filter(
        UsageCounters.user_id == user_id
    ).first()

    if not usage:
        usage = UsageCounters(
            user_id=user_id,
            monthly_uploads_used=0,
            monthly_generations_used=0,
            storage_used_bytes=0,
            period_start=datetime.utcnow()
        )
        db.add(usage)
        if commit:
            db.commit()
            db.refresh(usage)
        else:
            db.flush()

    return usage


def get_used(db: Session, user_id: str, resource: str) -> int:
    usage = get_or_create_usage(db, user_id)
    return getattr(usage, RESOURCE_COLUMNS[resource]) or 0


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def remaining(db: Session, user_id: str, resource: str) -> Union[int, float]:
    """
    Remaining allowance for a resource this month.

    Returns float('inf') when the tier limit is unlimited, otherwise
    max(0, limit - used).
    """
    _column_for(resource)
    limit = get_tier_limits(get_user_tier(db, user_id))[resource]

    if limit == UNLIMITED:
        return UNLIMITED

    return max(0, limit - get_used(db, user_id, resource))


def can_consume(db: Session, user_id: str, resource: str, amount: int = 1) -> bool:
    """Check whether `amount` more units of a resource fit within the limit."""
    return remaining(db, user_id, resource) >= amount


def require(db: Session, user_id: str, resource: str, amount: int = 1) -> None:
    """Raise QuotaExceeded if the resource cannot be consumed."""
    if can_consume(db, user_id, resource, amount):
        return

    limit = get_tier_limits(get_user_tier(db, user_id))[resource]
    used = get_used(db, user_id, resource)
    logger.info(
        "Quota exceeded for user=%s resource=%s used=%s limit=%s",
        user_id, resource, used, limit
    )
    raise QuotaExceeded(resource, limit, used)


def consume(db: Session, user_id: str, resource: str, amount: int = 1, commit: bool = True) -> None:
    """
    Increment a usage counter with a single atomic UPDATE.

    Pass commit=False to fold the increment into the caller's transaction.
    """
    if amount < 0:
        raise ValueError("Quota consumption must be non-negative")

    column = _column_for(resource)
    get_or_create_usage(db, user_id, commit=commit)

    db.query(UsageCounters).filter(
        UsageCounters.user_id == user_id
    ).update(
        {column: column + amount, UsageCounters.updated_at: datetime.utcnow()},
        synchronize_session="fetch"
    )

    if commit:
        db.commit()


def release(db: Session, user_id: str, resource: str, amount: int, commit: bool = True) -> None:
    """
    Give back a standing allowance (storage bytes of a deleted file).

    Atomic like consume(); the counter is floored at zero.
    """
    if amount < 0:
        raise ValueError("Quota release must be non-negative")

    column = _column_for(resource)

    db.query(UsageCounters).filter(
        UsageCounters.user_id == user_id
    ).update(
        {
            column: case((column >= amount, column - amount), else_=0),
            UsageCounters.updated_at: datetime.utcnow(),
        },
        synchronize_session="fetch"
    )

    if commit:
        db.commit()


# =============================================================================
# USAGE SUMMARY
# =============================================================================

def get_usage_summary(db: Session, user_id: str) -> Dict[str, Any]:
    """Get user's used/limit/remaining per resource for this month."""
    tier = get_user_tier(db, user_id)
    limits = get_tier_limits(tier)
    usage = get_or_create_usage(db, user_id)

    summary: Dict[str, Any] = {"tier": tier}
    for resource, column_name in RESOURCE_COLUMNS.items():
        limit = limits[resource]
        used = getattr(usage, column_name) or 0
        unlimited = limit == UNLIMITED
        summary[resource] = {
            "used": used,
            "limit": -1 if unlimited else int(limit),
            "remaining": -1 if unlimited else max(0, int(limit) - used),
            "unlimited": unlimited,
        }

    return summary
