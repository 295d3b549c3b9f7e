"""
Usage Router

Monthly quota usage for the current user.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Dict, Any

from app.database import get_db
from app.models.models import User
from app.dependencies.auth import get_current_user
from app.services.quota_ledger import get_usage_summary

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("")
def usage_summary(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Get used, limit and remaining for uploads, generations and storage.

    Unlimited resources report limit and remaining as -1.
    """
    return get_usage_summary(db, current_user.id)
