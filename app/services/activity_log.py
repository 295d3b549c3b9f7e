"""
Append-only activity log.

Entries feed the dashboard and friend activity views. Writing one is never
allowed to fail the operation that produced it: errors are logged and the
session is rolled back.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.models import ActivityLog

logger = logging.getLogger(__name__)

ACTION_GENERATE_MATERIALS = "generate_materials"
ACTION_SUBMIT_ESSAY = "submit_essay"
ACTION_STUDY_SESSION = "study_session"
ACTION_UPLOAD_FILE = "upload_file"
ACTION_DELETE_FILE = "delete_file"


def log_activity(
    db: Session,
    user_id: str,
    action: str,
    resource_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    status: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Append one activity entry and commit it.

    Returns:
        True if the entry was written
    """
    try:
        db.add(ActivityLog(
            user_id=user_id,
            action=action,
            resource_id=resource_id,
            resource_type=resource_type,
            status=status,
            details=details,
        ))
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to write activity entry {action} for user {user_id}: {e}")
        return False
