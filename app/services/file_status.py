"""
File processing state machine.

    pending ──► processing ──► completed
                   │
                   └────────► failed ──► processing (manual retry)

transition() is the only writer of UploadedFile.processing_status. It issues a
conditional UPDATE (compare-and-swap on the current status), so two concurrent
runs for one file cannot both enter processing.
"""

import logging
from enum import Enum
from datetime import datetime, timedelta
from typing import Optional, Dict, FrozenSet

from sqlalchemy.orm import Session

from app.models.models import UploadedFile

logger = logging.getLogger(__name__)


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# target status -> statuses it may be entered from
TRANSITIONS: Dict[FileStatus, FrozenSet[FileStatus]] = {
    FileStatus.PROCESSING: frozenset({FileStatus.PENDING, FileStatus.FAILED}),
    FileStatus.COMPLETED: frozenset({FileStatus.PROCESSING}),
    FileStatus.FAILED: frozenset({FileStatus.PROCESSING}),
}


def can_transition(current: FileStatus, target: FileStatus) -> bool:
    return current in TRANSITIONS.get(target, frozenset())


def transition(
    db: Session,
    file_id: str,
    target: FileStatus,
    error_message: Optional[str] = None,
    commit: bool = True,
    user_id: Optional[str] = None
) -> bool:
    """
    Move a file into `target` if its current status allows it.

    Returns True if the row was updated, False if the file was not in one of
    the allowed source statuses (or does not exist).
    """
    sources = [s for s in FileStatus if can_transition(s, target)]
    if not sources:
        raise ValueError(f"{target.value} cannot be entered through a transition")

    values = {
        UploadedFile.processing_status: target.value,
        UploadedFile.updated_at: datetime.utcnow(),
    }
    if target == FileStatus.PROCESSING:
        values[UploadedFile.error_message] = None
    elif target == FileStatus.COMPLETED:
        values[UploadedFile.processed_at] = datetime.utcnow()
    elif target == FileStatus.FAILED:
        values[UploadedFile.error_message] = (error_message or "")[:2000]

    query = db.query(UploadedFile).filter(
        UploadedFile.id == file_id,
        UploadedFile.processing_status.in_([s.value for s in sources])
    )
    if user_id is not None:
        query = query.filter(UploadedFile.user_id == user_id)

    updated = query.update(values, synchronize_session="fetch")

    if commit:
        db.commit()

    if updated:
        logger.info("File %s -> %s", file_id, target.value)
    else:
        logger.debug("File %s not eligible for %s", file_id, target.value)

    return updated == 1


def reconcile_stuck_files(db: Session, older_than: timedelta = timedelta(minutes=30)) -> int:
    """
    Fail files left in processing by a crashed run.

    Returns the number of files moved to failed.
    """
    cutoff = datetime.utcnow() - older_than

    stuck = db.query(UploadedFile.id).filter(
        UploadedFile.processing_status == FileStatus.PROCESSING.value,
        UploadedFile.updated_at < cutoff
    ).all()

    count = 0
    for (file_id,) in stuck:
        if transition(
            db, file_id, FileStatus.FAILED,
            error_message="Processing timed out; retry the file.",
            commit=False
        ):
            count += 1

    db.commit()

    if count:
        logger.warning("Reconciled %d file(s) stuck in processing", count)

    return count
