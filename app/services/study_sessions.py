"""
Study Session Scorer

Scores finished flashcard and quiz runs, persists them, and aggregates the
statistics shown on the dashboard (average score, weak modules, streak).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, date, timedelta
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.models import Module, StudySession, StudyProgress
from app.services.activity_log import log_activity, ACTION_STUDY_SESSION
from app.services.errors import ValidationError, NotFound, PersistenceError

logger = logging.getLogger(__name__)

SESSION_TYPES = ("flashcards", "questions")
WEAK_MODULE_LIMIT = 5


@dataclass
class AnsweredItem:
    """One item shown during a session. is_correct is None until the answer is final."""
    item_id: str
    is_correct: Optional[bool]


@dataclass
class SessionScore:
    score: int
    correct_count: int
    incorrect_count: int


def finalize_session(answered_items: Iterable[AnsweredItem]) -> SessionScore:
    """
    Score a finished session from its finalized answers.

    score = round(100 * correct / total); a session with no finalized answers
    scores 0.
    """
    finalized = [item for item in answered_items if item.is_correct is not None]
    correct = sum(1 for item in finalized if item.is_correct)
    incorrect = len(finalized) - correct
    total = correct + incorrect

    score = round(100 * correct / total) if total else 0

    return SessionScore(score=score, correct_count=correct, incorrect_count=incorrect)


def persist_session(
    db: Session,
    user_id: str,
    session_type: str,
    answered_items: List[AnsweredItem],
    module_id: Optional[str] = None,
    duration_seconds: Optional[int] = None
) -> StudySession:
    """
    Save a finished session and one progress row per finalized answer.

    Progress rows are written independently; a row that fails to insert is
    logged and skipped without losing the session.

    Raises:
        ValidationError: unknown session type or negative duration
        NotFound: module_id given but not owned by the user
        PersistenceError: the session row itself could not be saved
    """
    if session_type not in SESSION_TYPES:
        raise ValidationError(f"session_type must be one of: {', '.join(SESSION_TYPES)}")
    if duration_seconds is not None and duration_seconds < 0:
        raise ValidationError("duration_seconds must be non-negative")

    if module_id:
        owned = db.query(Module.id).filter(
            Module.id == module_id,
            Module.user_id == user_id
        ).first()
        if not owned:
            raise NotFound("Module not found")

    result = finalize_session(answered_items)

    session = StudySession(
        user_id=user_id,
        module_id=module_id,
        session_type=session_type,
        duration_seconds=duration_seconds,
        score=result.score,
        correct_count=result.correct_count,
        incorrect_count=result.incorrect_count,
    )
    try:
        db.add(session)
        db.commit()
        db.refresh(session)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to save study session: {e}") from e

    saved = 0
    for item in answered_items:
        if item.is_correct is None:
            continue
        try:
            with db.begin_nested():
                db.add(StudyProgress(
                    user_id=user_id,
                    session_id=session.id,
                    item_id=item.item_id,
                    session_type=session_type,
                    is_correct=item.is_correct,
                ))
            saved += 1
        except SQLAlchemyError as e:
            logger.error(f"Failed to save progress for item {item.item_id} in session {session.id}: {e}")

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to commit progress rows for session {session.id}: {e}")

    logger.info(
        f"Saved {session_type} session {session.id} for user {user_id}: "
        f"score={result.score} ({saved} progress rows)"
    )

    log_activity(
        db, user_id, ACTION_STUDY_SESSION,
        resource_id=session.id,
        resource_type="study_session",
        status="success",
        details={
            "session_type": session_type,
            "score": result.score,
            "correct_count": result.correct_count,
            "incorrect_count": result.incorrect_count,
        }
    )

    return session


# ============================================================================
# STATISTICS
# ============================================================================

def calculate_streak(study_days: Iterable[date], today: Optional[date] = None) -> int:
    """
    Consecutive study days ending today, or yesterday if nothing yet today.
    """
    days = set(study_days)
    today = today or datetime.utcnow().date()

    if today in days:
        current = today
    elif today - timedelta(days=1) in days:
        current = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while current in days:
        streak += 1
        current -= timedelta(days=1)

    return streak


def get_weak_modules(db: Session, user_id: str, limit: int = WEAK_MODULE_LIMIT) -> List[Dict[str, Any]]:
    """Modules with the lowest average session score, weakest first."""
    avg_score = func.avg(StudySession.score)
    rows = db.query(
        Module.id,
        Module.title,
        avg_score.label("average_score"),
        func.count(StudySession.id).label("session_count")
    ).join(
        StudySession, StudySession.module_id == Module.id
    ).filter(
        StudySession.user_id == user_id,
        Module.user_id == user_id,
        StudySession.score.isnot(None)
    ).group_by(
        Module.id, Module.title
    ).order_by(avg_score.asc()).limit(limit).all()

    return [
        {
            "module_id": row.id,
            "title": row.title,
            "average_score": round(float(row.average_score)),
            "session_count": row.session_count,
        }
        for row in rows
    ]


def get_study_stats(db: Session, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Dashboard statistics for a user.

    Returns:
        Dict with total_sessions, average_score, weak_modules and streak_days
    """
    total_sessions, average = db.query(
        func.count(StudySession.id),
        func.avg(StudySession.score)
    ).filter(StudySession.user_id == user_id).one()

    started = db.query(StudySession.started_at).filter(
        StudySession.user_id == user_id
    ).all()
    study_days = [row.started_at.date() for row in started if row.started_at]

    return {
        "total_sessions": total_sessions or 0,
        "average_score": round(float(average)) if average is not None else 0,
        "weak_modules": get_weak_modules(db, user_id),
        "streak_days": calculate_streak(study_days, today),
    }
