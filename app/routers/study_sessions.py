"""
Study Sessions Router

Records finished flashcard and quiz sessions and serves dashboard statistics.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from app.database import get_db
from app.models.models import User
from app.dependencies.auth import get_current_user
from app.services.study_sessions import AnsweredItem, persist_session, get_study_stats

router = APIRouter(prefix="/api/study-sessions", tags=["study-sessions"])


# ============================================================================
# Request/Response Models
# ============================================================================

class AnsweredItemRequest(BaseModel):
    item_id: str
    is_correct: Optional[bool] = Field(None, description="Null for items shown but not answered")


class StudySessionRequest(BaseModel):
    session_type: str = Field(..., description="flashcards or questions")
    module_id: Optional[str] = None
    duration_seconds: Optional[int] = None
    answers: List[AnsweredItemRequest] = Field(default_factory=list)


class StudySessionResponse(BaseModel):
    id: str
    session_type: str
    module_id: Optional[str]
    score: int
    correct_count: int
    incorrect_count: int
    duration_seconds: Optional[int]


# ============================================================================
# Endpoints
# ============================================================================

@router.post("", response_model=StudySessionResponse)
def record_session(
    request: StudySessionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Score and save a finished session."""
    session = persist_session(
        db,
        user_id=current_user.id,
        session_type=request.session_type,
        answered_items=[AnsweredItem(a.item_id, a.is_correct) for a in request.answers],
        module_id=request.module_id,
        duration_seconds=request.duration_seconds
    )

    return StudySessionResponse(
        id=session.id,
        session_type=session.session_type,
        module_id=session.module_id,
        score=session.score,
        correct_count=session.correct_count,
        incorrect_count=session.incorrect_count,
        duration_seconds=session.duration_seconds
    )


@router.get("/stats")
def study_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Total sessions, average score, weakest modules and study streak."""
    return get_study_stats(db, current_user.id)
