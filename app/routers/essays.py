"""
Essay Feedback Router
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, Dict, Any

from app.database import get_db
from app.models.models import User
from app.dependencies.auth import get_current_user
from app.services.errors import ValidationError
from app.services.essay_feedback import generate_essay_feedback

router = APIRouter(prefix="/api", tags=["essays"])


class EssayFeedbackRequest(BaseModel):
    essayText: Optional[str] = None
    promptId: Optional[str] = None


@router.post("/essay-feedback")
async def essay_feedback(
    request: EssayFeedbackRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Grade an essay written against one of the user's essay prompts.

    Returns structure and argumentation analysis, strengths, weaknesses,
    suggestions and a UK grade estimate (First, 2:1, 2:2, Third).
    """
    if not request.essayText or not request.promptId:
        raise ValidationError("Missing required fields")

    feedback = await generate_essay_feedback(
        db, current_user.id, request.promptId, request.essayText
    )

    return {
        "success": True,
        "message": "Feedback generated successfully",
        "data": {"feedback": feedback},
    }
