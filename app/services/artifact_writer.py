"""
Persistence writer for generated study materials.

write_artifacts() adds one batch per collection to the caller's session and
flushes; it never commits. The orchestrator owns the transaction so artifact
rows, the completed status and the quota increment land together.
"""

import json
import logging
from typing import Dict, Any, List

from sqlalchemy.orm import Session

from app.models.models import UploadedFile, Flashcard, McqQuestion, EssayPrompt
from app.services.material_generator import GeneratedArtifactBatch

logger = logging.getLogger(__name__)


def encode_mcq_options(choices: List[str], correct_index: int, explanation: str) -> str:
    return json.dumps({
        "choices": choices,
        "correct_index": correct_index,
        "explanation": explanation,
    })


def decode_mcq_options(raw: str) -> Dict[str, Any]:
    """Decode McqQuestion.options, tolerating legacy or corrupt rows."""
    try:
        data = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, TypeError):
        logger.warning("Could not decode MCQ options payload")
        data = {}
    if not isinstance(data, dict):
        data = {}
    return {
        "choices": data.get("choices", []),
        "correct_index": data.get("correct_index"),
        "explanation": data.get("explanation", ""),
    }


def encode_argument_framework(
    thesis_suggestion: str,
    key_arguments: List[str],
    counter_arguments: List[str],
    evidence_points: List[str]
) -> str:
    return json.dumps({
        "thesis_suggestion": thesis_suggestion,
        "key_arguments": key_arguments,
        "counter_arguments": counter_arguments,
        "evidence_points": evidence_points,
    })


def decode_argument_framework(raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, TypeError):
        logger.warning("Could not decode essay argument framework payload")
        data = {}
    if not isinstance(data, dict):
        data = {}
    return {
        "thesis_suggestion": data.get("thesis_suggestion", ""),
        "key_arguments": data.get("key_arguments", []),
        "counter_arguments": data.get("counter_arguments", []),
        "evidence_points": data.get("evidence_points", []),
    }


def write_artifacts(db: Session, file: UploadedFile, batch: GeneratedArtifactBatch) -> Dict[str, int]:
    """
    Stage all artifact rows for a file in the current transaction.

    Args:
        db: Session whose transaction the caller commits or rolls back
        file: Source file; supplies file_id, module_id and user_id
        batch: Validated artifact batch

    Returns:
        Counts per collection
    """
    owner = {"file_id": file.id, "module_id": file.module_id, "user_id": file.user_id}

    db.add_all([
        Flashcard(
            question=card.question,
            answer=card.answer,
            source_reference=card.source_reference or None,
            **owner
        )
        for card in batch.flashcards
    ])

    db.add_all([
        McqQuestion(
            question=mcq.question,
            options=encode_mcq_options(mcq.options, mcq.correct_option_index, mcq.explanation),
            source_reference=mcq.source_reference or None,
            **owner
        )
        for mcq in batch.mcq_questions
    ])

    db.add_all([
        EssayPrompt(
            prompt=essay.prompt,
            argument_framework=encode_argument_framework(
                essay.thesis_suggestion,
                essay.key_arguments,
                essay.counter_arguments,
                essay.evidence_points
            ),
            source_reference=essay.source_reference or None,
            **owner
        )
        for essay in batch.essay_prompts
    ])

    db.flush()

    return {
        "flashcards_count": len(batch.flashcards),
        "mcq_count": len(batch.mcq_questions),
        "essays_count": len(batch.essay_prompts),
    }


def count_artifacts(db: Session, file_id: str) -> Dict[str, int]:
    return {
        "flashcards_count": db.query(Flashcard).filter(Flashcard.file_id == file_id).count(),
        "mcq_count": db.query(McqQuestion).filter(McqQuestion.file_id == file_id).count(),
        "essays_count": db.query(EssayPrompt).filter(EssayPrompt.file_id == file_id).count(),
    }


def get_file_materials(db: Session, file_id: str) -> Dict[str, List[Dict[str, Any]]]:
    """Read back a file's artifacts with their JSON columns decoded."""
    flashcards = db.query(Flashcard).filter(
        Flashcard.file_id == file_id
    ).order_by(Flashcard.created_at).all()
    mcqs = db.query(McqQuestion).filter(
        McqQuestion.file_id == file_id
    ).order_by(McqQuestion.created_at).all()
    essays = db.query(EssayPrompt).filter(
        EssayPrompt.file_id == file_id
    ).order_by(EssayPrompt.created_at).all()

    return {
        "flashcards": [
            {
                "id": f.id,
                "question": f.question,
                "answer": f.answer,
                "source_reference": f.source_reference,
            }
            for f in flashcards
        ],
        "mcq_questions": [
            {
                "id": q.id,
                "question": q.question,
                "source_reference": q.source_reference,
                **decode_mcq_options(q.options),
            }
            for q in mcqs
        ],
        "essay_prompts": [
            {
                "id": e.id,
                "prompt": e.prompt,
                "source_reference": e.source_reference,
                **decode_argument_framework(e.argument_framework),
            }
            for e in essays
        ],
    }
