"""
Essay feedback: grade a student essay against one of their generated essay
prompts on the UK university scale.
"""

import os
import json
import logging
from typing import Dict, Any

from sqlalchemy.orm import Session

from app.models.models import EssayPrompt
from app.services.activity_log import log_activity, ACTION_SUBMIT_ESSAY
from app.services.artifact_writer import decode_argument_framework
from app.services.errors import ValidationError, NotFound, GenerationFormatError
from app.services.llm_service import llm_service

logger = logging.getLogger(__name__)

MIN_ESSAY_CHARS = 100
FEEDBACK_MAX_TOKENS = int(os.getenv("FEEDBACK_MAX_TOKENS", "3000"))

GRADE_BANDS = ("First", "2:1", "2:2", "Third")

SYSTEM_PROMPT = (
    "You are an expert academic essay evaluator. Provide detailed feedback on essays "
    "with constructive criticism and specific improvement suggestions. "
    "Always respond with valid JSON only, no markdown."
)

FEEDBACK_SCHEMA = """{
  "structure_analysis": "analysis of essay structure and organization",
  "argumentation_analysis": "analysis of arguments, logic, and reasoning",
  "strengths": ["strength 1", "strength 2", "strength 3"],
  "weaknesses": ["weakness 1", "weakness 2", "weakness 3"],
  "improvement_suggestions": ["suggestion 1", "suggestion 2", "suggestion 3"],
  "grade_estimate": "First|2:1|2:2|Third",
  "overall_feedback": "overall feedback summary"
}"""

TEXT_FIELDS = ("structure_analysis", "argumentation_analysis", "overall_feedback")
LIST_FIELDS = ("strengths", "weaknesses", "improvement_suggestions")


def build_feedback_prompt(prompt: EssayPrompt, essay_text: str) -> str:
    framework = decode_argument_framework(prompt.argument_framework)

    context = [f"Essay Prompt:\n{prompt.prompt}"]
    if framework["thesis_suggestion"]:
        context.append(f"Thesis Suggestion: {framework['thesis_suggestion']}")
    if framework["key_arguments"]:
        context.append(f"Key Arguments to Consider: {', '.join(framework['key_arguments'])}")
    if framework["counter_arguments"]:
        context.append(f"Counter-Arguments to Address: {', '.join(framework['counter_arguments'])}")
    if framework["evidence_points"]:
        context.append(f"Evidence Points Available: {', '.join(framework['evidence_points'])}")

    joined_context = "\n\n".join(context)

    return f"""Analyze this student essay and provide feedback in the following JSON format (with no markdown, just raw JSON):

{FEEDBACK_SCHEMA}

{joined_context}

Student Essay:
{essay_text}

Grade on the UK university scale (First = 70-100%, 2:1 = 60-69%, 2:2 = 50-59%, Third = 40-49%)."""


def parse_feedback(raw: str) -> Dict[str, Any]:
    """
    Parse and validate the model's feedback JSON.

    Raises:
        GenerationFormatError: not a JSON object, a field missing or mistyped,
            or grade_estimate outside the UK bands
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise GenerationFormatError(f"Feedback response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerationFormatError("Feedback response must be a JSON object")

    for key in TEXT_FIELDS:
        if not isinstance(data.get(key), str) or not data[key].strip():
            raise GenerationFormatError(f"Feedback '{key}' must be a non-empty string")

    for key in LIST_FIELDS:
        value = data.get(key)
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise GenerationFormatError(f"Feedback '{key}' must be a list of strings")

    if data.get("grade_estimate") not in GRADE_BANDS:
        raise GenerationFormatError(
            f"Feedback grade_estimate must be one of {', '.join(GRADE_BANDS)}"
        )

    return {key: data[key] for key in TEXT_FIELDS + LIST_FIELDS + ("grade_estimate",)}


async def generate_essay_feedback(
    db: Session,
    user_id: str,
    prompt_id: str,
    essay_text: str
) -> Dict[str, Any]:
    """
    Produce structured feedback for an essay written against a stored prompt.

    Raises:
        ValidationError: essay shorter than MIN_ESSAY_CHARS after trimming
        NotFound: prompt absent or owned by someone else
        GenerationServiceError: upstream failure
        GenerationFormatError: malformed feedback
    """
    essay_text = (essay_text or "").strip()
    if len(essay_text) < MIN_ESSAY_CHARS:
        raise ValidationError(f"Essay must be at least {MIN_ESSAY_CHARS} characters long")

    prompt = db.query(EssayPrompt).filter(
        EssayPrompt.id == prompt_id,
        EssayPrompt.user_id == user_id
    ).first()
    if not prompt:
        raise NotFound("Essay prompt not found")

    raw = await llm_service.complete(
        SYSTEM_PROMPT,
        build_feedback_prompt(prompt, essay_text),
        max_tokens=FEEDBACK_MAX_TOKENS
    )
    feedback = parse_feedback(raw)

    logger.info(f"Essay feedback for prompt {prompt_id}: grade {feedback['grade_estimate']}")

    log_activity(
        db, user_id, ACTION_SUBMIT_ESSAY,
        resource_id=prompt_id,
        resource_type="essay_prompt",
        status="success",
        details={"grade_estimate": feedback["grade_estimate"]}
    )

    return feedback
