"""
Study Material Generator

Turns extracted course text into flashcards, multiple-choice questions and
essay prompts with one generative-model call.

The model is asked for raw JSON matching MATERIALS_SCHEMA. The response is
parsed strictly and the whole batch is validated before anything is returned;
a single malformed item rejects the batch.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from app.services.errors import GenerationFormatError
from app.services.llm_service import llm_service

logger = logging.getLogger(__name__)

FLASHCARD_COUNT = 10
MCQ_COUNT = 5
MCQ_OPTION_COUNT = 4
ESSAY_COUNT = 3

MAX_INPUT_CHARS = int(os.getenv("MAX_INPUT_CHARS", "100000"))
GENERATION_MAX_TOKENS = int(os.getenv("GENERATION_MAX_TOKENS", "4000"))


# ============================================================================
# ARTIFACT TYPES
# ============================================================================

@dataclass
class GeneratedFlashcard:
    question: str
    answer: str
    source_reference: str = ""


@dataclass
class GeneratedMcq:
    question: str
    options: List[str]
    correct_option_index: int
    explanation: str = ""
    source_reference: str = ""


@dataclass
class GeneratedEssayPrompt:
    prompt: str
    thesis_suggestion: str = ""
    key_arguments: List[str] = field(default_factory=list)
    counter_arguments: List[str] = field(default_factory=list)
    evidence_points: List[str] = field(default_factory=list)
    source_reference: str = ""


@dataclass
class GeneratedArtifactBatch:
    flashcards: List[GeneratedFlashcard]
    mcq_questions: List[GeneratedMcq]
    essay_prompts: List[GeneratedEssayPrompt]


# ============================================================================
# PROMPT CONTRACT
# ============================================================================

SYSTEM_PROMPT = (
    "You are a study material generator. Given educational content, generate "
    "study materials in valid JSON format. Always respond with valid JSON only."
)

MATERIALS_SCHEMA = """{
  "flashcards": [
    {
      "question": "string",
      "answer": "string",
      "source_reference": "page/slide number"
    }
  ],
  "mcq_questions": [
    {
      "question": "string",
      "options": ["option1", "option2", "option3", "option4"],
      "correct_option": 0,
      "explanation": "string",
      "source_reference": "page/slide number"
    }
  ],
  "essay_prompts": [
    {
      "prompt": "string",
      "thesis_suggestion": "string",
      "key_arguments": ["arg1", "arg2", "arg3"],
      "counter_arguments": ["counter1", "counter2"],
      "evidence_points": ["evidence1", "evidence2"],
      "source_reference": "page/slide number"
    }
  ]
}"""


def truncate_content(text: str, max_chars: Optional[int] = None) -> str:
    """Bound model input length (MAX_INPUT_CHARS by default)."""
    max_chars = max_chars or MAX_INPUT_CHARS
    if len(text) <= max_chars:
        return text
    logger.info(f"Truncating content from {len(text)} to {max_chars} chars")
    return text[:max_chars]


def build_generation_prompt(content: str) -> str:
    return f"""Given this educational content, generate study materials in the following JSON format (with no markdown, just raw JSON):

{MATERIALS_SCHEMA}

Generate:
- {FLASHCARD_COUNT} flashcards with questions and answers
- {MCQ_COUNT} multiple choice questions with {MCQ_OPTION_COUNT} options each, one correct
- {ESSAY_COUNT} essay prompts with detailed frameworks

Content to analyze:
{content}"""


# ============================================================================
# PARSING & VALIDATION
# ============================================================================

def _require_text(item: Dict[str, Any], key: str, label: str) -> str:
    value = item.get(key)
    if not isinstance(value, str) or not value.strip():
        raise GenerationFormatError(f"{label}: '{key}' must be a non-empty string")
    return value.strip()


def _optional_text(item: Dict[str, Any], key: str, label: str) -> str:
    value = item.get(key)
    if value is None:
        return ""
    if not isinstance(value, (str, int)):
        raise GenerationFormatError(f"{label}: '{key}' must be a string")
    return str(value).strip()


def _string_list(item: Dict[str, Any], key: str, label: str) -> List[str]:
    value = item.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise GenerationFormatError(f"{label}: '{key}' must be a list of strings")
    return [v.strip() for v in value if v.strip()]


def _object_list(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    if key not in data:
        raise GenerationFormatError(f"Response is missing '{key}'")
    items = data[key]
    if not isinstance(items, list):
        raise GenerationFormatError(f"'{key}' must be a list")
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise GenerationFormatError(f"{key}[{i}] must be an object")
    return items


def parse_flashcard(item: Dict[str, Any], label: str) -> GeneratedFlashcard:
    return GeneratedFlashcard(
        question=_require_text(item, "question", label),
        answer=_require_text(item, "answer", label),
        source_reference=_optional_text(item, "source_reference", label),
    )


def parse_mcq(item: Dict[str, Any], label: str) -> GeneratedMcq:
    question = _require_text(item, "question", label)

    options = item.get("options")
    if not isinstance(options, list) or len(options) != MCQ_OPTION_COUNT:
        raise GenerationFormatError(f"{label}: must have exactly {MCQ_OPTION_COUNT} options")
    if not all(isinstance(o, str) and o.strip() for o in options):
        raise GenerationFormatError(f"{label}: options must be non-empty strings")

    correct = item.get("correct_option")
    # bool is an int subclass; reject it explicitly
    if isinstance(correct, bool) or not isinstance(correct, int):
        raise GenerationFormatError(f"{label}: 'correct_option' must be an integer")
    if not 0 <= correct < len(options):
        raise GenerationFormatError(f"{label}: 'correct_option' {correct} is out of range")

    return GeneratedMcq(
        question=question,
        options=[o.strip() for o in options],
        correct_option_index=correct,
        explanation=_optional_text(item, "explanation", label),
        source_reference=_optional_text(item, "source_reference", label),
    )


def parse_essay_prompt(item: Dict[str, Any], label: str) -> GeneratedEssayPrompt:
    return GeneratedEssayPrompt(
        prompt=_require_text(item, "prompt", label),
        thesis_suggestion=_optional_text(item, "thesis_suggestion", label),
        key_arguments=_string_list(item, "key_arguments", label),
        counter_arguments=_string_list(item, "counter_arguments", label),
        evidence_points=_string_list(item, "evidence_points", label),
        source_reference=_optional_text(item, "source_reference", label),
    )


def parse_materials(raw: str) -> GeneratedArtifactBatch:
    """
    Parse and validate the model's raw JSON response.

    Raises:
        GenerationFormatError: if the text is not a JSON object matching the
            schema, or any item breaks a structural rule
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Model response is not valid JSON: {raw[:200]!r}")
        raise GenerationFormatError(f"Model response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerationFormatError("Model response must be a JSON object")

    flashcards = [
        parse_flashcard(item, f"flashcards[{i}]")
        for i, item in enumerate(_object_list(data, "flashcards"))
    ]
    mcq_questions = [
        parse_mcq(item, f"mcq_questions[{i}]")
        for i, item in enumerate(_object_list(data, "mcq_questions"))
    ]
    essay_prompts = [
        parse_essay_prompt(item, f"essay_prompts[{i}]")
        for i, item in enumerate(_object_list(data, "essay_prompts"))
    ]

    if not (flashcards or mcq_questions or essay_prompts):
        raise GenerationFormatError("Model response contained no study materials")

    return GeneratedArtifactBatch(
        flashcards=flashcards,
        mcq_questions=mcq_questions,
        essay_prompts=essay_prompts,
    )


# ============================================================================
# GENERATION
# ============================================================================

async def generate_materials(text: str) -> GeneratedArtifactBatch:
    """
    Generate a full artifact batch from extracted content.

    Raises:
        GenerationServiceError: upstream call failed or timed out
        GenerationFormatError: response not parseable or schema-conformant
    """
    content = truncate_content(text)
    raw = await llm_service.complete(
        SYSTEM_PROMPT,
        build_generation_prompt(content),
        max_tokens=GENERATION_MAX_TOKENS
    )

    batch = parse_materials(raw)
    logger.info(
        f"Generated {len(batch.flashcards)} flashcards, "
        f"{len(batch.mcq_questions)} MCQs, {len(batch.essay_prompts)} essay prompts"
    )
    return batch
