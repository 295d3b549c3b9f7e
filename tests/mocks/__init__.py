"""
Mock infrastructure for StudyForge testing.
Provides deterministic generative-model responses.
"""

from .llm_mocks import (
    MOCK_MATERIALS,
    MOCK_ESSAY_FEEDBACK,
    create_mock_materials,
    mock_llm_complete,
    slow_llm_complete,
)

__all__ = [
    "MOCK_MATERIALS",
    "MOCK_ESSAY_FEEDBACK",
    "create_mock_materials",
    "mock_llm_complete",
    "slow_llm_complete",
]
