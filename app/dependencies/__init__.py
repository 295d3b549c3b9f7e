"""
FastAPI Dependencies for StudyForge
"""

from app.dependencies.auth import (
    get_current_user,
    validate_token,
)

__all__ = [
    "get_current_user",
    "validate_token",
]
