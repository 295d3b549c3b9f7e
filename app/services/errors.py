"""
Error taxonomy for the study-material pipeline.

Every error carries the HTTP status it maps to; app.main renders them as
{"error": message}.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for pipeline and study-material errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(PipelineError):
    """Missing or invalid bearer credential."""
    status_code = 401


class ValidationError(PipelineError):
    """Malformed request body."""
    status_code = 400


class NotFound(PipelineError):
    """Resource absent or not owned by the caller."""
    status_code = 404


class AlreadyProcessing(PipelineError):
    """Another run holds the file in processing."""
    status_code = 409


class QuotaExceeded(PipelineError):
    """Admission check failed before any work started."""
    status_code = 429

    def __init__(self, resource: str, limit: float, used: int):
        super().__init__(
            f"Monthly {resource} limit reached ({used}/{int(limit)}). "
            f"Upgrade your plan for more {resource}."
        )
        self.resource = resource
        self.limit = limit
        self.used = used


class StorageError(PipelineError):
    """Blob download or upload failed."""


class ExtractionError(PipelineError):
    """File content could not be reduced to text."""


class GenerationServiceError(PipelineError):
    """Upstream model call failed, timed out, or was rejected by the circuit breaker."""

    def __init__(self, message: str, upstream_status: Optional[int] = None, upstream_body: Optional[str] = None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class GenerationFormatError(PipelineError):
    """Model output was not parseable or did not match the schema."""


class PersistenceError(PipelineError):
    """A database write failed."""
