"""
File processing pipeline.

Drives one uploaded file from `pending` to `completed`:

    fetch (owner-scoped) -> admission -> pending|failed => processing
    -> download -> extract -> generate -> validate
    -> [artifacts + completed + generations+1] in one transaction
    -> activity entry

Any failure after the file enters `processing` marks it `failed` before the
error is re-raised, so a file is never left in `processing` by a handled error.
Files orphaned by a crashed process are swept by reconcile_stuck_files().
"""

import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Optional, Callable, Awaitable, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.models import UploadedFile
from app.services import quota_ledger
from app.services.activity_log import log_activity, ACTION_GENERATE_MATERIALS
from app.services.artifact_writer import write_artifacts, count_artifacts
from app.services.content_extractor import ContentExtractor, content_extractor
from app.services.errors import (
    PipelineError,
    NotFound,
    AlreadyProcessing,
    PersistenceError,
)
from app.services.file_status import FileStatus, transition
from app.services.material_generator import GeneratedArtifactBatch, generate_materials
from app.services.storage import BlobStore, get_blob_store

logger = logging.getLogger(__name__)

Generate = Callable[[str], Awaitable[GeneratedArtifactBatch]]


@dataclass
class ProcessingResult:
    flashcards_count: int
    mcq_count: int
    essays_count: int
    already_completed: bool = False

    def counts(self) -> Dict[str, int]:
        data = asdict(self)
        data.pop("already_completed")
        return data


def get_owned_file(db: Session, file_id: str, user_id: str) -> UploadedFile:
    """Fetch a file by id and owner. Files of other users read as missing."""
    file = db.query(UploadedFile).filter(
        UploadedFile.id == file_id,
        UploadedFile.user_id == user_id
    ).first()

    if not file:
        raise NotFound("File not found")

    return file


async def process_file(
    db: Session,
    file_id: str,
    user_id: str,
    blob_store: Optional[BlobStore] = None,
    extractor: Optional[ContentExtractor] = None,
    generate: Optional[Generate] = None
) -> ProcessingResult:
    """
    Generate and persist study materials for one uploaded file.

    Args:
        db: Database session
        file_id: File to process
        user_id: Authenticated caller; must own the file
        blob_store: Source of file bytes (defaults to the configured store)
        extractor: Bytes-to-text extractor (defaults to the built-in backends)
        generate: Text-to-artifacts generator (defaults to the LLM generator)

    Returns:
        ProcessingResult with per-collection counts

    Raises:
        NotFound: file absent or owned by someone else
        QuotaExceeded: generation allowance used up (nothing mutated)
        AlreadyProcessing: another run holds the file
        StorageError, ExtractionError, GenerationServiceError,
        GenerationFormatError, PersistenceError: the file is now `failed`
        PipelineError: wraps any unexpected error; the file is now `failed`
    """
    blob_store = blob_store or get_blob_store()
    extractor = extractor or content_extractor
    generate = generate or generate_materials

    file = get_owned_file(db, file_id, user_id)

    if file.processing_status == FileStatus.COMPLETED.value:
        logger.info(f"File {file_id} already completed, returning existing materials")
        return ProcessingResult(**count_artifacts(db, file_id), already_completed=True)

    quota_ledger.require(db, user_id, "generations")

    if not transition(db, file_id, FileStatus.PROCESSING, user_id=user_id):
        raise AlreadyProcessing("File is already being processed")

    logger.info(f"Processing file {file_id} ({file.file_type}) for user {user_id}")

    try:
        result = await _run(db, file, blob_store, extractor, generate)
    except PipelineError as e:
        logger.error(f"Processing failed for file {file_id}: {type(e).__name__}: {e.message}")
        _record_failure(db, file_id, user_id, e.message)
        raise
    except Exception as e:
        logger.exception(f"Unexpected error processing file {file_id}")
        message = f"Unexpected error processing file: {e}"
        _record_failure(db, file_id, user_id, message)
        raise PipelineError(message) from e

    log_activity(
        db, user_id, ACTION_GENERATE_MATERIALS,
        resource_id=file_id,
        resource_type="file",
        status="success",
        details=result.counts()
    )

    logger.info(
        f"File {file_id} completed: {result.flashcards_count} flashcards, "
        f"{result.mcq_count} MCQs, {result.essays_count} essay prompts"
    )
    return result


async def _run(
    db: Session,
    file: UploadedFile,
    blob_store: BlobStore,
    extractor: ContentExtractor,
    generate: Generate
) -> ProcessingResult:
    file_id = file.id
    user_id = file.user_id
    file_type = file.file_type

    raw_bytes = await asyncio.to_thread(blob_store.download, file.storage_path)
    text = await asyncio.to_thread(extractor.extract, raw_bytes, file_type)
    batch = await generate(text)

    try:
        counts = write_artifacts(db, file, batch)
        if not transition(db, file_id, FileStatus.COMPLETED, commit=False):
            raise PersistenceError("File left processing before its materials were saved")
        quota_ledger.consume(db, user_id, "generations", 1, commit=False)
        db.commit()
    except PersistenceError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to save study materials: {e}") from e

    return ProcessingResult(**counts)


def _record_failure(db: Session, file_id: str, user_id: str, message: str) -> None:
    """Mark the file failed and log the failure. Never raises."""
    try:
        db.rollback()
        if not transition(db, file_id, FileStatus.FAILED, error_message=message):
            logger.warning(f"File {file_id} was not in processing when marking it failed")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not mark file {file_id} as failed: {e}")

    log_activity(
        db, user_id, ACTION_GENERATE_MATERIALS,
        resource_id=file_id,
        resource_type="file",
        status="failed",
        details={"error": message[:500]}
    )


def file_status_payload(file: UploadedFile) -> Dict[str, Any]:
    return {
        "id": file.id,
        "module_id": file.module_id,
        "file_name": file.file_name,
        "file_type": file.file_type,
        "file_size_bytes": file.file_size_bytes,
        "mime_type": file.mime_type,
        "processing_status": file.processing_status,
        "error_message": file.error_message,
        "created_at": file.created_at.isoformat() if file.created_at else None,
        "processed_at": file.processed_at.isoformat() if file.processed_at else None,
    }
