"""
Tests for the file processing pipeline.

Tests cover:
- End-to-end success, bad model output, quota refusal, concurrent runs
- Idempotent re-invocation on completed files
- Ownership scoping
- Failure marking for storage, extraction, persistence and unexpected errors
- Best-effort failure bookkeeping
"""

import asyncio
import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import app.services.pipeline as pipeline_module
from app.models.models import (
    User, Module, UploadedFile, Flashcard, McqQuestion, EssayPrompt, ActivityLog
)
from app.services import quota_ledger
from app.services.errors import (
    PipelineError,
    NotFound,
    AlreadyProcessing,
    QuotaExceeded,
    StorageError,
    ExtractionError,
    GenerationFormatError,
    GenerationServiceError,
    PersistenceError,
)
from app.services.file_status import FileStatus, transition
from app.services.llm_service import llm_service
from app.services.pipeline import process_file, ProcessingResult
from app.services.storage import LocalBlobStore
from tests.factories import make_file, set_usage, get_usage
from tests.mocks import mock_llm_complete, slow_llm_complete


def reload_file(db: Session, file_id: str) -> UploadedFile:
    db.expire_all()
    return db.query(UploadedFile).filter(UploadedFile.id == file_id).first()


def artifact_counts(db: Session, file_id: str):
    return (
        db.query(Flashcard).filter(Flashcard.file_id == file_id).count(),
        db.query(McqQuestion).filter(McqQuestion.file_id == file_id).count(),
        db.query(EssayPrompt).filter(EssayPrompt.file_id == file_id).count(),
    )


def activity_statuses(db: Session, user_id: str):
    return [
        a.status for a in db.query(ActivityLog).filter(
            ActivityLog.user_id == user_id,
            ActivityLog.action == "generate_materials"
        ).order_by(ActivityLog.created_at).all()
    ]


class TestEndToEnd:
    """The four reference scenarios"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_success_with_last_generation(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile, mock_llm
    ):
        """Free user with one generation left: file completes and quota is used up"""
        set_usage(db, test_user.id, generations=14)

        result = await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        assert result.counts() == {"flashcards_count": 10, "mcq_count": 5, "essays_count": 3}
        assert result.already_completed is False

        file = reload_file(db, test_file.id)
        assert file.processing_status == "completed"
        assert file.processed_at is not None
        assert file.error_message is None

        assert get_usage(db, test_user.id).monthly_generations_used == 15
        assert artifact_counts(db, test_file.id) == (10, 5, 3)
        assert activity_statuses(db, test_user.id) == ["success"]

        card = db.query(Flashcard).filter(Flashcard.file_id == test_file.id).first()
        assert card.module_id == test_file.module_id
        assert card.user_id == test_user.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_json_output_fails_file(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile
    ):
        """Prose from the model: file failed, quota unchanged, no artifacts"""
        set_usage(db, test_user.id, generations=14)

        with patch.object(llm_service, "complete", mock_llm_complete(raw="Here are some flashcards!")):
            with pytest.raises(GenerationFormatError) as exc_info:
                await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        assert exc_info.value.status_code == 500

        file = reload_file(db, test_file.id)
        assert file.processing_status == "failed"
        assert "not valid JSON" in file.error_message

        assert get_usage(db, test_user.id).monthly_generations_used == 14
        assert artifact_counts(db, test_file.id) == (0, 0, 0)
        assert activity_statuses(db, test_user.id) == ["failed"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_quota_exhausted_rejects_before_model_call(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile, mock_llm
    ):
        """15/15 generations used: refused up front, nothing touched"""
        set_usage(db, test_user.id, generations=15)
        assert quota_ledger.can_consume(db, test_user.id, "generations") is False

        with pytest.raises(QuotaExceeded) as exc_info:
            await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        assert exc_info.value.status_code == 429
        mock_llm.assert_not_awaited()
        assert reload_file(db, test_file.id).processing_status == "pending"
        assert get_usage(db, test_user.id).monthly_generations_used == 15

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_concurrent_runs_only_one_proceeds(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile
    ):
        """Two simultaneous runs: one completes, the other sees AlreadyProcessing"""
        with patch.object(llm_service, "complete", slow_llm_complete(delay=0.05)):
            results = await asyncio.gather(
                process_file(db, test_file.id, test_user.id, blob_store=blob_store),
                process_file(db, test_file.id, test_user.id, blob_store=blob_store),
                return_exceptions=True
            )

        successes = [r for r in results if isinstance(r, ProcessingResult)]
        conflicts = [r for r in results if isinstance(r, AlreadyProcessing)]
        assert len(successes) == 1
        assert len(conflicts) == 1
        assert conflicts[0].status_code == 409

        assert reload_file(db, test_file.id).processing_status == "completed"
        assert artifact_counts(db, test_file.id) == (10, 5, 3)
        assert get_usage(db, test_user.id).monthly_generations_used == 1


class TestIdempotence:
    """Re-invoking on a completed file"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_completed_file_returns_existing_counts(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile, mock_llm
    ):
        await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        again = await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        assert again.already_completed is True
        assert again.counts() == {"flashcards_count": 10, "mcq_count": 5, "essays_count": 3}
        assert mock_llm.await_count == 1
        assert artifact_counts(db, test_file.id) == (10, 5, 3)
        assert get_usage(db, test_user.id).monthly_generations_used == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_completed_file_ignores_quota(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_module: Module, mock_llm
    ):
        """Reading back a completed file does not need generation quota"""
        file = make_file(db, blob_store, test_user, test_module, file_id="file-done", status="completed")
        set_usage(db, test_user.id, generations=15)

        result = await process_file(db, file.id, test_user.id, blob_store=blob_store)

        assert result.already_completed is True
        mock_llm.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_file_can_be_retried(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_module: Module, mock_llm
    ):
        file = make_file(db, blob_store, test_user, test_module, file_id="file-retry", status="failed")

        result = await process_file(db, file.id, test_user.id, blob_store=blob_store)

        assert result.flashcards_count == 10
        assert reload_file(db, file.id).processing_status == "completed"


class TestAdmission:
    """Ownership and state checks before any work"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_users_file_is_not_found(
        self, db: Session, blob_store: LocalBlobStore, other_user: User, test_file: UploadedFile, mock_llm
    ):
        with pytest.raises(NotFound):
            await process_file(db, test_file.id, other_user.id, blob_store=blob_store)

        assert reload_file(db, test_file.id).processing_status == "pending"
        mock_llm.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_file_is_not_found(self, db: Session, blob_store: LocalBlobStore, test_user: User):
        with pytest.raises(NotFound):
            await process_file(db, "no-such-file", test_user.id, blob_store=blob_store)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_processing_file_conflicts(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile, mock_llm
    ):
        """A file held by another run is left alone"""
        transition(db, test_file.id, FileStatus.PROCESSING)

        with pytest.raises(AlreadyProcessing):
            await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        file = reload_file(db, test_file.id)
        assert file.processing_status == "processing"
        assert file.error_message is None
        mock_llm.assert_not_awaited()


class TestFailureMarking:
    """Errors after the file enters processing"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_blob_is_storage_error(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile, mock_llm
    ):
        (blob_store.root / test_file.storage_path).unlink()

        with pytest.raises(StorageError):
            await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        assert reload_file(db, test_file.id).processing_status == "failed"
        mock_llm.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_undecodable_video_is_extraction_error(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_module: Module, mock_llm
    ):
        """Video bytes with no transcription backend cannot be extracted"""
        file = make_file(
            db, blob_store, test_user, test_module,
            file_id="file-video", file_type="video", content=b"\x00\x00\x00\x18ftypmp42\xff\xfe"
        )

        with pytest.raises(ExtractionError):
            await process_file(db, file.id, test_user.id, blob_store=blob_store)

        assert reload_file(db, file.id).processing_status == "failed"
        assert get_usage(db, test_user.id).monthly_generations_used == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_upstream_failure(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile
    ):
        failing = mock_llm_complete()
        failing.side_effect = GenerationServiceError("Generation timed out after 90s")

        with patch.object(llm_service, "complete", failing):
            with pytest.raises(GenerationServiceError):
                await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        file = reload_file(db, test_file.id)
        assert file.processing_status == "failed"
        assert file.error_message == "Generation timed out after 90s"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_persistence_failure_rolls_back_artifacts(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile, mock_llm
    ):
        """A failing quota write discards the already-flushed artifact rows"""
        disk_error = OperationalError("UPDATE usage_counters", {}, Exception("disk I/O error"))

        with patch.object(quota_ledger, "consume", side_effect=disk_error):
            with pytest.raises(PersistenceError):
                await process_file(db, test_file.id, test_user.id, blob_store=blob_store)

        assert artifact_counts(db, test_file.id) == (0, 0, 0)
        assert reload_file(db, test_file.id).processing_status == "failed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_file: UploadedFile
    ):
        async def broken_generate(text: str):
            raise RuntimeError("generator exploded")

        with pytest.raises(PipelineError) as exc_info:
            await process_file(db, test_file.id, test_user.id, blob_store=blob_store, generate=broken_generate)

        assert exc_info.value.status_code == 500
        assert "generator exploded" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert reload_file(db, test_file.id).processing_status == "failed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failure_bookkeeping_errors_are_swallowed(
        self, db: Session, blob_store: LocalBlobStore, test_user: User, test_module: Module
    ):
        """If marking the file failed also breaks, the original error still surfaces"""
        file = make_file(
            db, blob_store, test_user, test_module,
            file_id="file-binary", file_type="video", content=b"\x00\xff\x00\xfe"
        )

        def flaky_transition(db, file_id, target, **kwargs):
            if target == FileStatus.FAILED:
                raise OperationalError("UPDATE files", {}, Exception("database is locked"))
            return transition(db, file_id, target, **kwargs)

        with patch.object(pipeline_module, "transition", side_effect=flaky_transition):
            with pytest.raises(ExtractionError):
                await process_file(db, file.id, test_user.id, blob_store=blob_store)

        assert activity_statuses(db, test_user.id) == ["failed"]
