"""
Upload intake: accept a study file into a module and queue it for processing,
and remove a file together with its generated materials.
"""

import os
import re
import time
import uuid
import logging
import unicodedata
from typing import Optional, Dict, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.models import Module, UploadedFile
from app.services import quota_ledger
from app.services.activity_log import log_activity, ACTION_UPLOAD_FILE, ACTION_DELETE_FILE
from app.services.errors import NotFound, ValidationError, PersistenceError, AlreadyProcessing, StorageError
from app.services.file_status import FileStatus
from app.services.pipeline import get_owned_file
from app.services.storage import BlobStore

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB
MAX_FILE_NAME_LENGTH = 255

# MIME type -> (file_type, storage extension)
ACCEPTED_FILE_TYPES: Dict[str, Tuple[str, str]] = {
    "application/pdf": ("pdf", "pdf"),
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ("pptx", "pptx"),
    "video/mp4": ("video", "mp4"),
    "video/quicktime": ("video", "mov"),
    "video/webm": ("video", "webm"),
}

# Content-Type is client supplied; the leading bytes must agree with it
PREFIX_SIGNATURES: Dict[str, Tuple[bytes, ...]] = {
    "pdf": (b"%PDF",),
    "pptx": (b"PK\x03\x04",),  # OOXML is a ZIP container
    "webm": (b"\x1a\x45\xdf\xa3",),  # EBML header
}

# MP4 and QuickTime are ISO base media files: a box size, then the box type
ISO_MEDIA_BOX_TYPES = (b"ftyp", b"moov", b"mdat", b"wide", b"free", b"skip")


def matches_signature(content: bytes, ext: str) -> bool:
    """True if the leading bytes look like a file of this extension."""
    if ext in ("mp4", "mov"):
        return content[4:8] in ISO_MEDIA_BOX_TYPES
    return content.startswith(PREFIX_SIGNATURES.get(ext, ()))


def sanitize_filename(file_name: Optional[str]) -> str:
    """
    Reduce a client file name to a safe display name.

    Keeps only the basename, drops control characters and anything outside
    word characters, dash, dot and space.
    """
    name = unicodedata.normalize("NFKC", file_name or "").replace("\x00", "")
    name = os.path.basename(name.replace("\\", "/"))
    name = re.sub(r"[^\w\s\-.]", "_", name)
    name = re.sub(r"[_\s]+", "_", name).strip(". _")

    if len(name) > MAX_FILE_NAME_LENGTH:
        stem, ext = os.path.splitext(name)
        name = stem[:MAX_FILE_NAME_LENGTH - len(ext)] + ext

    return name or "upload"


def build_storage_path(user_id: str, module_id: str, ext: str) -> str:
    """{user_id}/{module_id}/{timestamp}-{random}.{ext}"""
    return f"{user_id}/{module_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"


def create_upload(
    db: Session,
    blob_store: BlobStore,
    user_id: str,
    module_id: str,
    file_name: str,
    mime_type: Optional[str],
    content: bytes
) -> UploadedFile:
    """
    Store an uploaded file and create its `pending` record.

    Raises:
        NotFound: module absent or not owned by the user
        ValidationError: unsupported type, content not matching the type,
            empty file or over MAX_FILE_SIZE
        QuotaExceeded: upload count or storage allowance used up
        StorageError: blob write failed
        PersistenceError: record could not be saved
    """
    module = db.query(Module).filter(
        Module.id == module_id,
        Module.user_id == user_id
    ).first()
    if not module:
        raise NotFound("Module not found")

    accepted = ACCEPTED_FILE_TYPES.get(mime_type or "")
    if accepted is None:
        raise ValidationError(
            f"Unsupported file type: {mime_type}. Upload a PDF, PPTX or video (MP4, MOV, WEBM)."
        )
    file_type, ext = accepted

    size = len(content)
    if size == 0:
        raise ValidationError("Uploaded file is empty")
    if size > MAX_FILE_SIZE:
        raise ValidationError(f"File exceeds the {MAX_FILE_SIZE // (1024 * 1024)}MB size limit")

    if not matches_signature(content, ext):
        logger.warning(f"Rejected upload for user {user_id}: content does not match {mime_type}")
        raise ValidationError(f"File content does not match its declared type ({mime_type})")

    quota_ledger.require(db, user_id, "uploads")
    quota_ledger.require(db, user_id, "storage", size)

    display_name = sanitize_filename(file_name)
    storage_path = build_storage_path(user_id, module_id, ext)
    blob_store.upload(storage_path, content, content_type=mime_type)

    try:
        file = UploadedFile(
            user_id=user_id,
            module_id=module_id,
            file_name=display_name,
            file_type=file_type,
            file_size_bytes=size,
            storage_path=storage_path,
            mime_type=mime_type,
            processing_status=FileStatus.PENDING.value,
        )
        db.add(file)
        quota_ledger.consume(db, user_id, "uploads", 1, commit=False)
        quota_ledger.consume(db, user_id, "storage", size, commit=False)
        db.commit()
        db.refresh(file)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record upload {storage_path}; blob is orphaned: {e}")
        raise PersistenceError(f"Failed to save uploaded file: {e}") from e

    logger.info(f"Accepted {file_type} upload {file.id} ({size} bytes) into module {module_id}")

    log_activity(
        db, user_id, ACTION_UPLOAD_FILE,
        resource_id=file.id,
        resource_type="file",
        status="success",
        details={"file_name": display_name, "file_type": file_type}
    )

    return file


def delete_file(db: Session, blob_store: BlobStore, file_id: str, user_id: str) -> None:
    """
    Delete a file and, by cascade, its flashcards, MCQs and essay prompts.

    Storage bytes are given back; the monthly upload count is not. The blob is
    removed after the commit and a failure there only leaves an orphan.

    Raises:
        NotFound: file absent or owned by someone else
        AlreadyProcessing: a run currently holds the file
        PersistenceError: the delete could not be committed
    """
    file = get_owned_file(db, file_id, user_id)

    if file.processing_status == FileStatus.PROCESSING.value:
        raise AlreadyProcessing("File is being processed; delete it once processing finishes")

    storage_path = file.storage_path
    size = file.file_size_bytes or 0

    try:
        db.delete(file)
        quota_ledger.release(db, user_id, "storage", size, commit=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to delete file: {e}") from e

    try:
        blob_store.delete(storage_path)
    except StorageError as e:
        logger.error(f"Deleted file {file_id} but its blob {storage_path} remains: {e.message}")

    logger.info(f"Deleted file {file_id} for user {user_id}")

    log_activity(
        db, user_id, ACTION_DELETE_FILE,
        resource_id=file_id,
        resource_type="file",
        status="success",
        details={"file_size_bytes": size}
    )
