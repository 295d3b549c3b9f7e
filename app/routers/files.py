"""
Files Router

Upload intake, the file-to-study-material pipeline, reads of file status
and generated materials, and file deletion.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any

from app.database import get_db
from app.models.models import User
from app.dependencies.auth import get_current_user
from app.services.artifact_writer import get_file_materials
from app.services.errors import ValidationError
from app.services.file_intake import create_upload, delete_file
from app.services.pipeline import process_file, get_owned_file, file_status_payload
from app.services.storage import BlobStore, get_blob_store

router = APIRouter(prefix="/api", tags=["files"])


# ============================================================================
# Request/Response Models
# ============================================================================

class ProcessFileRequest(BaseModel):
    fileId: Optional[str] = Field(None, description="File to generate materials for")


class ProcessingCounts(BaseModel):
    flashcards_count: int
    mcq_count: int
    essays_count: int


class ProcessFileResponse(BaseModel):
    success: bool
    message: str
    data: ProcessingCounts


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/process-file", response_model=ProcessFileResponse)
async def process_file_endpoint(
    request: ProcessFileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store)
):
    """
    Generate flashcards, MCQs and essay prompts for an uploaded file.

    Errors: 400 missing fileId, 404 unknown file, 409 already processing,
    429 generation quota used up, 500 pipeline failure (file marked failed).
    """
    if not request.fileId:
        raise ValidationError("Missing fileId")

    result = await process_file(db, request.fileId, current_user.id, blob_store=blob_store)

    message = (
        "File already processed"
        if result.already_completed
        else "File processed successfully"
    )
    return ProcessFileResponse(
        success=True,
        message=message,
        data=ProcessingCounts(**result.counts())
    )


@router.post("/files/upload")
async def upload_file(
    file: UploadFile = File(...),
    module_id: str = Form(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store)
) -> Dict[str, Any]:
    """Store a PDF, PPTX or video in a module; the file starts as pending."""
    content = await file.read()

    record = create_upload(
        db,
        blob_store,
        user_id=current_user.id,
        module_id=module_id,
        file_name=file.filename or "upload",
        mime_type=file.content_type,
        content=content
    )

    return file_status_payload(record)


@router.get("/files/{file_id}")
def get_file_status(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Current processing status of a file."""
    return file_status_payload(get_owned_file(db, file_id, current_user.id))


@router.get("/files/{file_id}/materials")
def get_materials(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Generated flashcards, MCQs and essay prompts for a file."""
    file = get_owned_file(db, file_id, current_user.id)

    return {
        "file_id": file.id,
        "processing_status": file.processing_status,
        **get_file_materials(db, file.id),
    }


@router.delete("/files/{file_id}")
def delete_file_endpoint(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store)
) -> Dict[str, Any]:
    """Delete a file with its generated materials. 409 while it is processing."""
    delete_file(db, blob_store, file_id, current_user.id)

    return {"success": True, "message": "File deleted"}
