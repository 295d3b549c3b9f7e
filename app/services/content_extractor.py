"""
Content Extractor

Reduces the raw bytes of an uploaded file to plain text for generation.

Format backends are registered per file type:
- pdf: pypdf page text
- pptx: python-pptx slide text
- video: OpenAI audio transcription (ENABLE_TRANSCRIPTION=true)

When a type has no backend, or its backend fails or finds no text, the bytes
are decoded as UTF-8 instead. Only content that cannot be decoded at all
raises ExtractionError.
"""

import io
import os
import logging
from typing import Callable, Dict, Optional

from pypdf import PdfReader
from pptx import Presentation

from app.services.errors import ExtractionError
from app.utils.model_clients import get_openai_client

logger = logging.getLogger(__name__)

ENABLE_TRANSCRIPTION = os.getenv("ENABLE_TRANSCRIPTION", "false").lower() == "true"
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")

Backend = Callable[[bytes], str]


# ============================================================================
# FORMAT BACKENDS
# ============================================================================

def extract_pdf_text(file_content: bytes) -> str:
    """Extract text from PDF pages."""
    reader = PdfReader(io.BytesIO(file_content))
    text_parts = []
    for page_number, page in enumerate(reader.pages, 1):
        page_text = page.extract_text() or ""
        if page_text.strip():
            text_parts.append(f"[Page {page_number}]\n{page_text}")
    return "\n\n".join(text_parts)


def extract_pptx_text(file_content: bytes) -> str:
    """Extract text from PowerPoint slides, including speaker notes."""
    prs = Presentation(io.BytesIO(file_content))
    text_parts = []
    for slide_number, slide in enumerate(prs.slides, 1):
        slide_text = []
        for shape in slide.shapes:
            if shape.has_text_frame and shape.text_frame.text.strip():
                slide_text.append(shape.text_frame.text)
        if slide.has_notes_slide:
            notes = slide.notes_slide.notes_text_frame.text
            if notes.strip():
                slide_text.append(f"Notes: {notes}")
        if slide_text:
            text_parts.append(f"[Slide {slide_number}]\n" + "\n".join(slide_text))
    return "\n\n".join(text_parts)


def transcribe_video(file_content: bytes) -> str:
    """Transcribe the audio track of a video with the OpenAI audio API."""
    audio = io.BytesIO(file_content)
    audio.name = "upload.mp4"
    transcript = get_openai_client().audio.transcriptions.create(
        model=TRANSCRIPTION_MODEL,
        file=audio,
    )
    return transcript.text or ""


def decode_text(file_content: bytes) -> str:
    """
    Decode bytes that are already text.

    Raises:
        ExtractionError: if the bytes are binary or not valid UTF-8
    """
    if b"\x00" in file_content:
        raise ExtractionError("File content is binary and could not be converted to text")
    try:
        return file_content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ExtractionError(f"File content could not be decoded as text: {e}") from e


# ============================================================================
# EXTRACTOR
# ============================================================================

class ContentExtractor:
    """Dispatches raw bytes to the backend registered for their file type."""

    def __init__(self, backends: Optional[Dict[str, Backend]] = None):
        self.backends: Dict[str, Backend] = dict(backends or {})

    def register(self, file_type: str, backend: Backend) -> None:
        self.backends[file_type] = backend

    def extract(self, raw_bytes: bytes, file_type: str) -> str:
        """
        Convert file bytes to plain text.

        Raises:
            ExtractionError: only when no backend produced text and the bytes
                cannot be decoded as text
        """
        backend = self.backends.get(file_type)

        if backend is not None:
            try:
                text = backend(raw_bytes)
                if text and text.strip():
                    logger.info(f"Extracted {len(text)} chars from {file_type} content")
                    return text
                logger.warning(f"{file_type} backend found no text, falling back to raw decode")
            except Exception as e:
                logger.warning(f"{file_type} extraction failed ({e}), falling back to raw decode")
        else:
            logger.info(f"No extraction backend for {file_type}, decoding raw text")

        text = decode_text(raw_bytes)
        if not text.strip():
            raise ExtractionError("No text could be extracted from the file")
        return text


def build_default_extractor() -> ContentExtractor:
    extractor = ContentExtractor({
        "pdf": extract_pdf_text,
        "pptx": extract_pptx_text,
    })
    if ENABLE_TRANSCRIPTION:
        extractor.register("video", transcribe_video)
    return extractor


content_extractor = build_default_extractor()
