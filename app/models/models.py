from sqlalchemy import Column, String, Integer, BigInteger, Boolean, DateTime, JSON, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from app.database import Base

def generate_uuid():
    return str(uuid.uuid4())

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, default=datetime.utcnow)

    # Relationships
    subscription = relationship("Subscription", back_populates="user", uselist=False)
    usage = relationship("UsageCounters", back_populates="user", uselist=False)
    modules = relationship("Module", back_populates="user")


# ============================================================================
# SUBSCRIPTION & QUOTA MODELS
# ============================================================================

class Subscription(Base):
    """
    Subscription tier for a user. A user without a row is on the free tier.
    """
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    # Subscription tier: "free", "pro", "unlimited"
    tier = Column(String, nullable=False, default="free", index=True)

    started_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)  # Null for free tier
    billing_cycle = Column(String, nullable=True)  # "monthly" or "yearly"

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="subscription")


class UsageCounters(Base):
    """
    Monthly consumption counters checked against tier limits.
    Reset by an external monthly job.
    """
    __tablename__ = "usage_counters"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    monthly_uploads_used = Column(Integer, nullable=False, default=0)
    monthly_generations_used = Column(Integer, nullable=False, default=0)
    storage_used_bytes = Column(BigInteger, nullable=False, default=0)

    period_start = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="usage")


# ============================================================================
# MODULES & SOURCE FILES
# ============================================================================

class Module(Base):
    """A user-defined grouping of study materials (a course or topic)."""
    __tablename__ = "modules"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="modules")
    files = relationship("UploadedFile", back_populates="module", cascade="all, delete-orphan")
    study_sessions = relationship("StudySession", back_populates="module")


class UploadedFile(Base):
    """
    One uploaded source document.

    processing_status is only written through app.services.file_status.
    """
    __tablename__ = "files"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    module_id = Column(String, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)  # "pdf", "pptx", "video"
    file_size_bytes = Column(BigInteger, nullable=False, default=0)
    storage_path = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)

    # Status: pending, processing, completed, failed
    processing_status = Column(String, nullable=False, default="pending", index=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    module = relationship("Module", back_populates="files")

    # Artifacts go with their file
    flashcards = relationship("Flashcard", back_populates="file", cascade="all, delete-orphan")
    mcq_questions = relationship("McqQuestion", back_populates="file", cascade="all, delete-orphan")
    essay_prompts = relationship("EssayPrompt", back_populates="file", cascade="all, delete-orphan")


# ============================================================================
# GENERATED ARTIFACTS (write-once)
# ============================================================================

class Flashcard(Base):
    __tablename__ = "flashcards"

    id = Column(String, primary_key=True, default=generate_uuid)
    file_id = Column(String, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    module_id = Column(String, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    source_reference = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    file = relationship("UploadedFile", back_populates="flashcards")


class McqQuestion(Base):
    __tablename__ = "mcq_questions"

    id = Column(String, primary_key=True, default=generate_uuid)
    file_id = Column(String, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    module_id = Column(String, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    question = Column(Text, nullable=False)
    # JSON-encoded {"choices": [4 strings], "correct_index": int, "explanation": str}
    options = Column(Text, nullable=False)
    source_reference = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    file = relationship("UploadedFile", back_populates="mcq_questions")


class EssayPrompt(Base):
    __tablename__ = "essay_prompts"

    id = Column(String, primary_key=True, default=generate_uuid)
    file_id = Column(String, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    module_id = Column(String, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    prompt = Column(Text, nullable=False)
    # JSON-encoded {"thesis_suggestion", "key_arguments", "counter_arguments", "evidence_points"}
    argument_framework = Column(Text, nullable=True)
    source_reference = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    file = relationship("UploadedFile", back_populates="essay_prompts")


# ============================================================================
# STUDY SESSIONS
# ============================================================================

class StudySession(Base):
    """Result of one finished flashcard or quiz run."""
    __tablename__ = "study_sessions"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    module_id = Column(String, ForeignKey("modules.id", ondelete="SET NULL"), nullable=True, index=True)

    session_type = Column(String, nullable=False)  # "flashcards" or "questions"
    duration_seconds = Column(Integer, nullable=True)
    score = Column(Integer, nullable=True)  # 0-100
    correct_count = Column(Integer, nullable=False, default=0)
    incorrect_count = Column(Integer, nullable=False, default=0)

    started_at = Column(DateTime, default=datetime.utcnow, index=True)

    module = relationship("Module", back_populates="study_sessions")
    progress = relationship("StudyProgress", back_populates="session", cascade="all, delete-orphan")


class StudyProgress(Base):
    """One answered item within a study session."""
    __tablename__ = "study_progress"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    session_id = Column(String, ForeignKey("study_sessions.id", ondelete="CASCADE"), nullable=True, index=True)
    item_id = Column(String, nullable=False, index=True)  # flashcard or MCQ id
    session_type = Column(String, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    session = relationship("StudySession", back_populates="progress")


# ============================================================================
# ACTIVITY FEED
# ============================================================================

class ActivityLog(Base):
    """Append-only record of user actions, read by dashboard and friend feeds."""
    __tablename__ = "activity_feed"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String, nullable=False)  # "generate_materials", "submit_essay", "study_session"
    resource_id = Column(String, nullable=True)
    resource_type = Column(String, nullable=True)
    status = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
