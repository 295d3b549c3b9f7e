# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import logging
import sentry_sdk
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.database import engine, Base, SessionLocal
from app.routers import files, essays, study_sessions, usage
from app.services.errors import PipelineError
from app.services.file_status import reconcile_stuck_files
from app.services.llm_service import llm_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
        environment=os.getenv("ENVIRONMENT", "development"),
    )

# Create database tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown."""
    # STARTUP: fail files a previous process left in processing
    if os.getenv("RECONCILE_ON_STARTUP", "true").lower() == "true":
        db = SessionLocal()
        try:
            count = reconcile_stuck_files(db)
            logger.info("Startup reconcile: %d stuck file(s) marked failed", count)
        except Exception as e:
            logger.warning("Startup reconcile failed: %s", e)
        finally:
            db.close()

    yield  # Application runs here

    logger.info("Shutting down...")


tags_metadata = [
    {
        "name": "files",
        "description": "Upload course files and generate flashcards, MCQs and essay prompts from them.",
    },
    {
        "name": "essays",
        "description": "AI feedback on essays written against generated prompts.",
    },
    {
        "name": "study-sessions",
        "description": "Scored flashcard and quiz sessions, study statistics and streaks.",
    },
    {
        "name": "usage",
        "description": "Monthly upload, generation and storage quota.",
    },
]

app = FastAPI(
    title="StudyForge API",
    description="""
## StudyForge Study Material Generator

Upload lecture slides, PDFs and recordings; get flashcards, multiple-choice
questions and essay prompts back.

### Monthly Limits
| Tier | Uploads | Generations | Storage |
|------|---------|-------------|---------|
| Free | 5 | 15 | 100 MB |
| Pro | 30 | 100 | 2 GB |
| Unlimited | Unlimited | Unlimited | 10 GB |
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=tags_metadata,
)

# SECURITY: Explicitly list allowed origins - no wildcards
ALLOWED_ORIGINS = [
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",
]

# Allow additional origins from environment (for preview deploys)
extra_origins = os.getenv("CORS_ALLOWED_ORIGINS", "")
if extra_origins:
    ALLOWED_ORIGINS.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "Accept"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    if exc.status_code >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}",
            exc_info=exc
        )
        sentry_sdk.capture_exception(exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {detail}"})


# Include routers
app.include_router(files.router)  # Upload + generation pipeline
app.include_router(essays.router)  # Essay feedback
app.include_router(study_sessions.router)  # Session scoring & stats
app.include_router(usage.router)  # Quota usage


@app.get("/")
def root():
    return {
        "message": "StudyForge API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    return {
        "status": "healthy" if llm_service.is_healthy() else "degraded",
        "llm": llm_service.get_status(),
    }
