"""
Course Quiz Attempt Service - FastAPI Application Entry Point.

This is the main application module that:
1. Initializes the FastAPI app with CORS middleware
2. Sets up structured JSON logging
3. Implements request ID middleware (X-Request-ID header)
4. Renders every failure in the {"success": false, "error": ...} envelope
5. Registers all API route handlers and the health check

The application follows a modular architecture:
- routes/: API endpoint handlers
- models/: SQLAlchemy ORM models
- services/: attempt lifecycle, storage, scoring and reporting
- logging_config.py: Structured logging configuration
- database.py: Database connection management
"""

import time
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coursequiz.config import CORS_ORIGINS, DATABASE_URL
from coursequiz.database import create_tables
from coursequiz.errors import QuizError
from coursequiz.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from coursequiz.routes import quiz, reports

# Import all models so they are registered with Base.metadata
from coursequiz.models.quiz_attempt import QuizAttempt  # noqa: F401

# ──────────────────────────────────────────────────────────────
# Initialize structured logging BEFORE anything else
# ──────────────────────────────────────────────────────────────
setup_logging()
logger = get_logger("http")

# Auto-create tables for SQLite local development
if DATABASE_URL.startswith("sqlite"):
    logger.info("Using SQLite, creating tables directly")
    create_tables()

# ──────────────────────────────────────────────────────────────
# Create FastAPI application
# ──────────────────────────────────────────────────────────────
app = FastAPI(
    title="Course Quiz Attempt Service",
    description=(
        "Lesson quiz attempts for the course marketplace: start or resume, "
        "answer with immediate scoring, complete, abandon, retake policy, "
        "history and statistics."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)


# ──────────────────────────────────────────────────────────────
# Request ID Middleware
#
# Generates a unique UUID per incoming request, stores it in a context
# variable for every log entry, returns it in X-Request-ID and logs
# request start/end with latency.
# ──────────────────────────────────────────────────────────────
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID") or generate_request_id()
    request_id_var.set(req_id)

    start_time = time.time()

    log_with_context(logger, "INFO",
        f"Request started: {request.method} {request.url.path}",
        context={"request_id": req_id},
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent", ""),
            "query_params": dict(request.query_params)
        })

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id

    log_with_context(logger, "INFO",
        f"Request completed: {request.method} {request.url.path} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "status_code": response.status_code
        })

    return response


# ──────────────────────────────────────────────────────────────
# Error envelope
# ──────────────────────────────────────────────────────────────
def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(QuizError)
async def quiz_error_handler(request: Request, exc: QuizError):
    log_with_context(logger, "WARNING" if exc.status_code < 500 else "ERROR",
        f"{type(exc).__name__}: {exc.message}",
        extra_data={"path": request.url.path, "status_code": exc.status_code})
    return error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    missing = [str(err["loc"][-1]) for err in exc.errors() if err.get("type") == "missing"]
    if missing:
        message = "Missing required fields: {}".format(", ".join(missing))
    else:
        invalid = [str(err["loc"][-1]) for err in exc.errors()]
        message = "Invalid value for fields: {}".format(", ".join(invalid))
    log_with_context(logger, "WARNING", message,
        extra_data={"path": request.url.path, "errors": len(exc.errors())})
    return error_response(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


# ──────────────────────────────────────────────────────────────
# Register API routes
# ──────────────────────────────────────────────────────────────
app.include_router(quiz.router, tags=["Quiz Attempts"])
app.include_router(reports.router, tags=["Instructor Reports"])


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for Docker health checks and monitoring."""
    return {"status": "healthy", "service": "course-quiz-service", "version": "1.0.0"}


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "service": "Course Quiz Attempt Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "can_take": "GET /api/quiz/can-take/{lessonId}",
            "start": "POST /api/quiz/start",
            "answer": "POST /api/quiz/answer",
            "complete": "POST /api/quiz/complete",
            "abandon": "POST /api/quiz/abandon",
            "current": "GET /api/quiz/current/{lessonId}",
            "completed": "GET /api/quiz/completed/{lessonId}",
            "history": "GET /api/quiz/history/{lessonId}",
            "stats": "GET /api/quiz/stats/{courseId}",
            "lesson_report": "GET /api/instructor/lessons/{lessonId}/quiz-report"
        }
    }
