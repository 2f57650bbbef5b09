from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import os
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from assessment_portal.core.logging_config import setup_logging  # noqa: E402
from assessment_portal.core.settings import settings  # noqa: E402
from assessment_portal.middleware.logging import LoggingMiddleware  # noqa: E402
from assessment_portal.config import init_firebase  # noqa: E402
from assessment_portal.routes import health, scheduled_tasks, test_assignments  # noqa: E402
from assessment_portal.exceptions import (  # noqa: E402
    AnalysisServiceException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)

# Set up logging first
logger = setup_logging()

_docs_enabled = settings.is_development or os.getenv("SHOW_DOCS", "").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 50)
    logger.info("Assessment Portal API starting up")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    logger.info(f"SQL Debug: {'enabled' if settings.sql_debug else 'disabled'}")
    logger.info(
        f"Analysis service: {settings.analysis_api_url} (timeout {settings.analysis_timeout_seconds:.0f}s)"
    )

    from assessment_portal.services.email import get_sendgrid_client
    email_status = "configured" if get_sendgrid_client() else "not configured (logging only)"
    logger.info(f"SendGrid Email: {email_status}")
    logger.info("=" * 50)
    yield
    logger.info("Assessment Portal API shutting down gracefully")


app = FastAPI(
    title="Assessment Portal API",
    description="Test assignment lifecycle, scoring and behavioral analytics",
    version="1.0.0",
    docs_url="/docs" if _docs_enabled else None,
    redoc_url="/redoc" if _docs_enabled else None,
    lifespan=lifespan,
)

# Add middleware in correct order (last added = first executed)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Initialize Firebase (skip in test environment)
if os.getenv("ENV") != "test":
    init_firebase()

# Include routers
app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(test_assignments.router)
app.include_router(scheduled_tasks.router, prefix="/scheduled", tags=["Scheduled"])


def _correlation_id(request: Request) -> str:
    return getattr(request.state, 'correlation_id', 'unknown')


# Exception handlers
@app.exception_handler(UnauthorizedException)
async def unauthorized_exception_handler(request: Request, exc: UnauthorizedException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Unauthorized access attempt on {request.url.path}")
    return JSONResponse(
        status_code=401,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(ForbiddenException)
async def forbidden_exception_handler(request: Request, exc: ForbiddenException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Forbidden access attempt on {request.url.path}")
    return JSONResponse(
        status_code=403,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(ValidationException)
async def validation_exception_handler(request: Request, exc: ValidationException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Validation error on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=400,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(NotFoundException)
async def not_found_exception_handler(request: Request, exc: NotFoundException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Not found error on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=404,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(ConflictException)
async def conflict_exception_handler(request: Request, exc: ConflictException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Conflict on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=409,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(AnalysisServiceException)
async def analysis_service_exception_handler(request: Request, exc: AnalysisServiceException):
    correlation_id = _correlation_id(request)
    logger.error(f"[{correlation_id}] Analysis service failure ({exc.error_code}) on {request.url.path}: {exc.detail}")
    content = {"detail": exc.detail, "error": exc.error_code, "correlation_id": correlation_id}
    if exc.remote_status is not None:
        content["details"] = {"status": exc.remote_status, "body": exc.remote_body}
    return JSONResponse(status_code=exc.status_code, content=content)

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    correlation_id = _correlation_id(request)
    logger.error(f"[{correlation_id}] Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    if settings.is_development:
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": str(exc),
                "correlation_id": correlation_id,
                "type": type(exc).__name__
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id
        }
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Assessment Portal API",
        "version": "1.0.0",
        "environment": settings.environment,
        "docs_url": "/docs" if _docs_enabled else None,
        "health_check": "/health",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info" if settings.is_development else "warning"
    )
