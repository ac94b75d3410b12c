"""FastAPI application entry point."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.api import api_router
from app.core.api import ApiResponse
from app.core.config import get_settings
from app.core.errors import (
    ErrorCode,
    GenerationNotFoundError,
    InvalidTaskStateError,
    TaskNotFoundError,
)
from app.core.logging import configure_logging, get_logger
from app.core.middleware import RequestContextMiddleware, get_request_id
from app.db.session import close_db, init_db

settings = get_settings()
logger = get_logger(__name__)


# =============================================================================
# Application Lifespan
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("application_startup", version=settings.app_version)

    init_db()
    logger.info("database_initialized")

    yield

    logger.info("application_shutdown")
    close_db()


# =============================================================================
# FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


def _error_json(request: Request, status_code: int, code: ErrorCode, message: str, details: dict) -> JSONResponse:
    body = ApiResponse.error_response(
        code=code,
        message=message,
        details=details,
        request_id=get_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(TaskNotFoundError)
async def task_not_found_handler(request: Request, exc: TaskNotFoundError):
    return _error_json(request, status.HTTP_404_NOT_FOUND, ErrorCode.TASK_NOT_FOUND, exc.message, exc.details)


@app.exception_handler(GenerationNotFoundError)
async def generation_not_found_handler(request: Request, exc: GenerationNotFoundError):
    return _error_json(request, status.HTTP_404_NOT_FOUND, ErrorCode.GENERATION_NOT_FOUND, exc.message, exc.details)


@app.exception_handler(InvalidTaskStateError)
async def invalid_state_handler(request: Request, exc: InvalidTaskStateError):
    return _error_json(request, status.HTTP_409_CONFLICT, ErrorCode.INVALID_STATE, exc.message, exc.details)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_type=type(exc).__name__,
    )
    return _error_json(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_ERROR,
        "Internal server error",
        {},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
