import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_google_calendar,  # noqa: F401
)
from .config import Settings, get_settings
from .database import Base, engine
from .domain.calendar_sync.errors import CalendarSyncError
from .domain.calendar_sync.router import router as calendar_sync_router
from .routes.google_calendar import router as google_calendar_router
from .security_middleware import PreflightCORSMiddleware
from .utils.token_cipher import ConfigurationError, TokenCipherError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    settings: Settings = app.state.settings
    if not settings.token_encryption_key:
        logger.warning("TOKEN_ENCRYPTION_KEY not set - calendar token operations will fail")
    if not settings.google_configured:
        logger.warning("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set - calendar sync disabled")

    yield
    logger.info("Application shutting down...")


def _pending_tasks(request: Request) -> Optional[BackgroundTasks]:
    """Background work queued before the error (legacy token upgrades)"""
    return getattr(request.state, "background_tasks", None)


async def calendar_sync_error_handler(request: Request, exc: CalendarSyncError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        background=_pending_tasks(request),
    )


async def token_cipher_error_handler(request: Request, exc: TokenCipherError):
    # Only the error type is logged, never token material
    logger.error(f"❌ Token cipher error on {request.url.path}: {type(exc).__name__}")
    message = (
        "Calendar sync not configured"
        if isinstance(exc, ConfigurationError)
        else "Internal server error"
    )
    return JSONResponse(
        status_code=500, content={"error": message}, background=_pending_tasks(request)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Report request validation failures as 400 {"error": ...}, or 401 when the
    Authorization header is the problem
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(f"Authentication failed for {request.url.path}: invalid Authorization header")
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    logger.warning(f"Validation error for {request.url.path}")
    return JSONResponse(status_code=400, content={"error": "Invalid parameters"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API with configuration read once at startup"""
    settings = settings or get_settings()

    app = FastAPI(title="AgendaCerta API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings

    app.add_exception_handler(CalendarSyncError, calendar_sync_error_handler)
    app.add_exception_handler(TokenCipherError, token_cipher_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # CORS: only allow-listed origins are echoed back, never "*"
    logger.info(f"CORS allowed origins: {list(settings.allowed_origins)}")
    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    # Routes
    app.include_router(calendar_sync_router)
    app.include_router(google_calendar_router)

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


app = create_app()
