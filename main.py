# Essential imports
import asyncio
import time
from fastapi import FastAPI, Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from routers import orders, marketplace, events

# Import all models for SQLAlchemy relationship resolution
import models
from core.database import Base, engine

# Rate limiter imports
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from middleware.rate_limiter import limiter

# Logging imports
from core.logging_config import setup_logging
from utils.logger import get_logger, log_request
from middleware import RequestIDMiddleware, get_request_id
from core.config import settings
from core.exceptions import AppError
from services.expiry_sweeper import run_expiry_sweeper

# CORS imports
from fastapi.middleware.cors import CORSMiddleware

setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    stop_event = asyncio.Event()
    sweeper = None
    if settings.EXPIRY_SWEEPER_ENABLED and settings.ENV != "testing":
        sweeper = asyncio.create_task(
            run_expiry_sweeper(settings.MARKETPLACE_EXPIRY_INTERVAL_SECONDS, stop_event)
        )

    logger.info("Application startup complete", extra={"event": "startup", "expiry_sweeper": sweeper is not None})
    yield

    stop_event.set()
    if sweeper is not None:
        await sweeper
    logger.info("Application shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Food Rescue API",
    description="Order lifecycle and canceled-order marketplace for a food ordering platform",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every HTTP request with method, path, status code and duration."""
    start_time = time.time()

    response = await call_next(request)

    log_request(
        logger,
        request.method,
        request.url.path,
        response.status_code,
        (time.time() - start_time) * 1000,
        client_ip=request.client.host if request.client else "unknown",
    )

    return response


app.add_middleware(RequestIDMiddleware)


@app.get("/health")
async def health_check():
    logger.debug("Health check requested")
    return {"status": "Healthy"}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Business-rule violations: {"error": kind, "detail": reason}."""
    if exc.status_code >= 500:
        logger.error(
            f"Request failed: {exc.detail}",
            extra={"path": request.url.path, "method": request.method, "error": exc.kind,
                   "request_id": get_request_id(request)}
        )
        # Storage messages stay in the logs
        detail = "Internal server error"
    else:
        detail = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": detail}
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        f"Database error: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "request_id": get_request_id(request)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "server_error", "detail": "Internal server error"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch all unhandled exceptions and log them with the full stack trace.
    Clients only get a generic message.
    """
    # FastAPI handles these itself
    if isinstance(exc, (HTTPException, RequestValidationError)):
        raise

    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "request_id": get_request_id(request)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


app.include_router(orders.router)
app.include_router(marketplace.router)
app.include_router(events.router)


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
