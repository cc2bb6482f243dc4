"""
Buyback Intake API - Main Application.

FastAPI application with CORS enabled for frontend communication.
Domain errors are mapped to the standard error envelope here, so routers
only translate HTTP shapes to service calls.
"""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import __version__
from api.dependencies import get_settings
from api.models import ErrorBody, ErrorResponse
from domain.errors import BuybackError, RateLimitedError

logging.basicConfig(
    level=getattr(logging, get_settings().log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Buyback Intake API",
    description="REST API for submitting, appraising and tracking buyback requests",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, body: ErrorBody, headers=None) -> JSONResponse:
    payload = ErrorResponse(error=body, status_code=status_code)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload.model_dump(exclude_none=True)),
        headers=headers,
    )


@app.exception_handler(BuybackError)
async def buyback_error_handler(request: Request, exc: BuybackError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"Request failed: {exc.code}",
        extra={"code": exc.code, "status_code": exc.status_code, "path": request.url.path},
    )

    body = ErrorBody(code=exc.code, message=exc.message, details=exc.details)
    headers = None
    if isinstance(exc, RateLimitedError):
        body.reset_time = exc.reset_time
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return _error_response(exc.status_code, body, headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')} - {error['msg']}"
        for error in exc.errors()
    ]
    return _error_response(
        400,
        ErrorBody(code="VALIDATION_ERROR", message="Request is invalid", details=details),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        extra={"type": exc.__class__.__name__, "path": request.url.path},
        exc_info=exc,
    )
    settings = request.app.dependency_overrides.get(get_settings, get_settings)()
    body = ErrorBody(code="INTERNAL_ERROR", message="An internal error occurred. Please try again later.")
    if not settings.is_production:
        body.trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return _error_response(500, body)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "buyback-intake-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Buyback Intake API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import buyback, tracking

app.include_router(tracking.router, prefix="/api/v1", tags=["Tracking"])
app.include_router(buyback.router, prefix="/api/v1", tags=["Buyback Requests"])
