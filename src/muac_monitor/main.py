"""FastAPI application entrypoint for the MUAC monitor service."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from .config import get_settings
from .db import init_db
from .errors import ApiError, NotFoundError, StorageError, ValidationError, error_response
from .observability import configure_logging, log_event
from .routes.locations import router as locations_router
from .routes.measurements import router as measurements_router
from .routes.reports import router as reports_router
from .routes.system import router as system_router

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("muac_monitor")


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialize persistence during application startup."""
    init_db()
    yield


app = FastAPI(title=settings.service_name, version=settings.service_version, lifespan=lifespan)
app.include_router(system_router)
app.include_router(measurements_router)
app.include_router(reports_router)
app.include_router(locations_router)


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError):
    return error_response(
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        trace_id=exc.trace_id or request.headers.get("x-trace-id"),
        details=exc.details,
    )


@app.exception_handler(ValidationError)
async def handle_domain_validation_error(request: Request, exc: ValidationError):
    return error_response(
        status_code=400,
        code="VALIDATION_ERROR",
        message=str(exc),
        trace_id=request.headers.get("x-trace-id"),
    )


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError):
    return error_response(
        status_code=404,
        code="NOT_FOUND",
        message=str(exc),
        trace_id=request.headers.get("x-trace-id"),
    )


@app.exception_handler(StorageError)
async def handle_storage_error(request: Request, exc: StorageError):
    log_event(
        logger,
        "storage_error",
        level=logging.ERROR,
        path=request.url.path,
        trace_id=request.headers.get("x-trace-id"),
        error=str(exc),
    )
    return error_response(
        status_code=500,
        code="STORAGE_ERROR",
        message="Internal storage failure.",
        trace_id=request.headers.get("x-trace-id"),
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException):
    status_to_code = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "UNPROCESSABLE_ENTITY",
    }
    return error_response(
        status_code=exc.status_code,
        code=status_to_code.get(exc.status_code, "INTERNAL_SERVER_ERROR"),
        message=str(exc.detail),
        trace_id=request.headers.get("x-trace-id"),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", [])),
            "issue": err.get("msg", "invalid value"),
        }
        for err in exc.errors()
    ]
    return error_response(
        status_code=422,
        code="UNPROCESSABLE_ENTITY",
        message="Validation failed.",
        trace_id=request.headers.get("x-trace-id"),
        details=details,
    )
