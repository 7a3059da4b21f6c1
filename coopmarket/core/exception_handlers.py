import logging
import uuid
from fastapi import FastAPI, Request, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from coopmarket.core.errors import DomainError, IntegrityViolation

log = logging.getLogger(__name__)


# Generate a clean request id for every response
def _rid():
    """Generates a unique request ID for tracing."""
    return uuid.uuid4().hex


def error_body(code: str, message, **extra) -> dict:
    error = {"code": code, "message": message}
    error.update(extra)
    return {"success": False, "error": error, "request_id": _rid()}


# ----------- Exception Handlers (called by FastAPI) -----------

def http_exception_handler(request: Request, exc: HTTPException):
    """Handles exceptions raised by HTTPException (e.g., 404, 400)."""
    return JSONResponse(status_code=exc.status_code, content=error_body("http_error", exc.detail))


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles Pydantic validation errors (422 Unprocessable Entity)."""
    body = error_body("validation_error", "Invalid input data", details=exc.errors())
    return JSONResponse(status_code=422, content=jsonable_encoder(body))


def domain_exception_handler(request: Request, exc: DomainError):
    """Conflicts, not-found and authorization failures raised by the domain layer."""
    log.info(f"{request.method} {request.url.path} rejected: {exc.reason} ({exc.message})")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.reason, exc.message))


def integrity_exception_handler(request: Request, exc: IntegrityViolation):
    """Ledger integrity failures. The client gets a generic failure, the log gets the detail."""
    log.error(f"Integrity violation on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body("integrity_error", "The command could not be recorded. Please retry."),
    )


def generic_exception_handler(request: Request, exc: Exception):
    """Handles all unhandled exceptions (500 Internal Server Error)."""
    log.exception(f"Unhandled exception on path: {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=error_body("server_error", "Internal Server Error"))


# ----------- Registration Function -----------

def setup_exception_handlers(app: FastAPI):
    """Registers all custom exception handlers with the FastAPI application."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DomainError, domain_exception_handler)
    app.add_exception_handler(IntegrityViolation, integrity_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    return app
