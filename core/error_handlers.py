"""
FastAPI exception handlers

Domain errors render their own ``to_dict()``; request validation becomes a
400 with one message per field; anything else is a bare 500.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.exceptions import RateLimitError, StorefrontError
from core.logging import get_logger

logger = get_logger(__name__)


def _field_errors(exc: RequestValidationError) -> dict:
    errors = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        errors[".".join(loc) or "body"] = error.get("msg", "Invalid value")
    return errors


async def storefront_error_handler(request: Request, exc: StorefrontError):
    """Handle checkout domain errors"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        extra={"error_code": exc.error_code, "status_code": exc.status_code, "path": request.url.path},
    )
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle request body validation errors"""
    errors = _field_errors(exc)
    logger.info("Invalid request data", extra={"path": request.url.path, "fields": sorted(errors)})
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request data",
            "message": "Please check the highlighted fields and try again.",
            "code": "VALIDATION_ERROR",
            "details": {"errors": errors},
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.exception("Unexpected error", extra={"path": request.url.path}, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": "An unexpected error occurred"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
