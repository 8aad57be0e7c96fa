"""Error kinds surfaced by the API and the handlers that render them.

Services raise these; the handlers registered by ``install_error_handlers``
turn them into ``{"error": ...}`` JSON bodies with the matching status code.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(ApiError):
    status_code = 400


class Unauthenticated(ApiError):
    status_code = 401


class InvalidToken(ApiError):
    status_code = 403


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class InsufficientStock(ApiError):
    status_code = 400

    def __init__(self, product_name: str, requested: int, available: int):
        super().__init__(f"Insufficient stock for {product_name}. Only {available} left.")
        self.product_name = product_name
        self.requested = requested
        self.available = available


class UploadRejected(ApiError):
    status_code = 400


def is_unique_violation(exc: IntegrityError) -> bool:
    # SQLite and PostgreSQL say "unique", MySQL says "Duplicate entry"
    text = str(exc.orig).lower()
    return "unique" in text or "duplicate" in text


def error_body(message: str, details=None) -> dict:
    body = {"error": message}
    if details is not None and not config.is_production():
        body["details"] = details
    return body


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    first = errors[0]
    # loc looks like ("body", "quantity"); drop the source part
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    msg = first.get("msg", "invalid value")
    return f"{field}: {msg}" if field else msg


async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = _describe_validation_error(exc)
    logger.info("Rejected request to %s: %s", request.url.path, message)
    return JSONResponse(status_code=InvalidRequest.status_code, content=error_body(message))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)), headers=getattr(exc, "headers", None))


async def integrity_error_handler(request: Request, exc: IntegrityError):
    # only duplicate-value violations are the client's doing
    if is_unique_violation(exc):
        logger.warning("Unique constraint violation on %s: %s", request.url.path, exc.orig)
        return JSONResponse(status_code=Conflict.status_code, content=error_body("Resource conflicts with existing data."))
    return await unhandled_error_handler(request, exc)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("An unexpected error occurred.", str(exc)))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
