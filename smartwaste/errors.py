"""
Error taxonomy for the collection core and its mapping onto HTTP responses
"""
import functools
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

logger = logging.getLogger(__name__)

WRITE_CONFLICT_CODE = 112


class WasteCollectionError(Exception):
    """Base class for errors surfaced to the API layer"""

    code = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(WasteCollectionError):
    code = "not_found"
    status_code = 404


class Forbidden(WasteCollectionError):
    code = "forbidden"
    status_code = 403


class InvalidInput(WasteCollectionError):
    code = "invalid_input"
    status_code = 400


class InvalidState(WasteCollectionError):
    code = "invalid_state"
    status_code = 409


class Conflict(WasteCollectionError):
    code = "conflict"
    status_code = 409


class Unavailable(WasteCollectionError):
    code = "unavailable"
    status_code = 503


def store_error(exc: PyMongoError) -> WasteCollectionError:
    """Classify a driver failure as Conflict or Unavailable"""
    if isinstance(exc, DuplicateKeyError):
        return Conflict("Duplicate key")
    if isinstance(exc, OperationFailure) and exc.code == WRITE_CONFLICT_CODE:
        return Conflict("Write conflict")
    if exc.has_error_label("TransientTransactionError"):
        return Conflict("Transient transaction error")
    return Unavailable("Persistence layer unavailable")


def translate_store_errors(func):
    """Re-raise pymongo failures from an async operation as core errors"""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"Store error in {func.__qualname__}: {e}", exc_info=True)
            raise store_error(e) from e

    return wrapper


def register_exception_handlers(app: FastAPI):
    """Map each error kind to a distinct JSON response"""

    @app.exception_handler(WasteCollectionError)
    async def handle_core_error(request: Request, exc: WasteCollectionError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return JSONResponse(
            status_code=InvalidInput.status_code,
            content={"error": InvalidInput.code, "detail": problems},
        )
