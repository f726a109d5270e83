"""
Error taxonomy and the FastAPI handlers that render it.

Every error leaves the API as ``{"error": "<message>"}`` with the status
code carried by the exception class.
"""
import logging
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInputError(ServiceError):
    status_code = 400


class AuthenticationError(ServiceError):
    status_code = 401


class AuthorizationError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class DuplicateRecordError(ServiceError):
    status_code = 400


class StateConflictError(ServiceError):
    status_code = 400

    def __init__(self, action: str, expected: str, actual: Optional[str]):
        self.action = action
        self.expected = expected
        self.actual = actual
        super().__init__(f"Cannot {action}: status is {actual}, expected {expected}")


class ExternalDependencyError(ServiceError):
    status_code = 500


class WebhookSignatureError(AuthenticationError):
    status_code = 400


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def service_exception_handler(request: Request, exc: ServiceError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message,
        extra={"status_code": exc.status_code},
    )
    return error_response(exc.message, exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first_error = exc.errors()[0]
    field = ".".join(str(loc) for loc in first_error.get("loc", []) if loc != "body")
    message = first_error.get("msg", "Validation error")
    logger.warning("Validation error on %s: %s", field, message)
    return error_response(f"Validation error on field '{field}': {message}", 400)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(str(exc.detail), exc.status_code)


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return error_response("An unexpected error occurred", 500)


def add_error_handlers(app) -> None:
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
