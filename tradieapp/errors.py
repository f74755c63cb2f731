"""
Error taxonomy shared by the authenticator, the authorization layer and the
quote/invoice state machines.

Route handlers let these propagate; ``register_exception_handlers`` turns them
into JSON responses of the form ``{"error": ..., "code": ...}``.
"""
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError


logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base exception for expected, client-visible failures."""

    status_code = 500
    default_code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class Unauthenticated(AppError):
    status_code = 401
    default_code = "unauthenticated"

    def __init__(self, message: str = "Unauthorized", code: Optional[str] = None):
        super().__init__(message, code)


class NotFound(AppError):
    status_code = 404
    default_code = "not_found"

    def __init__(self, message: str = "Not found", code: Optional[str] = None):
        super().__init__(message, code)


class Forbidden(AppError):
    status_code = 403
    default_code = "forbidden"

    def __init__(self, message: str = "Forbidden", code: Optional[str] = None):
        super().__init__(message, code)


class InvalidRequest(AppError):
    status_code = 400
    default_code = "invalid_request"


class Conflict(AppError):
    """A state machine transition that is not allowed from the current state."""

    status_code = 400
    default_code = "conflict"


class AlreadyAccepted(Conflict):
    def __init__(self, message: str = "Quote has already been accepted"):
        super().__init__(message, "already_accepted")


class AlreadyRejected(Conflict):
    def __init__(self, message: str = "Quote has already been rejected"):
        super().__init__(message, "already_rejected")


class QuoteExpired(Conflict):
    def __init__(self, message: str = "Quote has expired"):
        super().__init__(message, "expired")


class DepositRequired(Conflict):
    def __init__(self, message: str = "Deposit payment required before accepting quote"):
        super().__init__(message, "deposit_required")


class InvalidDeposit(Conflict):
    def __init__(self, message: str = "Invalid deposit amount"):
        super().__init__(message, "invalid_deposit")


class Internal(AppError):
    status_code = 500
    default_code = "internal_error"


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if isinstance(exc, Internal):
            logger.error("internal_error", error=exc.message)
            return _error_response(500, "Internal server error", exc.code)
        if isinstance(exc, Conflict):
            logger.info("transition_rejected", code=exc.code)
        else:
            logger.info("request_denied", status=exc.status_code, code=exc.code)
        return _error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        if loc:
            message = f"{loc}: {message}"
        return _error_response(400, message, "invalid_request")

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("storage_error", error_type=type(exc).__name__, error=str(exc))
        return _error_response(500, "Internal server error", "internal_error")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", error_type=type(exc).__name__)
        return _error_response(500, "Internal server error", "internal_error")
