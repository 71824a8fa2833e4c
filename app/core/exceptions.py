from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class LedgerValidationError(AppError):
    """Malformed input, rejected before the store is touched."""

    def __init__(self, message: str = "Invalid request", details: dict[str, Any] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InsufficientBalanceError(AppError):
    """Debit (or lock/unlock) larger than what the address holds. Never retried, nothing written."""

    def __init__(self, address: str, available: int, required: int, field: str = "balance"):
        super().__init__(
            f"Insufficient pAION {field.replace('_', ' ')}. Current: {available}, Required: {required}",
            code="INSUFFICIENT_BALANCE",
            status_code=status.HTTP_409_CONFLICT,
            details={"address": address, "available": available, "required": required, "field": field},
        )
        self.address = address
        self.available = available
        self.required = required


class IdempotencyMismatchError(AppError):
    """source_id reused for a different operation on the same address."""

    def __init__(self, idempotency_key: str, recorded: dict[str, Any], requested: dict[str, Any]):
        super().__init__(
            "source_id was already used for a different operation",
            code="IDEMPOTENCY_MISMATCH",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": idempotency_key, "recorded": recorded, "requested": requested},
        )


class StorageConflictError(AppError):
    """The backing store refused the write. The whole operation may be retried by the caller."""

    def __init__(self, message: str = "Ledger write failed, retry the operation", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="STORAGE_CONFLICT",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


def error_body(exc: AppError) -> dict[str, Any]:
    return {
        "success": False,
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        },
    }


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = error_body(exc)
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "success": False,
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "success": False,
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
