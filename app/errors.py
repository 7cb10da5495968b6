from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        detail: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.field = field
        self.value = value
        self.detail = detail


class InvalidIdentifierError(ApiError):
    def __init__(self, field: str, value: Any, message: str | None = None):
        super().__init__(
            400,
            "INVALID_IDENTIFIER",
            message or f"Invalid identifier for field '{field}'.",
            field=field,
            value=value,
        )


class InvalidDateError(ApiError):
    def __init__(self, field: str, value: Any):
        super().__init__(
            400,
            "INVALID_DATE",
            f"Invalid date for field '{field}'.",
            field=field,
            value=value,
        )


class MissingRequiredFieldError(ApiError):
    def __init__(self, field: str):
        super().__init__(
            400,
            "MISSING_REQUIRED_FIELD",
            f"Missing required field: {field}",
            field=field,
        )


class NotFoundError(ApiError):
    def __init__(self, code: str, message: str, *, field: str | None = None, value: Any = None):
        super().__init__(404, code, message, field=field, value=value)


class EntityValidationError(ApiError):
    def __init__(self, message: str, *, field: str | None = None, value: Any = None, detail: Any = None):
        super().__init__(400, "ENTITY_VALIDATION_FAILED", message, field=field, value=value, detail=detail)


class DuplicateScheduleConflictError(ApiError):
    def __init__(self, message: str, *, field: str | None = None, detail: Any = None):
        super().__init__(409, "DUPLICATE_WORK_SCHEDULE", message, field=field, detail=detail)


class ShiftConsolidationError(ApiError):
    def __init__(self, operator_id: int, detail: str):
        super().__init__(
            500,
            "SHIFT_CONSOLIDATION_FAILED",
            "Duplicate shifts could not be consolidated.",
            value=operator_id,
            detail=detail,
        )


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    field: str | None = None,
    value: Any = None,
    detail: Any = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if field is not None:
        error["field"] = field
    if value is not None:
        error["value"] = value
    if detail is not None:
        error["detail"] = detail
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"error": error}))
