from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class NotFoundError(ApiError):
    """Raised when an update or delete targets a row id that does not exist."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND"):
        super().__init__(status_code=404, code=code, message=message)


class UnknownFieldError(ApiError):
    def __init__(self, fields: list[str]):
        super().__init__(status_code=422, code="UNKNOWN_FIELD", message=f"Unknown field: {', '.join(fields)}")
        self.fields = fields


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
