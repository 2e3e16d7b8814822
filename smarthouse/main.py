import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from smarthouse.db import engine
from smarthouse.errors import ApiError, error_response
from smarthouse.logging_utils import setup_json_logging
from smarthouse.routers import auth, housing, notifications, residents
from smarthouse.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from smarthouse.settings import get_cors_origins, get_settings, is_push_enabled

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("smarthouse.request")
startup_logger = logging.getLogger("smarthouse.startup")

HTTP_ERROR_CODES = {
    401: "INVALID_TOKEN",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "TOO_MANY_ATTEMPTS",
}


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth.router)
app.include_router(residents.router)
app.include_router(housing.router)
app.include_router(notifications.router)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = "anonymous"
    request.state.actor_id = None

    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                # Filled in by require_session once the bearer token is decoded.
                "actor": request.state.actor,
                "actor_id": request.state.actor_id,
                "flags": getattr(request.state, "flags", None),
            },
        )


def _validation_message(exc: RequestValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request."


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(request, status_code=422, code="VALIDATION_ERROR", message=_validation_message(exc))


@app.exception_handler(SQLAlchemyError)
async def handle_storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(
        "storage_error",
        extra={"request_id": request.state.request_id, "path": request.url.path, "method": request.method},
    )
    return error_response(request, status_code=500, code="STORAGE_ERROR", message="Sheet storage is unavailable.")


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(request, status_code=500, code="INTERNAL_ERROR", message="Unexpected server error.")


@app.on_event("startup")
async def check_sheet_tables() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError("Sheet tables are not ready: " + "; ".join(result.issues))


@app.get("/health")
def health() -> dict[str, Any]:
    result: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
    if result is None:
        result = SchemaGuardResult(
            ok=False,
            checked_at_utc=datetime.now(timezone.utc),
            issues=["SCHEMA_GUARD_NOT_RUN"],
        )
    return {
        "status": "ok",
        "app": settings.app_name,
        "timezone": settings.app_timezone,
        "schema_guard": result.to_dict(),
        "push_enabled": is_push_enabled(),
    }
