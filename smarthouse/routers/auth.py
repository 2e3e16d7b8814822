from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from smarthouse.audit import log_audit
from smarthouse.errors import ApiError
from smarthouse.rowstore import Workbook, get_workbook
from smarthouse.schemas import LoginRequest, TokenResponse
from smarthouse.security import (
    INVALID_CREDENTIALS_MESSAGE,
    SessionIdentity,
    authenticate,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_session,
)
from smarthouse.services.sheets import get_settings

router = APIRouter(tags=["auth"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


@router.post("/api/auth/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    book: Workbook = Depends(get_workbook),
) -> TokenResponse:
    ip = _client_ip(request)
    request_id = getattr(request.state, "request_id", None)
    request.state.actor = "system"
    request.state.actor_id = "system"

    if ip:
        ensure_login_attempt_allowed(ip)

    identity = authenticate(get_settings(book), payload.name, payload.password)
    if identity is None:
        if ip:
            register_login_failure(ip)
        log_audit(
            book,
            actor_id=payload.name.strip(),
            action="login_failed",
            success=False,
            details={"ip": ip},
            request_id=request_id,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message=INVALID_CREDENTIALS_MESSAGE)

    if ip:
        register_login_success(ip)
    token, expires_in = create_access_token(identity)
    log_audit(
        book,
        actor_id=identity.uid,
        actor_name=identity.name,
        action="login_success",
        details={"ip": ip, "is_admin": identity.is_admin},
        request_id=request_id,
    )
    return TokenResponse(
        access_token=token,
        expires_in=expires_in,
        uid=identity.uid,
        name=identity.name,
        is_admin=identity.is_admin,
    )


@router.get("/api/auth/me")
def me(identity: SessionIdentity = Depends(require_session)) -> dict[str, Any]:
    return identity.to_dict()
