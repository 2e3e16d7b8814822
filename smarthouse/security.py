from __future__ import annotations

import hmac
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from smarthouse.errors import ApiError
from smarthouse.schemas import Coordinator, HousingSettings
from smarthouse.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_UID = "admin"
INVALID_CREDENTIALS_MESSAGE = "Nieprawidłowa nazwa użytkownika lub hasło."

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)


@dataclass(frozen=True, slots=True)
class SessionIdentity:
    uid: str
    name: str
    is_admin: bool

    def to_dict(self) -> dict[str, Any]:
        return {"uid": self.uid, "name": self.name, "is_admin": self.is_admin}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(ip: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[ip]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(ip, None)


def ensure_login_attempt_allowed(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        queue = _FAILED_ATTEMPTS.get(ip, deque())
        if len(queue) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        _FAILED_ATTEMPTS[ip].append(now)


def register_login_success(ip: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(ip, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        # Invalid/legacy hash values should not crash auth flow.
        return False


def _unquote(value: str) -> str:
    # Common deployment copy/paste issue: quoted env values.
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def verify_admin_credentials(username: str, password: str) -> bool:
    settings = get_settings()
    env_username = _unquote((settings.admin_user or "").strip())
    env_pass_hash = _unquote((settings.admin_pass_hash or "").strip())

    if not hmac.compare_digest(username.strip().lower(), env_username.lower()):
        return False
    if not env_pass_hash:
        return False
    return verify_password(password, env_pass_hash)


def find_coordinator_by_credentials(
    housing: HousingSettings,
    name: str,
    password: str,
) -> Coordinator | None:
    """Coordinator passwords are stored in plain text; comparison stays constant-time."""
    wanted = name.strip().lower()
    for coordinator in housing.coordinators:
        if coordinator.name.strip().lower() != wanted:
            continue
        if coordinator.password and hmac.compare_digest(coordinator.password.encode(), password.encode()):
            return coordinator
    return None


def authenticate(housing: HousingSettings, name: str, password: str) -> SessionIdentity | None:
    if verify_admin_credentials(name, password):
        return SessionIdentity(uid=ADMIN_UID, name="Admin", is_admin=True)
    coordinator = find_coordinator_by_credentials(housing, name, password)
    if coordinator is None:
        return None
    return SessionIdentity(uid=coordinator.uid, name=coordinator.name, is_admin=coordinator.is_admin)


def create_access_token(identity: SessionIdentity) -> tuple[str, int]:
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": identity.uid,
        "name": identity.name,
        "is_admin": identity.is_admin,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60


def decode_token(token: str) -> SessionIdentity:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    return SessionIdentity(
        uid=subject,
        name=str(payload.get("name") or subject),
        is_admin=bool(payload.get("is_admin")),
    )


def require_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> SessionIdentity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    identity = decode_token(credentials.credentials)
    request.state.actor = "admin" if identity.is_admin else "coordinator"
    request.state.actor_id = identity.uid
    return identity


def require_admin(identity: SessionIdentity = Depends(require_session)) -> SessionIdentity:
    if not identity.is_admin:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return identity
