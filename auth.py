from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings
from errors import UnauthorizedError

SKIP_AUTH_USER_ID = "skip-auth-user"


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: Optional[str] = None


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session")


def issue_session_token(user_id: str, email: Optional[str] = None) -> str:
    return _serializer().dumps({"u": user_id, "e": email})


def read_session_token(token: str) -> Optional[AuthUser]:
    settings = get_settings()
    try:
        data = _serializer().loads(token, max_age=settings.session_max_age_secs)
    except BadSignature:
        return None

    if not isinstance(data, dict):
        return None
    user_id = data.get("u")
    if not isinstance(user_id, str) or not user_id:
        return None
    email = data.get("e")
    return AuthUser(id=user_id, email=email if isinstance(email, str) else None)


def email_allowed(email: Optional[str]) -> bool:
    allowed = get_settings().allowed_emails
    if not allowed:
        return True
    return bool(email) and email.lower() in allowed


def require_user(request: Request) -> AuthUser:
    settings = get_settings()
    if settings.skip_auth:
        return AuthUser(id=SKIP_AUTH_USER_ID)

    token = request.cookies.get(settings.session_cookie)
    if not token:
        raise UnauthorizedError()
    user = read_session_token(token)
    if user is None:
        raise UnauthorizedError("Session is invalid or expired")
    if not email_allowed(user.email):
        raise UnauthorizedError("Account is not allowed to use this household")
    return user
