from datetime import timedelta
from typing import Optional

import bcrypt
from fastapi import Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from pydantic import ValidationError as PydanticValidationError

from config import Settings
from schemas import SessionUser

COOKIE_NAME = "ft_token"
SESSION_MAX_AGE = timedelta(days=7)
_BCRYPT_MAX_BYTES = 72


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.secret_key, salt="session-token")


def issue_token(settings: Settings, user: SessionUser) -> str:
    return _serializer(settings).dumps(user.model_dump())


def verify_token(settings: Settings, token: str) -> Optional[SessionUser]:
    """Return the token's identity, or None when expired, tampered or malformed."""
    try:
        data = _serializer(settings).loads(
            token, max_age=int(SESSION_MAX_AGE.total_seconds())
        )
    except BadSignature:
        # SignatureExpired and BadTimeSignature are both BadSignature
        return None
    if not isinstance(data, dict):
        return None
    try:
        return SessionUser.model_validate(data)
    except PydanticValidationError:
        return None


def identify(request: Request, settings: Settings) -> Optional[SessionUser]:
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        return None
    return verify_token(settings, token)


def set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=int(SESSION_MAX_AGE.total_seconds()),
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.set_cookie(
        COOKIE_NAME,
        "",
        max_age=0,
        expires=0,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def hash_password(password: str, rounds: int = 10) -> str:
    # bcrypt only looks at the first 72 bytes
    secret = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    secret = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(secret, password_hash.encode("utf-8"))
    except ValueError:
        return False
