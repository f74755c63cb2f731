import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from ..config import settings


MOBILE_TOKEN = "mobile"
VERIFICATION_TOKEN = "verification"


class TokenInvalid(Exception):
    """Raised when a self-issued token fails verification."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def _create_token(sub: str, ttl_seconds: int, token_type: str, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_mobile_token(
    user_id: str,
    external_identity_id: str,
    email: str,
    ttl_seconds: Optional[int] = None,
) -> str:
    return _create_token(
        str(user_id),
        ttl_seconds if ttl_seconds is not None else settings.mobile_token_ttl_seconds,
        MOBILE_TOKEN,
        extra={
            "user_id": str(user_id),
            "external_identity_id": external_identity_id,
            "email": email,
        },
    )


def create_verification_token(email: str, ttl_seconds: Optional[int] = None) -> str:
    return _create_token(
        email,
        ttl_seconds if ttl_seconds is not None else settings.verification_token_ttl_seconds,
        VERIFICATION_TOKEN,
        extra={"email": email},
    )


def decode_token(token: str, expected_type: str = MOBILE_TOKEN) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenInvalid("expired")
    except jwt.InvalidTokenError:
        raise TokenInvalid("invalid")
    if payload.get("type") != expected_type:
        raise TokenInvalid("wrong_type")
    if expected_type == MOBILE_TOKEN and not payload.get("user_id"):
        raise TokenInvalid("invalid")
    return payload


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """Return the credential of an ``Authorization: Bearer <token>`` header.

    Absence, any other scheme, or a header that is not exactly two parts all
    mean "no credential" and yield None.
    """
    if not header:
        return None
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]
