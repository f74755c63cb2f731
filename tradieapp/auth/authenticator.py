"""
Dual authentication.

A request is authenticated by an ordered list of strategies: the identity
provider session cookie used by the web dashboard, then the self-issued
bearer token used by the mobile app. Strategies report success or failure as
an ``AuthResult`` and never raise, so a fault in one channel cannot stop the
next one from being tried.
"""
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

import jwt
import structlog
from sqlalchemy.orm import Session
from starlette.requests import Request

from ..config import settings
from ..errors import Unauthenticated
from ..models.models import User
from .tokens import TokenInvalid, decode_token, extract_bearer_token


logger = structlog.get_logger(__name__)

# Non-browser dashboard clients may send the session token as a header instead of a cookie
SESSION_HEADER = "X-Session-Token"


@dataclass(frozen=True)
class AuthResult:
    user_id: Optional[uuid.UUID]
    channel: str
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.user_id is not None

    @classmethod
    def success(cls, user_id: uuid.UUID, channel: str) -> "AuthResult":
        return cls(user_id=user_id, channel=channel)

    @classmethod
    def failure(cls, channel: str, reason: str) -> "AuthResult":
        return cls(user_id=None, channel=channel, reason=reason)


class AuthStrategy:
    channel = "unknown"

    def authenticate(self, request: Request, db: Session) -> AuthResult:
        try:
            return self._authenticate(request, db)
        except Exception as e:
            logger.warning("auth_strategy_error", channel=self.channel, error_type=type(e).__name__, error=str(e))
            return AuthResult.failure(self.channel, "error")

    def _authenticate(self, request: Request, db: Session) -> AuthResult:
        raise NotImplementedError


class SessionCookieStrategy(AuthStrategy):
    """Identity provider session carried in a cookie (web dashboard)."""

    channel = "session"

    def __init__(
        self,
        verification_key: Optional[str] = None,
        algorithms: Optional[Sequence[str]] = None,
        issuer: Optional[str] = None,
        cookie_name: Optional[str] = None,
    ):
        self.verification_key = verification_key if verification_key is not None else settings.session_verification_key
        self.algorithms = list(algorithms or settings.session_algorithms)
        self.issuer = issuer if issuer is not None else settings.session_issuer
        self.cookie_name = cookie_name or settings.session_cookie_name

    def _authenticate(self, request: Request, db: Session) -> AuthResult:
        raw = request.cookies.get(self.cookie_name) or request.headers.get(SESSION_HEADER)
        if not raw:
            return AuthResult.failure(self.channel, "missing")
        if not self.verification_key:
            return AuthResult.failure(self.channel, "not_configured")
        options = {"require": ["exp", "sub"], "verify_aud": False}
        try:
            claims = jwt.decode(
                raw,
                self.verification_key,
                algorithms=self.algorithms,
                issuer=self.issuer or None,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            return AuthResult.failure(self.channel, "expired")
        except jwt.InvalidTokenError:
            return AuthResult.failure(self.channel, "invalid")
        user = db.query(User).filter(User.external_identity_id == str(claims["sub"])).first()
        if user is None:
            return AuthResult.failure(self.channel, "unknown_user")
        return AuthResult.success(user.id, self.channel)


class BearerTokenStrategy(AuthStrategy):
    """Self-issued mobile token in the Authorization header."""

    channel = "bearer"

    def _authenticate(self, request: Request, db: Session) -> AuthResult:
        token = extract_bearer_token(request.headers.get("Authorization"))
        if token is None:
            return AuthResult.failure(self.channel, "missing")
        try:
            payload = decode_token(token)
        except TokenInvalid as e:
            return AuthResult.failure(self.channel, e.reason)
        try:
            user_id = uuid.UUID(str(payload["user_id"]))
        except ValueError:
            return AuthResult.failure(self.channel, "invalid")
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            return AuthResult.failure(self.channel, "unknown_user")
        return AuthResult.success(user.id, self.channel)


class DualAuthenticator:
    def __init__(self, strategies: Optional[List[AuthStrategy]] = None):
        self.strategies = strategies if strategies is not None else [SessionCookieStrategy(), BearerTokenStrategy()]

    def resolve(self, request: Request, db: Session) -> AuthResult:
        """Return the first successful result, or the last failure when none succeed."""
        result = AuthResult.failure("none", "no_strategies")
        for strategy in self.strategies:
            result = strategy.authenticate(request, db)
            if result.ok:
                return result
        return result

    def authenticate(self, request: Request, db: Session) -> uuid.UUID:
        result = self.resolve(request, db)
        if not result.ok:
            raise Unauthenticated()
        structlog.contextvars.bind_contextvars(user_id=str(result.user_id), auth_channel=result.channel)
        return result.user_id
