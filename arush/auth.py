"""
Session verification.

Sessions are issued elsewhere as HS256 JWTs; this module only verifies them.
A token is read from ``Authorization: Bearer <token>`` or from the session
cookie. Any missing, malformed or expired token resolves to no session.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Session(BaseModel):
    """The authenticated caller."""

    user_id: str
    email: str | None = None
    name: str | None = None


class SessionVerifier:
    def __init__(self, secret: str, auth_config: dict[str, Any]):
        self._secret = secret
        self.cookie_name: str = auth_config.get("cookie_name", "session-token")
        self.algorithm: str = auth_config.get("algorithm", "HS256")
        self.token_ttl = timedelta(minutes=int(auth_config.get("token_ttl_minutes", 1440)))

    def verify(self, token: str | None) -> Session | None:
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired session token")
            return None
        except jwt.InvalidTokenError as e:
            logger.info("Rejected invalid session token: %s", e)
            return None

        return Session(user_id=str(claims["sub"]), email=claims.get("email"), name=claims.get("name"))

    def from_headers(self, authorization: str | None, cookies: dict[str, str]) -> Session | None:
        """Resolve the session from a bearer header, falling back to the cookie."""
        token = None
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer":
                token = credentials.strip()
        if not token:
            token = cookies.get(self.cookie_name)
        return self.verify(token)

    def create_session_token(self, user_id: str, email: str | None = None, name: str | None = None) -> str:
        """Issue a token for ``user_id``; used by operators and tests."""
        now = datetime.now(UTC)
        payload: dict[str, Any] = {"sub": user_id, "iat": now, "exp": now + self.token_ttl}
        if email:
            payload["email"] = email
        if name:
            payload["name"] = name
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)
