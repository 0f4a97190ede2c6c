"""Stateless bearer session tokens."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

import jwt

from .challenges import utcnow
from .errors import TokenExpired, TokenInvalid, Unauthorized

LOGGER = logging.getLogger(__name__)


class SessionIssuer:
    """Mints and validates signed, time-bounded tokens naming a username.

    There is no revocation list: a token stays valid until ``exp``.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    def issue(self, username: str) -> str:
        issued_at = self.clock()
        claims = {
            "sub": username,
            "username": username,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def validate(self, token: str) -> str:
        try:
            # expiry is checked below against the injected clock
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as exc:
            LOGGER.warning("Rejected session token: %s", exc)
            raise TokenInvalid("Invalid token") from exc
        expires_at = claims["exp"]
        if not isinstance(expires_at, (int, float)):
            raise TokenInvalid("Invalid token expiry")
        if self.clock().timestamp() >= expires_at:
            raise TokenExpired("Token expired")
        subject = claims["sub"]
        if not isinstance(subject, str) or not subject:
            raise TokenInvalid("Invalid token subject")
        return subject

    def authenticate_header(self, header: str | None) -> str:
        """Validate an ``Authorization: Bearer <token>`` header value."""
        if not header:
            raise Unauthorized("Missing bearer token")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthorized("Missing bearer token")
        return self.validate(token.strip())
