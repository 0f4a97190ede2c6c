"""Single-use, ceremony-scoped challenges persisted on the user record."""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

from .errors import ChallengeExpired, ChallengeMismatch
from .models import User
from .registry import CredentialRegistry

LOGGER = logging.getLogger(__name__)

REGISTRATION = "registration"
AUTHENTICATION = "authentication"
CEREMONIES = (REGISTRATION, AUTHENTICATION)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChallengeStore:
    def __init__(
        self,
        ttl_seconds: int = 300,
        size: int = 32,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if size < 16:
            raise ValueError("Challenges need at least 16 bytes of entropy")
        self.ttl = timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self.size = size
        self.clock = clock

    def issue(self, registry: CredentialRegistry, user: User, ceremony: str) -> str:
        if ceremony not in CEREMONIES:
            raise ValueError(f"Unknown ceremony {ceremony!r}")
        challenge = secrets.token_urlsafe(self.size)
        if user.current_challenge is not None:
            LOGGER.debug("Superseding pending %s challenge for %s", user.challenge_ceremony, user.username)
        registry.set_challenge(user, challenge, ceremony, self.clock())
        return challenge

    def consume(
        self,
        registry: CredentialRegistry,
        user: User,
        presented: str,
        ceremony: str,
    ) -> None:
        stored = user.current_challenge
        if stored is None:
            raise ChallengeMismatch("No pending challenge")
        if not hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8")):
            raise ChallengeMismatch("Challenge mismatch")
        if user.challenge_ceremony != ceremony:
            raise ChallengeMismatch(f"Challenge was issued for {user.challenge_ceremony}")
        if self._expired(user.challenge_issued_at):
            raise ChallengeExpired("Challenge expired")
        if not registry.clear_challenge_if(user, stored):
            # superseded by a concurrent issue between our read and the swap
            raise ChallengeMismatch("Challenge was superseded")

    def _expired(self, issued_at: datetime | None) -> bool:
        if self.ttl is None:
            return False
        if issued_at is None:
            return True
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        return self.clock() - issued_at > self.ttl
