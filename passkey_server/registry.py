"""Credential registry: users and their bound public-key credentials."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict
from .models import Authenticator, User

LOGGER = logging.getLogger(__name__)


class CredentialRegistry:
    """Durable store of users and credentials bound to one SQLAlchemy session.

    Uniqueness of usernames and credential IDs is enforced by the database
    constraints; the lookups done here only produce friendlier errors on the
    common, non-racing path.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # Users -------------------------------------------------------------
    def create_user(self, username: str) -> User:
        if self.find_user(username) is not None:
            raise Conflict("Username already taken")
        user = User(username=username)
        self._flush_new(user, "Username already taken")
        LOGGER.info("Created user %s (id=%s)", username, user.id)
        return user

    def find_user(self, username: str) -> User | None:
        return self.session.scalar(select(User).where(User.username == username))

    def ensure_pending_user(self, username: str) -> User:
        """Return the user for a registration ceremony, creating it on first use.

        A user that already owns credentials is considered taken.
        """
        user = self.find_user(username)
        if user is None:
            return self.create_user(username)
        if self.list_credentials(user):
            raise Conflict("Username already taken")
        return user

    # Credentials -------------------------------------------------------
    def list_credentials(self, user: User) -> List[Authenticator]:
        return list(
            self.session.scalars(
                select(Authenticator)
                .where(Authenticator.user_id == user.id)
                .order_by(Authenticator.id)
            )
        )

    def add_credential(
        self,
        user: User,
        credential_id: str,
        public_key: bytes,
        counter: int = 0,
        transports: Iterable[str] | None = None,
    ) -> Authenticator:
        existing = self.session.scalar(
            select(Authenticator.id).where(Authenticator.credential_id == credential_id)
        )
        if existing is not None:
            raise Conflict("Credential already registered")
        credential = Authenticator(
            credential_id=credential_id,
            credential_public_key=public_key,
            counter=counter,
            transports=list(transports or []),
            user_id=user.id,
        )
        self._flush_new(credential, "Credential already registered")
        return credential

    def find_credential(self, user: User, credential_id: str) -> Authenticator | None:
        return self.session.scalar(
            select(Authenticator).where(
                Authenticator.user_id == user.id,
                Authenticator.credential_id == credential_id,
            )
        )

    def update_counter(self, credential: Authenticator, new_counter: int) -> None:
        credential.counter = new_counter
        self.session.flush()

    # Challenges --------------------------------------------------------
    def set_challenge(
        self,
        user: User,
        challenge: str | None,
        ceremony: str | None = None,
        issued_at: datetime | None = None,
    ) -> None:
        user.current_challenge = challenge
        user.challenge_ceremony = ceremony if challenge is not None else None
        user.challenge_issued_at = issued_at if challenge is not None else None
        self.session.flush()

    def clear_challenge_if(self, user: User, expected: str) -> bool:
        """Clear the pending challenge only if it still equals ``expected``."""
        result = self.session.execute(
            update(User)
            .where(User.id == user.id, User.current_challenge == expected)
            .values(current_challenge=None, challenge_ceremony=None, challenge_issued_at=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.refresh(user)
        return True

    # Helpers -----------------------------------------------------------
    def _flush_new(self, instance: object, conflict_message: str) -> None:
        self.session.add(instance)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict(conflict_message) from exc
