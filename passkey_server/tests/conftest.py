from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from passkey_server import create_app
from passkey_server.challenges import ChallengeStore
from passkey_server.config import RPSettings
from passkey_server.database import Database
from passkey_server.services import AuthenticationVerifier, RegistrationVerifier
from softauthn import ORIGIN, RP_ID, SoftAuthenticator


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 9, 16, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def temp_settings(tmp_path: Path) -> RPSettings:
    return RPSettings(
        database_url=f"sqlite:///{tmp_path / 'rp.db'}",
        rp_id=RP_ID,
        rp_name="Test RP",
        origin=ORIGIN,
        jwt_secret="test-secret-" + "x" * 32,
    )


@pytest.fixture
def database(temp_settings):
    db = Database(temp_settings)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def challenge_store(temp_settings, clock) -> ChallengeStore:
    return ChallengeStore(ttl_seconds=temp_settings.challenge_ttl_seconds, clock=clock)


@pytest.fixture
def registration(temp_settings, challenge_store) -> RegistrationVerifier:
    return RegistrationVerifier(temp_settings, challenge_store)


@pytest.fixture
def authentication(temp_settings, challenge_store) -> AuthenticationVerifier:
    return AuthenticationVerifier(temp_settings, challenge_store)


@pytest.fixture
def soft_authenticator() -> SoftAuthenticator:
    return SoftAuthenticator(origin=ORIGIN, rp_id=RP_ID)


@pytest.fixture
def app(temp_settings):
    flask_app = create_app(temp_settings)
    flask_app.config.update(TESTING=True)
    yield flask_app
    flask_app.extensions["passkey_server"]["db"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()
