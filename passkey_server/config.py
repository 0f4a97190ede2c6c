"""Pydantic based configuration for the passkey server."""

from __future__ import annotations

import secrets
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DB_PATH = DATA_DIR / "passkeys.db"

COSE_ES256 = -7
COSE_EDDSA = -8
COSE_PS256 = -37
COSE_RS256 = -257


class RPSettings(BaseSettings):
    """Runtime settings, read from ``PASSKEY_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="PASSKEY_", env_file=".env", extra="ignore")

    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string used by the credential registry",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    rp_name: str = Field(default="Passkey JWT Server", description="Human readable RP name")
    origin: str = Field(
        default="http://localhost:5173",
        description="Expected origin for clientDataJSON validation and CORS",
    )
    supported_algorithms: List[int] = Field(
        default_factory=lambda: [COSE_ES256, COSE_EDDSA, COSE_RS256, COSE_PS256],
        description="COSE algorithm identifiers the RP will accept, in preference order",
    )
    ceremony_timeout_ms: int = Field(
        default=60_000, description="Timeout hint sent to the client with ceremony options"
    )
    challenge_ttl_seconds: int = Field(
        default=300,
        ge=0,
        description="Lifetime of a pending challenge; 0 keeps challenges until superseded",
    )
    jwt_secret: str = Field(
        default_factory=lambda: secrets.token_hex(32),
        description="Key used to sign session tokens; random per process when unset",
    )
    jwt_algorithm: str = Field(default="HS256", description="Session token signing algorithm")
    token_ttl_seconds: int = Field(
        default=3600, gt=0, description="Validity of an issued session token"
    )
