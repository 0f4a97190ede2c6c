"""Database models."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    current_challenge: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    challenge_ceremony: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    challenge_issued_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    authenticators: Mapped[List["Authenticator"]] = relationship(
        back_populates="user", passive_deletes="all"
    )


class Authenticator(Base):
    __tablename__ = "authenticators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    credential_id: Mapped[str] = mapped_column(String(1024), unique=True, index=True)
    credential_public_key: Mapped[bytes] = mapped_column(LargeBinary)
    counter: Mapped[int] = mapped_column(BigInteger, default=0)
    transports: Mapped[List[str]] = mapped_column(JSON, default=list)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT", onupdate="CASCADE"), index=True
    )

    user: Mapped[User] = relationship(back_populates="authenticators")
