"""
User and local credential models.

``users`` is provider-agnostic: local, managed and OAuth-created accounts all
live here. ``local_credentials`` exists only for accounts the local provider
owns (including OAuth-only accounts, which carry an empty password hash).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from suite_auth.models.base import Base, UTCDateTime, _new_id, _utc_now


class User(Base):
    """Identity record shared by every provider."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auth_provider: Mapped[str] = mapped_column(String(20), default="local", nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utc_now, onupdate=_utc_now, nullable=False
    )

    credential: Mapped[Optional["LocalCredential"]] = relationship(
        back_populates="user", uselist=False, lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class LocalCredential(Base):
    """Password credential and lockout counters (1:1 with User)."""

    __tablename__ = "local_credentials"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    email_verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    password_changed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now, nullable=False)

    user: Mapped[User] = relationship(back_populates="credential")

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def __repr__(self) -> str:
        return f"<LocalCredential(user_id={self.user_id}, attempts={self.failed_login_attempts})>"
