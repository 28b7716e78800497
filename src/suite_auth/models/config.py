"""
Persisted provider selection (singleton row) and the auth audit trail.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from suite_auth.models.base import Base, UTCDateTime, _new_id, _utc_now


class AuthProviderConfigRow(Base):
    """Admin-editable provider configuration. Only id=1 is read."""

    __tablename__ = "auth_provider_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    active_provider: Mapped[str] = mapped_column(String(20), default="local", nullable=False)
    managed_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    local_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    local_require_email_verification: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    local_session_duration_hours: Mapped[int] = mapped_column(Integer, default=168, nullable=False)
    local_max_failed_login_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    local_lockout_duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utc_now, onupdate=_utc_now, nullable=False
    )


class AuthEvent(Base):
    """Append-only audit record for authentication activity."""

    __tablename__ = "auth_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utc_now, nullable=False, index=True
    )
