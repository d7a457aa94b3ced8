"""SQLAlchemy models for accounts and their sessions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from identity_service.db.session import Base
from identity_service.models.enums import AuthProvider, UserRole
from identity_service.utils.clock import ensure_aware, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Timestamped:
    """Creation and last-modification times, filled in by the ORM."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class User(Timestamped, Base):
    """Account record holding credentials and lockout state."""

    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_created_at", "created_at"),
        Index("ix_users_password_reset_token", "password_reset_token"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_new_id
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    name: Mapped[str | None] = mapped_column(String(255))
    password_hash: Mapped[str | None] = mapped_column(Text())
    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=UserRole.USER.value,
        server_default=UserRole.USER.value,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="1",
    )
    auth_provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=AuthProvider.EMAIL.value,
        server_default=AuthProvider.EMAIL.value,
    )
    provider_user_id: Mapped[str | None] = mapped_column(String(255))
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="0",
    )
    login_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    password_reset_token: Mapped[str | None] = mapped_column(String(255))
    password_reset_expires: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    sessions: Mapped[list["UserSession"]] = relationship(
        "UserSession",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    # Audit rows outlive the account: deleting a user nulls their user_id.
    audit_logs: Mapped[list["AuditLog"]] = relationship(  # noqa: F821
        "AuditLog",
        back_populates="user",
    )

    def is_locked(self, at: datetime) -> bool:
        locked_until = ensure_aware(self.locked_until)
        return locked_until is not None and at < locked_until

    def touch_login(self, at: datetime) -> None:
        """Reset lockout counters after a successful sign-in."""

        self.login_attempts = 0
        self.locked_until = None
        self.last_login_at = at


class UserSession(Timestamped, Base):
    """Server-side record of an issued bearer token."""

    __tablename__ = "user_sessions"
    __table_args__ = (
        UniqueConstraint("session_token", name="uq_user_session_token"),
        Index("ix_user_sessions_expires", "expires_at"),
        Index("ix_user_sessions_created", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_new_id
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    session_token: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_payload: Mapped[str | None] = mapped_column(Text())
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(512))
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="1",
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    user: Mapped[User] = relationship("User", back_populates="sessions")

    def is_valid(self, at: datetime) -> bool:
        expires_at = ensure_aware(self.expires_at)
        return bool(self.is_active) and at <= expires_at
