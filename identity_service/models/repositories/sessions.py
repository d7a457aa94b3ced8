"""Repository helpers for ``UserSession`` records."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, or_, select, update

from identity_service.models.user import User, UserSession
from identity_service.utils.clock import utcnow

from .base import SQLAlchemyRepository, repository_method


class UserSessionRepository(SQLAlchemyRepository):
    """Create, look up and revoke server-side sessions."""

    @repository_method
    def create_session(
        self,
        user: User,
        *,
        session_token: str,
        expires_at: datetime,
        encrypted_payload: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession:
        record = UserSession(
            user=user,
            session_token=session_token,
            encrypted_payload=encrypted_payload,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=expires_at,
            is_active=True,
        )
        self.session.add(record)
        self._flush()
        return record

    @repository_method
    def list_sessions(
        self, user_id: str, *, active_only: bool = False
    ) -> list[UserSession]:
        stmt = select(UserSession).where(UserSession.user_id == user_id)
        if active_only:
            stmt = stmt.where(UserSession.is_active.is_(True))
        stmt = stmt.order_by(
            UserSession.created_at.desc(), UserSession.id.desc()
        )
        return list(self.session.execute(stmt).scalars().all())

    @repository_method
    def get_session_by_id(self, session_id: str) -> Optional[UserSession]:
        return self.session.get(UserSession, session_id)

    @repository_method
    def get_session_by_token(
        self, digests: Iterable[str]
    ) -> Optional[UserSession]:
        candidates = list(digests)
        if not candidates:
            return None
        stmt = select(UserSession).where(
            UserSession.session_token.in_(candidates)
        )
        return self.session.execute(stmt).scalars().first()

    @repository_method
    def revoke_session(
        self,
        session_record: UserSession,
        *,
        revoked_at: Optional[datetime] = None,
    ) -> UserSession:
        session_record.is_active = False
        session_record.revoked_at = revoked_at or utcnow()
        self._flush()
        return session_record

    @repository_method
    def revoke_user_sessions(
        self,
        user_id: str,
        *,
        revoked_at: Optional[datetime] = None,
    ) -> int:
        result = self.session.execute(
            update(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
            )
            .values(is_active=False, revoked_at=revoked_at or utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @repository_method
    def purge_expired_sessions(self, *, before: datetime) -> int:
        """Delete sessions that expired or were revoked before ``before``."""

        result = self.session.execute(
            delete(UserSession)
            .where(
                or_(
                    UserSession.expires_at < before,
                    UserSession.revoked_at < before,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


__all__ = ["UserSessionRepository"]
