"""Persistence helpers for audit logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy import func, or_, select

from identity_service.models.audit import AuditLog
from identity_service.models.enums import AuditAction, AuditStatus

from .base import SQLAlchemyRepository, repository_method


ALL_ACTIONS = "all"


class AuditLogRepository(SQLAlchemyRepository):
    """Create immutable audit log entries and answer counting queries."""

    @repository_method
    def record_event(
        self,
        *,
        action: AuditAction,
        status: AuditStatus = AuditStatus.SUCCESS,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        user_role: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
        operation_name: Optional[str] = None,
        operation_type: Optional[str] = None,
        variables: Optional[dict[str, Any]] = None,
        details: Optional[dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> AuditLog:
        entry = AuditLog(
            action=AuditAction(action).value,
            status=AuditStatus(status).value,
            user_id=user_id,
            user_email=user_email,
            user_role=user_role,
            resource=resource,
            resource_id=resource_id,
            duration_ms=duration_ms,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
            operation_name=operation_name,
            operation_type=operation_type,
            variables=variables,
            details=details or {},
        )
        if created_at is not None:
            entry.created_at = created_at
        self.session.add(entry)
        self._flush()
        return entry

    @repository_method
    def count_events(
        self,
        *,
        user_id: str,
        action: AuditAction,
        since: datetime,
        resource: Optional[str] = None,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(AuditLog)
            .where(
                AuditLog.user_id == user_id,
                AuditLog.action == AuditAction(action).value,
                AuditLog.created_at >= since,
            )
        )
        if resource:
            stmt = stmt.where(AuditLog.resource == resource)
        return int(self.session.execute(stmt).scalar_one() or 0)

    @repository_method
    def latest_reset(
        self, *, user_id: str, action: AuditAction
    ) -> Optional[datetime]:
        """Return when rate limits for ``action`` were last reset."""

        stmt = select(func.max(AuditLog.created_at)).where(
            AuditLog.user_id == user_id,
            AuditLog.action == AuditAction.RATE_LIMIT_RESET.value,
            or_(
                AuditLog.resource == AuditAction(action).value,
                AuditLog.resource == ALL_ACTIONS,
            ),
        )
        return self.session.execute(stmt).scalar_one_or_none()

    @repository_method
    def list_events(
        self,
        *,
        page: int,
        per_page: int,
        filters: dict[str, object],
    ) -> Tuple[list[AuditLog], int]:
        stmt = select(AuditLog)
        if user_id := filters.get("user_id"):
            stmt = stmt.where(AuditLog.user_id == user_id)
        if action := filters.get("action"):
            stmt = stmt.where(AuditLog.action == action)
        if status := filters.get("status"):
            stmt = stmt.where(AuditLog.status == status)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = self.session.execute(count_stmt).scalar_one()
        if total == 0:
            return [], 0
        result_stmt = (
            stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.asc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(self.session.execute(result_stmt).scalars().all()), total


__all__ = ["AuditLogRepository", "ALL_ACTIONS"]
