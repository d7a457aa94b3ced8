"""Utilities for recording persistent audit trail entries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, ContextManager, Optional

from prometheus_client import Counter
from sqlalchemy.orm import Session

from identity_service.auth.context import RequestContext
from identity_service.models.enums import AuditAction, AuditStatus
from identity_service.models.repositories.audit import AuditLogRepository
from identity_service.services.transactions import transactional_session

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from identity_service.models.user import User

logger = logging.getLogger(__name__)

_AUDIT_WRITE_FAILURES = Counter(
    "identity_service_audit_write_failures_total",
    "Audit entries that could not be persisted.",
    labelnames=("action",),
)

TransactionFactory = Callable[..., ContextManager[Session]]


class AuditService:
    """Append audit entries without ever failing the calling operation."""

    def __init__(
        self, transaction: TransactionFactory = transactional_session
    ) -> None:
        self._transaction = transaction

    def record(
        self,
        action: AuditAction,
        *,
        status: AuditStatus = AuditStatus.SUCCESS,
        user: "User | None" = None,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Persist one entry; returns ``False`` if the write failed.

        Inside a request the entry also carries the endpoint, its kind and
        path parameters, and the time spent so far unless ``duration_ms``
        is given.
        """

        context = context or RequestContext.from_request()
        payload: dict[str, Any] = {
            "action": action,
            "status": status,
            "user_id": user.id if user is not None else user_id,
            "user_email": user.email if user is not None else None,
            "user_role": user.role if user is not None else None,
            "resource": resource,
            "resource_id": resource_id,
            "duration_ms": (
                duration_ms if duration_ms is not None else context.elapsed_ms()
            ),
            "error_message": error_message,
            "ip_address": context.ip_address,
            "user_agent": context.user_agent,
            "request_id": context.request_id,
            "operation_name": context.operation_name,
            "operation_type": context.operation_type,
            "variables": context.variables,
            "details": details or {},
        }
        try:
            with self._transaction(name=f"audit.{action.value}") as session:
                AuditLogRepository(session).record_event(**payload)
        except Exception:
            _AUDIT_WRITE_FAILURES.labels(action.value).inc()
            logger.exception(
                "audit.write_failed action=%s user_id=%s",
                action.value,
                payload["user_id"],
            )
            return False
        logger.debug(
            "audit.recorded action=%s status=%s user_id=%s",
            action.value,
            AuditStatus(status).value,
            payload["user_id"],
        )
        return True

    def log_auth_event(
        self,
        action: AuditAction,
        user: "User | None",
        context: Optional[RequestContext] = None,
        *,
        status: AuditStatus = AuditStatus.SUCCESS,
        details: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        return self.record(
            action,
            status=status,
            user=user,
            resource="auth",
            context=context,
            details=details,
            error_message=error_message,
        )

    def log_user_operation(
        self,
        action: AuditAction,
        target_user_id: str,
        actor: "User | None",
        context: Optional[RequestContext] = None,
        *,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        return self.record(
            action,
            user=actor,
            resource="user",
            resource_id=target_user_id,
            context=context,
            details=details,
        )

    def log_rate_limit_event(
        self,
        action: AuditAction,
        actor_id: str,
        resource: str,
        *,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        status = (
            AuditStatus.FAILURE
            if action is AuditAction.RATE_LIMIT_EXCEEDED
            else AuditStatus.SUCCESS
        )
        return self.record(
            action,
            status=status,
            user_id=actor_id,
            resource=resource,
            context=RequestContext.from_request(),
            details=details,
        )


audit_service = AuditService()


__all__ = ["AuditService", "audit_service"]
