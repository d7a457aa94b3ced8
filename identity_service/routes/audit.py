"""Audit trail and rate limit administration endpoints."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from identity_service.auth.guards import current_user, require_auth, require_role
from identity_service.models.enums import AuditAction, UserRole
from identity_service.models.repositories import (
    AuditLogRepository,
    RepositoryError,
)
from identity_service.routes.helpers import (
    error_response,
    repository_error_response,
)
from identity_service.schemas.audit import AuditLogSchema, RateLimitUsageSchema
from identity_service.services.transactions import transactional_session
from identity_service.validators.query import parse_audit_args

audit_bp = Blueprint("audit", __name__, url_prefix="/audit")

audit_logs_schema = AuditLogSchema(many=True)
usage_schema = RateLimitUsageSchema()


@audit_bp.get("/logs")
@require_auth
@require_role(UserRole.ADMIN)
def list_logs():
    """Return audit entries, newest first."""

    try:
        args = parse_audit_args(request.args)
    except ValueError as exc:
        return error_response(400, str(exc))
    filters = {
        key: args[key]
        for key in ("user_id", "action", "status")
        if args[key] is not None
    }
    try:
        with transactional_session(name="audit.list") as session:
            items, total = AuditLogRepository(session).list_events(
                page=args["page"], per_page=args["per_page"], filters=filters
            )
            body = {
                "items": audit_logs_schema.dump(items),
                "page": args["page"],
                "per_page": args["per_page"],
                "total": total,
            }
    except RepositoryError as exc:
        return repository_error_response(exc)
    return jsonify(body)


@audit_bp.get("/rate-limits")
@require_auth
def rate_limit_usage():
    """Usage per configured action for the caller (admins may pick a user)."""

    user = current_user()
    target = request.args.get("user_id") or user.id
    if target != user.id and user.role != UserRole.ADMIN.value:
        return error_response(403, "insufficient permissions")
    stats = current_app.extensions["rate_limiter"].get_usage_stats(target)
    return jsonify(
        {
            "user_id": target,
            "usage": {
                key: usage_schema.dump(value) for key, value in stats.items()
            },
        }
    )


@audit_bp.post("/rate-limits/<user_id>/reset")
@require_auth
@require_role(UserRole.ADMIN)
def reset_rate_limits(user_id: str):
    payload = request.get_json(silent=True) or {}
    action = None
    if payload.get("action"):
        try:
            action = AuditAction(str(payload["action"]).lower())
        except ValueError:
            return error_response(400, f"unknown action: {payload['action']}")
    recorded = current_app.extensions["rate_limiter"].reset_user_rate_limits(
        user_id, action, reset_by=current_user().id
    )
    if not recorded:
        return error_response(503, "service temporarily unavailable")
    return jsonify(
        {"user_id": user_id, "action": action.value if action else "all"}
    )
