"""Administrative user management endpoints."""

from __future__ import annotations

from typing import Callable, TypeVar

from flask import Blueprint, Response, current_app, jsonify, request

from identity_service.auth.context import RequestContext
from identity_service.auth.guards import (
    current_user,
    rate_limit,
    require_auth,
    require_role,
)
from identity_service.models.enums import AuditAction, UserRole
from identity_service.models.repositories import RepositoryError, UserRepository
from identity_service.routes.helpers import (
    error_response,
    repository_error_response,
)
from identity_service.schemas.user import (
    UserSchema,
    UserSessionSchema,
    UserUpdateSchema,
)
from identity_service.services.transactions import transactional_session
from identity_service.validators.query import parse_list_args

users_bp = Blueprint("users", __name__, url_prefix="/users")

user_schema = UserSchema()
users_schema = UserSchema(many=True)
update_schema = UserUpdateSchema()
sessions_schema = UserSessionSchema(many=True)


T = TypeVar("T")


def _repository(session) -> UserRepository:
    cache_service = current_app.extensions.get("cache_service")
    cache_hooks = cache_service.build_hooks() if cache_service else None
    return UserRepository(session, cache_hooks=cache_hooks)


def _execute_user_repo(
    transaction_name: str, handler: Callable[[UserRepository], T]
) -> tuple[T | None, Response | tuple | None]:
    try:
        with transactional_session(name=transaction_name) as session:
            return handler(_repository(session)), None
    except RepositoryError as exc:
        return None, repository_error_response(exc)


def _audit(action: AuditAction, target_user_id: str, **details) -> None:
    current_app.extensions["audit_service"].log_user_operation(
        action,
        target_user_id,
        current_user(),
        RequestContext.from_request(),
        details=details or None,
    )


@users_bp.get("")
@require_auth
@require_role(UserRole.ADMIN)
@rate_limit(AuditAction.USER_READ, "users")
def list_users():
    """Return paginated users with optional filters."""

    try:
        args = parse_list_args(request.args)
    except ValueError as exc:
        return error_response(400, str(exc))

    page, per_page = args["page"], args["per_page"]
    sort = (args["sort_field"], args["sort_order"])
    filters = {
        key: args[key]
        for key in ("role", "is_active", "q")
        if args[key] is not None
    }

    cache_service = current_app.extensions.get("cache_service")
    cache_key = None
    if cache_service and cache_service.enabled:
        cache_key = cache_service.listing_key(
            page=page, per_page=per_page, sort=sort, filters=filters
        )
        cached = cache_service.get_json(cache_key)
        if cached is not None:
            return jsonify(cached)

    def _load(repo: UserRepository):
        items, total = repo.list_users(
            page=page, per_page=per_page, sort=sort, filters=filters
        )
        return users_schema.dump(items), total

    result, error = _execute_user_repo("users.list", _load)
    if error:
        return error
    items, total = result
    body = {
        "items": items,
        "page": page,
        "per_page": per_page,
        "total": total,
    }
    if cache_key:
        cache_service.set_json(cache_key, body)
    return jsonify(body)


@users_bp.get("/<user_id>")
@require_auth
@require_role(UserRole.ADMIN)
def get_user(user_id: str):
    """Return a single user profile."""

    cache_service = current_app.extensions.get("cache_service")
    if cache_service and cache_service.enabled:
        cached = cache_service.get_json(cache_service.profile_key(user_id))
        if cached is not None:
            return jsonify({"user": cached})

    def _load(repo: UserRepository):
        user = repo.get(user_id)
        return user_schema.dump(user) if user is not None else None

    profile, error = _execute_user_repo("users.get", _load)
    if error:
        return error
    if profile is None:
        return error_response(404, "user not found")
    if cache_service and cache_service.enabled:
        cache_service.set_json(cache_service.profile_key(user_id), profile)
    return jsonify({"user": profile})


@users_bp.put("/<user_id>")
@require_auth
@require_role(UserRole.ADMIN)
@rate_limit(AuditAction.USER_UPDATE, record=False)
def update_user(user_id: str):
    """Update name, role or activation state of an account.

    Deactivating an account also revokes every active session it holds.
    """

    payload = request.get_json(silent=True)
    if payload is None:
        return error_response(400, "missing request body")
    data = update_schema.load(payload)

    revoked = 0
    try:
        with transactional_session(name="users.update") as session:
            repo = _repository(session)
            user = repo.get(user_id)
            if user is None:
                return error_response(404, "user not found")
            was_active = user.is_active
            changes = dict(data)
            if was_active and changes.get("is_active") is False:
                del changes["is_active"]
                repo.deactivate(user)
                revoked = repo.revoke_user_sessions(user_id)
            updated = repo.update_user(user, changes)
            response = jsonify({"user": user_schema.dump(updated)})
    except RepositoryError as exc:
        return repository_error_response(exc)

    _audit(AuditAction.USER_UPDATE, user_id, fields=sorted(data))
    if "is_active" in data and data["is_active"] != was_active:
        if data["is_active"]:
            _audit(AuditAction.USER_ACTIVATE, user_id)
        else:
            _audit(
                AuditAction.USER_DEACTIVATE, user_id, revoked_sessions=revoked
            )
    return response


@users_bp.delete("/<user_id>")
@require_auth
@require_role(UserRole.ADMIN)
@rate_limit(AuditAction.USER_DELETE, record=False)
def delete_user(user_id: str):
    """Hard-delete an account; its audit history is kept."""

    if user_id == current_user().id:
        return error_response(400, "cannot delete your own account")

    try:
        with transactional_session(name="users.delete") as session:
            repo = _repository(session)
            user = repo.get(user_id)
            if user is None:
                return error_response(404, "user not found")
            email = user.email
            repo.delete_user(user)
    except RepositoryError as exc:
        return repository_error_response(exc)

    _audit(AuditAction.USER_DELETE, user_id, email=email)
    return "", 204


@users_bp.get("/<user_id>/sessions")
@require_auth
@require_role(UserRole.ADMIN)
def list_user_sessions(user_id: str):
    def _load(repo: UserRepository):
        if repo.get(user_id) is None:
            return None
        return sessions_schema.dump(repo.list_sessions(user_id))

    items, error = _execute_user_repo("users.sessions", _load)
    if error:
        return error
    if items is None:
        return error_response(404, "user not found")
    return jsonify({"items": items, "total": len(items)})
