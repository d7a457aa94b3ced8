"""Authentication routes for the identity service."""

import os
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request, session

from identity_service.auth.context import RequestContext
from identity_service.auth.guards import current_user, rate_limit, require_auth
from identity_service.auth.oauth import (
    SUPPORTED_PROVIDERS,
    build_auth_url,
    generate_nonce,
    generate_state,
)
from identity_service.models.enums import AuditAction
from identity_service.routes.helpers import error_response
from identity_service.schemas.auth import (
    LoginSchema,
    OAuthStartSchema,
    PasswordChangeSchema,
    PasswordResetRequestSchema,
    PasswordResetSchema,
    RegisterSchema,
    TokenSchema,
)
from identity_service.schemas.user import UserSchema, UserSessionSchema

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")
user_schema = UserSchema()
session_schema = UserSessionSchema()
register_schema = RegisterSchema()
login_schema = LoginSchema()
reset_request_schema = PasswordResetRequestSchema()
reset_schema = PasswordResetSchema()
change_schema = PasswordChangeSchema()
token_schema = TokenSchema()
oauth_start_schema = OAuthStartSchema()

ALLOWED_REDIRECTS = {
    value.strip()
    for value in os.getenv("ALLOWED_REDIRECTS", "").split(",")
    if value.strip()
}


def _auth_service():
    return current_app.extensions["auth_service"]


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _auth_result(result) -> Dict[str, Any]:
    return {
        "token": result.token,
        "user": user_schema.dump(result.user),
        "expires_at": result.expires_at.isoformat(),
    }


@auth_bp.post("/register")
def register():
    """Create an email/password account and sign it in."""
    data = register_schema.load(_payload())
    result = _auth_service().register(
        data["email"],
        data["password"],
        data.get("name"),
        RequestContext.from_request(),
    )
    return jsonify(_auth_result(result)), 201


@auth_bp.post("/login")
def login():
    """Exchange email and password for a bearer token.

    Returns:
        Response: ``token``, ``user`` and ``expires_at``; 401 for bad
        credentials and 423 while the account is locked.
    """
    data = login_schema.load(_payload())
    result = _auth_service().login(
        data["email"], data["password"], RequestContext.from_request()
    )
    return jsonify(_auth_result(result))


@auth_bp.post("/logout")
def logout():
    _auth_service().logout(RequestContext.from_request())
    return "", 204


@auth_bp.get("/me")
@require_auth
def me():
    return jsonify({"user": user_schema.dump(current_user())})


@auth_bp.post("/verify")
def verify():
    """Report whether a bearer token still maps to an active session."""
    data = token_schema.load(_payload())
    user = _auth_service().validate_token(data["token"])
    if user is None:
        return error_response(
            401, "invalid or expired token", error_type="invalid_token"
        )
    return jsonify({"valid": True, "user": user_schema.dump(user)})


@auth_bp.post("/password/forgot")
def forgot_password():
    data = reset_request_schema.load(_payload())
    _auth_service().request_password_reset(
        data["email"], RequestContext.from_request()
    )
    # same answer whether or not the address exists
    return (
        jsonify(
            {"message": "if the account exists, a reset link has been sent"}
        ),
        202,
    )


@auth_bp.post("/password/reset")
def reset_password():
    data = reset_schema.load(_payload())
    _auth_service().reset_password(
        data["token"], data["password"], RequestContext.from_request()
    )
    return jsonify({"message": "password updated"})


@auth_bp.post("/password/change")
@require_auth
@rate_limit(AuditAction.PASSWORD_CHANGE, record=False)
def change_password():
    data = change_schema.load(_payload())
    _auth_service().change_password(
        current_user().id,
        data["current_password"],
        data["new_password"],
        RequestContext.from_request(),
    )
    return jsonify({"message": "password updated"})


@auth_bp.get("/sessions")
@require_auth
def list_sessions():
    """List the caller's sessions with their decrypted sign-in context."""
    service = _auth_service()
    active_only = request.args.get("active") in ("1", "true")
    records = service.list_sessions(current_user().id, active_only=active_only)
    items = []
    for record in records:
        item = session_schema.dump(record)
        item["context"] = service.session_context(record)
        items.append(item)
    return jsonify({"items": items, "total": len(items)})


@auth_bp.delete("/sessions/<session_id>")
@require_auth
def revoke_session(session_id: str):
    revoked = _auth_service().revoke_session(
        current_user().id, session_id, RequestContext.from_request()
    )
    if not revoked:
        return error_response(404, "session not found")
    return "", 204


@auth_bp.post("/oauth/<provider>")
def oauth_start(provider: str):
    """Start the OAuth authentication process.

    Args:
        provider (str): The OAuth provider (``google`` or ``facebook``).

    Returns:
        Response: A JSON response with the authorization URL.
    """
    if provider not in SUPPORTED_PROVIDERS:
        return error_response(400, "bad provider")
    data = oauth_start_schema.load(_payload())
    default_redirect_uri = os.getenv(f"{provider.upper()}_REDIRECT_URI")
    requested_redirect = data.get("redirect_uri")
    redirect_uri = requested_redirect or default_redirect_uri
    if requested_redirect:
        if (
            requested_redirect not in ALLOWED_REDIRECTS
            and requested_redirect != default_redirect_uri
        ):
            return error_response(400, "invalid redirect")
        session["redirect_uri"] = requested_redirect
    else:
        session.pop("redirect_uri", None)
    state = generate_state()
    session["state"] = state
    nonce = generate_nonce() if provider == "google" else None
    if nonce:
        session["nonce"] = nonce
    url = build_auth_url(provider, redirect_uri, state, nonce)
    return jsonify({"auth_url": url})


@auth_bp.get("/oauth/<provider>/callback")
def oauth_callback(provider: str):
    """Handle the OAuth callback and open a session for the account."""
    if provider not in SUPPORTED_PROVIDERS:
        return error_response(400, "bad provider")
    try:
        code = request.args.get("code")
        state = request.args.get("state")
        if not code or not state:
            return error_response(400, "missing code or state")
        if state != session.get("state"):
            return error_response(
                401, "invalid state", error_type="oauth_error"
            )
        redirect_uri = session.get("redirect_uri") or os.getenv(
            f"{provider.upper()}_REDIRECT_URI"
        )
        result = _auth_service().login_with_oauth(
            provider,
            code,
            RequestContext.from_request(),
            redirect_uri=redirect_uri,
            nonce=session.get("nonce"),
        )
        return jsonify(_auth_result(result))
    finally:
        session.pop("state", None)
        session.pop("nonce", None)
        session.pop("redirect_uri", None)
