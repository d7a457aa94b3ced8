"""Request payload schemas for the authentication endpoints."""
from __future__ import annotations

from typing import Any, Mapping

from marshmallow import Schema, ValidationError, fields, pre_load, validates
from marshmallow.validate import Length

from identity_service.auth.passwords import MAX_PASSWORD_BYTES

MIN_PASSWORD_LENGTH = 8


def _validate_password(value: str) -> None:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"password must be at most {MAX_PASSWORD_BYTES} bytes"
        )


class _EmailSchema(Schema):
    email = fields.Email(required=True)

    @pre_load
    def _normalize_email(self, data: Any, **_: Any):
        # trimmed and lowercased before the format check runs
        if isinstance(data, Mapping) and isinstance(data.get("email"), str):
            data = {**data, "email": data["email"].strip().lower()}
        return data


class RegisterSchema(_EmailSchema):
    password = fields.String(required=True, load_only=True)
    name = fields.String(validate=Length(max=255), load_default=None)

    @validates("password")
    def _check_password(self, value: str, **_: Any) -> None:
        _validate_password(value)


class LoginSchema(_EmailSchema):
    # any length is accepted; a wrong password is an auth failure
    password = fields.String(required=True, load_only=True)


class PasswordResetRequestSchema(_EmailSchema):
    pass


class PasswordResetSchema(Schema):
    token = fields.String(required=True, validate=Length(min=1))
    password = fields.String(required=True, load_only=True)

    @validates("password")
    def _check_password(self, value: str, **_: Any) -> None:
        _validate_password(value)


class PasswordChangeSchema(Schema):
    current_password = fields.String(required=True, load_only=True)
    new_password = fields.String(required=True, load_only=True)

    @validates("new_password")
    def _check_password(self, value: str, **_: Any) -> None:
        _validate_password(value)


class TokenSchema(Schema):
    token = fields.String(required=True, validate=Length(min=1))


class OAuthStartSchema(Schema):
    redirect_uri = fields.String(load_default=None)


__all__ = [
    "LoginSchema",
    "OAuthStartSchema",
    "PasswordChangeSchema",
    "PasswordResetRequestSchema",
    "PasswordResetSchema",
    "RegisterSchema",
    "TokenSchema",
]
