"""User-related Marshmallow schemas."""
from __future__ import annotations

from typing import Any

from marshmallow import Schema, ValidationError, fields, validates_schema
from marshmallow.validate import Length, OneOf

from identity_service.models.enums import UserRole


class UserSessionSchema(Schema):
    """Schema for server-side sessions; the token digest is never dumped."""

    id = fields.String(required=True)
    ip_address = fields.String(allow_none=True)
    user_agent = fields.String(allow_none=True)
    is_active = fields.Boolean()
    created_at = fields.DateTime(required=True)
    expires_at = fields.DateTime(required=True)
    revoked_at = fields.DateTime(allow_none=True)


class UserSchema(Schema):
    """Schema for serializing ``User`` ORM instances."""

    id = fields.String(required=True)
    email = fields.Email(required=True)
    name = fields.String(allow_none=True)
    role = fields.String(required=True)
    is_active = fields.Boolean()
    auth_provider = fields.String(required=True)
    email_verified = fields.Boolean()
    last_login_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime(required=True)
    updated_at = fields.DateTime(required=True)


class UserUpdateSchema(Schema):
    """Schema for validating admin updates."""

    name = fields.String(validate=Length(min=1, max=255))
    role = fields.String(validate=OneOf([role.value for role in UserRole]))
    is_active = fields.Boolean()
    email_verified = fields.Boolean()

    @validates_schema
    def _ensure_payload(self, data: dict[str, Any], **_: Any) -> None:
        if not data:
            raise ValidationError("no fields provided")


__all__ = ["UserSchema", "UserSessionSchema", "UserUpdateSchema"]
