"""Schemas for audit trail and rate limit responses."""
from __future__ import annotations

from marshmallow import Schema, fields


class AuditLogSchema(Schema):
    id = fields.String(required=True)
    user_id = fields.String(allow_none=True)
    user_email = fields.String(allow_none=True)
    user_role = fields.String(allow_none=True)
    action = fields.String(required=True)
    resource = fields.String(allow_none=True)
    resource_id = fields.String(allow_none=True)
    status = fields.String(required=True)
    duration_ms = fields.Integer(allow_none=True)
    error_message = fields.String(allow_none=True)
    ip_address = fields.String(allow_none=True)
    user_agent = fields.String(allow_none=True)
    request_id = fields.String(allow_none=True)
    details = fields.Dict(keys=fields.String(), values=fields.Raw())
    created_at = fields.DateTime(required=True)


class RateLimitUsageSchema(Schema):
    current = fields.Integer(required=True)
    limit = fields.Integer(required=True)
    reset_time = fields.String(required=True)


__all__ = ["AuditLogSchema", "RateLimitUsageSchema"]
