"""Per-request identity context handed to the services."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

from flask import g, has_request_context, request

_READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True, slots=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    bearer_token: Optional[str] = None
    # endpoint being served and whether it reads ("query") or writes ("mutation")
    operation_name: Optional[str] = None
    operation_type: Optional[str] = None
    variables: Optional[dict[str, Any]] = None
    started_at: Optional[float] = None

    @classmethod
    def from_request(cls) -> "RequestContext":
        """Capture the current Flask request, or an empty context."""

        if not has_request_context():
            return cls()
        forwarded = request.headers.get("X-Forwarded-For")
        ip_address = (forwarded or request.remote_addr or "")
        ip_address = ip_address.split(",")[0].strip()
        return cls(
            ip_address=ip_address or None,
            user_agent=request.headers.get("User-Agent") or None,
            request_id=g.get("request_id"),
            bearer_token=extract_bearer_token(
                request.headers.get("Authorization")
            ),
            operation_name=request.endpoint,
            operation_type=operation_type(request.method),
            variables=dict(request.view_args or {}),
            started_at=g.get("request_started"),
        )

    def elapsed_ms(self) -> Optional[int]:
        """Milliseconds since the request started, if it is known."""

        if self.started_at is None:
            return None
        return int((time.perf_counter() - self.started_at) * 1000)


def operation_type(method: str) -> str:
    return "query" if method.upper() in _READ_METHODS else "mutation"


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


__all__ = ["RequestContext", "extract_bearer_token", "operation_type"]
