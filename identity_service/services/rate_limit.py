"""Audit-log backed rate limiting.

The limiter counts matching ``audit_logs`` rows for an actor inside a
sliding window, anchored at ``now - window`` on every check, and compares
the count against a per-action threshold. The reported reset time is
``now + window``, an upper bound on when the oldest counted row ages out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, ContextManager, Iterable, Mapping, Optional

from prometheus_client import Counter
from sqlalchemy.orm import Session

from identity_service.models.enums import AuditAction
from identity_service.models.repositories.audit import (
    ALL_ACTIONS,
    AuditLogRepository,
)
from identity_service.services.audit import AuditService, audit_service
from identity_service.services.transactions import transactional_session
from identity_service.utils.clock import ensure_aware, utcnow

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000

_DECISIONS = Counter(
    "identity_service_rate_limit_decisions_total",
    "Rate limit checks by action and outcome.",
    labelnames=("action", "outcome"),
)


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    max_requests: int
    window_ms: int

    def merge(self, override: Optional["RateLimitOverride"]) -> "RateLimitConfig":
        """Return a copy with the non-empty fields of ``override`` applied."""

        if override is None:
            return self
        changes = {
            name: value
            for name, value in (
                ("max_requests", override.max_requests),
                ("window_ms", override.window_ms),
            )
            if value is not None
        }
        return replace(self, **changes) if changes else self

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)


@dataclass(frozen=True, slots=True)
class RateLimitOverride:
    max_requests: Optional[int] = None
    window_ms: Optional[int] = None


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    is_allowed: bool
    remaining: int
    reset_time: datetime
    limit: int

    def as_dict(self) -> dict[str, object]:
        return {
            "is_allowed": self.is_allowed,
            "remaining": self.remaining,
            "reset_time": self.reset_time.isoformat(),
            "limit": self.limit,
        }


RateLimitKey = tuple[AuditAction, Optional[str]]

FALLBACK_RATE_LIMIT = RateLimitConfig(max_requests=100, window_ms=HOUR_MS)

DEFAULT_RATE_LIMITS: Mapping[RateLimitKey, RateLimitConfig] = MappingProxyType(
    {
        (AuditAction.AI_GENERATE, None): RateLimitConfig(10, HOUR_MS),
        (AuditAction.AI_PROCESS, None): RateLimitConfig(50, HOUR_MS),
        (AuditAction.GRAPHQL_QUERY, None): RateLimitConfig(1000, HOUR_MS),
        (AuditAction.GRAPHQL_MUTATION, None): RateLimitConfig(100, HOUR_MS),
        (AuditAction.LOGIN, None): RateLimitConfig(5, 15 * 60 * 1000),
    }
)


def parse_override(raw: str) -> tuple[RateLimitKey, RateLimitConfig]:
    """Parse ``action[:resource]=max/window_ms`` into a table entry."""

    try:
        target, limits = raw.split("=", 1)
        action_name, _, resource = target.strip().partition(":")
        max_requests, window_ms = limits.split("/", 1)
        key = (AuditAction(action_name.strip()), resource.strip() or None)
        config = RateLimitConfig(int(max_requests), int(window_ms))
    except ValueError as exc:
        raise ValueError(f"invalid rate limit override: {raw!r}") from exc
    if config.max_requests < 0 or config.window_ms <= 0:
        raise ValueError(f"invalid rate limit override: {raw!r}")
    return key, config


def build_rate_limit_table(
    overrides: Iterable[str] = (),
    base: Mapping[RateLimitKey, RateLimitConfig] = DEFAULT_RATE_LIMITS,
) -> Mapping[RateLimitKey, RateLimitConfig]:
    """Return a new immutable table with ``overrides`` layered on ``base``."""

    table = dict(base)
    for raw in overrides:
        key, config = parse_override(raw)
        table[key] = config
    return MappingProxyType(table)


class RateLimiter:
    """Decide whether an actor may perform an action right now."""

    def __init__(
        self,
        table: Mapping[RateLimitKey, RateLimitConfig] = DEFAULT_RATE_LIMITS,
        *,
        audit: AuditService = audit_service,
        transaction: Callable[..., ContextManager[Session]] = (
            transactional_session
        ),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._table = table
        self._audit = audit
        self._transaction = transaction
        self._clock = clock

    @property
    def table(self) -> Mapping[RateLimitKey, RateLimitConfig]:
        return self._table

    def resolve_config(
        self,
        action: AuditAction,
        resource: Optional[str] = None,
        override: Optional[RateLimitOverride] = None,
    ) -> RateLimitConfig:
        config = None
        if resource:
            config = self._table.get((action, resource))
        if config is None:
            config = self._table.get((action, None), FALLBACK_RATE_LIMIT)
        return config.merge(override)

    def check_rate_limit(
        self,
        actor_id: str,
        action: AuditAction,
        resource: Optional[str] = None,
        override: Optional[RateLimitOverride] = None,
    ) -> RateLimitDecision:
        config = self.resolve_config(action, resource, override)
        now = self._clock()
        reset_time = now + config.window

        try:
            count = self._count(actor_id, action, resource, config, now)
        except Exception:
            logger.warning(
                "rate_limit.fail_open actor=%s action=%s",
                actor_id,
                action.value,
                exc_info=True,
            )
            _DECISIONS.labels(action.value, "fail_open").inc()
            return RateLimitDecision(
                is_allowed=True,
                remaining=config.max_requests,
                reset_time=reset_time,
                limit=config.max_requests,
            )

        decision = RateLimitDecision(
            is_allowed=count < config.max_requests,
            remaining=max(0, config.max_requests - count),
            reset_time=reset_time,
            limit=config.max_requests,
        )
        if not decision.is_allowed:
            _DECISIONS.labels(action.value, "denied").inc()
            logger.info(
                "rate_limit.exceeded actor=%s action=%s count=%s limit=%s",
                actor_id,
                action.value,
                count,
                config.max_requests,
            )
            self._audit.log_rate_limit_event(
                AuditAction.RATE_LIMIT_EXCEEDED,
                actor_id,
                resource or action.value,
                details={
                    "current_count": count,
                    "limit": config.max_requests,
                    "window_ms": config.window_ms,
                },
            )
        else:
            _DECISIONS.labels(action.value, "allowed").inc()
        return decision

    def get_usage_stats(self, actor_id: str) -> dict[str, dict[str, object]]:
        """Current usage for every configured action."""

        now = self._clock()
        stats: dict[str, dict[str, object]] = {}
        for (action, resource), config in self._table.items():
            key = action.value if resource is None else f"{action.value}:{resource}"
            try:
                current = self._count(actor_id, action, resource, config, now)
            except Exception:
                logger.exception("rate_limit.usage_failed key=%s", key)
                current = 0
            stats[key] = {
                "current": current,
                "limit": config.max_requests,
                "reset_time": (now + config.window).isoformat(),
            }
        return stats

    def reset_user_rate_limits(
        self,
        actor_id: str,
        action: Optional[AuditAction] = None,
        *,
        reset_by: Optional[str] = None,
    ) -> bool:
        """Start a fresh window for ``actor_id`` (one action or all)."""

        recorded = self._audit.log_rate_limit_event(
            AuditAction.RATE_LIMIT_RESET,
            actor_id,
            action.value if action else ALL_ACTIONS,
            details={"reset_by": reset_by or "admin"},
        )
        logger.info(
            "rate_limit.reset actor=%s action=%s recorded=%s",
            actor_id,
            action.value if action else ALL_ACTIONS,
            recorded,
        )
        return recorded

    def _count(
        self,
        actor_id: str,
        action: AuditAction,
        resource: Optional[str],
        config: RateLimitConfig,
        now: datetime,
    ) -> int:
        window_start = now - config.window
        with self._transaction(name="rate_limit.count") as session:
            repo = AuditLogRepository(session)
            last_reset = ensure_aware(
                repo.latest_reset(user_id=actor_id, action=action)
            )
            if last_reset is not None and last_reset > window_start:
                window_start = last_reset
            return repo.count_events(
                user_id=actor_id,
                action=action,
                resource=resource,
                since=window_start,
            )


__all__ = [
    "DEFAULT_RATE_LIMITS",
    "FALLBACK_RATE_LIMIT",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitOverride",
    "RateLimiter",
    "build_rate_limit_table",
    "parse_override",
]
