"""Redis-backed cache for user profiles and admin listings."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

from prometheus_client import Counter, Histogram
from redis import Redis


logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "identity-service"

_CACHE_LOOKUPS = Counter(
    "identity_service_cache_lookups_total",
    "Cache lookups by result.",
    labelnames=("namespace", "result"),
)
_CACHE_LATENCY = Histogram(
    "identity_service_cache_operation_seconds",
    "Duration of cache operations in seconds.",
    labelnames=("namespace", "operation"),
)


@dataclass(slots=True)
class CacheHooks:
    """Invalidation callbacks handed to repositories after writes."""

    invalidate_profile: Callable[[str], None]
    invalidate_collections: Callable[[], None]


def _text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class CacheService:
    """JSON cache on top of an optional Redis client.

    Every operation degrades to a no-op when Redis is not configured or
    misbehaves; the database stays the source of truth.
    """

    def __init__(
        self,
        client: Redis | None,
        default_ttl: int,
        *,
        namespace: str = CACHE_NAMESPACE,
    ) -> None:
        self.client = client
        self.default_ttl = max(default_ttl, 0)
        self.namespace = namespace
        self._hooks: CacheHooks | None = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @contextmanager
    def _redis_call(self, operation: str, target: object) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        except Exception:
            logger.exception("cache.%s failed target=%s", operation, target)
        finally:
            _CACHE_LATENCY.labels(self.namespace, operation).observe(
                time.perf_counter() - started
            )

    # keys

    def key(self, *parts: object) -> str:
        return ":".join(
            [self.namespace, *(str(part) for part in parts if part not in (None, ""))]
        )

    def profile_key(self, user_id: str) -> str:
        return self.key("users", "profile", user_id)

    def listing_key(
        self,
        *,
        page: int,
        per_page: int,
        sort: Sequence[str],
        filters: Mapping[str, object],
    ) -> str:
        """Key for one page of the admin user listing.

        Every query parameter feeds the digest, so two listings share an
        entry only when they would return the same page.
        """

        fingerprint = json.dumps(
            [int(page), int(per_page), list(sort), dict(filters)],
            sort_keys=True,
            default=str,
        )
        digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:32]
        return self.key("users", "list", digest)

    # reads and writes

    def get_json(self, key: str) -> Any | None:
        if not self.enabled:
            return None
        raw = None
        with self._redis_call("get", key):
            raw = self.client.get(key)
        _CACHE_LOOKUPS.labels(
            self.namespace, "miss" if raw is None else "hit"
        ).inc()
        if raw is None:
            return None
        try:
            return json.loads(_text(raw))
        except json.JSONDecodeError:
            logger.warning("cache.get invalid json key=%s", key)
            return None

    def set_json(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        if not self.enabled:
            return
        document = json.dumps(value, sort_keys=True)
        expiry = self.default_ttl if ttl is None else max(int(ttl), 0)
        with self._redis_call("set", key):
            if expiry:
                self.client.setex(key, expiry, document)
            else:
                self.client.set(key, document)

    def invalidate(self, *keys: str) -> None:
        if self.enabled and keys:
            with self._redis_call("delete", keys):
                self.client.delete(*keys)

    def invalidate_prefix(self, prefix: str) -> None:
        if not self.enabled:
            return
        with self._redis_call("delete", prefix):
            stale = [_text(key) for key in self.client.scan_iter(match=f"{prefix}:*")]
            if stale:
                self.client.delete(*stale)

    # invalidation used by repositories

    def invalidate_profile(self, user_id: str) -> None:
        self.invalidate(self.profile_key(user_id))

    def invalidate_profiles(self, user_ids: Iterable[str]) -> None:
        self.invalidate(*map(self.profile_key, user_ids))

    def invalidate_user_collections(self) -> None:
        self.invalidate_prefix(self.key("users", "list"))

    def build_hooks(self) -> CacheHooks:
        if self._hooks is None:
            self._hooks = CacheHooks(
                invalidate_profile=self.invalidate_profile,
                invalidate_collections=self.invalidate_user_collections,
            )
        return self._hooks


__all__ = ["CacheHooks", "CacheService"]
