"""Environment-driven settings for the identity service."""

from __future__ import annotations

import base64
import hashlib
import os
import re

from dataclasses import dataclass, field
from functools import cached_property, lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from redis import Redis


load_dotenv()

_DURATION_PATTERN = re.compile(r"^(\d+)([smhd])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
DEFAULT_SESSION_TTL_SECONDS = 7 * 86400
DEFAULT_LOCKOUT_MS = 15 * 60 * 1000
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_str(name: str, default: str) -> str:
    return _env(name) or default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env(name)
    return default if raw is None else raw.lower() in _TRUTHY


def _env_csv(name: str, default: Optional[List[str]] = None) -> List[str]:
    items = [item.strip() for item in (_env(name) or "").split(",")]
    return [item for item in items if item] or list(default or [])


def parse_duration(raw: Optional[str], default: int) -> int:
    """Convert ``7d``/``12h``/``30m``/``45s`` into seconds."""

    match = _DURATION_PATTERN.match(raw.strip()) if raw else None
    if match is None:
        return default
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


@dataclass(frozen=True)
class Config:
    """Process-wide settings, built once from the environment."""

    database_url: str
    redis_url: Optional[str]
    pool_size: int = 5
    max_overflow: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800
    transaction_timeout: int = 30
    app_port: int = 5001
    sqlalchemy_echo: bool = False
    flask_secret: str = "dev"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    redis_cache_ttl: int = 300
    jwt_secret: str = "change_me"
    jwt_algorithm: str = "HS256"
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    max_login_attempts: int = 5
    lockout_duration_ms: int = DEFAULT_LOCKOUT_MS
    bcrypt_rounds: int = 12
    password_reset_ttl_minutes: int = 60
    rate_limit_overrides: List[str] = field(default_factory=list)
    encryption_primary_key: str = ""
    encryption_fallback_keys: List[str] = field(default_factory=list)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    email_from: str = "noreply@example.com"
    app_base_url: str = "http://localhost:3000"
    database_ssl_mode: Optional[str] = None

    @cached_property
    def redis(self) -> Optional[Redis]:
        """Redis client for the profile cache, when ``REDIS_URL`` is set."""

        if not self.redis_url:
            return None
        return Redis.from_url(self.redis_url, decode_responses=True)

    @property
    def encryption_key(self) -> str:
        """Fernet key for session context; derived from the JWT secret if unset."""

        if self.encryption_primary_key:
            return self.encryption_primary_key
        digest = hashlib.sha256(self.jwt_secret.encode()).digest()
        return base64.urlsafe_b64encode(digest).decode()

    @property
    def weak_jwt_secret(self) -> bool:
        return len(self.jwt_secret.encode()) < 32


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Read the environment once and cache the result."""

    return Config(
        database_url=_env_str("DATABASE_URL", "sqlite+pysqlite:///:memory:"),
        redis_url=_env("REDIS_URL"),
        pool_size=_env_int("DB_POOL_SIZE", 5),
        max_overflow=_env_int("DB_MAX_OVERFLOW", 5),
        pool_timeout=_env_int("DB_POOL_TIMEOUT", 30),
        pool_recycle=_env_int("DB_POOL_RECYCLE", 1800),
        transaction_timeout=_env_int("TRANSACTION_TIMEOUT", 30),
        app_port=_env_int("APP_PORT", 5001),
        sqlalchemy_echo=_env_bool("SQLALCHEMY_ECHO"),
        flask_secret=_env_str("FLASK_SECRET", "dev"),
        cors_origins=_env_csv("CORS_ORIGINS", ["*"]),
        redis_cache_ttl=_env_int("REDIS_CACHE_TTL", 300),
        jwt_secret=_env_str("JWT_SECRET", "change_me"),
        jwt_algorithm=_env_str("JWT_ALGO", "HS256"),
        session_ttl_seconds=parse_duration(
            _env("JWT_EXPIRES_IN"), DEFAULT_SESSION_TTL_SECONDS
        ),
        max_login_attempts=_env_int("MAX_LOGIN_ATTEMPTS", 5),
        lockout_duration_ms=_env_int("LOCKOUT_DURATION_MS", DEFAULT_LOCKOUT_MS),
        bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12),
        password_reset_ttl_minutes=_env_int("PASSWORD_RESET_TTL_MIN", 60),
        rate_limit_overrides=_env_csv("RATE_LIMIT_OVERRIDES"),
        encryption_primary_key=_env_str("APP_ENCRYPTION_KEY", ""),
        encryption_fallback_keys=_env_csv("APP_ENCRYPTION_FALLBACK_KEYS"),
        smtp_host=_env("SMTP_HOST"),
        smtp_port=_env_int("SMTP_PORT", 587),
        smtp_user=_env("SMTP_USER"),
        smtp_password=_env("SMTP_PASSWORD"),
        smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
        email_from=_env_str("EMAIL_FROM", "noreply@example.com"),
        app_base_url=_env_str("APP_BASE_URL", "http://localhost:3000"),
        database_ssl_mode=_env("DATABASE_SSL_MODE"),
    )


def reset_config(
    overrides: Optional[dict[str, Optional[str]]] = None,
) -> Config:
    """Apply ``overrides`` to the environment and rebuild the configuration.

    A ``None`` value removes the variable.
    """

    for name, value in (overrides or {}).items():
        if value is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = value
    get_config.cache_clear()
    return get_config()
