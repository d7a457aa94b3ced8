"""Signed, time-limited session tokens."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

import jwt

from identity_service.auth.errors import InvalidToken
from identity_service.config import Config
from identity_service.utils.clock import utcnow

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Encode and decode HS256 JWTs carrying a session subject."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(days=7),
    ) -> None:
        if not secret:
            raise ValueError("a signing secret is required")
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = ttl

    @classmethod
    def from_config(cls, config: Config) -> "TokenIssuer":
        return cls(
            config.jwt_secret,
            algorithm=config.jwt_algorithm,
            ttl=timedelta(seconds=config.session_ttl_seconds),
        )

    def issue(
        self,
        claims: Mapping[str, Any],
        *,
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Encode ``claims`` (which must include ``sub``) into a token.

        Args:
            claims: Payload; ``sub`` is the user id.
            ttl: Lifetime override, defaults to the issuer's TTL.
            now: Issue time, defaults to the current UTC time.

        Returns:
            str: The encoded JWT.
        """
        if not claims.get("sub"):
            raise ValueError("token claims require a subject")
        issued_at = now or utcnow()
        payload = dict(claims)
        payload["sub"] = str(payload["sub"])
        payload.setdefault("jti", secrets.token_urlsafe(16))
        payload["iat"] = issued_at
        payload["exp"] = issued_at + (self.ttl if ttl is None else ttl)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        """Decode ``token`` or raise ``InvalidToken``."""

        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.debug("token.verify.expired")
            raise InvalidToken("token expired") from exc
        except jwt.PyJWTError as exc:
            logger.debug("token.verify.rejected reason=%s", exc)
            raise InvalidToken() from exc


__all__ = ["TokenIssuer"]
