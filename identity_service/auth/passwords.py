"""bcrypt password hashing."""

from __future__ import annotations

import logging
from typing import Optional

import bcrypt

logger = logging.getLogger(__name__)

MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Salted adaptive hashing with a configurable bcrypt cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        encoded = plaintext.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValueError(
                f"password must be at most {MAX_PASSWORD_BYTES} bytes"
            )
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    def verify(self, plaintext: str, hashed: Optional[str]) -> bool:
        """Return ``True`` only when ``plaintext`` matches ``hashed``.

        Missing or corrupt hashes count as a mismatch; nothing is raised.
        """

        if not hashed or plaintext is None:
            return False
        try:
            return bcrypt.checkpw(
                plaintext.encode("utf-8"), hashed.encode("utf-8")
            )
        except (ValueError, TypeError):
            logger.warning("password.verify.malformed_hash")
            return False


__all__ = ["PasswordHasher", "MAX_PASSWORD_BYTES"]
