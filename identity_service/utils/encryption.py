"""At-rest encryption and token digest helpers."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Iterable, NamedTuple

from cryptography.fernet import Fernet, InvalidToken


class EncryptionError(RuntimeError):
    """Raised when a payload cannot be decrypted with any known key."""


class _Key(NamedTuple):
    cipher: Fernet
    mac_secret: bytes

    @classmethod
    def parse(cls, encoded: str) -> "_Key":
        material = encoded.strip().encode()
        return cls(Fernet(material), base64.urlsafe_b64decode(material))

    def digest(self, token: str) -> str:
        return hmac.new(self.mac_secret, token.encode(), hashlib.sha256).hexdigest()


class ApplicationEncryptor:
    """Encrypts session context and digests bearer/reset tokens.

    Tokens are never stored verbatim: the database keeps an HMAC-SHA256
    digest keyed with the newest key, and lookups try the digests of every
    rotated key so old sessions survive a key rotation.
    """

    __slots__ = ("_keyring",)

    def __init__(self, keyring: tuple[_Key, ...]) -> None:
        if not keyring:
            raise ValueError("primary encryption key is required")
        self._keyring = keyring

    @classmethod
    def from_keys(
        cls,
        *,
        primary_key: str,
        fallback_keys: Iterable[str] | None = None,
    ) -> "ApplicationEncryptor":
        if not primary_key:
            raise ValueError("primary encryption key is required")
        retired = [_Key.parse(key) for key in fallback_keys or () if key]
        return cls((_Key.parse(primary_key), *retired))

    def encrypt_json(self, payload: dict[str, object]) -> str:
        document = json.dumps(payload, separators=(",", ":")).encode()
        return self._keyring[0].cipher.encrypt(document).decode()

    def decrypt_json(self, payload: str) -> object:
        ciphertext = payload.encode()
        for key in self._keyring:
            try:
                plaintext = key.cipher.decrypt(ciphertext)
            except InvalidToken:
                continue
            return json.loads(plaintext)
        raise EncryptionError("unable to decrypt payload with available keys")

    def hash_token(self, token: str) -> str:
        """Digest written for new sessions and reset tokens."""

        return self._keyring[0].digest(token)

    def token_candidates(self, token: str) -> list[str]:
        """Every digest ``token`` may have been stored under."""

        return [key.digest(token) for key in self._keyring]


__all__ = ["ApplicationEncryptor", "EncryptionError"]
