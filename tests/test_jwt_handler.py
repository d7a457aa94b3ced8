from datetime import timedelta

import jwt
import pytest

from identity_service.auth.errors import InvalidToken
from identity_service.auth.jwt_handler import TokenIssuer
from identity_service.utils.clock import utcnow

SECRET = "jwt-handler-secret-of-at-least-32-bytes"


def test_issue_and_verify_round_trip():
    issuer = TokenIssuer(SECRET)
    token = issuer.issue({"sub": "user-1", "email": "a@example.com"})
    claims = issuer.verify(token)
    assert claims["sub"] == "user-1"
    assert claims["email"] == "a@example.com"
    assert claims["exp"] - claims["iat"] == int(timedelta(days=7).total_seconds())


def test_tokens_issued_together_are_distinct():
    issuer = TokenIssuer(SECRET)
    now = utcnow()
    first = issuer.issue({"sub": "user-1"}, now=now)
    second = issuer.issue({"sub": "user-1"}, now=now)
    assert first != second


def test_expired_token_is_rejected():
    issuer = TokenIssuer(SECRET, ttl=timedelta(minutes=5))
    token = issuer.issue({"sub": "user-1"}, now=utcnow() - timedelta(hours=1))
    with pytest.raises(InvalidToken) as excinfo:
        issuer.verify(token)
    assert excinfo.value.message == "token expired"


def test_wrong_secret_and_tampering_are_rejected():
    token = TokenIssuer(SECRET).issue({"sub": "user-1"})
    with pytest.raises(InvalidToken):
        TokenIssuer("another-secret-of-at-least-32-bytes!!").verify(token)
    header, _, signature = token.split(".")
    other_payload = TokenIssuer(SECRET).issue({"sub": "user-2"}).split(".")[1]
    with pytest.raises(InvalidToken):
        TokenIssuer(SECRET).verify(".".join([header, other_payload, signature]))
    with pytest.raises(InvalidToken):
        TokenIssuer(SECRET).verify("not-a-jwt")


def test_subject_is_required():
    issuer = TokenIssuer(SECRET)
    with pytest.raises(ValueError):
        issuer.issue({"email": "a@example.com"})
    no_subject = jwt.encode(
        {"iat": utcnow(), "exp": utcnow() + timedelta(minutes=1)},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(InvalidToken):
        issuer.verify(no_subject)
