import pytest
from cryptography.fernet import Fernet

from identity_service.config import Config, get_config, parse_duration, reset_config


@pytest.fixture
def restore_config():
    yield
    reset_config(
        {
            "JWT_EXPIRES_IN": None,
            "MAX_LOGIN_ATTEMPTS": None,
            "RATE_LIMIT_OVERRIDES": None,
            "CORS_ORIGINS": None,
            "SMTP_USE_TLS": None,
        }
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("7d", 7 * 86400),
        ("12h", 12 * 3600),
        ("30m", 1800),
        ("45s", 45),
        (None, 99),
        ("", 99),
        ("soon", 99),
        ("10w", 99),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw, 99) == expected


def test_defaults():
    config = get_config()
    assert config.session_ttl_seconds == 7 * 86400
    assert config.max_login_attempts == 5
    assert config.lockout_duration_ms == 15 * 60 * 1000
    assert config.password_reset_ttl_minutes == 60
    assert config.rate_limit_overrides == []
    assert config.smtp_host is None
    assert get_config() is config


def test_environment_overrides(restore_config):
    config = reset_config(
        {
            "JWT_EXPIRES_IN": "12h",
            "MAX_LOGIN_ATTEMPTS": "not-a-number",
            "RATE_LIMIT_OVERRIDES": "login=3/60000, ai_generate=1/1000",
            "CORS_ORIGINS": "https://a.example, https://b.example",
            "SMTP_USE_TLS": "off",
        }
    )
    assert config.session_ttl_seconds == 12 * 3600
    assert config.max_login_attempts == 5
    assert config.rate_limit_overrides == [
        "login=3/60000",
        "ai_generate=1/1000",
    ]
    assert config.cors_origins == ["https://a.example", "https://b.example"]
    assert config.smtp_use_tls is False


def test_encryption_key_is_derived_from_the_jwt_secret():
    config = Config(
        database_url="sqlite://", redis_url=None, jwt_secret="x" * 40
    )
    same = Config(database_url="sqlite://", redis_url=None, jwt_secret="x" * 40)
    assert config.encryption_key == same.encryption_key
    # a valid Fernet key
    Fernet(config.encryption_key.encode())

    explicit = Fernet.generate_key().decode()
    config = Config(
        database_url="sqlite://",
        redis_url=None,
        encryption_primary_key=explicit,
    )
    assert config.encryption_key == explicit


def test_weak_secret_detection():
    assert Config(database_url="sqlite://", redis_url=None).weak_jwt_secret
    assert not Config(
        database_url="sqlite://", redis_url=None, jwt_secret="s" * 32
    ).weak_jwt_secret
