"""Pytest fixtures for the identity service tests."""

import os
from datetime import timedelta

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SQLALCHEMY_ECHO", "false")
os.environ.setdefault(
    "JWT_SECRET", "test-secret-with-at-least-thirty-two-bytes"
)
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault(
    "GOOGLE_REDIRECT_URI", "http://localhost/auth/oauth/google/callback"
)
os.environ.pop("SMTP_HOST", None)
os.environ.pop("REDIS_URL", None)

from cryptography.fernet import Fernet  # noqa: E402

from identity_service.auth.jwt_handler import TokenIssuer  # noqa: E402
from identity_service.auth.passwords import PasswordHasher  # noqa: E402
from identity_service.db.session import (  # noqa: E402
    Base,
    get_engine,
    reset_engine,
)
from identity_service.main import create_app  # noqa: E402
from identity_service.models.enums import UserRole  # noqa: E402
from identity_service.models.repositories import UserRepository  # noqa: E402
from identity_service.services.auth import AuthService  # noqa: E402
from identity_service.services.transactions import (  # noqa: E402
    transactional_session,
)
from identity_service.utils.clock import utcnow  # noqa: E402
from identity_service.utils.encryption import (  # noqa: E402
    ApplicationEncryptor,
)

TEST_SECRET = os.environ["JWT_SECRET"]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class Outbox:
    """Stands in for the email service and keeps what would be sent."""

    def __init__(self):
        self.welcome = []
        self.resets = []

    def send_welcome(self, to, name):
        self.welcome.append((to, name))
        return True

    def send_password_reset(self, to, name, token, expires_minutes):
        self.resets.append(
            {"to": to, "name": name, "token": token, "minutes": expires_minutes}
        )
        return True


@pytest.fixture(scope="session")
def app():
    reset_engine()
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    application = create_app()
    application.config.update({"TESTING": True})
    yield application
    Base.metadata.drop_all(bind=engine)
    reset_engine()


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture(autouse=True)
def _db_cleanup():
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def outbox():
    return Outbox()


@pytest.fixture()
def encryptor():
    return ApplicationEncryptor.from_keys(
        primary_key=Fernet.generate_key().decode()
    )


@pytest.fixture()
def auth_service(clock, outbox, encryptor):
    return AuthService(
        hasher=PasswordHasher(4),
        tokens=TokenIssuer(TEST_SECRET),
        encryptor=encryptor,
        email=outbox,
        clock=clock,
    )


@pytest.fixture()
def register(client):
    def _register(
        email="alice@example.com", password="Secret123!", name="Alice"
    ):
        response = client.post(
            "/auth/register",
            json={"email": email, "password": password, "name": name},
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    return _register


@pytest.fixture()
def promote():
    def _promote(user_id, role=UserRole.ADMIN):
        with transactional_session(name="tests.promote") as session:
            repo = UserRepository(session)
            repo.update_user(repo.get(user_id), {"role": role})

    return _promote


@pytest.fixture()
def admin_token(register, promote):
    body = register(email="admin@example.com", name="Admin")
    promote(body["user"]["id"])
    return body["token"]
