from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from identity_service.models.enums import AuditAction, AuthProvider
from identity_service.models.repositories import (
    AuditLogRepository,
    RepositoryError,
    StorageTimeout,
    StorageUnavailable,
    UserRepository,
)
from identity_service.models.repositories.sessions import UserSessionRepository
from identity_service.models.user import User
from identity_service.services.cache import CacheHooks
from identity_service.services.transactions import transactional_session
from identity_service.utils.clock import utcnow


def test_repository_error_on_integrity_failure_triggers_rollback():
    session = MagicMock()
    session.flush.side_effect = IntegrityError("stmt", {}, Exception("boom"))
    repo = UserSessionRepository(session)
    user = User(email="session@example.com")

    with pytest.raises(RepositoryError) as excinfo:
        repo.create_session(
            user, session_token="digest", expires_at=utcnow()
        )

    session.rollback.assert_called_once()
    assert excinfo.value.status_code == 409


@pytest.mark.parametrize(
    "reason, expected",
    [
        ("canceling statement due to statement timeout", StorageTimeout),
        ("could not connect to server", StorageUnavailable),
    ],
)
def test_operational_errors_are_classified(reason, expected):
    session = MagicMock()
    session.get.side_effect = OperationalError("stmt", {}, Exception(reason))
    repo = UserRepository(session)

    with pytest.raises(expected) as excinfo:
        repo.get("user-1")
    assert excinfo.value.status_code == 503


def test_user_repository_combines_account_and_session_methods():
    session = MagicMock()
    repo = UserRepository(session)

    session.get.return_value = "user"
    assert repo.get("user-1") == "user"
    session.get.assert_called_once()
    assert callable(repo.revoke_user_sessions)

    with pytest.raises(AttributeError):
        getattr(repo, "nonexistent")


def test_user_repository_allows_class_level_monkeypatch(monkeypatch):
    captured: list[str] = []

    def fake_get(self, user_id: str):
        captured.append(user_id)
        return "patched"

    monkeypatch.setattr(UserRepository, "get", fake_get)
    repo = UserRepository(MagicMock())
    assert repo.get("user-42") == "patched"
    assert captured == ["user-42"]


def test_create_user_normalizes_and_rejects_duplicates():
    with transactional_session(name="tests.create") as session:
        user = UserRepository(session).create_user(
            email="  Carol@Example.COM ", name="Carol"
        )
        assert user.email == "carol@example.com"
        assert user.login_attempts == 0

    with pytest.raises(RepositoryError) as excinfo:
        with transactional_session(name="tests.duplicate") as session:
            UserRepository(session).create_user(email="carol@example.com")
    assert excinfo.value.status_code == 409


def test_register_failed_login_counts_and_locks():
    lock_until = utcnow() + timedelta(minutes=15)
    with transactional_session(name="tests.lockout") as session:
        repo = UserRepository(session)
        user = repo.create_user(email="dave@example.com")
        counts = [
            repo.register_failed_login(
                user, max_attempts=3, locked_until=lock_until
            )
            for _ in range(3)
        ]
        assert counts == [1, 2, 3]
        assert user.login_attempts == 3
        assert user.is_locked(utcnow())

        repo.record_successful_login(user, utcnow())
        assert user.login_attempts == 0
        assert user.locked_until is None


def test_upsert_oauth_user_links_existing_account():
    with transactional_session(name="tests.oauth") as session:
        repo = UserRepository(session)
        existing = repo.create_user(email="erin@example.com", name="Erin")
        user, created = repo.upsert_oauth_user(
            email="Erin@example.com", provider=AuthProvider.GOOGLE
        )
        assert created is False
        assert user.id == existing.id
        assert user.auth_provider == "email"
        assert user.email_verified is True

        other, created = repo.upsert_oauth_user(
            email="frank@example.com",
            provider=AuthProvider.FACEBOOK,
            provider_user_id="fb-9",
        )
        assert created is True
        assert other.auth_provider == "facebook"
        assert other.password_hash is None


def test_mutations_invalidate_caches():
    hooks = CacheHooks(
        invalidate_profile=MagicMock(), invalidate_collections=MagicMock()
    )
    with transactional_session(name="tests.hooks") as session:
        repo = UserRepository(session, cache_hooks=hooks)
        user = repo.create_user(email="gina@example.com")
        repo.update_user(user, {"name": "Gina", "email": "ignored@x.io"})
        assert user.email == "gina@example.com"

    hooks.invalidate_profile.assert_called_with(user.id)
    assert hooks.invalidate_collections.call_count == 2


def test_deleting_a_user_keeps_audit_entries():
    with transactional_session(name="tests.delete") as session:
        repo = UserRepository(session)
        user = repo.create_user(email="hank@example.com")
        user_id = user.id
        repo.create_session(
            user,
            session_token="digest",
            expires_at=utcnow() + timedelta(days=1),
        )
        AuditLogRepository(session).record_event(
            action=AuditAction.LOGIN,
            user_id=user_id,
            user_email="hank@example.com",
        )

    with transactional_session(name="tests.delete") as session:
        repo = UserRepository(session)
        repo.delete_user(repo.get(user_id))

    with transactional_session(name="tests.delete.check") as session:
        assert UserRepository(session).list_sessions(user_id) == []
        items, total = AuditLogRepository(session).list_events(
            page=1, per_page=10, filters={"action": "login"}
        )
        assert total == 1
        assert items[0].user_id is None
        assert items[0].user_email == "hank@example.com"


def test_audit_counting_respects_window_and_reset():
    now = utcnow()
    with transactional_session(name="tests.count") as session:
        repo = AuditLogRepository(session)
        repo.record_event(
            action=AuditAction.LOGIN,
            user_id="user-1",
            created_at=now - timedelta(hours=2),
        )
        repo.record_event(
            action=AuditAction.LOGIN,
            user_id="user-1",
            created_at=now - timedelta(minutes=5),
        )
        assert (
            repo.count_events(
                user_id="user-1",
                action=AuditAction.LOGIN,
                since=now - timedelta(hours=1),
            )
            == 1
        )
        assert (
            repo.latest_reset(user_id="user-1", action=AuditAction.LOGIN)
            is None
        )

        repo.record_event(
            action=AuditAction.RATE_LIMIT_RESET,
            user_id="user-1",
            resource="all",
            created_at=now - timedelta(minutes=1),
        )
        assert repo.latest_reset(
            user_id="user-1", action=AuditAction.LOGIN
        ) is not None
