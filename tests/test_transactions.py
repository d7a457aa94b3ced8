import pytest

from identity_service.models.repositories import RepositoryError, UserRepository
from identity_service.services.transactions import (
    in_transaction,
    transactional_session,
)


def test_nested_transaction_reuses_same_session():
    assert in_transaction() is False
    with transactional_session(name="outer") as outer_session:
        assert in_transaction() is True
        with transactional_session(name="nested") as nested_session:
            assert nested_session is outer_session
    assert in_transaction() is False


def test_nested_transaction_rollback_on_repository_error():
    with pytest.raises(RepositoryError):
        with transactional_session(name="outer") as session:
            repo = UserRepository(session)
            repo.create_user(email="outer@example.com")
            with transactional_session(name="nested") as nested:
                nested_repo = UserRepository(nested)
                nested_repo.create_user(email="outer@example.com")

    with transactional_session(name="check") as session:
        repo = UserRepository(session)
        assert repo.get_by_email("outer@example.com") is None


def test_exceptions_roll_back_the_whole_unit():
    with pytest.raises(RuntimeError):
        with transactional_session(name="outer") as session:
            UserRepository(session).create_user(email="gone@example.com")
            raise RuntimeError("abort")

    with transactional_session(name="check") as session:
        assert UserRepository(session).get_by_email("gone@example.com") is None


def test_commit_persists_changes():
    with transactional_session(name="write") as session:
        UserRepository(session).create_user(email="kept@example.com")

    with transactional_session(name="check") as session:
        assert UserRepository(session).get_by_email("kept@example.com")
