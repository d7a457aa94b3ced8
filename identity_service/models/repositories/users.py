"""Repositories handling persistence for ``User`` accounts."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Tuple

from sqlalchemy import func, select, update

from identity_service.models.enums import AuthProvider, UserRole
from identity_service.models.user import User

from .base import SQLAlchemyRepository, repository_method


SORT_FIELDS = {
    "created_at": User.created_at,
    "updated_at": User.updated_at,
    "last_login_at": User.last_login_at,
    "email": User.email,
    "name": User.name,
}

UPDATABLE_FIELDS = ("name", "role", "is_active", "email_verified")


class UserCoreRepository(SQLAlchemyRepository):
    """Core operations for the ``User`` entity."""

    @repository_method
    def get(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    @repository_method
    def get_by_email(self, email: str) -> Optional[User]:
        normalized = normalize_email(email)
        stmt = select(User).where(User.email == normalized)
        return self.session.execute(stmt).scalar_one_or_none()

    @repository_method
    def get_by_reset_token(self, digests: Iterable[str]) -> Optional[User]:
        candidates = list(digests)
        if not candidates:
            return None
        stmt = select(User).where(User.password_reset_token.in_(candidates))
        return self.session.execute(stmt).scalars().first()

    @repository_method
    def create_user(
        self,
        *,
        email: str,
        name: Optional[str] = None,
        password_hash: Optional[str] = None,
        role: UserRole = UserRole.USER,
        auth_provider: AuthProvider = AuthProvider.EMAIL,
        provider_user_id: Optional[str] = None,
        email_verified: bool = False,
        is_active: bool = True,
        user_id: Optional[str] = None,
    ) -> User:
        normalized_email = normalize_email(email)
        validate_email(normalized_email)

        user = User(
            email=normalized_email,
            name=name,
            password_hash=password_hash,
            role=UserRole(role).value,
            auth_provider=AuthProvider(auth_provider).value,
            provider_user_id=provider_user_id,
            email_verified=email_verified,
            is_active=is_active,
            login_attempts=0,
        )
        if user_id is not None:
            user.id = user_id
        self.session.add(user)
        self._flush()
        self._invalidate_caches()
        return user

    @repository_method
    def upsert_oauth_user(
        self,
        *,
        email: str,
        provider: AuthProvider,
        provider_user_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Tuple[User, bool]:
        """Find the account for ``email`` or create an OAuth-only one."""

        normalized_email = normalize_email(email)
        validate_email(normalized_email)

        provider_value = AuthProvider(provider).value
        user = self.get_by_email(normalized_email)
        created = user is None
        if user is None:
            user = User(
                email=normalized_email,
                role=UserRole.USER.value,
                auth_provider=provider_value,
                provider_user_id=provider_user_id,
                is_active=True,
                login_attempts=0,
            )
            self.session.add(user)
        elif user.auth_provider == provider_value and provider_user_id:
            user.provider_user_id = provider_user_id
        user.name = user.name or name
        # the provider vouched for the address
        user.email_verified = True

        self._flush()
        self._invalidate_caches(user.id)
        return user, created

    @repository_method
    def update_user(self, user: User, data: dict[str, object]) -> User:
        for field in UPDATABLE_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field == "role":
                value = UserRole(value).value
            setattr(user, field, value)

        self._flush()
        self._invalidate_caches(user.id)
        return user

    @repository_method
    def delete_user(self, user: User) -> None:
        user_id = user.id
        self.session.delete(user)
        self._flush()
        self._invalidate_caches(user_id)

    @repository_method
    def deactivate(self, user: User) -> None:
        user.is_active = False
        self._flush()
        self._invalidate_caches(user.id)

    # ------------------------------------------------------------------
    # Credential state
    # ------------------------------------------------------------------
    @repository_method
    def register_failed_login(
        self,
        user: User,
        *,
        max_attempts: int,
        locked_until: datetime,
    ) -> int:
        """Atomically bump ``login_attempts`` and lock once the max is hit.

        The increment happens inside the database so concurrent failures
        for the same account are never lost. Returns the new count.
        """

        self.session.execute(
            update(User)
            .where(User.id == user.id)
            .values(login_attempts=User.login_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        attempts = self.session.execute(
            select(User.login_attempts).where(User.id == user.id)
        ).scalar_one()
        if attempts >= max_attempts:
            self.session.execute(
                update(User)
                .where(User.id == user.id)
                .values(locked_until=locked_until)
                .execution_options(synchronize_session=False)
            )
        self.session.refresh(user, ["login_attempts", "locked_until"])
        return attempts

    @repository_method
    def record_successful_login(self, user: User, at: datetime) -> User:
        user.touch_login(at)
        self._flush()
        self._invalidate_caches(user.id, listings=False)
        return user

    @repository_method
    def set_password_reset(
        self,
        user: User,
        *,
        token_digest: str,
        expires_at: datetime,
    ) -> User:
        user.password_reset_token = token_digest
        user.password_reset_expires = expires_at
        self._flush()
        return user

    @repository_method
    def set_password(
        self,
        user: User,
        password_hash: str,
        *,
        clear_reset: bool = True,
    ) -> User:
        user.password_hash = password_hash
        if clear_reset:
            user.password_reset_token = None
            user.password_reset_expires = None
            user.login_attempts = 0
            user.locked_until = None
        self._flush()
        self._invalidate_caches(user.id, listings=False)
        return user

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    @repository_method
    def list_users(
        self,
        *,
        page: int,
        per_page: int,
        sort: Tuple[str, str],
        filters: dict[str, object],
    ) -> Tuple[list[User], int]:
        stmt = select(User)
        if role := filters.get("role"):
            stmt = stmt.where(User.role == role)
        if (is_active := filters.get("is_active")) is not None:
            stmt = stmt.where(User.is_active.is_(bool(is_active)))
        if query := filters.get("q"):
            pattern = f"%{str(query).lower()}%"
            stmt = stmt.where(
                func.lower(User.email).like(pattern)
                | func.lower(func.coalesce(User.name, "")).like(pattern)
            )
        return self._paginate(stmt, page, per_page, sort)

    def _paginate(
        self,
        stmt,
        page: int,
        per_page: int,
        sort: Tuple[str, str],
    ) -> Tuple[list[User], int]:
        sort_field, direction = sort
        column = SORT_FIELDS.get(sort_field, User.created_at)
        order_clause = column.desc() if direction == "desc" else column.asc()

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = self.session.execute(count_stmt).scalar_one()
        if total == 0:
            return [], 0

        offset = (page - 1) * per_page
        result_stmt = (
            stmt.order_by(order_clause, User.id.asc())
            .offset(offset)
            .limit(per_page)
        )
        records = self.session.execute(result_stmt).scalars().all()
        return list(records), total


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: str) -> None:
    if "@" not in email:
        raise ValueError("invalid email address")


__all__ = [
    "UserCoreRepository",
    "normalize_email",
    "validate_email",
    "SORT_FIELDS",
    "UPDATABLE_FIELDS",
]
