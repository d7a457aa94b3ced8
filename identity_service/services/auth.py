"""Credential, session and password-reset flows."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ContextManager,
    Mapping,
    Optional,
)

from prometheus_client import Counter
from sqlalchemy.orm import Session

from identity_service.auth.context import RequestContext
from identity_service.auth.errors import (
    AccountLocked,
    AuthError,
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidToken,
    OAuthError,
)
from identity_service.auth.jwt_handler import TokenIssuer
from identity_service.auth.oauth import fetch_user_info
from identity_service.auth.passwords import PasswordHasher
from identity_service.config import Config
from identity_service.models.enums import (
    AuditAction,
    AuditStatus,
    AuthProvider,
    UserRole,
)
from identity_service.models.repositories import RepositoryError, UserRepository
from identity_service.models.user import User, UserSession
from identity_service.services.audit import AuditService, audit_service
from identity_service.services.email import EmailService, redact_email
from identity_service.services.transactions import transactional_session
from identity_service.utils.clock import ensure_aware, utcnow
from identity_service.utils.encryption import (
    ApplicationEncryptor,
    EncryptionError,
)

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from identity_service.services.cache import CacheHooks

logger = logging.getLogger(__name__)

_AUTH_EVENTS = Counter(
    "identity_service_auth_events_total",
    "Authentication events by kind and outcome.",
    labelnames=("event", "outcome"),
)

OAuthExchange = Callable[
    [str, str, Optional[str], Optional[str]], Mapping[str, Any]
]


@dataclass(frozen=True, slots=True)
class AuthResult:
    token: str
    user: User
    expires_at: datetime


class AuthService:
    """Stateless facade over the credential, session and audit stores.

    Every public operation opens its own transaction. Expected security
    outcomes are raised as :class:`AuthError` subclasses only after the
    transaction has been committed, so failed-attempt counters persist
    even though the caller receives an error.
    """

    def __init__(
        self,
        *,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        encryptor: ApplicationEncryptor,
        audit: AuditService = audit_service,
        email: Optional[EmailService] = None,
        cache_hooks: "CacheHooks | None" = None,
        transaction: Callable[..., ContextManager[Session]] = (
            transactional_session
        ),
        clock: Callable[[], datetime] = utcnow,
        max_login_attempts: int = 5,
        lockout_duration: timedelta = timedelta(minutes=15),
        password_reset_ttl: timedelta = timedelta(hours=1),
        oauth_exchange: OAuthExchange = fetch_user_info,
    ) -> None:
        self._hasher = hasher
        self._tokens = tokens
        self._encryptor = encryptor
        self._audit = audit
        self._email = email
        self._cache_hooks = cache_hooks
        self._transaction = transaction
        self._clock = clock
        self.max_login_attempts = max_login_attempts
        self.lockout_duration = lockout_duration
        self.password_reset_ttl = password_reset_ttl
        self._oauth_exchange = oauth_exchange

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        encryptor: Optional[ApplicationEncryptor] = None,
        audit: AuditService = audit_service,
        email: Optional[EmailService] = None,
        cache_hooks: "CacheHooks | None" = None,
    ) -> "AuthService":
        return cls(
            hasher=PasswordHasher(config.bcrypt_rounds),
            tokens=TokenIssuer.from_config(config),
            encryptor=encryptor
            or ApplicationEncryptor.from_keys(
                primary_key=config.encryption_key,
                fallback_keys=config.encryption_fallback_keys,
            ),
            audit=audit,
            email=email or EmailService.from_config(config),
            cache_hooks=cache_hooks,
            max_login_attempts=config.max_login_attempts,
            lockout_duration=timedelta(
                milliseconds=config.lockout_duration_ms
            ),
            password_reset_ttl=timedelta(
                minutes=config.password_reset_ttl_minutes
            ),
        )

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------
    def login(
        self,
        email: str,
        password: str,
        context: Optional[RequestContext] = None,
    ) -> AuthResult:
        """Authenticate ``email``/``password`` and open a new session.

        Args:
            email: Address as typed by the caller; normalized before lookup.
            password: Plaintext password.
            context: Caller metadata recorded on the session and audit row.

        Returns:
            AuthResult: The bearer token, the user and the session expiry.

        Raises:
            InvalidCredentials: Unknown email, inactive account or wrong
                password.
            AccountLocked: The lockout window is still running.
        """
        context = context or RequestContext()
        now = self._clock()
        failure: Optional[AuthError] = None
        user: Optional[User] = None
        attempts = 0
        result: Optional[AuthResult] = None

        with self._transaction(name="auth.login") as session:
            repo = self._repository(session)
            user = repo.get_by_email(email)
            if user is None or not user.is_active:
                failure = InvalidCredentials()
            elif user.is_locked(now):
                failure = AccountLocked()
            elif not self._hasher.verify(password, user.password_hash):
                attempts = repo.register_failed_login(
                    user,
                    max_attempts=self.max_login_attempts,
                    locked_until=now + self.lockout_duration,
                )
                failure = InvalidCredentials()
            else:
                repo.record_successful_login(user, now)
                result = self._start_session(
                    repo, user, context, now, provider=AuthProvider.EMAIL
                )

        if failure is not None:
            self._login_failed(failure, email, user, context, attempts)
            raise failure

        assert result is not None
        _AUTH_EVENTS.labels("login", "success").inc()
        logger.info("auth.login.success user_id=%s", result.user.id)
        self._audit.log_auth_event(AuditAction.LOGIN, result.user, context)
        return result

    def register(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> AuthResult:
        context = context or RequestContext()
        now = self._clock()
        password_hash = self._hasher.hash(password)
        duplicate = False
        result: Optional[AuthResult] = None

        try:
            with self._transaction(name="auth.register") as session:
                repo = self._repository(session)
                if repo.get_by_email(email) is not None:
                    duplicate = True
                else:
                    user = repo.create_user(
                        email=email,
                        name=name,
                        password_hash=password_hash,
                        role=UserRole.USER,
                        auth_provider=AuthProvider.EMAIL,
                        email_verified=False,
                        is_active=True,
                    )
                    repo.record_successful_login(user, now)
                    result = self._start_session(
                        repo, user, context, now, provider=AuthProvider.EMAIL
                    )
        except RepositoryError as exc:
            # a concurrent registration won the unique index
            if exc.status_code != 409:
                raise
            duplicate = True

        if duplicate:
            _AUTH_EVENTS.labels("register", "duplicate").inc()
            logger.info("auth.register.duplicate email=%s", redact_email(email))
            raise DuplicateEmail()

        assert result is not None
        _AUTH_EVENTS.labels("register", "success").inc()
        logger.info("auth.register.success user_id=%s", result.user.id)
        self._audit.log_auth_event(AuditAction.REGISTER, result.user, context)
        self._deliver(
            "welcome",
            lambda mailer: mailer.send_welcome(
                result.user.email, result.user.name
            ),
        )
        return result

    def login_with_oauth(
        self,
        provider: str,
        code: str,
        context: Optional[RequestContext] = None,
        *,
        redirect_uri: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> AuthResult:
        """Exchange an authorization ``code`` and sign the owner in."""

        context = context or RequestContext()
        try:
            auth_provider = AuthProvider(provider)
        except ValueError:
            auth_provider = None
        if auth_provider is None or auth_provider is AuthProvider.EMAIL:
            raise OAuthError("unsupported provider")

        try:
            info = self._oauth_exchange(provider, code, redirect_uri, nonce)
        except Exception as exc:
            _AUTH_EVENTS.labels("oauth", "exchange_failed").inc()
            logger.warning(
                "auth.oauth.exchange_failed provider=%s",
                provider,
                exc_info=True,
            )
            raise OAuthError(details={"provider": provider}) from exc

        email = (info or {}).get("email")
        if not email:
            _AUTH_EVENTS.labels("oauth", "missing_email").inc()
            raise OAuthError(
                "provider did not return an email address",
                details={"provider": provider},
            )

        now = self._clock()
        created = False
        result: Optional[AuthResult] = None
        try:
            with self._transaction(name="auth.oauth") as session:
                repo = self._repository(session)
                user, created = repo.upsert_oauth_user(
                    email=email,
                    provider=auth_provider,
                    provider_user_id=info.get("sub") or info.get("id"),
                    name=info.get("name"),
                )
                if user.is_active:
                    repo.record_successful_login(user, now)
                    result = self._start_session(
                        repo, user, context, now, provider=auth_provider
                    )
        except ValueError as exc:
            raise OAuthError(str(exc), details={"provider": provider}) from exc

        if result is None:
            _AUTH_EVENTS.labels("oauth", "inactive").inc()
            raise InvalidCredentials()

        _AUTH_EVENTS.labels("oauth", "success").inc()
        logger.info(
            "auth.oauth.success provider=%s user_id=%s created=%s",
            provider,
            result.user.id,
            created,
        )
        details = {"provider": provider}
        if created:
            self._audit.log_auth_event(
                AuditAction.REGISTER, result.user, context, details=details
            )
        self._audit.log_auth_event(
            AuditAction.LOGIN, result.user, context, details=details
        )
        return result

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def logout(self, context: Optional[RequestContext] = None) -> None:
        """Revoke the session behind the caller's bearer token, if any."""

        context = context or RequestContext()
        token = context.bearer_token
        if not token:
            return
        user: Optional[User] = None
        with self._transaction(name="auth.logout") as session:
            repo = self._repository(session)
            record = repo.get_session_by_token(
                self._encryptor.token_candidates(token)
            )
            if record is not None and record.is_active:
                repo.revoke_session(record, revoked_at=self._clock())
                user = record.user
        if user is None:
            logger.debug("auth.logout.noop")
            return
        _AUTH_EVENTS.labels("logout", "success").inc()
        logger.info("auth.logout user_id=%s", user.id)
        self._audit.log_auth_event(AuditAction.LOGOUT, user, context)

    def validate_token(self, token: Optional[str]) -> Optional[User]:
        """Return the active owner of ``token`` or ``None``."""

        if not token:
            return None
        try:
            claims = self._tokens.verify(token)
        except InvalidToken:
            return None

        now = self._clock()
        with self._transaction(name="auth.validate_token") as session:
            repo = self._repository(session)
            record = repo.get_session_by_token(
                self._encryptor.token_candidates(token)
            )
            if record is None or not record.is_valid(now):
                return None
            if record.user_id != claims.get("sub"):
                logger.warning(
                    "auth.validate_token.subject_mismatch session_id=%s",
                    record.id,
                )
                return None
            user = record.user
            if user is None or not user.is_active:
                return None
            return user

    def list_sessions(
        self, user_id: str, *, active_only: bool = False
    ) -> list[UserSession]:
        with self._transaction(name="auth.sessions.list") as session:
            return self._repository(session).list_sessions(
                user_id, active_only=active_only
            )

    def revoke_session(
        self,
        user_id: str,
        session_id: str,
        context: Optional[RequestContext] = None,
    ) -> bool:
        """Revoke one of ``user_id``'s sessions; ``False`` if not theirs."""

        user: Optional[User] = None
        with self._transaction(name="auth.sessions.revoke") as session:
            repo = self._repository(session)
            record = repo.get_session_by_id(session_id)
            if record is None or record.user_id != user_id:
                return False
            if record.is_active:
                repo.revoke_session(record, revoked_at=self._clock())
                user = record.user
        if user is not None:
            self._audit.log_auth_event(
                AuditAction.LOGOUT,
                user,
                context,
                details={"session_id": session_id},
            )
        return True

    def purge_expired_sessions(
        self, before: Optional[datetime] = None
    ) -> int:
        cutoff = before or self._clock()
        with self._transaction(name="auth.sessions.purge") as session:
            purged = self._repository(session).purge_expired_sessions(
                before=cutoff
            )
        logger.info("auth.sessions.purged count=%s", purged)
        return purged

    def session_context(self, record: UserSession) -> dict[str, Any]:
        """Decrypt the sign-in context stored with ``record``."""

        if not record.encrypted_payload:
            return {}
        try:
            payload = self._encryptor.decrypt_json(record.encrypted_payload)
        except EncryptionError:
            logger.warning(
                "auth.session_context.undecryptable session_id=%s", record.id
            )
            return {}
        return payload if isinstance(payload, dict) else {}

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------
    def request_password_reset(
        self, email: str, context: Optional[RequestContext] = None
    ) -> None:
        """Email a single-use reset link; silent for unknown addresses."""

        token = secrets.token_urlsafe(32)
        expires_at = self._clock() + self.password_reset_ttl
        recipient: Optional[tuple[str, Optional[str]]] = None
        with self._transaction(name="auth.password_reset.request") as session:
            repo = self._repository(session)
            user = repo.get_by_email(email)
            if user is not None:
                repo.set_password_reset(
                    user,
                    token_digest=self._encryptor.hash_token(token),
                    expires_at=expires_at,
                )
                recipient = (user.email, user.name)

        if recipient is None:
            logger.info(
                "auth.password_reset.unknown_email email=%s",
                redact_email(email),
            )
            return
        _AUTH_EVENTS.labels("password_reset_request", "success").inc()
        minutes = int(self.password_reset_ttl.total_seconds() // 60)
        self._deliver(
            "password_reset",
            lambda mailer: mailer.send_password_reset(
                recipient[0], recipient[1], token, minutes
            ),
        )

    def reset_password(
        self,
        token: str,
        new_password: str,
        context: Optional[RequestContext] = None,
    ) -> None:
        """Consume a reset token and set ``new_password``.

        The token is cleared on success so a replay fails. Lockout state is
        cleared and every active session of the user is revoked.
        """
        if not token:
            raise InvalidOrExpiredToken()
        now = self._clock()
        password_hash = self._hasher.hash(new_password)
        user: Optional[User] = None
        revoked = 0

        with self._transaction(name="auth.password_reset") as session:
            repo = self._repository(session)
            candidate = repo.get_by_reset_token(
                self._encryptor.token_candidates(token)
            )
            expires_at = (
                ensure_aware(candidate.password_reset_expires)
                if candidate is not None
                else None
            )
            if candidate is not None and expires_at and now <= expires_at:
                repo.set_password(candidate, password_hash)
                revoked = repo.revoke_user_sessions(
                    candidate.id, revoked_at=now
                )
                user = candidate

        if user is None:
            _AUTH_EVENTS.labels("password_reset", "invalid_token").inc()
            raise InvalidOrExpiredToken()

        _AUTH_EVENTS.labels("password_reset", "success").inc()
        logger.info(
            "auth.password_reset.success user_id=%s revoked_sessions=%s",
            user.id,
            revoked,
        )
        self._audit.log_auth_event(
            AuditAction.PASSWORD_RESET,
            user,
            context,
            details={"revoked_sessions": revoked},
        )

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        context: Optional[RequestContext] = None,
    ) -> None:
        password_hash = self._hasher.hash(new_password)
        user: Optional[User] = None
        changed = False
        with self._transaction(name="auth.password_change") as session:
            repo = self._repository(session)
            user = repo.get(user_id)
            if (
                user is not None
                and user.is_active
                and self._hasher.verify(current_password, user.password_hash)
            ):
                repo.set_password(user, password_hash)
                changed = True

        if not changed:
            _AUTH_EVENTS.labels("password_change", "failure").inc()
            if user is not None:
                self._audit.log_auth_event(
                    AuditAction.PASSWORD_CHANGE,
                    user,
                    context,
                    status=AuditStatus.FAILURE,
                    error_message="current password mismatch",
                )
            raise InvalidCredentials()

        _AUTH_EVENTS.labels("password_change", "success").inc()
        logger.info("auth.password_change.success user_id=%s", user_id)
        self._audit.log_auth_event(AuditAction.PASSWORD_CHANGE, user, context)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _repository(self, session: Session) -> UserRepository:
        return UserRepository(session, cache_hooks=self._cache_hooks)

    def _start_session(
        self,
        repo: UserRepository,
        user: User,
        context: RequestContext,
        now: datetime,
        *,
        provider: AuthProvider,
    ) -> AuthResult:
        token = self._tokens.issue(
            {"sub": user.id, "email": user.email, "role": user.role},
            now=now,
        )
        expires_at = now + self._tokens.ttl
        payload = self._encryptor.encrypt_json(
            {
                "provider": provider.value,
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
                "request_id": context.request_id,
                "issued_at": now.isoformat(),
            }
        )
        repo.create_session(
            user,
            session_token=self._encryptor.hash_token(token),
            expires_at=expires_at,
            encrypted_payload=payload,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        return AuthResult(token=token, user=user, expires_at=expires_at)

    def _login_failed(
        self,
        failure: AuthError,
        email: str,
        user: Optional[User],
        context: RequestContext,
        attempts: int,
    ) -> None:
        _AUTH_EVENTS.labels("login", failure.code).inc()
        if user is None:
            logger.info("auth.login.failed reason=unknown_email")
            self._audit.log_auth_event(
                AuditAction.LOGIN,
                None,
                context,
                status=AuditStatus.FAILURE,
                details={
                    "reason": "unknown_email",
                    "email": redact_email(email.strip().lower()),
                },
                error_message=failure.message,
            )
            return
        logger.info(
            "auth.login.failed user_id=%s reason=%s attempts=%s",
            user.id,
            failure.code,
            attempts,
        )
        details: dict[str, Any] = {"reason": failure.code}
        if attempts:
            details["attempts"] = attempts
            details["locked"] = attempts >= self.max_login_attempts
        self._audit.log_auth_event(
            AuditAction.LOGIN,
            user,
            context,
            status=AuditStatus.FAILURE,
            details=details,
            error_message=failure.message,
        )

    def _deliver(
        self, kind: str, send: Callable[[EmailService], bool]
    ) -> bool:
        if self._email is None:
            return False
        try:
            delivered = send(self._email)
        except Exception:
            logger.exception("auth.email.failed kind=%s", kind)
            return False
        if not delivered:
            logger.warning("auth.email.undelivered kind=%s", kind)
        return delivered


__all__ = ["AuthResult", "AuthService"]
