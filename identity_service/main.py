"""Flask application factory for the identity service."""

import logging
import time
import uuid
from datetime import datetime, timezone

import click
from flask import Flask, Response, g, jsonify, request
from flask_cors import CORS
from marshmallow import ValidationError
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from werkzeug.exceptions import HTTPException

from identity_service.auth.errors import AuthError
from identity_service.auth.oauth import init_oauth
from identity_service.config import Config, get_config
from identity_service.models.repositories import RepositoryError
from identity_service.routes.audit import audit_bp
from identity_service.routes.auth import auth_bp
from identity_service.routes.helpers import (
    auth_error_response,
    error_response,
    repository_error_response,
)
from identity_service.routes.users import users_bp
from identity_service.services.audit import audit_service
from identity_service.services.auth import AuthService
from identity_service.services.cache import CacheService
from identity_service.services.email import EmailService
from identity_service.services.rate_limit import (
    RateLimiter,
    build_rate_limit_table,
)
from identity_service.utils.encryption import ApplicationEncryptor

logger = logging.getLogger(__name__)

HTTP_REQUESTS = Counter(
    "identity_service_requests_total",
    "HTTP requests by method, endpoint and status.",
    labelnames=("method", "endpoint", "status"),
)
HTTP_LATENCY = Histogram(
    "identity_service_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=("method", "endpoint"),
)


def _install_services(app: Flask, config: Config) -> None:
    """Build the shared services once and hang them off ``app.extensions``."""

    redis_client = config.redis
    if redis_client is not None:
        app.extensions["redis_client"] = redis_client
    cache = CacheService(redis_client, config.redis_cache_ttl)
    encryptor = ApplicationEncryptor.from_keys(
        primary_key=config.encryption_key,
        fallback_keys=config.encryption_fallback_keys,
    )
    email = EmailService.from_config(config)

    app.extensions.update(
        cache_service=cache,
        encryptor=encryptor,
        email_service=email,
        audit_service=audit_service,
        auth_service=AuthService.from_config(
            config,
            encryptor=encryptor,
            audit=audit_service,
            email=email,
            cache_hooks=cache.build_hooks(),
        ),
        rate_limiter=RateLimiter(
            build_rate_limit_table(config.rate_limit_overrides),
            audit=audit_service,
        ),
    )


def _install_error_handlers(app: Flask) -> None:
    """Every failure leaves the service as a JSON error envelope."""

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        return error_response(err.code or 500, err.description or err.name)

    app.register_error_handler(AuthError, auth_error_response)
    app.register_error_handler(RepositoryError, repository_error_response)

    @app.errorhandler(ValidationError)
    def handle_validation_error(err: ValidationError):
        return error_response(422, "invalid payload", err.messages)

    @app.errorhandler(Exception)
    def handle_exception(err: Exception):
        logger.exception("request.unhandled_error path=%s", request.path)
        return error_response(500, "internal server error")


def _install_request_tracking(app: Flask) -> None:
    @app.before_request
    def tag_request() -> None:
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def record_request(response: Response) -> Response:
        endpoint = request.endpoint or "unknown"
        request_id = g.get("request_id")
        if request_id:
            response.headers["X-Request-ID"] = request_id
        HTTP_REQUESTS.labels(
            method=request.method,
            endpoint=endpoint,
            status=str(response.status_code),
        ).inc()
        started = g.get("request_started")
        if started is None:
            return response
        elapsed = time.perf_counter() - started
        HTTP_LATENCY.labels(method=request.method, endpoint=endpoint).observe(
            elapsed
        )
        logger.info(
            "request.completed endpoint=%s method=%s status=%s "
            "duration_ms=%.2f request_id=%s",
            endpoint,
            request.method,
            response.status_code,
            elapsed * 1000,
            request_id,
        )
        return response


def create_app(config: Config | None = None) -> Flask:
    """Create and configure the Flask application.

    Returns:
        Flask: The configured Flask application.
    """
    config = config or get_config()
    app = Flask(__name__)
    app.secret_key = config.flask_secret
    app.config["APP_CONFIG"] = config

    if config.weak_jwt_secret:
        logger.warning(
            "config.jwt_secret.weak length=%s minimum=32",
            len(config.jwt_secret.encode()),
        )

    CORS(app, origins=config.cors_origins)
    _install_services(app, config)
    init_oauth(app)
    _install_error_handlers(app)
    _install_request_tracking(app)

    @app.get("/health")
    def health():
        return jsonify(
            status="ok",
            service="identity-service",
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    @app.cli.command("purge-sessions")
    def purge_sessions() -> None:
        """Delete expired and revoked sessions."""
        purged = app.extensions["auth_service"].purge_expired_sessions()
        click.echo(f"purged {purged} sessions")

    for blueprint in (auth_bp, users_bp, audit_bp):
        app.register_blueprint(blueprint)

    return app


app = create_app()


if __name__ == "__main__":
    app.run(debug=True, port=app.config["APP_CONFIG"].app_port)
