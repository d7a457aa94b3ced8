"""Google and Facebook authorization-code clients."""

from __future__ import annotations

import os
import secrets
from typing import Any, Callable, Mapping

from authlib.integrations.flask_client import OAuth


oauth = OAuth()

_GRAPH = "https://graph.facebook.com/v19.0"

_PROVIDER_SETTINGS: Mapping[str, dict[str, Any]] = {
    "google": {
        "access_token_url": "https://oauth2.googleapis.com/token",
        "authorize_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "jwks_uri": "https://www.googleapis.com/oauth2/v3/certs",
        "client_kwargs": {"scope": "openid email profile"},
    },
    "facebook": {
        "access_token_url": f"{_GRAPH}/oauth/access_token",
        "authorize_url": "https://www.facebook.com/v19.0/dialog/oauth",
        "api_base_url": f"{_GRAPH}/",
        "client_kwargs": {"scope": "email public_profile"},
    },
}

SUPPORTED_PROVIDERS = tuple(_PROVIDER_SETTINGS)


def init_oauth(app) -> None:
    """Register every provider; credentials come from ``<PROVIDER>_CLIENT_*``."""

    oauth.init_app(app)
    for name, settings in _PROVIDER_SETTINGS.items():
        prefix = name.upper()
        oauth.register(
            name=name,
            client_id=os.getenv(f"{prefix}_CLIENT_ID"),
            client_secret=os.getenv(f"{prefix}_CLIENT_SECRET"),
            **settings,
        )


def generate_state() -> str:
    return secrets.token_urlsafe(16)


def generate_nonce() -> str:
    return secrets.token_urlsafe(16)


def _client(provider: str):
    if provider not in _PROVIDER_SETTINGS:
        raise ValueError("unsupported provider")
    client = oauth.create_client(provider)
    if client is None:
        raise ValueError(f"{provider} is not configured")
    return client


def build_auth_url(  # pragma: no cover
    provider: str,
    redirect_uri: str,
    state: str,
    nonce: str | None = None,
) -> str:
    extra = {"nonce": nonce} if nonce else {}
    url, _ = _client(provider).create_authorization_url(
        redirect_uri=redirect_uri, state=state, **extra
    )
    return url


def _google_identity(client, token, nonce):  # pragma: no cover
    return client.parse_id_token(token, nonce=nonce)


def _facebook_identity(client, token, nonce):  # pragma: no cover
    response = client.get("me", token=token, params={"fields": "id,name,email"})
    response.raise_for_status()
    profile = response.json()
    return {
        "sub": profile.get("id"),
        "email": profile.get("email"),
        "name": profile.get("name"),
    }


_IDENTITY_READERS: Mapping[str, Callable[..., Mapping[str, Any]]] = {
    "google": _google_identity,
    "facebook": _facebook_identity,
}


def fetch_user_info(  # pragma: no cover
    provider: str,
    code: str,
    redirect_uri: str | None,
    nonce: str | None = None,
) -> Mapping[str, Any]:
    """Exchange an authorization code for ``sub``, ``email`` and ``name`` claims."""

    client = _client(provider)
    token = client.fetch_token(code=code, redirect_uri=redirect_uri)
    return _IDENTITY_READERS[provider](client, token, nonce)
