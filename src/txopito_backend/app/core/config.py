# src/txopito_backend/app/core/config.py
from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel

Provider = Literal["github", "google"]
PROVIDERS: tuple[str, ...] = ("github", "google")

DEFAULT_FRONTEND_URL = "http://localhost:3000"
DEFAULT_TIMEOUT_SEC = 5.0


class ProviderConfig(BaseModel):
    """
    Public half of a provider registration. Safe to hand to browser-side code:
    it carries no secret.
    """
    provider: Provider
    client_id: str = ""
    redirect_uri: str = ""


class ProviderCredentials(ProviderConfig):
    """Server-side only. Never serialize this into a client-facing response."""
    client_secret: str = ""

    def public(self) -> ProviderConfig:
        return ProviderConfig(
            provider=self.provider,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
        )


class Settings(BaseModel):
    frontend_url: str = DEFAULT_FRONTEND_URL
    http_timeout_sec: float = DEFAULT_TIMEOUT_SEC
    cors_origins: List[str] = []
    version: str = "1.0.0"
    providers: Dict[str, ProviderCredentials] = {}

    def credentials(self, provider: str) -> ProviderCredentials:
        return self.providers[provider]


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip()


def _float_env(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def default_redirect_uri(frontend_url: str, provider: str) -> str:
    return f"{frontend_url.rstrip('/')}/auth/{provider}/callback"


def load_provider_credentials(provider: str, frontend_url: Optional[str] = None) -> ProviderCredentials:
    """
    Read <PROVIDER>_CLIENT_ID / _CLIENT_SECRET / _REDIRECT_URI from the environment.
    The redirect URI defaults to {FRONTEND_URL}/auth/<provider>/callback.
    """
    prefix = provider.upper()
    front = frontend_url or _env("FRONTEND_URL", DEFAULT_FRONTEND_URL)
    return ProviderCredentials(
        provider=provider,
        client_id=_env(f"{prefix}_CLIENT_ID"),
        client_secret=_env(f"{prefix}_CLIENT_SECRET"),
        redirect_uri=_env(f"{prefix}_REDIRECT_URI") or default_redirect_uri(front, provider),
    )


def load_settings() -> Settings:
    """
    Build Settings from the current environment. Cheap enough to call per request,
    which keeps monkeypatched env visible to tests without reloading modules.
    """
    frontend_url = _env("FRONTEND_URL", DEFAULT_FRONTEND_URL)
    origins = [o.strip() for o in _env("CORS_ORIGINS").split(",") if o.strip()]
    if not origins:
        origins = [frontend_url, "http://localhost:5173", "http://127.0.0.1:3000"]
    return Settings(
        frontend_url=frontend_url,
        http_timeout_sec=_float_env("HTTP_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC),
        cors_origins=origins,
        version=_env("APP_VERSION", "1.0.0"),
        providers={p: load_provider_credentials(p, frontend_url) for p in PROVIDERS},
    )
