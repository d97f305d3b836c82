# tests/conftest.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from txopito_backend.app.auth.errors import AuthFlowError
from txopito_backend.app.schemas.auth import AccessToken

FRONTEND_URL = "http://localhost:3000"
GITHUB_CLIENT_ID = "Iv1.gh-test-client"
GITHUB_SECRET = "gh-test-secret"
GOOGLE_CLIENT_ID = "dummy-client.apps.googleusercontent.com"
GOOGLE_SECRET = "google-test-secret"

GITHUB_REDIRECT = f"{FRONTEND_URL}/auth/github/callback"
GOOGLE_REDIRECT = f"{FRONTEND_URL}/auth/google/callback"

GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_USER_URL = "https://api.github.com/user"
GITHUB_EMAILS_URL = "https://api.github.com/user/emails"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


@pytest.fixture(autouse=True)
def _oauth_env(monkeypatch):
    """Settings are read per request, so plain env patching is enough."""
    monkeypatch.setenv("FRONTEND_URL", FRONTEND_URL)
    monkeypatch.setenv("GITHUB_CLIENT_ID", GITHUB_CLIENT_ID)
    monkeypatch.setenv("GITHUB_CLIENT_SECRET", GITHUB_SECRET)
    monkeypatch.setenv("GOOGLE_CLIENT_ID", GOOGLE_CLIENT_ID)
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", GOOGLE_SECRET)
    monkeypatch.setenv("HTTP_TIMEOUT_SEC", "2")
    monkeypatch.setenv("AUTH_TRACE", "true")
    monkeypatch.delenv("GITHUB_REDIRECT_URI", raising=False)
    monkeypatch.delenv("GOOGLE_REDIRECT_URI", raising=False)


@pytest.fixture
def base_client() -> TestClient:
    from txopito_backend.app.main import app
    return TestClient(app)


class FakeProxy:
    """Stands in for ProxyClient; counts exchange calls."""

    def __init__(
        self,
        raw_profile: Optional[Dict[str, Any]] = None,
        *,
        exchange_error: Optional[AuthFlowError] = None,
        profile_error: Optional[AuthFlowError] = None,
        services: Optional[Dict[str, bool]] = None,
    ):
        self.raw_profile = raw_profile or {}
        self.exchange_error = exchange_error
        self.profile_error = profile_error
        self.services = services if services is not None else {"github_oauth": True, "google_oauth": True}
        self.exchange_calls = []
        self.profile_calls = 0

    async def health(self) -> Dict[str, Any]:
        return {"status": "ok", "services": self.services}

    async def exchange_code(self, provider: str, code: str, redirect_uri: str) -> AccessToken:
        self.exchange_calls.append((provider, code, redirect_uri))
        # let concurrent callers interleave
        await asyncio.sleep(0)
        if self.exchange_error:
            raise self.exchange_error
        return AccessToken(access_token=f"tok-{code}", token_type="bearer")

    async def fetch_user(self, provider: str, access_token: str) -> Dict[str, Any]:
        self.profile_calls += 1
        if self.profile_error:
            raise self.profile_error
        return self.raw_profile


@pytest.fixture
def make_proxy():
    return FakeProxy
