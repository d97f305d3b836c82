# src/txopito_backend/app/auth/providers.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from txopito_backend.app.auth.errors import AuthErrorKind, AuthFlowError, ProfileFetchError
from txopito_backend.app.core.config import ProviderConfig, ProviderCredentials
from txopito_backend.app.core.trace import auth_trace

_log = logging.getLogger("txopito.auth.providers")

USER_AGENT = "TXOPITO-IA"


class ProviderAdapter:
    """
    Per-provider endpoint shapes: authorize URL, token request body and
    profile fetch. Holds only the public half of the registration.
    """
    name: str = ""
    authorize_url: str = ""
    token_url: str = ""
    scope: str = ""
    placeholder_client_id: str = ""

    def __init__(self, config: ProviderConfig):
        if config.provider != self.name:
            raise ValueError(f"{type(self).__name__} cannot use {config.provider} config")
        self.config = config

    # ------------------------
    # Authorize step
    # ------------------------
    def is_configured(self) -> bool:
        cid = (self.config.client_id or "").strip()
        return bool(cid) and cid != self.placeholder_client_id and not cid.startswith("your_")

    def authorize_extras(self, nonce: Optional[str]) -> Dict[str, str]:
        return {}

    def build_authorize_url(self, state: str, nonce: Optional[str] = None) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.scope,
            "response_type": "code",
            "state": state,
            **self.authorize_extras(nonce),
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    # ------------------------
    # Token step (server side)
    # ------------------------
    def token_request(self, code: str, redirect_uri: str, credentials: ProviderCredentials) -> Dict[str, str]:
        return {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }

    # ------------------------
    # Profile step
    # ------------------------
    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def _get_json(self, client: httpx.AsyncClient, url: str, access_token: str) -> Any:
        try:
            r = await client.get(url, headers=self._headers(access_token))
        except httpx.TimeoutException as ex:
            raise ProfileFetchError(AuthErrorKind.UPSTREAM_TIMEOUT, f"GET {url} timed out: {ex}", provider=self.name)
        except httpx.HTTPError as ex:
            raise ProfileFetchError(AuthErrorKind.PROFILE_FETCH_FAILED, f"GET {url} failed: {ex}", provider=self.name)

        if r.status_code != 200:
            raise ProfileFetchError(
                AuthErrorKind.PROFILE_FETCH_FAILED,
                f"GET {url} -> {r.status_code} {r.text[:200]}",
                provider=self.name,
            )
        try:
            data = r.json()
        except ValueError:
            raise ProfileFetchError(AuthErrorKind.PROFILE_FETCH_FAILED, f"GET {url} returned non-JSON", provider=self.name)
        return data

    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> Dict[str, Any]:
        raise NotImplementedError

    def _require_object(self, data: Any, url: str) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ProfileFetchError(AuthErrorKind.PROFILE_FETCH_FAILED, f"GET {url} did not return an object", provider=self.name)
        return data


class GitHubAdapter(ProviderAdapter):
    name = "github"
    authorize_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    api_url = "https://api.github.com"
    scope = "user:email"
    placeholder_client_id = "your_github_client_id"

    def authorize_extras(self, nonce: Optional[str]) -> Dict[str, str]:
        return {"allow_signup": "true"}

    def _headers(self, access_token: str) -> Dict[str, str]:
        headers = super()._headers(access_token)
        headers["Accept"] = "application/vnd.github+json"
        return headers

    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> Dict[str, Any]:
        url = f"{self.api_url}/user"
        user = self._require_object(await self._get_json(client, url, access_token), url)

        # The email list is best effort: the public profile email is still a fallback.
        emails: List[Dict[str, Any]] = []
        try:
            data = await self._get_json(client, f"{self.api_url}/user/emails", access_token)
            if isinstance(data, list):
                emails = data
        except ProfileFetchError as ex:
            _log.warning("github email list unavailable: %s", ex.detail)

        auth_trace("profile.github.ok", user_id=user.get("id"), login=user.get("login"), emails=len(emails))
        return {"user": user, "emails": emails}


class GoogleAdapter(ProviderAdapter):
    name = "google"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    userinfo_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    scope = "openid email profile"
    placeholder_client_id = "your_google_client_id"

    def authorize_extras(self, nonce: Optional[str]) -> Dict[str, str]:
        extras = {"access_type": "offline", "prompt": "consent"}
        # nonce is round-tripped but never checked: no id_token is requested in this flow
        if nonce:
            extras["nonce"] = nonce
        return extras

    def token_request(self, code: str, redirect_uri: str, credentials: ProviderCredentials) -> Dict[str, str]:
        data = super().token_request(code, redirect_uri, credentials)
        data["grant_type"] = "authorization_code"
        return data

    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> Dict[str, Any]:
        user = self._require_object(await self._get_json(client, self.userinfo_url, access_token), self.userinfo_url)
        auth_trace("profile.google.ok", user_id=user.get("id"), verified=user.get("verified_email"))
        return {"user": user}


ADAPTERS = {
    "github": GitHubAdapter,
    "google": GoogleAdapter,
}


def get_adapter(config: ProviderConfig) -> ProviderAdapter:
    """Adapter for `config.provider`. Credentials are narrowed to their public half first."""
    cls = ADAPTERS.get(config.provider)
    if cls is None:
        raise AuthFlowError(AuthErrorKind.SERVER_MISCONFIGURED, f"unknown provider: {config.provider}")
    if isinstance(config, ProviderCredentials):
        config = config.public()
    return cls(config)
