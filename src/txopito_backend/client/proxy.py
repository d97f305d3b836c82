# src/txopito_backend/client/proxy.py
from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from txopito_backend.app.auth.errors import AuthErrorKind, AuthFlowError, kind_from_wire
from txopito_backend.app.core.trace import auth_trace
from txopito_backend.app.schemas.auth import AccessToken

_log = logging.getLogger("txopito.client.proxy")


class ProxyClient:
    """
    Talks to the backend exchange proxy. Holds no secrets: the backend does the
    secret-bearing calls and answers {access_token} or {error, details, kind}.
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.client = client

    async def _request(self, method: str, path: str, *, network_kind: AuthErrorKind, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as ex:
            raise AuthFlowError(AuthErrorKind.UPSTREAM_TIMEOUT, f"{method} {path} timed out: {ex}")
        except httpx.HTTPError as ex:
            raise AuthFlowError(network_kind, f"{method} {path} failed: {ex}")

    @staticmethod
    def _error_from(r: httpx.Response, default_kind: AuthErrorKind) -> AuthFlowError:
        try:
            body = r.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            return AuthFlowError(default_kind, f"{r.status_code} {r.text[:200]}")
        # the backend already decided the kind; do not re-derive it from text
        kind = kind_from_wire(body.get("kind")) or default_kind
        return AuthFlowError(kind, f"{r.status_code} {body.get('details') or body.get('error') or ''}".strip())

    async def health(self) -> Dict[str, Any]:
        r = await self._request("GET", "/api/health", network_kind=AuthErrorKind.UPSTREAM_PROTOCOL_ERROR)
        if not r.is_success:
            raise AuthFlowError(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, f"health check returned {r.status_code}")
        try:
            body = r.json()
        except ValueError:
            raise AuthFlowError(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, "health check returned non-JSON")
        if not isinstance(body, dict):
            raise AuthFlowError(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, "health check did not return an object")
        return body

    async def exchange_code(self, provider: str, code: str, redirect_uri: str) -> AccessToken:
        r = await self._request(
            "POST",
            f"/api/auth/{provider}/token",
            network_kind=AuthErrorKind.UPSTREAM_PROTOCOL_ERROR,
            json={"code": code, "redirect_uri": redirect_uri},
            headers={"Accept": "application/json"},
        )
        if not r.is_success:
            raise self._error_from(r, AuthErrorKind.UPSTREAM_PROTOCOL_ERROR)

        try:
            body = r.json()
        except ValueError:
            raise AuthFlowError(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, f"non-JSON token response: {r.text[:200]}")

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise AuthFlowError(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, "token response missing access_token")

        auth_trace("proxy.exchange.ok", provider=provider)
        return AccessToken(access_token=token, token_type=body.get("token_type") or "bearer")

    async def fetch_user(self, provider: str, access_token: str) -> Dict[str, Any]:
        r = await self._request(
            "GET",
            f"/api/auth/{provider}/user",
            network_kind=AuthErrorKind.PROFILE_FETCH_FAILED,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        if not r.is_success:
            raise self._error_from(r, AuthErrorKind.PROFILE_FETCH_FAILED)

        try:
            body = r.json()
        except ValueError:
            raise AuthFlowError(AuthErrorKind.PROFILE_FETCH_FAILED, "non-JSON profile response")
        if not isinstance(body, dict) or not isinstance(body.get("user"), dict):
            raise AuthFlowError(AuthErrorKind.PROFILE_FETCH_FAILED, "profile response missing user")
        return body
