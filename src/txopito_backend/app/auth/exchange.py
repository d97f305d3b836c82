# src/txopito_backend/app/auth/exchange.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from txopito_backend.app.auth.errors import AuthErrorKind, TokenExchangeError
from txopito_backend.app.auth.providers import ProviderAdapter
from txopito_backend.app.core.config import ProviderCredentials
from txopito_backend.app.core.logging import log_auth_failure
from txopito_backend.app.core.trace import auth_trace, mask
from txopito_backend.app.schemas.auth import AccessToken

_log = logging.getLogger("txopito.auth.exchange")

# provider error code -> kind (GitHub and Google spellings)
_PROVIDER_ERRORS: Dict[str, AuthErrorKind] = {
    "bad_verification_code":        AuthErrorKind.AUTHORIZATION_CODE_EXPIRED,
    "invalid_grant":                AuthErrorKind.AUTHORIZATION_CODE_EXPIRED,
    "incorrect_client_credentials": AuthErrorKind.SERVER_MISCONFIGURED,
    "invalid_client":               AuthErrorKind.SERVER_MISCONFIGURED,
    "unauthorized_client":          AuthErrorKind.SERVER_MISCONFIGURED,
    "redirect_uri_mismatch":        AuthErrorKind.REDIRECT_URI_MISMATCH,
}


def classify_provider_error(payload: Any, raw_text: str = "") -> AuthErrorKind:
    """
    Decide the failure kind from a token-endpoint response, once.
    Prefers the structured `error` field; falls back to scanning a non-JSON body.
    """
    if isinstance(payload, dict):
        code = str(payload.get("error") or "").strip().lower()
        if code in _PROVIDER_ERRORS:
            return _PROVIDER_ERRORS[code]
    text = (raw_text or "").lower()
    for code, kind in _PROVIDER_ERRORS.items():
        if code in text:
            return kind
    return AuthErrorKind.UPSTREAM_PROTOCOL_ERROR


class TokenExchangeService:
    """
    The only component that touches the client secret. Swaps an authorization
    code for an access token with one server-to-server POST.
    """

    def __init__(self, credentials: ProviderCredentials, adapter: ProviderAdapter, client: httpx.AsyncClient):
        self.credentials = credentials
        self.adapter = adapter
        self.client = client

    @property
    def provider(self) -> str:
        return self.credentials.provider

    def _fail(self, kind: AuthErrorKind, detail: str) -> TokenExchangeError:
        log_auth_failure(_log, kind, "token exchange failed provider=%s kind=%s detail=%s", self.provider, kind.value, detail)
        auth_trace("exchange.failed", provider=self.provider, kind=kind.value)
        return TokenExchangeError(kind, detail, provider=self.provider)

    async def exchange(self, code: str, redirect_uri: Optional[str] = None) -> AccessToken:
        creds = self.credentials
        if not (code or "").strip():
            raise self._fail(AuthErrorKind.MALFORMED_CALLBACK, "authorization code is required")
        if not creds.client_id or not creds.client_secret:
            raise self._fail(AuthErrorKind.SERVER_MISCONFIGURED, f"{self.provider} client id/secret not configured")

        uri = redirect_uri or creds.redirect_uri
        # providers compare byte-for-byte; catch it here instead of burning the code
        if creds.redirect_uri and uri != creds.redirect_uri:
            raise self._fail(
                AuthErrorKind.REDIRECT_URI_MISMATCH,
                f"redirect_uri {uri!r} does not match configured {creds.redirect_uri!r}",
            )

        auth_trace("exchange.begin", provider=self.provider, code=mask(code), redirect=uri)
        data = self.adapter.token_request(code, uri, creds)
        try:
            r = await self.client.post(self.adapter.token_url, data=data, headers={"Accept": "application/json"})
        except httpx.TimeoutException as ex:
            raise self._fail(AuthErrorKind.UPSTREAM_TIMEOUT, f"token endpoint timed out: {ex}")
        except httpx.HTTPError as ex:
            raise self._fail(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, f"token endpoint unreachable: {ex}")

        try:
            payload = r.json()
        except ValueError:
            payload = None

        # GitHub reports OAuth errors as HTTP 200 with an `error` field
        if not r.is_success or (isinstance(payload, dict) and payload.get("error")):
            kind = classify_provider_error(payload, r.text)
            described = None
            if isinstance(payload, dict):
                described = payload.get("error_description") or payload.get("error")
            raise self._fail(kind, f"{r.status_code} {described or r.text[:200]}")

        if not isinstance(payload, dict):
            raise self._fail(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, f"non-JSON token response ({r.status_code})")

        token = payload.get("access_token")
        if not token:
            raise self._fail(AuthErrorKind.UPSTREAM_PROTOCOL_ERROR, "token response has no access_token")

        auth_trace("exchange.ok", provider=self.provider, token=mask(token))
        # refresh_token / id_token are not retained
        return AccessToken(access_token=token, token_type=payload.get("token_type") or "bearer")
