# src/txopito_backend/client/orchestrator.py
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlsplit

from pydantic import BaseModel

from txopito_backend.app.auth.errors import AuthErrorKind, AuthFlowError
from txopito_backend.app.auth.normalize import normalize_profile
from txopito_backend.app.auth.providers import ProviderAdapter, get_adapter
from txopito_backend.app.core.config import ProviderConfig
from txopito_backend.app.core.logging import log_auth_failure
from txopito_backend.app.core.trace import auth_trace, mask
from txopito_backend.app.schemas.identity import CanonicalIdentity
from txopito_backend.client.accounts import AccountStore, LocalAccount
from txopito_backend.client.proxy import ProxyClient
from txopito_backend.client.state import StateCheck, StateStore

_log = logging.getLogger("txopito.auth.callback")


class CallbackStatus(str, Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class CallbackResult(BaseModel):
    provider: str
    status: CallbackStatus
    identity: Optional[CanonicalIdentity] = None
    account: Optional[LocalAccount] = None
    error_kind: Optional[AuthErrorKind] = None
    # safe to show; never contains raw provider text
    message: str = ""
    retryable: bool = False


CallbackQuery = Union[str, Mapping[str, str]]


def parse_callback_query(query: CallbackQuery) -> Dict[str, str]:
    """Accepts a full redirect URL, a bare query string, or an already-parsed mapping."""
    if isinstance(query, str):
        raw = urlsplit(query).query if "?" in query else query.lstrip("?")
        return dict(parse_qsl(raw, keep_blank_values=True))
    return {k: v for k, v in query.items() if v is not None}


class CallbackOrchestrator:
    """
    Drives one login attempt: Processing -> Success | Error.

    Gates run in order and any failure short-circuits:
      provider error -> missing code/state -> state check -> token exchange
      -> profile fetch -> normalization -> (optional) account reconcile.

    Repeated calls for the same redirect share one in-flight task, so the
    single-use code is exchanged at most once.
    """

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        proxy: ProxyClient,
        states: Optional[StateStore] = None,
        accounts: Optional[AccountStore] = None,
        *,
        preflight: bool = True,
    ):
        self.adapters = dict(adapters)
        self.proxy = proxy
        self.states = states if states is not None else StateStore()
        self.accounts = accounts
        self.preflight = preflight
        self._attempts: Dict[Tuple[str, ...], "asyncio.Task[CallbackResult]"] = {}

    @classmethod
    def from_configs(cls, configs: Iterable[ProviderConfig], proxy: ProxyClient, **kwargs) -> "CallbackOrchestrator":
        adapters = {c.provider: get_adapter(c) for c in configs}
        return cls(adapters, proxy, **kwargs)

    def _adapter(self, provider: str) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise AuthFlowError(AuthErrorKind.SERVER_MISCONFIGURED, f"provider {provider!r} is not registered")
        return adapter

    def is_configured(self, provider: str) -> bool:
        adapter = self.adapters.get(provider)
        return adapter is not None and adapter.is_configured()

    # ------------------------
    # Initiate
    # ------------------------
    async def begin(self, provider: str) -> str:
        """
        Start a fresh attempt and return the provider authorize URL.
        Raises AuthFlowError when the provider or backend cannot serve a login.
        """
        adapter = self._adapter(provider)
        if not adapter.is_configured():
            raise AuthFlowError(AuthErrorKind.SERVER_MISCONFIGURED, f"{provider} client id is missing or a placeholder")

        if self.preflight:
            health = await self.proxy.health()
            services = health.get("services")
            if not isinstance(services, dict):
                services = {}
            if not services.get(f"{provider}_oauth"):
                raise AuthFlowError(AuthErrorKind.SERVER_MISCONFIGURED, f"backend reports {provider} oauth disabled")

        state = self.states.issue(provider)
        nonce = self.states.issue_nonce(provider) if provider == "google" else None
        url = adapter.build_authorize_url(state, nonce)
        auth_trace("callback.begin", provider=provider, state=mask(state))
        return url

    def abandon(self, provider: str) -> None:
        """User navigated away: drop local state so a late callback cannot use it."""
        self.states.clear(provider)

    # ------------------------
    # Callback
    # ------------------------
    async def handle_callback(self, provider: str, query: CallbackQuery) -> CallbackResult:
        params = parse_callback_query(query)
        key = (provider, params.get("code", ""), params.get("state", ""), params.get("error", ""))

        task = self._attempts.get(key)
        if task is not None:
            auth_trace("callback.reentrant", provider=provider, code=mask(key[1]))
            return await self._await_attempt(provider, task)

        # finished attempts for earlier redirects are dropped
        self._attempts = {k: t for k, t in self._attempts.items() if not t.done()}
        task = asyncio.ensure_future(self._run(provider, params))
        self._attempts[key] = task
        return await self._await_attempt(provider, task)

    async def _await_attempt(self, provider: str, task: "asyncio.Task[CallbackResult]") -> CallbackResult:
        # a caller that navigates away must not cancel the exchange other callers share
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        self.states.clear(provider)
        return self._error(provider, AuthErrorKind.CSRF_STATE_MISMATCH, "attempt for this redirect was cancelled")

    def _error(self, provider: str, kind: AuthErrorKind, detail: str = "") -> CallbackResult:
        log_auth_failure(_log, kind, "login failed provider=%s kind=%s detail=%s", provider, kind.value, detail)
        return CallbackResult(
            provider=provider,
            status=CallbackStatus.ERROR,
            error_kind=kind,
            message=kind.user_message,
            retryable=kind.retryable,
        )

    async def _run(self, provider: str, params: Mapping[str, str]) -> CallbackResult:
        try:
            adapter = self._adapter(provider)
        except AuthFlowError as ex:
            return self._error(provider, ex.kind, ex.detail)

        error = params.get("error")
        if error:
            self.states.clear(provider)
            return self._error(provider, AuthErrorKind.PROVIDER_DENIED, params.get("error_description") or error)

        code = params.get("code")
        state = params.get("state")
        if not code or not state:
            self.states.clear(provider)
            return self._error(provider, AuthErrorKind.MALFORMED_CALLBACK, "code or state missing from redirect")

        check = self.states.check(provider, state)
        if check is not StateCheck.OK:
            return self._error(provider, AuthErrorKind.CSRF_STATE_MISMATCH, check.value)

        try:
            token = await self.proxy.exchange_code(provider, code, adapter.config.redirect_uri)
            raw = await self.proxy.fetch_user(provider, token.access_token)
            identity = normalize_profile(provider, raw)
        except AuthFlowError as ex:
            return self._error(provider, ex.kind, ex.detail)

        account = self.accounts.reconcile(identity) if self.accounts is not None else None

        auth_trace("callback.success", provider=provider, user=identity.provider_user_id)
        return CallbackResult(
            provider=provider,
            status=CallbackStatus.SUCCESS,
            identity=identity,
            account=account,
            message="Signed in.",
        )
