"""Callback state machine driven against a fake proxy."""

import asyncio
from urllib.parse import parse_qsl, urlparse

import pytest

from txopito_backend.app.auth.errors import AuthErrorKind, AuthFlowError
from txopito_backend.app.core.config import load_provider_credentials
from txopito_backend.client.accounts import AccountStore
from txopito_backend.client.orchestrator import CallbackOrchestrator, CallbackStatus, parse_callback_query
from txopito_backend.client.state import StateStore
from txopito_backend.client.storage import MemoryStore

from conftest import GITHUB_REDIRECT

GH_RAW = {
    "user": {"id": 7, "login": "mz-dev", "name": "Ana", "avatar_url": "https://a/7"},
    "emails": [{"email": "ana@txopito.co.mz", "primary": True, "verified": True}],
}
GOOGLE_RAW = {"user": {"id": "99", "email": "ana@txopito.co.mz", "verified_email": True, "name": "Ana M."}}


def _orchestrator(proxy, **kw) -> CallbackOrchestrator:
    configs = [load_provider_credentials("github").public(), load_provider_credentials("google").public()]
    return CallbackOrchestrator.from_configs(configs, proxy, **kw)


def _state_of(url: str) -> str:
    return dict(parse_qsl(urlparse(url).query))["state"]


def test_end_to_end_with_fixed_state(make_proxy, monkeypatch):
    monkeypatch.setattr("txopito_backend.client.state.secrets.token_urlsafe", lambda n=32: "s1")
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        url = await orch.begin("github")
        assert _state_of(url) == "s1"
        return await orch.handle_callback("github", f"{GITHUB_REDIRECT}?code=abc&state=s1")

    result = asyncio.run(flow())
    assert result.status is CallbackStatus.SUCCESS
    assert result.identity.email == "ana@txopito.co.mz"
    assert proxy.exchange_calls == [("github", "abc", GITHUB_REDIRECT)]


def test_state_mismatch_fails_closed_and_consumes(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        await orch.begin("github")
        return await orch.handle_callback("github", {"code": "abc", "state": "forged"})

    result = asyncio.run(flow())
    assert result.status is CallbackStatus.ERROR
    assert result.error_kind is AuthErrorKind.CSRF_STATE_MISMATCH
    assert not orch.states.has_pending("github")
    assert proxy.exchange_calls == []


def test_missing_stored_state_is_csrf_failure(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)
    result = asyncio.run(orch.handle_callback("github", "code=abc&state=never-issued"))
    assert result.error_kind is AuthErrorKind.CSRF_STATE_MISMATCH
    assert proxy.exchange_calls == []


def test_primary_storage_wiped_mid_flow_uses_backup(make_proxy):
    primary, backup = MemoryStore(), MemoryStore()
    orch = _orchestrator(make_proxy(GH_RAW), states=StateStore(primary, backup))

    async def flow():
        state = _state_of(await orch.begin("github"))
        primary.clear()
        return await orch.handle_callback("github", {"code": "abc", "state": state})

    assert asyncio.run(flow()).status is CallbackStatus.SUCCESS


def test_provider_denied_skips_exchange_and_hides_raw_text(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        return await orch.handle_callback("github", {
            "error": "access_denied",
            "error_description": "The user has denied your application access.",
            "state": state,
        })

    result = asyncio.run(flow())
    assert result.error_kind is AuthErrorKind.PROVIDER_DENIED
    assert "denied your application" not in result.message
    assert proxy.exchange_calls == []
    assert not orch.states.has_pending("github")


@pytest.mark.parametrize("query", ["state=abc", "code=abc", ""])
def test_missing_code_or_state_is_malformed(make_proxy, query):
    orch = _orchestrator(make_proxy(GH_RAW))
    result = asyncio.run(orch.handle_callback("github", query))
    assert result.error_kind is AuthErrorKind.MALFORMED_CALLBACK


def test_repeated_callback_exchanges_once(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        query = {"code": "abc", "state": state}
        first = await orch.handle_callback("github", query)
        second = await orch.handle_callback("github", dict(query))
        return first, second

    first, second = asyncio.run(flow())
    assert len(proxy.exchange_calls) == 1
    assert first.status is CallbackStatus.SUCCESS
    assert second == first


def test_concurrent_duplicate_callbacks_share_one_exchange(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        query = f"code=abc&state={state}"
        return await asyncio.gather(
            orch.handle_callback("github", query),
            orch.handle_callback("github", query),
        )

    a, b = asyncio.run(flow())
    assert len(proxy.exchange_calls) == 1
    assert a.status is b.status is CallbackStatus.SUCCESS


def test_racing_attempts_loser_fails_cleanly(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        return await asyncio.gather(
            orch.handle_callback("github", {"code": "one", "state": state}),
            orch.handle_callback("github", {"code": "two", "state": state}),
        )

    winner, loser = asyncio.run(flow())
    assert winner.status is CallbackStatus.SUCCESS
    assert loser.error_kind is AuthErrorKind.CSRF_STATE_MISMATCH
    assert [c[1] for c in proxy.exchange_calls] == ["one"]


@pytest.mark.parametrize("kind", [
    AuthErrorKind.AUTHORIZATION_CODE_EXPIRED,
    AuthErrorKind.SERVER_MISCONFIGURED,
    AuthErrorKind.REDIRECT_URI_MISMATCH,
    AuthErrorKind.UPSTREAM_TIMEOUT,
    AuthErrorKind.UPSTREAM_PROTOCOL_ERROR,
])
def test_exchange_failures_keep_their_kind(make_proxy, kind):
    proxy = make_proxy(GH_RAW, exchange_error=AuthFlowError(kind, "raw provider text"))
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        return await orch.handle_callback("github", {"code": "abc", "state": state})

    result = asyncio.run(flow())
    assert result.error_kind is kind
    assert result.message == kind.user_message
    assert result.retryable is kind.retryable
    assert proxy.profile_calls == 0


def test_profile_fetch_failure(make_proxy):
    proxy = make_proxy(profile_error=AuthFlowError(AuthErrorKind.PROFILE_FETCH_FAILED, "502"))
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        return await orch.handle_callback("github", {"code": "abc", "state": state})

    assert asyncio.run(flow()).error_kind is AuthErrorKind.PROFILE_FETCH_FAILED


def test_google_unverified_email_surfaces_kind(make_proxy):
    raw = {"user": {"id": "99", "email": "c@y.com", "verified_email": False}}
    orch = _orchestrator(make_proxy(raw))

    async def flow():
        state = _state_of(await orch.begin("google"))
        return await orch.handle_callback("google", {"code": "abc", "state": state})

    result = asyncio.run(flow())
    assert result.error_kind is AuthErrorKind.EMAIL_NOT_VERIFIED
    assert result.retryable is False


def test_google_begin_issues_inert_nonce(make_proxy):
    orch = _orchestrator(make_proxy(GOOGLE_RAW))

    async def flow():
        url = await orch.begin("google")
        qs = dict(parse_qsl(urlparse(url).query))
        assert qs["nonce"] == orch.states.stored_nonce("google")
        result = await orch.handle_callback("google", {"code": "abc", "state": qs["state"]})
        return result

    assert asyncio.run(flow()).status is CallbackStatus.SUCCESS
    assert orch.states.stored_nonce("google") is None


def test_begin_refuses_placeholder_client_id(make_proxy, monkeypatch):
    monkeypatch.setenv("GITHUB_CLIENT_ID", "your_github_client_id")
    orch = _orchestrator(make_proxy(GH_RAW))
    assert orch.is_configured("github") is False
    with pytest.raises(AuthFlowError) as ei:
        asyncio.run(orch.begin("github"))
    assert ei.value.kind is AuthErrorKind.SERVER_MISCONFIGURED
    assert not orch.states.has_pending("github")


def test_begin_preflight_backend_disabled(make_proxy):
    orch = _orchestrator(make_proxy(GH_RAW, services={"github_oauth": False, "google_oauth": True}))
    with pytest.raises(AuthFlowError) as ei:
        asyncio.run(orch.begin("github"))
    assert ei.value.kind is AuthErrorKind.SERVER_MISCONFIGURED


def test_abandoned_attempt_cannot_be_completed(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        orch.abandon("github")
        return await orch.handle_callback("github", {"code": "late", "state": state})

    assert asyncio.run(flow()).error_kind is AuthErrorKind.CSRF_STATE_MISMATCH
    assert proxy.exchange_calls == []


def test_unregistered_provider(make_proxy):
    orch = _orchestrator(make_proxy(GH_RAW))
    result = asyncio.run(orch.handle_callback("gitlab", "code=a&state=b"))
    assert result.error_kind is AuthErrorKind.SERVER_MISCONFIGURED


def test_accounts_merge_on_email_across_providers(make_proxy):
    accounts = AccountStore()

    async def login(provider, raw):
        orch = _orchestrator(make_proxy(raw), accounts=accounts)
        state = _state_of(await orch.begin(provider))
        return await orch.handle_callback(provider, {"code": "abc", "state": state})

    gh = asyncio.run(login("github", GH_RAW))
    g = asyncio.run(login("google", GOOGLE_RAW))
    assert gh.account.id == g.account.id
    assert set(g.account.linked) == {"github:7", "google:99"}
    assert g.account.display_name == "Ana M."


def test_parse_callback_query_forms():
    assert parse_callback_query("https://app/auth/github/callback?code=a&state=b") == {"code": "a", "state": "b"}
    assert parse_callback_query("?code=a") == {"code": "a"}
    assert parse_callback_query({"code": "a", "state": None}) == {"code": "a"}


def test_switching_provider_invalidates_earlier_attempt(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        gh_state = _state_of(await orch.begin("github"))
        await orch.begin("google")
        return await orch.handle_callback("github", {"code": "late", "state": gh_state})

    result = asyncio.run(flow())
    assert result.error_kind is AuthErrorKind.CSRF_STATE_MISMATCH
    assert proxy.exchange_calls == []


def test_first_caller_cancelled_duplicate_still_gets_result(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        query = {"code": "abc", "state": state}
        first = asyncio.ensure_future(orch.handle_callback("github", query))
        await asyncio.sleep(0)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        return await orch.handle_callback("github", dict(query))

    result = asyncio.run(flow())
    assert result.status is CallbackStatus.SUCCESS
    assert len(proxy.exchange_calls) == 1


def test_cancelled_attempt_gives_typed_error_to_every_caller(make_proxy):
    proxy = make_proxy(GH_RAW)
    orch = _orchestrator(proxy)

    async def flow():
        state = _state_of(await orch.begin("github"))
        query = {"code": "abc", "state": state}
        first = asyncio.ensure_future(orch.handle_callback("github", query))
        await asyncio.sleep(0)
        for task in list(orch._attempts.values()):
            task.cancel()
        first_result = await first
        again = await orch.handle_callback("github", dict(query))
        return first_result, again

    first_result, again = asyncio.run(flow())
    assert first_result.error_kind is AuthErrorKind.CSRF_STATE_MISMATCH
    assert again.error_kind is AuthErrorKind.CSRF_STATE_MISMATCH
    assert not orch.states.has_pending("github")
    assert proxy.exchange_calls == []


def test_finished_attempts_are_not_kept_forever(make_proxy):
    orch = _orchestrator(make_proxy(GH_RAW))

    async def flow():
        for code in ("one", "two", "three"):
            state = _state_of(await orch.begin("github"))
            await orch.handle_callback("github", {"code": code, "state": state})

    asyncio.run(flow())
    assert len(orch._attempts) == 1
