# src/txopito_backend/app/api/routes/auth.py
from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends

from txopito_backend.app.auth.deps import (
    bearer_token,
    get_exchange_service,
    get_http_client,
    provider_adapter,
    provider_credentials,
    provider_ready,
)
from txopito_backend.app.auth.exchange import TokenExchangeService
from txopito_backend.app.auth.providers import ProviderAdapter
from txopito_backend.app.core.config import ProviderCredentials
from txopito_backend.app.core.trace import auth_trace
from txopito_backend.app.schemas.auth import (
    AccessToken,
    ErrorBody,
    ProviderConfigResponse,
    ProviderUserResponse,
    TokenExchangeBody,
)

router = APIRouter(prefix="/api/auth", tags=["auth"], responses={404: {"model": ErrorBody}})

_EXCHANGE_ERRORS = {code: {"model": ErrorBody} for code in (400, 500, 502, 504)}
_PROFILE_ERRORS = {code: {"model": ErrorBody} for code in (401, 502, 504)}


@router.post("/{provider}/token", response_model=AccessToken, responses=_EXCHANGE_ERRORS)
async def exchange_token(
    provider: str,
    body: TokenExchangeBody,
    service: TokenExchangeService = Depends(get_exchange_service),
) -> AccessToken:
    """
    Swap an authorization code for an access token, server-side.
    Failures come back as {error, details, kind} via the AuthFlowError handler.
    """
    return await service.exchange(body.code, body.redirect_uri)


@router.get(
    "/{provider}/user",
    response_model=ProviderUserResponse,
    response_model_exclude_none=True,
    responses=_PROFILE_ERRORS,
)
async def provider_user(
    provider: str,
    access_token: str = Depends(bearer_token),
    adapter: ProviderAdapter = Depends(provider_adapter),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> ProviderUserResponse:
    raw = await adapter.fetch_profile(client, access_token)
    auth_trace("route.user.ok", provider=provider)
    return ProviderUserResponse(**raw)


@router.get("/{provider}/config", response_model=ProviderConfigResponse)
def provider_config(
    provider: str,
    creds: ProviderCredentials = Depends(provider_credentials),
) -> ProviderConfigResponse:
    """Lets the UI disable a login button and show setup hints instead of failing a flow."""
    return ProviderConfigResponse(
        configured=provider_ready(creds),
        client_id=creds.client_id or None,
        has_client_secret=bool(creds.client_secret),
        redirect_uri=creds.redirect_uri,
    )
