# src/txopito_backend/app/auth/deps.py
from __future__ import annotations
from typing import AsyncIterator, Optional

import httpx
from fastapi import Depends, Header, HTTPException, status

from txopito_backend.app.auth.exchange import TokenExchangeService
from txopito_backend.app.auth.providers import ProviderAdapter, get_adapter
from txopito_backend.app.core.config import PROVIDERS, ProviderCredentials, Settings, load_settings


def get_settings() -> Settings:
    return load_settings()


async def get_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    # one bounded-timeout client per request; both upstream calls share it
    async with httpx.AsyncClient(timeout=settings.http_timeout_sec) as client:
        yield client


def provider_credentials(provider: str, settings: Settings = Depends(get_settings)) -> ProviderCredentials:
    if provider not in PROVIDERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown provider: {provider}")
    return settings.credentials(provider)


def provider_adapter(creds: ProviderCredentials = Depends(provider_credentials)) -> ProviderAdapter:
    return get_adapter(creds)


def provider_ready(creds: ProviderCredentials) -> bool:
    """Real client id and a secret present: the proxy can actually exchange codes."""
    return get_adapter(creds).is_configured() and bool(creds.client_secret)


def get_exchange_service(
    creds: ProviderCredentials = Depends(provider_credentials),
    adapter: ProviderAdapter = Depends(provider_adapter),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> TokenExchangeService:
    return TokenExchangeService(creds, adapter, client)


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return token
