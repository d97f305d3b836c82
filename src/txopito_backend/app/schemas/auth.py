# src/txopito_backend/app/schemas/auth.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class TokenExchangeBody(BaseModel):
    code: str
    redirect_uri: Optional[str] = None


class AccessToken(BaseModel):
    """Opaque bearer token. Used once for the profile fetch, then dropped."""
    access_token: str
    token_type: str = "bearer"


class ProviderUserResponse(BaseModel):
    user: Dict[str, Any]
    # GitHub only; Google's user payload already carries email + verified_email
    emails: Optional[List[Dict[str, Any]]] = None


class ProviderConfigResponse(BaseModel):
    configured: bool
    client_id: Optional[str] = None
    has_client_secret: bool
    redirect_uri: str


class ErrorBody(BaseModel):
    """Every non-2xx body the proxy sends. `kind` is absent for plain HTTP errors (401, 404)."""
    error: str
    details: str
    kind: Optional[str] = None
