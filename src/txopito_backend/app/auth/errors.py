# src/txopito_backend/app/auth/errors.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class AuthErrorKind(str, Enum):
    """Every way a login attempt can fail. Values travel over the wire as-is."""
    PROVIDER_DENIED = "ProviderDenied"
    MALFORMED_CALLBACK = "MalformedCallback"
    CSRF_STATE_MISMATCH = "CsrfStateMismatch"
    AUTHORIZATION_CODE_EXPIRED = "AuthorizationCodeExpired"
    SERVER_MISCONFIGURED = "ServerMisconfigured"
    REDIRECT_URI_MISMATCH = "RedirectUriMismatch"
    PROFILE_FETCH_FAILED = "ProfileFetchFailed"
    UPSTREAM_TIMEOUT = "UpstreamTimeout"
    UPSTREAM_PROTOCOL_ERROR = "UpstreamProtocolError"
    NO_VERIFIED_EMAIL = "NoVerifiedEmail"
    EMAIL_NOT_VERIFIED = "EmailNotVerified"

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self]

    @property
    def retryable(self) -> bool:
        """True when a fresh login attempt can succeed without anyone changing config."""
        return self in _RETRYABLE

    @property
    def operator_facing(self) -> bool:
        return self in (AuthErrorKind.SERVER_MISCONFIGURED, AuthErrorKind.REDIRECT_URI_MISMATCH)

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self, 400)


_USER_MESSAGES: Dict[AuthErrorKind, str] = {
    AuthErrorKind.PROVIDER_DENIED: "Sign-in was cancelled or refused by the provider. Please try again.",
    AuthErrorKind.MALFORMED_CALLBACK: "The sign-in response was incomplete. Please start the login again.",
    AuthErrorKind.CSRF_STATE_MISMATCH: "Security check failed. Please start a fresh login.",
    AuthErrorKind.AUTHORIZATION_CODE_EXPIRED: "Your sign-in code expired. Please try logging in again.",
    AuthErrorKind.SERVER_MISCONFIGURED: "Sign-in is not available right now. Please contact the administrator.",
    AuthErrorKind.REDIRECT_URI_MISMATCH: "Sign-in is not available right now. Please contact the administrator.",
    AuthErrorKind.PROFILE_FETCH_FAILED: "We could not load your profile. Please try again.",
    AuthErrorKind.UPSTREAM_TIMEOUT: "The sign-in server took too long to answer. Please try again.",
    AuthErrorKind.UPSTREAM_PROTOCOL_ERROR: "The sign-in server is temporarily unavailable. Please try again.",
    AuthErrorKind.NO_VERIFIED_EMAIL: "No verified email was found on your account. Verify an email with the provider and retry.",
    AuthErrorKind.EMAIL_NOT_VERIFIED: "Your email is not verified with the provider. Verify it and retry.",
}

_RETRYABLE = frozenset({
    AuthErrorKind.PROVIDER_DENIED,
    AuthErrorKind.MALFORMED_CALLBACK,
    AuthErrorKind.CSRF_STATE_MISMATCH,
    AuthErrorKind.AUTHORIZATION_CODE_EXPIRED,
    AuthErrorKind.PROFILE_FETCH_FAILED,
    AuthErrorKind.UPSTREAM_TIMEOUT,
    AuthErrorKind.UPSTREAM_PROTOCOL_ERROR,
})

_HTTP_STATUS: Dict[AuthErrorKind, int] = {
    AuthErrorKind.AUTHORIZATION_CODE_EXPIRED: 400,
    AuthErrorKind.REDIRECT_URI_MISMATCH: 400,
    AuthErrorKind.MALFORMED_CALLBACK: 400,
    AuthErrorKind.SERVER_MISCONFIGURED: 500,
    AuthErrorKind.PROFILE_FETCH_FAILED: 502,
    AuthErrorKind.UPSTREAM_PROTOCOL_ERROR: 502,
    AuthErrorKind.UPSTREAM_TIMEOUT: 504,
}


class AuthFlowError(Exception):
    """
    Typed failure raised by the exchange service, adapters and normalizer.
    `detail` is for logs only; users get `kind.user_message`.
    """
    def __init__(self, kind: AuthErrorKind, detail: str = "", *, provider: Optional[str] = None):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail
        self.provider = provider

    def to_body(self) -> Dict[str, Any]:
        # operator-class detail stays in server logs
        details = self.kind.user_message if self.kind.operator_facing else (self.detail or self.kind.user_message)
        return {"error": self.kind.user_message, "details": details, "kind": self.kind.value}


class TokenExchangeError(AuthFlowError):
    pass


class ProfileFetchError(AuthFlowError):
    pass


class NormalizationError(AuthFlowError):
    pass


def kind_from_wire(value: Optional[str]) -> Optional[AuthErrorKind]:
    if not value:
        return None
    try:
        return AuthErrorKind(value)
    except ValueError:
        return None
