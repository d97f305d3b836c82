# src/txopito_backend/app/auth/normalize.py
# Maps raw provider payloads -> CanonicalIdentity. Never degrades to an unverified email.
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from txopito_backend.app.auth.errors import AuthErrorKind, NormalizationError
from txopito_backend.app.schemas.identity import CanonicalIdentity


def _provider_user_id(provider: str, user: Dict[str, Any]) -> str:
    uid = user.get("id")
    if uid is None or str(uid).strip() == "":
        # without a stable id there is nothing to link the account to
        raise NormalizationError(AuthErrorKind.PROFILE_FETCH_FAILED, f"{provider} profile has no user id", provider=provider)
    return f"{provider}:{uid}"


def select_github_email(emails: List[Dict[str, Any]], public_email: Optional[str]) -> Optional[str]:
    """primary+verified first, then any verified, then the profile's public email."""
    for e in emails:
        if e.get("primary") and e.get("verified") and e.get("email"):
            return e["email"]
    for e in emails:
        if e.get("verified") and e.get("email"):
            return e["email"]
    return public_email or None


def normalize_github(raw: Dict[str, Any]) -> CanonicalIdentity:
    user = raw.get("user") or {}
    emails = raw.get("emails") or []

    email = select_github_email(emails, user.get("email"))
    if not email:
        raise NormalizationError(
            AuthErrorKind.NO_VERIFIED_EMAIL,
            f"github user {user.get('login')!r} has no verified email",
            provider="github",
        )

    return CanonicalIdentity(
        provider="github",
        provider_user_id=_provider_user_id("github", user),
        email=email,
        display_name=user.get("name") or user.get("login") or email,
        avatar_url=user.get("avatar_url"),
    )


def normalize_google(raw: Dict[str, Any]) -> CanonicalIdentity:
    user = raw.get("user") or {}
    email = user.get("email")

    if not email:
        raise NormalizationError(AuthErrorKind.NO_VERIFIED_EMAIL, "google profile has no email", provider="google")
    if user.get("verified_email") is not True:
        raise NormalizationError(
            AuthErrorKind.EMAIL_NOT_VERIFIED,
            f"google email for user {user.get('id')!r} is not verified",
            provider="google",
        )

    return CanonicalIdentity(
        provider="google",
        provider_user_id=_provider_user_id("google", user),
        email=email,
        display_name=user.get("name") or email,
        avatar_url=user.get("picture"),
    )


_NORMALIZERS = {
    "github": normalize_github,
    "google": normalize_google,
}


def normalize_profile(provider: str, raw: Dict[str, Any]) -> CanonicalIdentity:
    try:
        fn = _NORMALIZERS[provider]
    except KeyError:
        raise NormalizationError(AuthErrorKind.SERVER_MISCONFIGURED, f"no normalizer for {provider}")
    try:
        return fn(raw)
    except ValidationError as ex:
        # an address that does not parse is not a usable verified email
        raise NormalizationError(AuthErrorKind.NO_VERIFIED_EMAIL, f"{provider} profile invalid: {ex}", provider=provider)
