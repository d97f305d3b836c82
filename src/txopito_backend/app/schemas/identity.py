# src/txopito_backend/app/schemas/identity.py

from typing import Literal, Optional

from pydantic import BaseModel, EmailStr


class CanonicalIdentity(BaseModel):
    """
    Provider-independent "who is this user?" produced by a successful login.

    Only built from a provider-verified email; the normalizer refuses to
    produce one otherwise.
    """

    # "github" or "google"
    provider: Literal["github", "google"]

    # namespaced as "<provider>:<provider id>", e.g. "github:583231"
    provider_user_id: str

    email: EmailStr

    display_name: str

    avatar_url: Optional[str] = None
