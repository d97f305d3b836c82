# src/txopito_backend/client/accounts.py
# Reconciles a CanonicalIdentity into zero-or-one local account. Email is the merge key.
from __future__ import annotations

import json
import logging
import time
import uuid
from typing import List, Optional

from pydantic import BaseModel

from txopito_backend.app.schemas.identity import CanonicalIdentity
from txopito_backend.client.storage import KeyValueStore, MemoryStore

_log = logging.getLogger("txopito.accounts")


class LocalAccount(BaseModel):
    id: str
    email: str
    display_name: str
    avatar_url: Optional[str] = None
    # namespaced provider ids, e.g. ["github:1", "google:42"]
    linked: List[str] = []
    created_at: int
    updated_at: int


class AccountStore:
    """
    Accounts keyed by email, with a secondary provider-id index.

    Rules:
      1. Email already known -> that account (a different provider id on the same
         email is the same person linking another provider, not a conflict).
      2. Else provider id already linked -> that account, email refreshed.
      3. Else create a new account.
    """

    def __init__(self, store: Optional[KeyValueStore] = None):
        self.store = store if store is not None else MemoryStore()

    @staticmethod
    def _email_key(email: str) -> str:
        return f"account:{email.lower()}"

    @staticmethod
    def _pid_key(provider_user_id: str) -> str:
        return f"account_by_pid:{provider_user_id}"

    def get_by_email(self, email: str) -> Optional[LocalAccount]:
        raw = self.store.get(self._email_key(email))
        return LocalAccount(**json.loads(raw)) if raw else None

    def get_by_provider_id(self, provider_user_id: str) -> Optional[LocalAccount]:
        email = self.store.get(self._pid_key(provider_user_id))
        return self.get_by_email(email) if email else None

    def _save(self, account: LocalAccount) -> None:
        self.store.set(self._email_key(account.email), account.model_dump_json())
        for pid in account.linked:
            self.store.set(self._pid_key(pid), account.email)

    def reconcile(self, identity: CanonicalIdentity) -> LocalAccount:
        now = int(time.time())
        email = str(identity.email)

        account = self.get_by_email(email)
        if account is None:
            account = self.get_by_provider_id(identity.provider_user_id)
            if account is not None and account.email.lower() != email.lower():
                # provider changed the user's email: move the record to the new key
                self.store.delete(self._email_key(account.email))
                account.email = email

        if account is None:
            account = LocalAccount(
                id=f"user_{identity.provider}_{uuid.uuid4().hex[:12]}",
                email=email,
                display_name=identity.display_name,
                avatar_url=identity.avatar_url,
                linked=[identity.provider_user_id],
                created_at=now,
                updated_at=now,
            )
            _log.info("created local account %s via %s", account.id, identity.provider)
        else:
            same_provider = [p for p in account.linked if p.startswith(f"{identity.provider}:")]
            if same_provider and identity.provider_user_id not in same_provider:
                _log.warning(
                    "email %s already linked to %s; linking %s as well",
                    email, same_provider, identity.provider_user_id,
                )
            if identity.provider_user_id not in account.linked:
                account.linked.append(identity.provider_user_id)
            account.display_name = identity.display_name or account.display_name
            account.avatar_url = identity.avatar_url or account.avatar_url
            account.updated_at = now

        self._save(account)
        return account
