# src/txopito_backend/client/state.py
from __future__ import annotations

import hmac
import logging
import secrets
from enum import Enum
from typing import Optional

from txopito_backend.app.core.config import PROVIDERS
from txopito_backend.app.core.trace import auth_trace, mask
from txopito_backend.client.storage import KeyValueStore, MemoryStore

_log = logging.getLogger("txopito.auth.state")


class StateCheck(str, Enum):
    OK = "ok"
    MISSING = "StateMissing"
    MISMATCH = "CsrfStateMismatch"


class StateStore:
    """
    Single-use anti-CSRF tokens. One live attempt per store: starting a login
    with any provider discards whatever attempt was pending before.

    `primary` plays localStorage, `backup` plays sessionStorage: if navigation
    wipes the primary copy mid-flow the backup still validates the callback.
    Whatever the outcome, both copies are deleted on the first check.
    """

    def __init__(self, primary: Optional[KeyValueStore] = None, backup: Optional[KeyValueStore] = None):
        self.primary = primary if primary is not None else MemoryStore()
        self.backup = backup if backup is not None else MemoryStore()

    @staticmethod
    def _state_key(provider: str) -> str:
        return f"{provider}_oauth_state"

    @staticmethod
    def _backup_key(provider: str) -> str:
        return f"{provider}_oauth_state_backup"

    @staticmethod
    def _nonce_key(provider: str) -> str:
        return f"{provider}_oauth_nonce"

    def issue(self, provider: str) -> str:
        """New high-entropy state; replaces any leftover attempt, whichever provider it was for."""
        self.clear_all(provider)
        state = secrets.token_urlsafe(32)
        self.primary.set(self._state_key(provider), state)
        self.backup.set(self._backup_key(provider), state)
        auth_trace("state.issued", provider=provider, state=mask(state))
        return state

    def issue_nonce(self, provider: str) -> str:
        nonce = secrets.token_urlsafe(32)
        self.primary.set(self._nonce_key(provider), nonce)
        return nonce

    def stored_nonce(self, provider: str) -> Optional[str]:
        return self.primary.get(self._nonce_key(provider))

    def check(self, provider: str, received: Optional[str]) -> StateCheck:
        stored = self.primary.get(self._state_key(provider))
        if stored is None:
            stored = self.backup.get(self._backup_key(provider))
            if stored is not None:
                _log.info("state for %s recovered from backup storage", provider)
        # single use: gone before we even compare
        self.clear(provider)

        if not stored or not received:
            auth_trace("state.missing", provider=provider, received=mask(received))
            return StateCheck.MISSING
        if not hmac.compare_digest(stored.encode("utf-8"), received.encode("utf-8")):
            auth_trace("state.mismatch", provider=provider, received=mask(received))
            return StateCheck.MISMATCH
        return StateCheck.OK

    def consume_and_verify(self, provider: str, received: Optional[str]) -> bool:
        return self.check(provider, received) is StateCheck.OK

    def clear(self, provider: str) -> None:
        self.primary.delete(self._state_key(provider))
        self.primary.delete(self._nonce_key(provider))
        self.backup.delete(self._backup_key(provider))

    def clear_all(self, *extra: str) -> None:
        for provider in dict.fromkeys((*PROVIDERS, *extra)):
            self.clear(provider)

    def has_pending(self, provider: str) -> bool:
        return (
            self.primary.get(self._state_key(provider)) is not None
            or self.backup.get(self._backup_key(provider)) is not None
        )
