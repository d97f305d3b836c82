# src/txopito_backend/client/storage.py
from __future__ import annotations

from typing import Dict, Optional, Protocol


class KeyValueStore(Protocol):
    """
    Minimal storage port (the shape of browser localStorage / sessionStorage).
    Anything with get/set/delete over strings can back the state store or the
    account cache, including a future server-side session store.
    """
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed KeyValueStore. `clear()` simulates the browser wiping storage."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
