# src/txopito_backend/app/core/trace.py
from __future__ import annotations
import logging
import os
import time
from typing import Any, Mapping, Optional

from .logging import setup_logging

setup_logging()

_log = logging.getLogger("txopito.auth")

def _enabled() -> bool:
    return (os.getenv("AUTH_TRACE", "")).lower() in ("1", "true", "yes", "on")

def _fmt_kv(d: Mapping[str, Any]) -> str:
    return " ".join(f"{k}={d[k]}" for k in d)

def mask(secret: Optional[str], keep: int = 6) -> str:
    """Shorten codes/tokens before they reach a log line."""
    if not secret:
        return "<none>"
    return secret[:keep] + "..."

def auth_trace(event: str, **kv: Any) -> None:
    """
    Emit a single-line structured log ONLY when AUTH_TRACE=true.
    Example:
      [auth] exchange.ok ts=... provider=github code=abc123...
    """
    if not _enabled():
        return
    kv2 = {"ts": int(time.time()), **kv}
    _log.info("[auth] %s %s", event, _fmt_kv(kv2))
