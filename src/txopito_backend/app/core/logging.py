# src/txopito_backend/app/core/logging.py
from __future__ import annotations
import logging
import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from txopito_backend.app.auth.errors import AuthErrorKind

AUTH_LOGGER = "txopito"
_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"


def _env_level(var: str, fallback: int) -> int:
    raw = (os.getenv(var) or "").strip().upper()
    if not raw:
        return fallback
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else fallback


def setup_logging() -> None:
    """
    LOG_LEVEL sets the process level (default INFO); AUTH_LOG_LEVEL overrides it
    for the txopito.* loggers only, so the login flow can be opened up without
    drowning in uvicorn/httpx output. Safe to call repeatedly.
    """
    root = logging.getLogger()
    root_level = _env_level("LOG_LEVEL", logging.INFO)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(root_level)
    logging.getLogger(AUTH_LOGGER).setLevel(_env_level("AUTH_LOG_LEVEL", root_level))


def log_auth_failure(logger: logging.Logger, kind: "AuthErrorKind", message: str, *args: object) -> None:
    """Misconfiguration needs an operator: ERROR. Everything else is the user's to retry: WARNING."""
    level = logging.ERROR if kind.operator_facing else logging.WARNING
    logger.log(level, message, *args)
