"""Logging setup and token redaction."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
REDACTED = "[REDACTED]"


class TokenRedactingFilter(logging.Filter):
    """Replace API tokens in log messages and their args."""

    def __init__(self, tokens: Iterable[str]):
        super().__init__()
        self._tokens = [t for t in (str(token).strip() for token in tokens) if t]

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, str):
            for token in self._tokens:
                value = value.replace(token, REDACTED)
            return value
        if isinstance(value, tuple):
            return tuple(self._scrub(item) for item in value)
        if isinstance(value, dict):
            return {key: self._scrub(item) for key, item in value.items()}
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if self._tokens:
            record.msg = self._scrub(record.msg)
            if record.args:
                record.args = self._scrub(record.args)
        return True


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for the command line entry point."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    logging.basicConfig(format=LOG_FORMAT, level=level)
    logging.getLogger().setLevel(level)


def install_token_redaction(
    tokens: Iterable[str], target_logger: logging.Logger | None = None
) -> TokenRedactingFilter:
    """Attach a redaction filter to all handlers of *target_logger* (root by default)."""
    logger = target_logger or logging.getLogger()
    redaction = TokenRedactingFilter(tokens)
    for handler in logger.handlers:
        handler.addFilter(redaction)
    return redaction
