"""Logging configuration with credential redaction."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any, Callable, Optional, TextIO

REDACTED = "***REDACTED***"

_SENSITIVE_KEYS = (
    "x-mbx-apikey",
    "x-bapi-api-key",
    "x-bapi-sign",
    "api_secret",
    "apisecret",
    "api_key",
    "apikey",
    "secret",
    "signature",
    "password",
    "sign",
)
_KEY_PATTERN = "|".join(re.escape(key) for key in _SENSITIVE_KEYS)

# 'apiKey': 'value' and "X-BAPI-SIGN": "value" as rendered by dict reprs and JSON
_QUOTED_PAIR = re.compile(
    r"""(?P<prefix>(?P<q>['"])(?:%s)(?P=q)\s*:\s*)(?P<vq>['"])(?P<value>.*?)(?P=vq)""" % _KEY_PATTERN,
    re.IGNORECASE,
)
# signature=abc in query strings and key=value log fragments
_QUERY_PAIR = re.compile(r"(?P<prefix>(?<![\w-])(?:%s)=)(?P<value>[^&\s'\",}]+)" % _KEY_PATTERN, re.IGNORECASE)

_HANDLER_MARKER = "_trade_sync_handler"
_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def redact(text: str) -> str:
    """Mask credential values in ``text``."""

    text = _QUOTED_PAIR.sub(lambda m: f"{m.group('prefix')}{m.group('vq')}{REDACTED}{m.group('vq')}", text)
    return _QUERY_PAIR.sub(lambda m: f"{m.group('prefix')}{REDACTED}", text)


def debug_to_logging_level(debug_level: int) -> int:
    """Map a debug verbosity integer to a logging level."""

    if debug_level <= 0:
        return logging.WARNING
    if debug_level == 1:
        return logging.INFO
    return logging.DEBUG


def _redacting_factory(base: Callable[..., logging.LogRecord]) -> Callable[..., logging.LogRecord]:
    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = base(*args, **kwargs)
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return record
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return record

    factory._trade_sync_redacting = True  # type: ignore[attr-defined]
    return factory


def install_redaction() -> None:
    """Install the redacting record factory once per process."""

    current = logging.getLogRecordFactory()
    if getattr(current, "_trade_sync_redacting", False):
        return
    logging.setLogRecordFactory(_redacting_factory(current))


def configure_logging(debug: int = 1, stream_target: Optional[TextIO] = None) -> logging.Logger:
    """Configure root logging for the CLI and web server.

    Records are redacted when created, so handlers attached elsewhere never see
    API keys or signatures either.
    """

    install_redaction()
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(stream_target or sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    setattr(handler, _HANDLER_MARKER, True)
    root.addHandler(handler)
    root.setLevel(debug_to_logging_level(debug))
    return root


__all__ = ["REDACTED", "configure_logging", "debug_to_logging_level", "install_redaction", "redact"]
