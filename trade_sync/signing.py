"""HMAC request signing for private exchange endpoints."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

from .errors import ConfigurationError

AUTH_FIELDS = frozenset({"apiKey", "api_key", "sign", "signature", "timestamp", "recvWindow"})


def _sorted_items(params: Mapping[str, Any], exclude=AUTH_FIELDS) -> list[Tuple[str, str]]:
    items: list[Tuple[str, str]] = []
    for key in sorted(params):
        if key in exclude:
            continue
        value = params[key]
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        items.append((str(key), str(value)))
    return items


def canonical_query(params: Optional[Mapping[str, Any]]) -> str:
    """Return ``params`` sorted by key as a ``key=value&...`` string.

    Authentication fields and ``None`` values are left out.
    """

    if not params:
        return ""
    return urlencode(_sorted_items(params))


def hmac_sha256_hex(secret: str, payload: str) -> str:
    if not secret:
        raise ConfigurationError("API secret must not be empty")
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def sign(
    secret: str,
    api_key: str,
    timestamp: int | str,
    recv_window: int | str,
    params: Optional[Mapping[str, Any]] = None,
) -> str:
    """Sign ``timestamp + api_key + recv_window + query`` with ``secret``."""

    if not api_key:
        raise ConfigurationError("API key must not be empty")
    payload = f"{timestamp}{api_key}{recv_window}{canonical_query(params)}"
    return hmac_sha256_hex(secret, payload)


def sign_query_string(secret: str, query: str) -> str:
    return hmac_sha256_hex(secret, query)


@dataclass(frozen=True)
class HeaderNames:
    api_key: str = "X-BAPI-API-KEY"
    timestamp: str = "X-BAPI-TIMESTAMP"
    recv_window: str = "X-BAPI-RECV-WINDOW"
    signature: str = "X-BAPI-SIGN"

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, str]]) -> "HeaderNames":
        if not payload:
            return cls()
        known = {"api_key", "timestamp", "recv_window", "signature"}
        return cls(**{key: str(value) for key, value in payload.items() if key in known})


@dataclass(frozen=True)
class SignedRequest:
    """Query string and headers ready to be sent."""

    query: str
    headers: Dict[str, str]


def signed_headers(
    api_key: str,
    secret: str,
    params: Optional[Mapping[str, Any]],
    *,
    timestamp: int,
    recv_window: int,
    names: HeaderNames = HeaderNames(),
) -> SignedRequest:
    """Build a request authenticated through ``X-*`` headers."""

    signature = sign(secret, api_key, timestamp, recv_window, params)
    headers = {
        names.api_key: api_key,
        names.timestamp: str(timestamp),
        names.recv_window: str(recv_window),
        names.signature: signature,
    }
    return SignedRequest(query=canonical_query(params), headers=headers)


def signed_query(
    api_key: str,
    secret: str,
    params: Optional[Mapping[str, Any]],
    *,
    timestamp: int,
    recv_window: int,
    api_key_header: str = "X-MBX-APIKEY",
) -> SignedRequest:
    """Build a request whose query string carries ``timestamp`` and ``signature``."""

    if not api_key:
        raise ConfigurationError("API key must not be empty")
    base = canonical_query(params)
    auth = urlencode([("recvWindow", str(recv_window)), ("timestamp", str(timestamp))])
    query = f"{base}&{auth}" if base else auth
    signature = sign_query_string(secret, query)
    return SignedRequest(query=f"{query}&signature={signature}", headers={api_key_header: api_key})


__all__ = [
    "AUTH_FIELDS",
    "HeaderNames",
    "SignedRequest",
    "canonical_query",
    "hmac_sha256_hex",
    "sign",
    "sign_query_string",
    "signed_headers",
    "signed_query",
]
