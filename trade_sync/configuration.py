"""Utilities for loading trade sync configuration and credentials."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Set

from services.exchanges import default_settings
from services.telemetry import ResiliencePolicy

from .classifier import ErrorCodes
from .config.models import CategoryEndpoint, ExchangeSettings, SyncConfig
from .errors import ConfigurationError
from .models import MS_PER_DAY, ExchangeCredential
from .signing import HeaderNames

logger = logging.getLogger(__name__)

API_KEY_ENV = "TRADE_SYNC_API_KEY"
API_SECRET_ENV = "TRADE_SYNC_API_SECRET"
BUILTIN_EXCHANGES = ("bybit", "binance")


def _load_json(path: Path) -> Dict[str, Any]:
    """Return parsed JSON payload from ``path`` with helpful error messages."""

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Configuration file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in configuration file {path}: {exc}") from exc


def _ensure_mapping(payload: Any, *, description: str) -> MutableMapping[str, Any]:
    """Return ``payload`` when it is a mapping, otherwise raise ``TypeError``."""

    if isinstance(payload, MutableMapping):
        return payload
    if isinstance(payload, Mapping):
        return dict(payload)
    raise TypeError(f"{description} must be a JSON object, not {type(payload).__name__}.")


def _resolve_path_relative_to(base: Path, candidate: Any) -> Path:
    path = Path(str(candidate)).expanduser()
    if not path.is_absolute():
        path = (base / path).resolve()
    else:
        path = path.resolve()
    return path


def _positive_int(value: Any, *, description: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise TypeError(f"{description} must be an integer, got {value!r}") from exc
    if number <= 0:
        raise ValueError(f"{description} must be positive, got {number}")
    return number


def _string_list(value: Any, *, description: str) -> tuple:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or isinstance(value, Mapping):
        raise TypeError(f"{description} must be an array of strings.")
    return tuple(str(item).strip() for item in value if str(item).strip())


def _normalise_credentials(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalise credential keys to ``apiKey`` / ``secret``."""

    key_aliases = {
        "key": "apiKey",
        "apikey": "apiKey",
        "api_key": "apiKey",
        "secret": "secret",
        "secret_key": "secret",
        "secretkey": "secret",
        "apisecret": "secret",
        "api_secret": "secret",
    }
    normalised: Dict[str, Any] = {}
    for raw_key, value in data.items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                continue
        key_lookup = raw_key.lower().replace(" ", "").replace("-", "_")
        normalised[key_aliases.get(key_lookup, raw_key)] = value
    return normalised


def _iter_candidate_roots(config_root: Optional[Path]) -> Iterable[Path]:
    """Yield directories to inspect when auto-discovering shared files."""

    bases = [config_root, Path.cwd()]
    seen: Set[Path] = set()
    for base in bases:
        if base is None:
            continue
        try:
            resolved = base.resolve()
        except FileNotFoundError:
            continue
        if resolved in seen:
            continue
        seen.add(resolved)
        yield resolved
        for parent in resolved.parents:
            if parent in seen:
                continue
            seen.add(parent)
            yield parent


def _discover_api_keys_path(config_root: Optional[Path]) -> Optional[Path]:
    """Return the first ``api-keys.json`` found relative to common roots."""

    for root in _iter_candidate_roots(config_root):
        candidate = root / "api-keys.json"
        if candidate.is_file():
            return candidate
    return None


def _parse_categories(
    raw: Any, defaults: Mapping[str, CategoryEndpoint], *, exchange_id: str
) -> Dict[str, CategoryEndpoint]:
    if raw is None:
        return dict(defaults)
    description = f"Exchange '{exchange_id}' categories"
    if isinstance(raw, (list, tuple)):
        selected: Dict[str, CategoryEndpoint] = {}
        for name in raw:
            key = str(name).strip().lower()
            if key not in defaults:
                raise ValueError(f"{description}: unknown category '{name}'")
            selected[key] = defaults[key]
        return selected
    mapping = _ensure_mapping(raw, description=description)
    categories = dict(defaults)
    for name, override in mapping.items():
        key = str(name).strip().lower()
        if override is None or override is False:
            categories.pop(key, None)
            continue
        override = _ensure_mapping(override, description=f"{description} '{name}'")
        base = categories.get(key)
        path = override.get("path") or (base.path if base else None)
        if not path:
            raise ValueError(f"{description} '{name}' requires a 'path'")
        max_window_ms = base.max_window_ms if base else None
        if "max_window_days" in override:
            days = override["max_window_days"]
            max_window_ms = None if days is None else _positive_int(days, description="max_window_days") * MS_PER_DAY
        if "max_window_ms" in override:
            value = override["max_window_ms"]
            max_window_ms = None if value is None else _positive_int(value, description="max_window_ms")
        categories[key] = CategoryEndpoint(
            path=str(path),
            max_window_ms=max_window_ms,
            base_url=override.get("base_url", base.base_url if base else None),
        )
    if not categories:
        raise ValueError(f"{description}: at least one category must remain enabled")
    return categories


def _parse_exchange(exchange_id: str, raw: Any) -> ExchangeSettings:
    key = str(exchange_id).strip().lower()
    payload = _ensure_mapping(raw or {}, description=f"Exchange '{exchange_id}' settings")
    adapter = str(payload.get("adapter") or key).strip().lower()
    base = default_settings(adapter, key)

    overrides: Dict[str, Any] = {}
    for field_name in ("base_url", "connection_path", "api_key_header"):
        if payload.get(field_name):
            overrides[field_name] = str(payload[field_name])
    for field_name in ("recv_window", "page_size"):
        if field_name in payload:
            overrides[field_name] = _positive_int(payload[field_name], description=f"{key}.{field_name}")
    if "connection_params" in payload:
        params = _ensure_mapping(payload["connection_params"], description=f"{key}.connection_params")
        overrides["connection_params"] = {str(k): str(v) for k, v in params.items()}
    if "default_symbols" in payload:
        overrides["default_symbols"] = _string_list(payload["default_symbols"], description=f"{key}.default_symbols")
    if "categories" in payload:
        overrides["categories"] = _parse_categories(payload["categories"], base.categories, exchange_id=key)
    if "error_codes" in payload:
        overrides["error_codes"] = ErrorCodes.from_mapping(payload["error_codes"], defaults=base.error_codes)
    if "header_names" in payload:
        overrides["header_names"] = HeaderNames.from_mapping(
            _ensure_mapping(payload["header_names"], description=f"{key}.header_names")
        )
    return dataclasses.replace(base, **overrides)


def default_sync_config() -> SyncConfig:
    """Configuration with the built-in exchanges and default resilience."""

    return SyncConfig(exchanges={name: default_settings(name) for name in BUILTIN_EXCHANGES})


def load_sync_payload(path: Path | str) -> tuple[MutableMapping[str, Any], Path]:
    """Load and return the raw sync configuration mapping from disk."""

    path = Path(path).expanduser().resolve()
    payload = _load_json(path)
    return _ensure_mapping(payload, description="Trade sync configuration"), path


def validate_sync_config(config: Mapping[str, Any], *, source_path: Optional[Path] = None) -> SyncConfig:
    """Validate and normalise a trade sync configuration payload."""

    base_dir = source_path.parent.resolve() if source_path else Path.cwd()

    exchanges_raw = config.get("exchanges")
    exchanges: Dict[str, ExchangeSettings] = {}
    if exchanges_raw is None:
        exchanges = {name: default_settings(name) for name in BUILTIN_EXCHANGES}
    else:
        mapping = _ensure_mapping(exchanges_raw, description="Trade sync configuration 'exchanges'")
        if not mapping:
            raise ValueError("Trade sync configuration 'exchanges' must define at least one exchange.")
        for exchange_id, settings_raw in mapping.items():
            settings = _parse_exchange(exchange_id, settings_raw)
            exchanges[settings.exchange_id] = settings

    lookback = _positive_int(config.get("default_lookback_days", 180), description="default_lookback_days")
    resilience = ResiliencePolicy.from_mapping(
        _ensure_mapping(config.get("resilience") or {}, description="Trade sync configuration 'resilience'")
    )

    api_keys_file = config.get("api_keys_file")
    if api_keys_file:
        api_keys_path: Optional[Path] = _resolve_path_relative_to(base_dir, api_keys_file)
    else:
        api_keys_path = _discover_api_keys_path(base_dir)

    journal_file = config.get("journal_file")
    journal_path = _resolve_path_relative_to(base_dir, journal_file) if journal_file else None

    return SyncConfig(
        exchanges=exchanges,
        resilience=resilience,
        default_lookback_days=lookback,
        api_keys_path=api_keys_path,
        journal_path=journal_path,
        config_path=source_path,
        config_root=base_dir,
    )


def load_sync_config(path: Path | str) -> SyncConfig:
    """Load and validate a trade sync configuration file from disk."""

    payload, resolved_path = load_sync_payload(path)
    return validate_sync_config(payload, source_path=resolved_path)


def _flatten_api_keys(payload: Mapping[str, Any]) -> Dict[str, Mapping[str, Any]]:
    flattened: Dict[str, Mapping[str, Any]] = {}
    for key, value in payload.items():
        if key == "referrals" or not isinstance(value, Mapping):
            continue
        if key.lower() == "users":
            for sub_key, sub_value in value.items():
                if isinstance(sub_value, Mapping):
                    flattened[sub_key] = sub_value
            continue
        flattened[key] = value
    return flattened


def credential_from_mapping(
    entry: Mapping[str, Any], *, exchange_id: Optional[str] = None, description: str = "Credential"
) -> ExchangeCredential:
    """Build a credential from a mapping using any of the accepted key aliases."""

    normalised = _normalise_credentials(entry)
    exchange = normalised.get("exchange") or exchange_id
    if not exchange:
        raise ConfigurationError(f"{description} does not name an exchange")
    if exchange_id and str(exchange).strip().lower() != exchange_id.strip().lower():
        raise ConfigurationError(
            f"{description} belongs to '{exchange}', not '{exchange_id}'", exchange_id=exchange_id
        )
    api_key = normalised.get("apiKey")
    secret = normalised.get("secret")
    if not api_key or not secret:
        raise ConfigurationError(f"{description} must provide both a key and a secret")
    return ExchangeCredential(exchange_id=str(exchange), api_key=str(api_key), api_secret=str(secret))


def load_credential(
    api_keys_path: Path | str, key_id: str, *, exchange_id: Optional[str] = None
) -> ExchangeCredential:
    """Read one credential entry from an ``api-keys.json`` file."""

    path = Path(api_keys_path).expanduser()
    entries = _flatten_api_keys(_ensure_mapping(_load_json(path), description="API key configuration"))
    try:
        entry = entries[key_id]
    except KeyError:
        raise ConfigurationError(f"API key entry '{key_id}' not found in {path}") from None
    credential = credential_from_mapping(entry, exchange_id=exchange_id, description=f"API key entry '{key_id}'")
    logger.debug("Loaded credential '%s' for %s from %s", key_id, credential.exchange_id, path)
    return credential


def credential_from_env(exchange_id: str, environ: Optional[Mapping[str, str]] = None) -> ExchangeCredential:
    env = os.environ if environ is None else environ
    api_key = (env.get(API_KEY_ENV) or "").strip()
    secret = (env.get(API_SECRET_ENV) or "").strip()
    if not api_key or not secret:
        raise ConfigurationError(f"Set {API_KEY_ENV} and {API_SECRET_ENV} or pass --api-keys/--key-id")
    return ExchangeCredential(exchange_id=exchange_id, api_key=api_key, api_secret=secret)


__all__ = [
    "API_KEY_ENV",
    "API_SECRET_ENV",
    "credential_from_env",
    "credential_from_mapping",
    "default_sync_config",
    "load_credential",
    "load_sync_config",
    "load_sync_payload",
    "validate_sync_config",
]
