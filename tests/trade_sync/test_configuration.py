"""Tests for trade sync configuration and credential loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from trade_sync.configuration import (
    API_KEY_ENV,
    API_SECRET_ENV,
    credential_from_env,
    credential_from_mapping,
    default_sync_config,
    load_credential,
    load_sync_config,
    validate_sync_config,
)
from trade_sync.errors import ConfigurationError
from trade_sync.models import MS_PER_DAY


def _write_config(tmp_path: Path, payload: dict) -> Path:
    config_path = tmp_path / "configs" / "trade_sync.json"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(payload), encoding="utf-8")
    return config_path


def test_default_config_has_builtin_exchanges() -> None:
    config = default_sync_config()

    assert sorted(config.exchanges) == ["binance", "bybit"]
    assert list(config.exchange("bybit").categories) == ["spot", "linear", "inverse", "option"]
    assert config.exchange(" Binance ").adapter == "binance"
    assert config.resilience.max_concurrency == 4


def test_unknown_exchange_lookup_names_configured_ids() -> None:
    with pytest.raises(ValueError, match="configured: binance, bybit"):
        default_sync_config().exchange("kraken")


def test_load_sync_config_requires_object_top_level(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps([]), encoding="utf-8")

    with pytest.raises(TypeError, match="Trade sync configuration must be a JSON object"):
        load_sync_config(config_path)


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Configuration file not found"):
        load_sync_config(tmp_path / "missing.json")


def test_new_exchange_reuses_existing_adapter(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        {
            "exchanges": {
                "bybit-testnet": {
                    "adapter": "bybit",
                    "base_url": "https://api-testnet.bybit.com",
                    "categories": ["linear", "spot"],
                }
            }
        },
    )

    config = load_sync_config(config_path)

    settings = config.exchange("bybit-testnet")
    assert list(config.exchanges) == ["bybit-testnet"]
    assert settings.adapter == "bybit"
    assert list(settings.categories) == ["linear", "spot"]
    assert settings.url_for("spot") == "https://api-testnet.bybit.com/v5/execution/list"
    assert config.config_path == config_path.resolve()


def test_category_overrides_and_removal() -> None:
    config = validate_sync_config(
        {
            "exchanges": {
                "binance": {
                    "default_symbols": ["BTCUSDT", " ", "ETHUSDT"],
                    "categories": {
                        "spot": {"max_window_days": 2},
                        "inverse": None,
                        "linear": {"max_window_ms": 3600000, "base_url": "https://testnet.binancefuture.com"},
                    },
                }
            }
        }
    )

    settings = config.exchange("binance")
    assert list(settings.categories) == ["spot", "linear"]
    assert settings.endpoint("spot").max_window_ms == 2 * MS_PER_DAY
    assert settings.endpoint("linear").max_window_ms == 3600000
    assert settings.url_for("linear") == "https://testnet.binancefuture.com/fapi/v1/userTrades"
    assert settings.default_symbols == ("BTCUSDT", "ETHUSDT")


def test_error_codes_and_headers_can_be_extended() -> None:
    config = validate_sync_config(
        {
            "exchanges": {
                "bybit": {
                    "error_codes": {"invalid_key": ["10003", "33004"]},
                    "header_names": {"api_key": "X-API-KEY"},
                    "page_size": 50,
                }
            }
        }
    )

    settings = config.exchange("bybit")
    assert settings.error_codes.invalid_key == frozenset({"10003", "33004"})
    assert settings.error_codes.invalid_signature == frozenset({"10004"})
    assert settings.header_names.api_key == "X-API-KEY"
    assert settings.header_names.signature == "X-BAPI-SIGN"
    assert settings.page_size == 50


@pytest.mark.parametrize(
    "payload, error, match",
    [
        ({"exchanges": {"kraken": {}}}, ValueError, "Unknown exchange adapter 'kraken'"),
        ({"exchanges": {}}, ValueError, "at least one exchange"),
        ({"exchanges": {"bybit": {"categories": ["futures"]}}}, ValueError, "unknown category 'futures'"),
        ({"exchanges": {"bybit": {"categories": {"fx": {}}}}}, ValueError, "requires a 'path'"),
        ({"exchanges": {"bybit": {"page_size": 0}}}, ValueError, "must be positive"),
        ({"exchanges": {"bybit": {"error_codes": {"bogus": [1]}}}}, ValueError, "Unknown error code groups"),
        ({"resilience": {"max_concurrency": 9}}, ValueError, "max_concurrency"),
        ({"resilience": {"request_timeout": "soon"}}, TypeError, "request_timeout"),
    ],
)
def test_invalid_configuration_is_rejected(payload, error, match) -> None:
    with pytest.raises(error, match=match):
        validate_sync_config(payload)


def test_resilience_and_lookback(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        {"default_lookback_days": 30, "resilience": {"max_retries": "5", "inter_request_delay": 0.25}},
    )

    config = load_sync_config(config_path)

    assert config.default_lookback_days == 30
    assert config.resilience.max_retries == 5
    assert config.resilience.inter_request_delay == 0.25
    assert sorted(config.exchanges) == ["binance", "bybit"]


def test_api_keys_file_resolves_relative_to_config(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, {"api_keys_file": "../secrets/api-keys.json"})

    config = load_sync_config(config_path)

    assert config.api_keys_path == (tmp_path / "secrets" / "api-keys.json").resolve()


def test_journal_file_resolves_relative_to_config(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, {"journal_file": "data/trades.json"})

    config = load_sync_config(config_path)

    assert config.journal_path == (tmp_path / "configs" / "data" / "trades.json").resolve()
    assert default_sync_config().journal_path is None


def test_api_keys_are_discovered_from_parent_directories(tmp_path: Path) -> None:
    api_keys = tmp_path / "api-keys.json"
    api_keys.write_text("{}", encoding="utf-8")
    config_path = _write_config(tmp_path, {})

    config = load_sync_config(config_path)

    assert config.api_keys_path == api_keys.resolve()


def test_load_credential_supports_aliases_and_users_section(tmp_path: Path) -> None:
    api_keys = tmp_path / "api-keys.json"
    api_keys.write_text(
        json.dumps(
            {
                "referrals": {"bybit": "https://example.invalid"},
                "bybit_01": {"exchange": "bybit", "key": " abc ", "secret": "def"},
                "users": {"binance_main": {"exchange": "binance", "api_key": "k", "api-secret": "s"}},
            }
        ),
        encoding="utf-8",
    )

    bybit = load_credential(api_keys, "bybit_01", exchange_id="bybit")
    binance = load_credential(api_keys, "binance_main")

    assert (bybit.exchange_id, bybit.api_key, bybit.api_secret) == ("bybit", "abc", "def")
    assert (binance.exchange_id, binance.api_key, binance.api_secret) == ("binance", "k", "s")

    with pytest.raises(ConfigurationError, match="belongs to 'bybit'"):
        load_credential(api_keys, "bybit_01", exchange_id="binance")
    with pytest.raises(ConfigurationError, match="not found"):
        load_credential(api_keys, "missing")


def test_credential_from_mapping_requires_key_and_secret() -> None:
    with pytest.raises(ConfigurationError, match="both a key and a secret"):
        credential_from_mapping({"apiKey": "abc", "secret": "  "}, exchange_id="bybit")
    with pytest.raises(ConfigurationError, match="does not name an exchange"):
        credential_from_mapping({"apiKey": "abc", "secret": "def"})


def test_credential_from_env() -> None:
    credential = credential_from_env("bybit", {API_KEY_ENV: "abc", API_SECRET_ENV: "def"})

    assert credential.exchange_id == "bybit"
    assert credential.api_secret == "def"
    with pytest.raises(ConfigurationError, match=API_KEY_ENV):
        credential_from_env("bybit", {API_KEY_ENV: "abc"})
