from __future__ import annotations

import argparse
import json
import types
from pathlib import Path

import pytest

from trade_sync import cli
from trade_sync.configuration import API_KEY_ENV, API_SECRET_ENV

START = 1_700_000_000_000
DAY = 24 * 60 * 60 * 1000


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "trade_sync.json"
    payload = {
        "exchanges": {"bybit": {"categories": ["linear"]}},
        "resilience": {"inter_request_delay": 0},
    }
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.fixture
def scripted(monkeypatch, make_transport):
    def install(handler):
        transport = make_transport(handler)
        monkeypatch.setattr(cli, "AiohttpTransport", lambda: transport)
        return transport

    return install


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1700000000000", 1700000000000),
        ("2023-11-14T22:13:20Z", 1700000000000),
        ("2023-11-14T22:13:20+00:00", 1700000000000),
        ("2023-11-14", 1699920000000),
    ],
)
def test_parse_timestamp(value, expected) -> None:
    assert cli.parse_timestamp(value) == expected


def test_parse_timestamp_rejects_garbage() -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_timestamp("last tuesday")


def test_fetch_writes_result_file(monkeypatch, tmp_path, config_path, scripted, responses) -> None:
    monkeypatch.setenv(API_KEY_ENV, "key")
    monkeypatch.setenv(API_SECRET_ENV, "secret")
    transport = scripted(lambda request: responses.bybit_ok([responses.execution("cli-1", START + 1)]))
    output = tmp_path / "out" / "trades.json"

    code = cli.main(
        [
            "--config",
            str(config_path),
            "fetch",
            "--exchange",
            "bybit",
            "--since",
            str(START),
            "--until",
            str(START + DAY),
            "--page-limit",
            "20",
            "--output",
            str(output),
        ]
    )

    assert code == 0
    result = json.loads(output.read_text(encoding="utf-8"))
    assert [trade["exchange_trade_id"] for trade in result["trades"]] == ["cli-1"]
    assert transport.requests[0].params["limit"] == "20"
    assert transport.closed


def test_test_connection_uses_api_keys_file(tmp_path, config_path, scripted, responses, capsys) -> None:
    api_keys = tmp_path / "api-keys.json"
    api_keys.write_text(json.dumps({"main": {"exchange": "bybit", "key": "k", "secret": "s"}}), encoding="utf-8")
    scripted(lambda request: responses.bybit_error(10010, "Unmatched IP"))

    code = cli.main(
        ["--config", str(config_path), "test-connection", "--exchange", "bybit", "--key-id", "main"]
    )

    assert code == 1
    printed = json.loads(capsys.readouterr().out)
    assert printed["diagnostic"] == "ip_not_whitelisted"
    assert printed["code"] == "10010"


def test_missing_credentials_exit_with_configuration_error(monkeypatch, config_path, scripted, capsys) -> None:
    monkeypatch.delenv(API_KEY_ENV, raising=False)
    monkeypatch.delenv(API_SECRET_ENV, raising=False)
    transport = scripted(lambda request: None)

    code = cli.main(["--config", str(config_path), "fetch", "--exchange", "bybit"])

    assert code == 2
    assert API_KEY_ENV in capsys.readouterr().err
    assert transport.requests == []


def test_unknown_exchange_exits_with_error(monkeypatch, config_path, capsys) -> None:
    monkeypatch.setenv(API_KEY_ENV, "key")
    monkeypatch.setenv(API_SECRET_ENV, "secret")

    code = cli.main(["--config", str(config_path), "fetch", "--exchange", "binance"])

    assert code == 2
    assert "Unknown exchange 'binance'" in capsys.readouterr().err


def test_serve_runs_uvicorn(monkeypatch, config_path) -> None:
    calls = []
    fake_uvicorn = types.SimpleNamespace(run=lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(cli, "_import_uvicorn", lambda: fake_uvicorn)
    pytest.importorskip("fastapi")

    code = cli.main(["--config", str(config_path), "serve", "--port", "9001"])

    assert code == 0
    (app, kwargs), = calls
    assert kwargs == {"host": "127.0.0.1", "port": 9001, "log_level": "info"}
    assert app.state.config.exchange("bybit").categories.keys() == {"linear"}
