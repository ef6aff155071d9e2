"""Command line entry point for exchange trade synchronisation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .config.models import SyncConfig
from .configuration import credential_from_env, default_sync_config, load_credential, load_sync_config
from .errors import ConfigurationError
from .factory import build_sync_service
from .logging_setup import configure_logging
from .models import ExchangeCredential
from .transport import AiohttpTransport

if TYPE_CHECKING:  # pragma: no cover - used only for type hints
    import uvicorn

logger = logging.getLogger(__name__)


def _import_uvicorn() -> "uvicorn":
    """Import :mod:`uvicorn` with a helpful error message when missing."""

    try:
        import uvicorn  # type: ignore[import]
    except ModuleNotFoundError as exc:  # pragma: no cover - depends on runtime environment
        raise ModuleNotFoundError(
            "The 'uvicorn' package is required to run the trade sync web server."
        ) from exc
    return uvicorn


def parse_timestamp(value: str) -> int:
    """Accept epoch milliseconds or an ISO-8601 date/datetime (UTC when naive)."""

    text = value.strip()
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid timestamp {value!r}: use epoch ms or ISO-8601") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _load_config(path: Optional[Path]) -> SyncConfig:
    if path is None:
        return default_sync_config()
    return load_sync_config(path)


def _resolve_credential(args: argparse.Namespace, config: SyncConfig) -> ExchangeCredential:
    if args.key_id:
        api_keys = args.api_keys or config.api_keys_path
        if api_keys is None:
            raise ConfigurationError("No api-keys.json found; pass --api-keys")
        return load_credential(api_keys, args.key_id, exchange_id=args.exchange)
    return credential_from_env(args.exchange)


async def _test_connection(args: argparse.Namespace, config: SyncConfig) -> int:
    credential = _resolve_credential(args, config)
    async with AiohttpTransport() as transport:
        service = build_sync_service(args.exchange, config, transport=transport)
        result = await service.test_connection(credential, deadline=args.deadline)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


async def _fetch(args: argparse.Namespace, config: SyncConfig) -> int:
    credential = _resolve_credential(args, config)
    async with AiohttpTransport() as transport:
        service = build_sync_service(args.exchange, config, transport=transport)
        result = await service.fetch_trades(
            credential,
            symbol=args.symbol,
            since=args.since,
            until=args.until,
            page_limit=args.page_limit,
            deadline=args.deadline,
        )
    payload = json.dumps(result.to_dict(), indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(payload, encoding="utf-8")
        logger.info("Wrote %d trades to %s", len(result.trades), args.output)
    else:
        print(payload)
    return 0 if result.ok else 1


def _serve(args: argparse.Namespace, config: SyncConfig) -> int:
    from .web import create_app  # imported lazily to avoid heavy dependencies at import time

    uvicorn = _import_uvicorn()
    uvicorn.run(create_app(config), host=args.host, port=args.port, log_level=args.log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trade-sync", description="Synchronise exchange trade history")
    parser.add_argument("--config", type=Path, help="Path to the trade sync configuration file")
    parser.add_argument("--debug", type=int, default=1, help="Verbosity: 0 warnings, 1 info, 2 debug")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_credential_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--exchange", required=True, help="Configured exchange id, e.g. bybit")
        sub.add_argument("--api-keys", type=Path, help="Path to api-keys.json")
        sub.add_argument(
            "--key-id",
            help="Entry in api-keys.json; without it TRADE_SYNC_API_KEY/TRADE_SYNC_API_SECRET are used",
        )
        sub.add_argument("--deadline", type=float, help="Overall time budget in seconds")

    test = subparsers.add_parser("test-connection", help="Verify API credentials")
    add_credential_args(test)

    fetch = subparsers.add_parser("fetch", help="Fetch and normalise trade history")
    add_credential_args(fetch)
    fetch.add_argument("--symbol", help="Restrict the sync to one symbol")
    fetch.add_argument("--since", type=parse_timestamp, help="Start (epoch ms or ISO-8601), inclusive")
    fetch.add_argument("--until", type=parse_timestamp, help="End (epoch ms or ISO-8601), exclusive")
    fetch.add_argument("--page-limit", type=int, help="Page size requested from the exchange")
    fetch.add_argument("--output", type=Path, help="Write the JSON result to this file instead of stdout")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Host address for the web server")
    serve.add_argument("--port", type=int, default=8000, help="Port for the web server")
    serve.add_argument("--log-level", default="info", help="uvicorn log level")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(debug=args.debug)

    try:
        config = _load_config(args.config)
        if args.command == "serve":
            return _serve(args, config)
        if args.command == "test-connection":
            return asyncio.run(_test_connection(args, config))
        return asyncio.run(_fetch(args, config))
    except (ConfigurationError, FileNotFoundError, TypeError, ValueError) as exc:
        logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
