import io
import logging

from trade_sync import logging_setup
from trade_sync.models import ExchangeCredential


def _configure_logging_to_stream() -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    logging_setup.configure_logging(debug=2, stream_target=stream)
    logger = logging.getLogger("test_logging")
    logger.setLevel(logging.DEBUG)
    return logger, stream


def test_sensitive_data_is_redacted_from_logs() -> None:
    logger, stream = _configure_logging_to_stream()

    logger.debug(
        "Request headers: %s",
        {
            "X-BAPI-API-KEY": "2jlFsTPzvm8Y4X66LFvR28IPypdakaZJYjynu2dL5ZZ8ZxyZW3Jq7lFAExLVQBua",
            "X-BAPI-SIGN": "deadbeefcafebabe",
            "apiKey": "should_not_leak",
        },
    )
    logger.debug(
        "Signed URL: https://api.binance.com/api/v3/myTrades?symbol=BTCUSDT&timestamp=1&signature=%s",
        "abcdef1234567890",
    )

    output = stream.getvalue()

    assert "should_not_leak" not in output
    assert "abcdef1234567890" not in output
    assert "deadbeefcafebabe" not in output
    assert "2jlFsTPzvm8Y4X66LFvR28IPypdakaZJYjynu2dL5ZZ8ZxyZW3Jq7lFAExLVQBua" not in output
    assert output.count("***REDACTED***") >= 4
    assert "symbol=BTCUSDT" in output


def test_non_sensitive_messages_remain_intact() -> None:
    logger, stream = _configure_logging_to_stream()

    logger.info("Trade history page fetched")
    logger.warning("Invalid signature: check API secret")

    output = stream.getvalue()

    assert "Trade history page fetched" in output
    assert "Invalid signature: check API secret" in output


def test_credential_repr_hides_secrets() -> None:
    logger, stream = _configure_logging_to_stream()

    logger.info("Using %r", ExchangeCredential("bybit", "visible-key", "hidden-secret"))

    output = stream.getvalue()

    assert "hidden-secret" not in output
    assert "visible-key" not in output
    assert "bybit" in output


def test_redaction_applies_to_external_handlers() -> None:
    stream = io.StringIO()
    logging_setup.configure_logging(debug=2, stream_target=stream)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))

    external_logger = logging.getLogger("external.http")
    external_logger.handlers = [handler]
    external_logger.propagate = False
    external_logger.setLevel(logging.DEBUG)

    external_logger.debug("payload %s", {"X-MBX-APIKEY": "leaky", "signature": "should-hide"})

    output = stream.getvalue()

    assert "leaky" not in output
    assert "should-hide" not in output
    assert "***REDACTED***" in output


def test_configure_logging_replaces_its_own_handler() -> None:
    first = io.StringIO()
    second = io.StringIO()
    logging_setup.configure_logging(debug=1, stream_target=first)
    logging_setup.configure_logging(debug=0, stream_target=second)

    root = logging.getLogger()
    logging.getLogger("test_logging.levels").warning("only once")

    assert root.level == logging.WARNING
    assert "only once" not in first.getvalue()
    assert second.getvalue().count("only once") == 1


def test_debug_levels() -> None:
    assert logging_setup.debug_to_logging_level(0) == logging.WARNING
    assert logging_setup.debug_to_logging_level(1) == logging.INFO
    assert logging_setup.debug_to_logging_level(3) == logging.DEBUG
