import pytest

from trade_sync.errors import AuthError, ParseError, SyncError
from trade_sync.models import (
    ExchangeCredential,
    SyncResult,
    SyncWarning,
    SyncWindow,
    WarningKind,
)


def test_window_requires_end_after_start():
    with pytest.raises(ValueError):
        SyncWindow(10, 10)
    window = SyncWindow(10, 20)
    assert window.contains(10)
    assert not window.contains(20)


def test_credential_repr_hides_secrets():
    credential = ExchangeCredential(exchange_id=" Bybit ", api_key="visible-key", api_secret="top-secret")

    assert credential.exchange_id == "bybit"
    assert "top-secret" not in repr(credential)
    assert "visible-key" not in repr(credential)


def test_result_serialisation_reports_partial_success():
    warning = SyncWarning(WarningKind.CATEGORY_SKIPPED, "no permission", category="option", code="10005")
    result = SyncResult(trades=[], warnings=[warning])

    payload = result.to_dict()

    assert payload["ok"] is True
    assert payload["partial"] is True
    assert payload["warnings"] == [
        {"kind": "category_skipped", "message": "no permission", "category": "option", "code": "10005"}
    ]


def test_errors_extend_ccxt_hierarchy():
    import ccxt

    assert issubclass(AuthError, ccxt.AuthenticationError)
    assert issubclass(SyncError, ccxt.BaseError)


def test_parse_error_truncates_payload():
    error = ParseError("bad body", payload="x" * 500)

    assert error.payload_preview.endswith("...")
    assert len(error.payload_preview) == 203
