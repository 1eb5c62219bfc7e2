from types import SimpleNamespace

import currency
from currency import (
    currency_locale,
    currency_name,
    currency_symbol,
    default_currency,
    format_currency,
    is_valid_currency,
)
from models import CurrencyCode


def test_format_brl_uses_brazilian_separators() -> None:
    assert format_currency(123_456, CurrencyCode.brl) == "R$ 1.234,56"
    assert format_currency(5, "BRL") == "R$ 0,05"
    assert format_currency(-100_000_000, "BRL") == "-R$ 1.000.000,00"


def test_format_usd() -> None:
    assert format_currency(123_456, CurrencyCode.usd) == "$1,234.56"
    assert format_currency(-99, "USD") == "-$0.99"
    assert format_currency(0, "USD") == "$0.00"


def test_currency_metadata() -> None:
    assert currency_symbol("BRL") == "R$"
    assert currency_symbol(CurrencyCode.usd) == "$"
    assert currency_name("BRL") == "Real Brasileiro"
    assert currency_locale("USD") == "en-US"
    assert is_valid_currency("USD") is True
    assert is_valid_currency("EUR") is False



def test_default_currency_falls_back_to_brl(monkeypatch) -> None:
    monkeypatch.setattr(
        currency, "get_settings", lambda: SimpleNamespace(default_currency="USD")
    )
    assert default_currency() == CurrencyCode.usd

    monkeypatch.setattr(
        currency, "get_settings", lambda: SimpleNamespace(default_currency="EUR")
    )
    assert default_currency() == CurrencyCode.brl
