from dataclasses import dataclass

from config import get_settings
from models import CurrencyCode


@dataclass(frozen=True)
class CurrencyFormat:
    locale: str
    symbol: str
    name: str
    thousands_sep: str
    decimal_sep: str
    symbol_gap: str


CURRENCY_CONFIG: dict[CurrencyCode, CurrencyFormat] = {
    CurrencyCode.brl: CurrencyFormat(
        locale="pt-BR",
        symbol="R$",
        name="Real Brasileiro",
        thousands_sep=".",
        decimal_sep=",",
        symbol_gap=" ",
    ),
    CurrencyCode.usd: CurrencyFormat(
        locale="en-US",
        symbol="$",
        name="US Dollar",
        thousands_sep=",",
        decimal_sep=".",
        symbol_gap="",
    ),
}


def default_currency() -> CurrencyCode:
    settings = get_settings()
    if is_valid_currency(settings.default_currency):
        return CurrencyCode(settings.default_currency)
    return CurrencyCode.brl


def is_valid_currency(value: str) -> bool:
    return value in {member.value for member in CurrencyCode}


def _config(currency: CurrencyCode | str) -> CurrencyFormat:
    return CURRENCY_CONFIG[CurrencyCode(currency)]


def currency_symbol(currency: CurrencyCode | str = CurrencyCode.brl) -> str:
    return _config(currency).symbol


def currency_name(currency: CurrencyCode | str = CurrencyCode.brl) -> str:
    return _config(currency).name


def currency_locale(currency: CurrencyCode | str = CurrencyCode.brl) -> str:
    return _config(currency).locale


def format_currency(
    cents: int, currency: CurrencyCode | str = CurrencyCode.brl
) -> str:
    """Render ``cents`` the way the currency's locale writes money.

    ``format_currency(123456, "BRL") == "R$ 1.234,56"`` and
    ``format_currency(-123456, "USD") == "-$1,234.56"``.
    """
    fmt = _config(currency)
    sign = "-" if cents < 0 else ""
    number = f"{abs(cents) / 100:,.2f}"
    number = (
        number.replace(",", "\0")
        .replace(".", fmt.decimal_sep)
        .replace("\0", fmt.thousands_sep)
    )
    return f"{sign}{fmt.symbol}{fmt.symbol_gap}{number}"

