"""
Currency table and money helpers.

Lifeline never converts between currencies; the table only drives
display (symbol, decimal places) and the default symbol for a code.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from pydantic import BaseModel, ConfigDict

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")


class CurrencyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    symbol: str
    name: str
    decimal_places: int


CURRENCIES: tuple[CurrencyConfig, ...] = (
    CurrencyConfig(code="CNY", symbol="¥", name="人民币", decimal_places=2),
    CurrencyConfig(code="USD", symbol="$", name="US Dollar", decimal_places=2),
    CurrencyConfig(code="EUR", symbol="€", name="Euro", decimal_places=2),
    CurrencyConfig(code="GBP", symbol="£", name="British Pound", decimal_places=2),
    CurrencyConfig(code="JPY", symbol="¥", name="日本円", decimal_places=0),
    CurrencyConfig(code="KRW", symbol="₩", name="한국 원", decimal_places=0),
    CurrencyConfig(code="HKD", symbol="HK$", name="港币", decimal_places=2),
    CurrencyConfig(code="TWD", symbol="NT$", name="新台幣", decimal_places=0),
)


def get_currency_by_code(code: str) -> CurrencyConfig:
    """Look up a currency; unknown codes fall back to the first entry (CNY)."""
    for currency in CURRENCIES:
        if currency.code == code.upper():
            return currency
    return CURRENCIES[0]


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal without picking up float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_currency(value: Number, places: int = 2) -> Decimal:
    """Round half away from zero at the given number of decimal places."""
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def format_currency(amount: Number, currency_code: str = "CNY", show_symbol: bool = True) -> str:
    """
    Format an amount for display, e.g. -1234.5 -> "-¥1,234.50".

    The sign always leads the symbol.
    """
    currency = get_currency_by_code(currency_code)
    value = round_currency(amount, currency.decimal_places)
    formatted = f"{abs(value):,.{currency.decimal_places}f}"
    sign = "-" if value < 0 else ""
    if show_symbol:
        return f"{sign}{currency.symbol}{formatted}"
    return f"{sign}{formatted}"


def parse_currency_input(text: str) -> Decimal:
    """Parse user input like "¥1,234.50"; anything unparseable is zero."""
    cleaned = re.sub(r"[^0-9.\-]", "", text)
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")
