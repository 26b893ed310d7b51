# backend/tabbit/domain/currency.py
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Dict, Optional, Tuple, Union

Number = Union[int, float, Decimal, Fraction]


class CurrencyError(ValueError):
    """Raised when an amount cannot be interpreted in a currency."""


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    symbol: str
    name: str


CURRENCIES: Tuple[CurrencyInfo, ...] = (
    CurrencyInfo("USD", "$", "US Dollar"),
    CurrencyInfo("EUR", "€", "Euro"),
    CurrencyInfo("GBP", "£", "British Pound"),
    CurrencyInfo("CAD", "CA$", "Canadian Dollar"),
    CurrencyInfo("AUD", "A$", "Australian Dollar"),
    CurrencyInfo("JPY", "¥", "Japanese Yen"),
    CurrencyInfo("KRW", "₩", "South Korean Won"),
    CurrencyInfo("CNY", "¥", "Chinese Yuan"),
    CurrencyInfo("INR", "₹", "Indian Rupee"),
    CurrencyInfo("MXN", "MX$", "Mexican Peso"),
    CurrencyInfo("BRL", "R$", "Brazilian Real"),
    CurrencyInfo("CHF", "CHF", "Swiss Franc"),
    CurrencyInfo("SEK", "kr", "Swedish Krona"),
    CurrencyInfo("NOK", "kr", "Norwegian Krone"),
    CurrencyInfo("DKK", "kr", "Danish Krone"),
    CurrencyInfo("NZD", "NZ$", "New Zealand Dollar"),
    CurrencyInfo("SGD", "S$", "Singapore Dollar"),
    CurrencyInfo("HKD", "HK$", "Hong Kong Dollar"),
    CurrencyInfo("TWD", "NT$", "New Taiwan Dollar"),
    CurrencyInfo("THB", "฿", "Thai Baht"),
)

_BY_CODE: Dict[str, CurrencyInfo] = {c.code: c for c in CURRENCIES}

# Currencies whose smallest unit is the major unit: amounts are stored as-is,
# never scaled by 100.
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "ISK", "UGX", "RWF", "PYG"})

DEFAULT_CURRENCY = "USD"

_REGION_TO_CURRENCY: Dict[str, str] = {
    "US": "USD", "GB": "GBP", "CA": "CAD", "AU": "AUD", "NZ": "NZD",
    "JP": "JPY", "KR": "KRW", "CN": "CNY", "IN": "INR", "MX": "MXN",
    "BR": "BRL", "CH": "CHF", "SE": "SEK", "NO": "NOK", "DK": "DKK",
    "SG": "SGD", "HK": "HKD", "TW": "TWD", "TH": "THB",
    "DE": "EUR", "FR": "EUR", "IT": "EUR", "ES": "EUR", "NL": "EUR",
    "PT": "EUR", "AT": "EUR", "BE": "EUR", "IE": "EUR", "FI": "EUR",
    "GR": "EUR", "LU": "EUR", "SK": "EUR", "SI": "EUR", "EE": "EUR",
    "LV": "EUR", "LT": "EUR", "MT": "EUR", "CY": "EUR",
}

# (tax %, tip %) customary for a currency's home market.
_DEFAULT_TAX_TIP: Dict[str, Tuple[float, float]] = {
    "USD": (7, 18),
    "CAD": (13, 15),
    "JPY": (10, 0),
    "KRW": (10, 0),
    "AUD": (10, 0),
    "NZD": (10, 0),
    "INR": (5, 0),
    "MXN": (16, 15),
    "BRL": (0, 10),
}

_NON_NUMERIC_RE = re.compile(r"[^0-9.,-]")
_LEADING_NUMBER_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")


def _normalize_code(currency_code: Optional[str]) -> str:
    if not isinstance(currency_code, str):
        return ""
    return currency_code.strip().upper()


def is_known_currency(currency_code: Optional[str]) -> bool:
    code = _normalize_code(currency_code)
    return code in _BY_CODE or code in ZERO_DECIMAL_CURRENCIES


def is_zero_decimal_currency(currency_code: Optional[str]) -> bool:
    """
    The single source of truth for "is this amount scaled by 100?".
    Every formatter, parser and converter below goes through it.
    """
    return _normalize_code(currency_code) in ZERO_DECIMAL_CURRENCIES


def to_fraction(value: Number) -> Fraction:
    """
    Exact rational view of a number. Floats go through their shortest repr
    so 8.25 becomes 33/4 rather than its binary approximation.
    """
    if isinstance(value, bool):
        raise CurrencyError("booleans are not amounts")
    if isinstance(value, Fraction):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CurrencyError(f"not a finite number: {value}")
        return Fraction(repr(value))
    if isinstance(value, (int, Decimal)):
        return Fraction(value)
    raise CurrencyError(f"not a number: {value!r}")


def round_half_away(value: Number) -> int:
    """
    Round to the nearest integer, ties away from zero.

      round_half_away(2.5)  -> 3
      round_half_away(-2.5) -> -3
      round_half_away(Fraction(1, 3)) -> 0
    """
    q = to_fraction(value)
    n = math.floor(abs(q) + Fraction(1, 2))
    return n if q >= 0 else -n


def currency_symbol(currency_code: str) -> str:
    code = _normalize_code(currency_code)
    info = _BY_CODE.get(code)
    return info.symbol if info else code


def _group_thousands(digits: int) -> str:
    return f"{digits:,}"


def format_amount(amount: int, currency_code: str = DEFAULT_CURRENCY) -> str:
    """
    Format a smallest-unit amount for display.

      format_amount(1299, "USD") -> "$12.99"
      format_amount(1299, "JPY") -> "¥1,299"

    Unknown currency codes fall back to a plain two-decimal number
    ("12.99") instead of raising.
    """
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise CurrencyError("amount must be an int in the smallest currency unit")

    code = _normalize_code(currency_code)
    sign = "-" if amount < 0 else ""
    abs_amount = abs(amount)

    if not is_known_currency(code):
        return f"{sign}{abs_amount // 100}.{abs_amount % 100:02d}"

    symbol = currency_symbol(code)
    if symbol == code:
        # Code-only symbols read better with a separating space: "CHF 12.00".
        symbol = f"{code} "

    if is_zero_decimal_currency(code):
        return f"{sign}{symbol}{_group_thousands(abs_amount)}"
    return f"{sign}{symbol}{_group_thousands(abs_amount // 100)}.{abs_amount % 100:02d}"


def parse_amount(text: str, currency_code: str = DEFAULT_CURRENCY) -> int:
    """
    Parse free-form user input into a smallest-unit integer.

    Everything but digits, '.', ',' and '-' is stripped, ',' is read as a
    decimal point, and the leading number is used. Unparseable input
    yields 0.

      parse_amount("$12.99", "USD") -> 1299
      parse_amount("12,5", "EUR")   -> 1250
      parse_amount("¥1299", "JPY")  -> 1299
    """
    if not isinstance(text, str):
        return 0

    cleaned = _NON_NUMERIC_RE.sub("", text).replace(",", ".")
    m = _LEADING_NUMBER_RE.match(cleaned)
    if not m:
        return 0

    value = Fraction(m.group(0))
    if is_zero_decimal_currency(currency_code):
        return round_half_away(value)
    return round_half_away(value * 100)


def major_to_smallest(value: Number, currency_code: str = DEFAULT_CURRENCY) -> int:
    """
    Convert a major-unit number (12.99 dollars, 1299 yen) to smallest units.
    """
    q = to_fraction(value)
    if is_zero_decimal_currency(currency_code):
        return round_half_away(q)
    return round_half_away(q * 100)


def amount_to_decimal(amount: int, currency_code: str = DEFAULT_CURRENCY) -> Decimal:
    """
    Major-unit value for payment deep links.

      amount_to_decimal(1299, "USD") -> Decimal("12.99")
      amount_to_decimal(1299, "JPY") -> Decimal("1299")
    """
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise CurrencyError("amount must be an int in the smallest currency unit")
    if is_zero_decimal_currency(currency_code):
        return Decimal(amount)
    return Decimal(amount) / Decimal(100)


def price_placeholder(currency_code: str = DEFAULT_CURRENCY) -> str:
    symbol = currency_symbol(currency_code)
    if is_zero_decimal_currency(currency_code):
        return f"{symbol}0"
    return f"{symbol}0.00"


def currency_from_locale(locale: Optional[str]) -> str:
    """
    Pick a default currency from a locale tag like "en-GB" or "ja_JP".
    """
    if not isinstance(locale, str):
        return DEFAULT_CURRENCY
    parts = re.split(r"[-_]", locale.strip())
    region = parts[1].upper() if len(parts) > 1 else ""
    return _REGION_TO_CURRENCY.get(region, DEFAULT_CURRENCY)


def default_tax_tip(currency_code: str) -> Tuple[float, float]:
    """
    Customary (tax %, tip %) for a currency; (0, 0) where tipping and
    itemised tax are not the norm.
    """
    return _DEFAULT_TAX_TIP.get(_normalize_code(currency_code), (0, 0))
