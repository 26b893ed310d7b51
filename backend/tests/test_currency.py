# backend/tests/test_currency.py
from decimal import Decimal
from fractions import Fraction

import pytest

from tabbit.domain.currency import (
    CurrencyError,
    amount_to_decimal,
    currency_from_locale,
    default_tax_tip,
    format_amount,
    is_zero_decimal_currency,
    major_to_smallest,
    parse_amount,
    price_placeholder,
    round_half_away,
)


def test_zero_decimal_detection_is_case_insensitive():
    assert is_zero_decimal_currency("JPY")
    assert is_zero_decimal_currency("krw")
    assert not is_zero_decimal_currency("USD")
    assert not is_zero_decimal_currency("")


def test_format_amount_decimal_currencies():
    assert format_amount(1299, "USD") == "$12.99"
    assert format_amount(123456, "EUR") == "€1,234.56"
    assert format_amount(5, "GBP") == "£0.05"
    assert format_amount(-500, "USD") == "-$5.00"


def test_format_amount_zero_decimal_currencies_are_not_scaled():
    assert format_amount(1299, "JPY") == "¥1,299"
    assert format_amount(5000, "VND") == "VND 5,000"


def test_format_amount_code_only_symbol_gets_a_space():
    assert format_amount(1200, "CHF") == "CHF 12.00"


def test_format_amount_unknown_currency_falls_back_to_plain_two_decimals():
    assert format_amount(1299, "XYZ") == "12.99"
    assert format_amount(7, "nope") == "0.07"


def test_format_amount_rejects_non_int():
    with pytest.raises(CurrencyError):
        format_amount(12.5, "USD")  # type: ignore[arg-type]


def test_parse_amount_strips_symbols_and_scales():
    assert parse_amount("$12.99", "USD") == 1299
    assert parse_amount("12", "USD") == 1200
    assert parse_amount("  € 3.5 ", "EUR") == 350


def test_parse_amount_reads_comma_as_decimal_point():
    assert parse_amount("12,5", "EUR") == 1250


def test_parse_amount_zero_decimal():
    assert parse_amount("¥1299", "JPY") == 1299
    assert parse_amount("1299.6", "JPY") == 1300


def test_parse_amount_rounds_half_away_from_zero():
    assert parse_amount("12.345", "USD") == 1235
    assert parse_amount("-3.50", "USD") == -350


def test_parse_amount_unparseable_is_zero():
    assert parse_amount("abc", "USD") == 0
    assert parse_amount("", "USD") == 0
    assert parse_amount("-", "USD") == 0


def test_amount_to_decimal_for_payment_links():
    assert amount_to_decimal(1299, "USD") == Decimal("12.99")
    assert amount_to_decimal(1299, "JPY") == Decimal(1299)


def test_major_to_smallest_uses_same_zero_decimal_rule():
    assert major_to_smallest(12.99, "USD") == 1299
    assert major_to_smallest(1200, "JPY") == 1200
    assert major_to_smallest(0.125, "USD") == 13


def test_round_half_away():
    assert round_half_away(2.5) == 3
    assert round_half_away(-2.5) == -3
    assert round_half_away(Fraction(1, 2)) == 1
    assert round_half_away(Fraction(1, 3)) == 0
    assert round_half_away(Decimal("1234.5")) == 1235


def test_round_half_away_rejects_nan():
    with pytest.raises(CurrencyError):
        round_half_away(float("nan"))


def test_currency_from_locale():
    assert currency_from_locale("en-GB") == "GBP"
    assert currency_from_locale("ja_JP") == "JPY"
    assert currency_from_locale("de-DE") == "EUR"
    assert currency_from_locale("fr") == "USD"
    assert currency_from_locale(None) == "USD"


def test_default_tax_tip():
    assert default_tax_tip("usd") == (7, 18)
    assert default_tax_tip("MXN") == (16, 15)
    assert default_tax_tip("GBP") == (0, 0)
    assert default_tax_tip("XYZ") == (0, 0)


def test_price_placeholder():
    assert price_placeholder("USD") == "$0.00"
    assert price_placeholder("JPY") == "¥0"
