# backend/tabbit/services/receipt_parser.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from tabbit.domain.currency import is_zero_decimal_currency
from tabbit.domain.receipt import (
    UNIT_CURRENCY,
    UNIT_PERCENT,
    ScannedItem,
    ScannedReceipt,
    empty_receipt,
    receipt_value_to_percent,
)


class ReceiptParseError(ValueError):
    """Raised when parsing fails or inputs are invalid."""


@dataclass(frozen=True)
class ParsedItem:
    description: str
    price_cents: int


_SYMBOLS = r"(?:[$€£¥₩₹฿]|[A-Z]{1,2}\$|kr)?"

# Price token at the end of a line; parse_price_token() does the strict
# validation. Decimal currencies: "12.34", "$12", "12,34-".
_DECIMAL_PRICE_AT_END_RE = re.compile(
    rf"(?<![\d.,])(?P<token>{_SYMBOLS}\s*\d{{1,7}}(?:[.,]\d{{1,2}})?\s*-?)\s*$"
)
# Zero-decimal currencies carry no minor digits but often group thousands:
# "¥1,200", "12000".
_WHOLE_PRICE_AT_END_RE = re.compile(
    rf"(?<![\d.,])(?P<token>{_SYMBOLS}\s*(?:\d{{1,3}}(?:,\d{{3}})+|\d{{1,9}})\s*-?)\s*$"
)

_DECIMAL_TOKEN_RE = re.compile(r"^(\d{1,7})(?:[.,](\d{1,2}))?$")
_WHOLE_TOKEN_RE = re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d{1,9})$")
_LEADING_SYMBOL_RE = re.compile(rf"^{_SYMBOLS}\s*")
_PERCENT_RE = re.compile(r"(\d{1,3}(?:[.,]\d{1,3})?)\s*%")

_MAX_ABS_AMOUNT = 10_000_000_00

# Summary lines and the receipt field they feed, checked in order so that
# "subtotal" wins over "total".
_SUMMARY_FIELDS = (
    ("subtotal", ("subtotal", "sub total", "sub-total")),
    ("tax", ("tax", "vat", "gst", "hst")),
    ("tip", ("tip", "gratuity", "service charge")),
    ("total", ("total", "amount due", "balance due")),
)

# Lines that never describe an item.
_EXCLUDE_KEYWORDS = (
    "subtotal",
    "sub total",
    "tax",
    "vat",
    "tip",
    "gratuity",
    "service",
    "total",
    "balance",
    "change",
    "cash",
    "card",
    "visa",
    "mastercard",
    "amex",
    "amount due",
    "date:",
    "time",
    "mid",
    "tid",
    "trans",
    "transaction",
    "customer copy",
    "please retain",
    "receipt",
    "auth",
    "approval",
    "ref",
)

_HAS_LETTER = re.compile(r"[^\W\d_]")
_LONG_DIGIT_RUN = re.compile(r"\d{6,}")
_TIME_LIKE = re.compile(r"\b\d{1,2}:\d{2}(:\d{2})?\b")
_DIGIT = re.compile(r"\d")


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def _looks_like_summary_line(text: str) -> bool:
    t = _normalize(text)
    return any(k in t for k in _EXCLUDE_KEYWORDS)


def _price_at_end_re(currency_code: str) -> re.Pattern:
    return _WHOLE_PRICE_AT_END_RE if is_zero_decimal_currency(currency_code) else _DECIMAL_PRICE_AT_END_RE


def parse_price_token(token: str, currency_code: str = "USD", *, allow_negative: bool = True) -> int:
    """
    Parse an OCR price token into smallest units.

      "12.34" USD -> 1234     "12,34" EUR -> 1234     "5.00-" -> -500
      "¥1,200" JPY -> 1200    "1,234.56" USD -> error (ambiguous)

    A trailing '-' marks a discount line.
    """
    if not isinstance(token, str):
        raise ReceiptParseError("token must be a string")

    s = _LEADING_SYMBOL_RE.sub("", token.strip())
    negative = s.endswith("-")
    s = s.rstrip("-").strip()
    if not s:
        raise ReceiptParseError(f"invalid price token: {token}")
    if negative and not allow_negative:
        raise ReceiptParseError("negative amounts are not allowed")

    if is_zero_decimal_currency(currency_code):
        if not _WHOLE_TOKEN_RE.match(s):
            raise ReceiptParseError(f"invalid price token: {token}")
        amount = int(s.replace(",", ""))
    else:
        if re.search(r"\d,\d{3}", s):
            raise ReceiptParseError(f"ambiguous thousands separator format: {token}")
        m = _DECIMAL_TOKEN_RE.match(s)
        if not m:
            raise ReceiptParseError(f"invalid price token: {token}")
        minor = m.group(2) or "0"
        amount = int(m.group(1)) * 100 + int(minor.ljust(2, "0"))

    if amount > _MAX_ABS_AMOUNT:
        raise ReceiptParseError("amount exceeds safety limit")
    return -amount if negative else amount


def _trailing_price(line: str, currency_code: str) -> Optional[tuple]:
    m = _price_at_end_re(currency_code).search(line)
    if not m:
        return None
    try:
        price = parse_price_token(m.group("token"), currency_code)
    except ReceiptParseError:
        return None
    return price, line[: m.start("token")].strip()


def extract_items_from_lines(
    lines: Sequence[str],
    *,
    currency_code: str = "USD",
    exclude_summary_lines: bool = True,
    min_price_cents: int = 1,
) -> List[ParsedItem]:
    """
    Conservative line-item extraction from OCR'd receipt lines.

    - the price must be the last token of the line
    - the description is everything before it and must contain letters
    - summary lines (TOTAL, TAX, ...), IDs and timestamps are skipped
    """
    if not isinstance(lines, (list, tuple)):
        raise ReceiptParseError("lines must be a sequence of strings")

    items: List[ParsedItem] = []
    for raw in lines:
        if not isinstance(raw, str):
            raise ReceiptParseError("each line must be a string")
        line = raw.strip()
        if not line:
            continue
        if exclude_summary_lines and _looks_like_summary_line(line):
            continue

        found = _trailing_price(line, currency_code)
        if found is None:
            continue
        price_cents, desc = found

        if abs(price_cents) < min_price_cents or not desc:
            continue
        if _LONG_DIGIT_RUN.search(desc) or _TIME_LIKE.search(desc):
            continue
        if not _HAS_LETTER.search(desc) or len(desc) > 60:
            continue

        digits = len(_DIGIT.findall(desc))
        non_space = len([c for c in desc if not c.isspace()])
        if non_space > 0 and digits / non_space > 0.60:
            continue

        items.append(ParsedItem(description=desc, price_cents=price_cents))

    return items


def extract_summary_from_lines(lines: Sequence[str], *, currency_code: str = "USD") -> Dict[str, tuple]:
    """
    Pick subtotal / tax / tip / total off summary lines.

    Returns {field: (value, unit)} where unit is "currency" (value in
    smallest units) or "percent" (value as a float, e.g. "Tax 8.25%").
    The first line matching a field wins.
    """
    summary: Dict[str, tuple] = {}
    for raw in lines:
        if not isinstance(raw, str):
            continue
        line = _normalize(raw)
        field = next((name for name, words in _SUMMARY_FIELDS if any(w in line for w in words)), None)
        if field is None or field in summary:
            continue

        percent = _PERCENT_RE.search(line)
        if percent and field in ("tax", "tip"):
            summary[field] = (float(percent.group(1).replace(",", ".")), UNIT_PERCENT)
            continue

        found = _trailing_price(raw.strip(), currency_code)
        if found is not None and found[0] >= 0:
            summary[field] = (found[0], UNIT_CURRENCY)

    return summary


def parse_receipt_lines(lines: Sequence[str], *, currency_code: str = "USD") -> ScannedReceipt:
    """Items plus tax/tip percentages from OCR lines, in the tab's units."""
    items = [
        ScannedItem(description=it.description, price_cents=it.price_cents)
        for it in extract_items_from_lines(lines, currency_code=currency_code)
        if it.price_cents >= 0
    ]
    if not items:
        return empty_receipt(currency_code)

    summary = extract_summary_from_lines(lines, currency_code=currency_code)
    subtotal = summary.get("subtotal", (sum(i.price_cents for i in items), UNIT_CURRENCY))[0]
    total = summary.get("total")

    def _percent(field: str) -> Optional[float]:
        if field not in summary:
            return None
        value, unit = summary[field]
        return receipt_value_to_percent(value, unit, subtotal)

    return ScannedReceipt(
        items=tuple(items),
        currency_code=currency_code,
        subtotal_cents=subtotal,
        total_cents=total[0] if total else None,
        tax_percent=_percent("tax"),
        tip_percent=_percent("tip"),
    )


def parse_receipt_text(ocr_text: str, *, currency_code: str = "USD") -> ScannedReceipt:
    if not isinstance(ocr_text, str):
        raise ReceiptParseError("ocr_text must be a string")
    return parse_receipt_lines(ocr_text.splitlines(), currency_code=currency_code)
