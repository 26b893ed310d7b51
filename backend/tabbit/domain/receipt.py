# backend/tabbit/domain/receipt.py
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Dict, List, Optional, Tuple

from tabbit.domain.currency import (
    CurrencyError,
    is_known_currency,
    major_to_smallest,
    round_half_away,
    to_fraction,
)

logger = logging.getLogger(__name__)

NO_ITEMS_MESSAGE = "No items found on this receipt. Try a clearer photo or add items manually."

UNIT_CURRENCY = "currency"
UNIT_PERCENT = "percent"

_CODE_FENCE_RE = re.compile(r"```(?:json)?\n?")


@dataclass(frozen=True)
class ScannedItem:
    description: str
    price_cents: int


@dataclass(frozen=True)
class ScannedReceipt:
    """
    A receipt scan normalized into the tab's units.

    Amounts are smallest-unit ints. tax_percent / tip_percent are only set
    when the receipt actually shows a charge; message is set when the scan
    produced nothing usable.
    """
    items: Tuple[ScannedItem, ...]
    currency_code: str
    subtotal_cents: Optional[int] = None
    total_cents: Optional[int] = None
    tax_percent: Optional[float] = None
    tip_percent: Optional[float] = None
    message: Optional[str] = None

    @property
    def found_items(self) -> bool:
        return bool(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [{"description": i.description, "price_cents": i.price_cents} for i in self.items],
            "currency_code": self.currency_code,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "tax_percent": self.tax_percent,
            "tip_percent": self.tip_percent,
            "message": self.message,
        }


def empty_receipt(currency_code: str, message: str = NO_ITEMS_MESSAGE) -> ScannedReceipt:
    return ScannedReceipt(items=(), currency_code=currency_code, message=message)


def _finite(value: object) -> Optional[Fraction]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    try:
        return to_fraction(value)  # type: ignore[arg-type]
    except CurrencyError:
        return None


def receipt_value_to_percent(
    value: object,
    unit: Optional[str],
    subtotal: object,
) -> Optional[float]:
    """
    Normalize a receipt tax/tip figure to a percentage.

    - None when the value is missing, NaN or negative.
    - "currency": value / subtotal * 100, rounded to 2 decimals; None when
      the subtotal is missing or not positive.
    - "percent", missing or unrecognized unit: the value as-is.

    An explicit 0 is kept (0.0), so callers can tell "0%" from "not shown".
    """
    v = _finite(value)
    if v is None or v < 0:
        return None

    if unit == UNIT_CURRENCY:
        s = _finite(subtotal)
        if s is None or s <= 0:
            return None
        return round_half_away(v / s * 10000) / 100

    return float(v)


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE_RE.sub("", text).replace("```", "").strip()


def _parse_items(raw_items: object, currency_code: str) -> List[ScannedItem]:
    if not isinstance(raw_items, list):
        return []

    items: List[ScannedItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        description = raw.get("description")
        price = _finite(raw.get("price"))
        if not isinstance(description, str) or price is None or price < 0:
            continue
        items.append(
            ScannedItem(
                description=description.strip(),
                price_cents=major_to_smallest(price, currency_code),
            )
        )
    return items


def parse_receipt_response(raw: object, currency_code: str) -> ScannedReceipt:
    """
    Turn a vision-model reply into a ScannedReceipt.

    raw may be the model's text (optionally wrapped in markdown fences) or
    an already-decoded dict. Anything unparsable, or a reply without items,
    becomes an empty receipt carrying NO_ITEMS_MESSAGE.
    """
    data: object = raw
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            data = json.loads(strip_code_fences(text))
        except json.JSONDecodeError:
            logger.warning("Receipt response is not valid JSON")
            return empty_receipt(currency_code)

    if not isinstance(data, dict):
        logger.warning("Receipt response is not a JSON object")
        return empty_receipt(currency_code)

    reply_code = data.get("currency_code")
    if isinstance(reply_code, str) and is_known_currency(reply_code):
        currency_code = reply_code.strip().upper()

    items = _parse_items(data.get("items"), currency_code)
    if not items:
        return empty_receipt(currency_code)

    subtotal = _finite(data.get("subtotal"))
    total = _finite(data.get("total"))

    return ScannedReceipt(
        items=tuple(items),
        currency_code=currency_code,
        subtotal_cents=major_to_smallest(subtotal, currency_code) if subtotal is not None else None,
        total_cents=major_to_smallest(total, currency_code) if total is not None else None,
        tax_percent=receipt_value_to_percent(data.get("tax"), data.get("tax_unit"), data.get("subtotal")),
        tip_percent=receipt_value_to_percent(data.get("tip"), data.get("tip_unit"), data.get("subtotal")),
    )
