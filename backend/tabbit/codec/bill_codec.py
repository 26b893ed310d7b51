# backend/tabbit/codec/bill_codec.py
"""
Compact, self-contained share tokens.

A whole bill is squeezed into a positional JSON object, compressed with
lz-string and written in its URI-safe alphabet, so the token can sit in a
URL path segment and be opened without any server lookup:

    {
      "n": "Dinner",                  tab name
      "x": 8, "p": 20,                tax %, tip %
      "c": "JPY",                     currency (omitted for USD)
      "i": [["Burger", 1000], ...],   items: [description, price]
      "r": [["Ann", 0], ...],         rabbits: [name, palette index]
      "a": [[0, 0], [1, 1], ...],     assignments: [item index, rabbit index]
      "o": {"d": .., "v": .., "c": .., "p": ..}   owner display/venmo/cashapp/paypal
    }

Decoded entities get synthetic ids (item-<n>, rabbit-<n>); only position
survives the trip.

lz-string clients compress UTF-16 code units, while the Python port walks
code points. Payloads are split into code units before compression and
the surrogate pairs are joined again after decompression, so emoji and
other astral characters survive and tokens match the JavaScript encoder.
"""
from __future__ import annotations

import json
import logging
import math
from typing import Any, Dict, List, Optional

from lzstring import LZString

from tabbit.domain.currency import DEFAULT_CURRENCY
from tabbit.domain.models import (
    FALLBACK_COLOR,
    RABBIT_COLORS,
    Assignment,
    Item,
    ModelValidationError,
    Profile,
    Rabbit,
    SharedTab,
    SharedTabData,
)

logger = logging.getLogger(__name__)

# Remote share tokens are 8 characters; compressed bills are always longer.
# Anything longer than this is decoded locally.
COMPACT_TOKEN_THRESHOLD = 20

_lz = LZString()


class DecodeError(ValueError):
    """Raised when a compact token cannot be turned back into a bill."""


def is_compact_token(token: str) -> bool:
    return isinstance(token, str) and len(token) > COMPACT_TOKEN_THRESHOLD


def item_synthetic_id(index: int) -> str:
    return f"item-{index}"


def rabbit_synthetic_id(index: int) -> str:
    return f"rabbit-{index}"


def _json_number(value: float) -> Any:
    # Match JavaScript's JSON output: 8.0 is written as 8.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _palette_index(color: str) -> int:
    try:
        return RABBIT_COLORS.index(color)
    except ValueError:
        return -1


def to_compact(data: SharedTabData) -> Dict[str, Any]:
    item_idx = {item.id: idx for idx, item in enumerate(data.items)}
    rabbit_idx = {rabbit.id: idx for idx, rabbit in enumerate(data.rabbits)}

    assignments: List[List[int]] = []
    for a in data.assignments:
        i = item_idx.get(a.item_id)
        r = rabbit_idx.get(a.rabbit_id)
        # Edges to entities outside the snapshot are dropped, not reported.
        if i is None or r is None:
            continue
        assignments.append([i, r])

    owner = data.owner_profile
    compact: Dict[str, Any] = {
        "n": data.tab.name,
        "x": _json_number(data.tab.tax_percent),
        "p": _json_number(data.tab.tip_percent),
        "i": [[item.description, item.price_cents] for item in data.items],
        "r": [[rabbit.name, _palette_index(rabbit.color)] for rabbit in data.rabbits],
        "a": assignments,
        "o": {
            "d": owner.display_name,
            "v": owner.venmo_username,
            "c": owner.cashapp_cashtag,
            "p": owner.paypal_username,
        },
    }
    if data.tab.currency_code.upper() != DEFAULT_CURRENCY:
        compact["c"] = data.tab.currency_code.upper()
    return compact


def _to_code_units(text: str) -> str:
    raw = text.encode("utf-16-le", "surrogatepass")
    return "".join(chr(int.from_bytes(raw[i:i + 2], "little")) for i in range(0, len(raw), 2))


def _from_code_units(text: str) -> str:
    return text.encode("utf-16-le", "surrogatepass").decode("utf-16-le")


def compress_payload(payload: str) -> str:
    return _lz.compressToEncodedURIComponent(_to_code_units(payload))


def decompress_payload(token: str) -> str:
    """Raises DecodeError when the token does not hold any text."""
    try:
        units = _lz.decompressFromEncodedURIComponent(token)
    except Exception as e:  # lzstring raises assorted errors on foreign alphabets
        raise DecodeError("token is not a compressed bill") from e
    if not units:
        raise DecodeError("token decompressed to nothing")
    try:
        return _from_code_units(units)
    except UnicodeError as e:
        raise DecodeError("token holds a broken surrogate pair") from e


def encode_bill(data: SharedTabData) -> str:
    """Serialize a bill snapshot into a URL-safe compact token."""
    payload = json.dumps(to_compact(data), separators=(",", ":"), ensure_ascii=False)
    return compress_payload(payload)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON number")


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_index(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _pairs(compact: Dict[str, Any], key: str) -> List[List[Any]]:
    value = compact.get(key)
    if not isinstance(value, list):
        raise DecodeError(f"'{key}' must be a list")
    for entry in value:
        if not isinstance(entry, list) or len(entry) != 2:
            raise DecodeError(f"'{key}' entries must be pairs")
    return value


def _optional_str(owner: Dict[str, Any], key: str) -> Optional[str]:
    value = owner.get(key)
    if value is not None and not isinstance(value, str):
        raise DecodeError(f"owner field '{key}' must be a string or null")
    return value


def from_compact(compact: object) -> SharedTabData:
    """
    Expand the positional object into a SharedTabData, validating every
    field. Fails closed with DecodeError.
    """
    if not isinstance(compact, dict):
        raise DecodeError("payload must be an object")

    name = compact.get("n")
    tax_percent = compact.get("x")
    tip_percent = compact.get("p")
    currency_code = compact.get("c", DEFAULT_CURRENCY)
    if not isinstance(name, str):
        raise DecodeError("tab name must be a string")
    if not _is_number(tax_percent) or not _is_number(tip_percent):
        raise DecodeError("tax and tip must be numbers")
    if not isinstance(currency_code, str) or not currency_code.strip():
        raise DecodeError("currency must be a non-empty string")

    items: List[Item] = []
    for idx, (description, price) in enumerate(_pairs(compact, "i")):
        if not isinstance(description, str):
            raise DecodeError("item description must be a string")
        if not _is_index(price) or price < 0:
            raise DecodeError("item price must be an int >= 0")
        items.append(Item(id=item_synthetic_id(idx), description=description, price_cents=price))

    rabbits: List[Rabbit] = []
    for idx, (rabbit_name, color_idx) in enumerate(_pairs(compact, "r")):
        if not isinstance(rabbit_name, str):
            raise DecodeError("rabbit name must be a string")
        if not _is_index(color_idx):
            raise DecodeError("rabbit color must be a palette index")
        color = RABBIT_COLORS[color_idx] if 0 <= color_idx < len(RABBIT_COLORS) else FALLBACK_COLOR
        rabbits.append(Rabbit(id=rabbit_synthetic_id(idx), name=rabbit_name, color=color))

    assignments: List[Assignment] = []
    for item_idx, rabbit_idx in _pairs(compact, "a"):
        if not _is_index(item_idx) or not 0 <= item_idx < len(items):
            raise DecodeError("assignment references a missing item")
        if not _is_index(rabbit_idx) or not 0 <= rabbit_idx < len(rabbits):
            raise DecodeError("assignment references a missing rabbit")
        assignments.append(Assignment(item_id=item_synthetic_id(item_idx), rabbit_id=rabbit_synthetic_id(rabbit_idx)))

    owner = compact.get("o")
    if not isinstance(owner, dict):
        raise DecodeError("owner profile must be an object")

    currency_code = currency_code.strip().upper()
    return SharedTabData(
        tab=SharedTab(name=name, tax_percent=tax_percent, tip_percent=tip_percent, currency_code=currency_code),
        items=tuple(items),
        rabbits=tuple(rabbits),
        assignments=tuple(assignments),
        owner_profile=Profile(
            display_name=_optional_str(owner, "d"),
            venmo_username=_optional_str(owner, "v"),
            cashapp_cashtag=_optional_str(owner, "c"),
            paypal_username=_optional_str(owner, "p"),
            currency_code=currency_code,
        ),
    )


def decode_bill(token: str) -> SharedTabData:
    """
    Inverse of encode_bill. Any failure (corrupt string, non-JSON payload,
    wrong shape) raises DecodeError; a partial result is never returned.
    """
    if not isinstance(token, str) or not token:
        raise DecodeError("token must be a non-empty string")

    payload = decompress_payload(token)

    # RecursionError: deeply nested arrays blow the decoder's stack.
    try:
        compact = json.loads(payload, parse_constant=_reject_constant)
    except (ValueError, TypeError, RecursionError) as e:
        raise DecodeError("token payload is not JSON") from e

    try:
        return from_compact(compact)
    except ModelValidationError as e:
        raise DecodeError(str(e)) from e


def try_decode_bill(token: str) -> Optional[SharedTabData]:
    """decode_bill that reports failure as None, the same as a lookup miss."""
    try:
        return decode_bill(token)
    except DecodeError as e:
        logger.info("Could not decode compact bill token: %s", e)
        return None
