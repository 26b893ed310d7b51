from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Sequence

from tabbit.domain.currency import DEFAULT_CURRENCY, is_known_currency
from tabbit.domain.models import ModelValidationError, SharedTabData


class ApiValidationError(ValueError):
    """Raised when request payload validation fails."""


@dataclass(frozen=True)
class ReceiptUpload:
    image_bytes: bytes
    media_type: str
    currency_code: str


def _ensure_unique(ids: Sequence[str], what: str) -> None:
    if len(set(ids)) != len(ids):
        raise ApiValidationError(f"{what} ids must be unique.")


def parse_bill(raw: object) -> SharedTabData:
    """
    A bill in the shared JSON shape:
      {tab: {name, tax_percent, tip_percent, currency_code},
       items: [{id, description, price_cents}],
       rabbits: [{id, name, color}],
       assignments: [{item_id, rabbit_id}],
       ownerProfile: {...}}
    """
    if not isinstance(raw, dict):
        raise ApiValidationError("Request body must be a JSON object.")
    if "tab" not in raw or "items" not in raw:
        raise ApiValidationError("Bill must include 'tab' and 'items'.")

    payload = dict(raw)
    payload.setdefault("rabbits", [])
    try:
        bill = SharedTabData.from_dict(payload)
    except ModelValidationError as e:
        raise ApiValidationError(str(e)) from e

    _ensure_unique([i.id for i in bill.items], "Item")
    _ensure_unique([r.id for r in bill.rabbits], "Rabbit")
    return bill


def parse_receipt_upload(raw: object, *, max_bytes: int) -> ReceiptUpload:
    if not isinstance(raw, dict):
        raise ApiValidationError("Request body must be a JSON object.")

    image_base64 = raw.get("image_base64")
    if not isinstance(image_base64, str) or not image_base64.strip():
        raise ApiValidationError("'image_base64' is required.")

    try:
        image_bytes = base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ApiValidationError("'image_base64' is not valid base64.") from e
    if not image_bytes:
        raise ApiValidationError("Uploaded image is empty.")
    if len(image_bytes) > max_bytes:
        raise ApiValidationError("Uploaded image is too large.")

    currency_code = raw.get("currency_code") or DEFAULT_CURRENCY
    if not isinstance(currency_code, str) or not is_known_currency(currency_code):
        currency_code = DEFAULT_CURRENCY

    media_type = raw.get("media_type")
    return ReceiptUpload(
        image_bytes=image_bytes,
        media_type=media_type if isinstance(media_type, str) else "",
        currency_code=currency_code.strip().upper(),
    )
