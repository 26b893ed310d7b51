"""
Receipt scanners: image bytes in, ScannedReceipt out.

Two scanners share one result type: a vision model (Claude, through the
Anthropic SDK) and the local easyocr pipeline. Malformed model output is
not an error; it comes back as an empty receipt with a message.
"""
from __future__ import annotations

import base64
import logging
from typing import Callable, List, Optional

import anthropic

from tabbit.domain.receipt import ScannedReceipt, empty_receipt, parse_receipt_response
from tabbit.services.receipt_parser import parse_receipt_lines

logger = logging.getLogger(__name__)

ALLOWED_MEDIA_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
DEFAULT_MEDIA_TYPE = "image/jpeg"
DEFAULT_MODEL = "claude-haiku-4-5-20251001"

RECEIPT_PROMPT = (
    "Extract all line items with prices from this receipt image. Return ONLY valid JSON "
    'with this exact structure: { "items": [{ "description": "Item name", "price": 12.99 }], '
    '"subtotal": 25.98, "tax": 8.25, "tax_unit": "percent", "tip": 5.00, "tip_unit": "currency", '
    '"total": 33.25, "currency_code": "USD" }. Prices are numbers in the major currency unit '
    "(dollars, not cents). The receipt is most likely in {currency_code}; set currency_code "
    "to the ISO 4217 code the receipt actually uses. tax and tip can be either amounts "
    '(unit: "currency") or percentages (unit: "percent"); set the unit to match what the '
    "receipt shows. If both an amount and a percentage are shown, prefer the percentage. "
    "If tax or tip is not on the receipt, omit them. Do not include tax or tip as line items. "
    "If you cannot read an item, skip it."
)


class ReceiptScanError(RuntimeError):
    """Raised when the scanner itself could not be reached or failed."""


def normalize_media_type(media_type: Optional[str]) -> str:
    return media_type if media_type in ALLOWED_MEDIA_TYPES else DEFAULT_MEDIA_TYPE


class VisionReceiptScanner:
    def __init__(self, api_key: str, *, model: str = DEFAULT_MODEL, client: Optional[anthropic.Anthropic] = None):
        self.model = model or DEFAULT_MODEL
        self._client = client or anthropic.Anthropic(api_key=api_key)

    def scan(self, image_bytes: bytes, *, media_type: Optional[str] = None, currency_code: str = "USD") -> ScannedReceipt:
        try:
            message = self._client.messages.create(
                model=self.model,
                max_tokens=1024,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": normalize_media_type(media_type),
                                    "data": base64.b64encode(image_bytes).decode("ascii"),
                                },
                            },
                            {
                                "type": "text",
                                "text": RECEIPT_PROMPT.replace("{currency_code}", currency_code),
                            },
                        ],
                    }
                ],
            )
        except anthropic.APIError as e:
            logger.error("Vision API error during receipt scan: %s", e)
            raise ReceiptScanError("Receipt scanning is unavailable right now.") from e

        text = "".join(getattr(block, "text", "") for block in message.content)
        if not text.strip():
            logger.warning("Vision model returned no text for receipt scan")
            return empty_receipt(currency_code)
        return parse_receipt_response(text, currency_code)


class LocalReceiptScanner:
    """Receipt scanning with on-box OCR; no network."""

    def __init__(self, read_lines: Optional[Callable[..., List[str]]] = None):
        self._read_lines = read_lines

    def _reader(self) -> Callable[..., List[str]]:
        if self._read_lines is None:
            # Deferred: loading easyocr pulls in torch.
            from tabbit.services.ocr_service import read_receipt_lines

            self._read_lines = read_receipt_lines
        return self._read_lines

    def scan(self, image_bytes: bytes, *, media_type: Optional[str] = None, currency_code: str = "USD") -> ScannedReceipt:
        try:
            lines = self._reader()(image_bytes, currency_code=currency_code)
        except Exception as e:
            logger.error("Local OCR failed: %s", e)
            raise ReceiptScanError("Could not read the receipt image.") from e
        return parse_receipt_lines(lines, currency_code=currency_code)
