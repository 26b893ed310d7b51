from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

import easyocr
import numpy as np
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)


class OcrError(RuntimeError):
    pass


# easyocr language packs worth loading for a receipt in a given currency.
_LANGUAGES_BY_CURRENCY: Dict[str, Tuple[str, ...]] = {
    "JPY": ("ja", "en"),
    "KRW": ("ko", "en"),
    "CNY": ("ch_sim", "en"),
    "TWD": ("ch_tra", "en"),
    "THB": ("th", "en"),
}
_DEFAULT_LANGUAGES: Tuple[str, ...] = ("en",)

_MIN_CONFIDENCE = 0.2

_READERS: Dict[Tuple[str, ...], easyocr.Reader] = {}


def languages_for(currency_code: str) -> Tuple[str, ...]:
    return _LANGUAGES_BY_CURRENCY.get((currency_code or "").upper(), _DEFAULT_LANGUAGES)


def _reader(languages: Tuple[str, ...]) -> easyocr.Reader:
    reader = _READERS.get(languages)
    if reader is None:
        logger.info("Loading OCR reader for %s", ",".join(languages))
        reader = easyocr.Reader(list(languages), gpu=False)
        _READERS[languages] = reader
    return reader


@dataclass(frozen=True)
class TextBox:
    left: float
    top: float
    right: float
    bottom: float
    text: str
    confidence: float

    @property
    def middle(self) -> float:
        return (self.top + self.bottom) / 2.0

    @property
    def height(self) -> float:
        return max(1.0, self.bottom - self.top)


def boxes_from_results(results) -> List[TextBox]:
    """easyocr detail=1 results: ([[x, y] * 4], text, confidence)."""
    boxes: List[TextBox] = []
    for corners, text, confidence in results:
        text = str(text).strip()
        if not text or float(confidence) < _MIN_CONFIDENCE:
            continue
        xs = [pt[0] for pt in corners]
        ys = [pt[1] for pt in corners]
        boxes.append(TextBox(min(xs), min(ys), max(xs), max(ys), text, float(confidence)))
    return boxes


def boxes_to_lines(boxes: List[TextBox]) -> List[str]:
    """
    Rebuild receipt lines: boxes whose vertical middles sit within ~60% of
    the text height belong to the same line, read left to right.
    """
    if not boxes:
        return []

    rows: List[List[TextBox]] = []
    for box in sorted(boxes, key=lambda b: (b.middle, b.left)):
        if rows:
            row = rows[-1]
            row_middle = sum(b.middle for b in row) / len(row)
            row_height = max(b.height for b in row)
            if abs(box.middle - row_middle) <= max(10.0, 0.6 * max(row_height, box.height)):
                row.append(box)
                continue
        rows.append([box])

    lines: List[str] = []
    for row in rows:
        text = " ".join(b.text for b in sorted(row, key=lambda b: b.left))
        text = " ".join(text.split())
        if text:
            lines.append(text)
    return lines


def read_receipt_lines(image_bytes: bytes, *, currency_code: str = "USD") -> List[str]:
    if not isinstance(image_bytes, (bytes, bytearray)) or not image_bytes:
        raise OcrError("image_bytes must be non-empty bytes")

    try:
        img = Image.open(io.BytesIO(image_bytes))
        img = ImageOps.exif_transpose(img)
        gray = ImageOps.grayscale(img.convert("RGB"))
    except Exception as e:
        raise OcrError("Could not decode image bytes") from e

    results = _reader(languages_for(currency_code)).readtext(np.array(gray), detail=1, paragraph=False)
    lines = boxes_to_lines(boxes_from_results(results))
    logger.debug("OCR produced %d lines", len(lines))
    return lines
