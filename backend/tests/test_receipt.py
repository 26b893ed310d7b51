# backend/tests/test_receipt.py
import json
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from tabbit.domain.receipt import NO_ITEMS_MESSAGE, parse_receipt_response, receipt_value_to_percent
from tabbit.services.receipt_scanner import (
    LocalReceiptScanner,
    ReceiptScanError,
    VisionReceiptScanner,
    normalize_media_type,
)


def test_percent_unit_passes_through():
    assert receipt_value_to_percent(8.25, "percent", 100) == 8.25
    assert receipt_value_to_percent(18, "percent", None) == 18.0


def test_currency_unit_is_converted_against_subtotal():
    assert receipt_value_to_percent(5, "currency", 50) == 10.0
    assert receipt_value_to_percent(1, "currency", 3) == 33.33
    assert receipt_value_to_percent(3.333, "currency", 10) == 33.33


def test_currency_unit_without_usable_subtotal_is_none():
    assert receipt_value_to_percent(5, "currency", 0) is None
    assert receipt_value_to_percent(5, "currency", None) is None
    assert receipt_value_to_percent(5, "currency", -10) is None


def test_missing_nan_and_negative_values_are_none():
    assert receipt_value_to_percent(None, "percent", 100) is None
    assert receipt_value_to_percent(float("nan"), "percent", 100) is None
    assert receipt_value_to_percent(-1, "percent", 100) is None
    assert receipt_value_to_percent(-1, "currency", 100) is None


def test_explicit_zero_is_kept():
    assert receipt_value_to_percent(0, "percent", 100) == 0.0
    assert receipt_value_to_percent(0, "currency", 100) == 0.0


def test_unknown_unit_is_treated_as_percent():
    assert receipt_value_to_percent(7, None, 100) == 7.0
    assert receipt_value_to_percent(7, "bananas", 100) == 7.0


def test_parse_response_strips_code_fences():
    raw = "```json\n" + json.dumps({
        "items": [{"description": "Burger", "price": 12.99}, {"description": "Fries", "price": 4}],
        "subtotal": 16.99,
        "tax": 8.25,
        "tax_unit": "percent",
        "tip": 3.40,
        "tip_unit": "currency",
        "total": 21.79,
        "currency_code": "USD",
    }) + "\n```"

    receipt = parse_receipt_response(raw, "USD")

    assert [(i.description, i.price_cents) for i in receipt.items] == [("Burger", 1299), ("Fries", 400)]
    assert receipt.subtotal_cents == 1699
    assert receipt.total_cents == 2179
    assert receipt.tax_percent == 8.25
    assert receipt.tip_percent == 20.01
    assert receipt.message is None


def test_parse_response_uses_currency_the_receipt_shows():
    receipt = parse_receipt_response(
        {"items": [{"description": "Ramen", "price": 1200}], "currency_code": "jpy"},
        "USD",
    )
    assert receipt.currency_code == "JPY"
    assert receipt.items[0].price_cents == 1200


def test_parse_response_ignores_unknown_currency():
    receipt = parse_receipt_response({"items": [{"description": "Tea", "price": 2.5}], "currency_code": "ZZZ"}, "EUR")
    assert receipt.currency_code == "EUR"
    assert receipt.items[0].price_cents == 250


def test_parse_response_skips_bad_items():
    receipt = parse_receipt_response(
        {"items": [
            {"description": "Ok", "price": 1.5},
            {"description": "No price"},
            {"description": "Refund", "price": -2},
            {"price": 3},
            "junk",
        ]},
        "USD",
    )
    assert [(i.description, i.price_cents) for i in receipt.items] == [("Ok", 150)]


def test_malformed_response_is_an_empty_receipt_not_an_error():
    for raw in ["not json at all", "[1, 2]", b"{\"items\": []}", {"items": "nope"}]:
        receipt = parse_receipt_response(raw, "USD")
        assert receipt.items == ()
        assert receipt.message == NO_ITEMS_MESSAGE


def test_normalize_media_type():
    assert normalize_media_type("image/png") == "image/png"
    assert normalize_media_type("application/pdf") == "image/jpeg"
    assert normalize_media_type(None) == "image/jpeg"


class FakeMessages:
    def __init__(self, *, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


class FakeAnthropic:
    def __init__(self, messages):
        self.messages = messages


def test_vision_scanner_sends_image_and_currency_hint():
    messages = FakeMessages(text=json.dumps({"items": [{"description": "Pho", "price": 65000}], "currency_code": "VND"}))
    scanner = VisionReceiptScanner("key", model="test-model", client=FakeAnthropic(messages))

    receipt = scanner.scan(b"\x89PNG", media_type="image/png", currency_code="VND")

    call = messages.calls[0]
    assert call["model"] == "test-model"
    image, prompt = call["messages"][0]["content"]
    assert image["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBORw=="}
    assert "most likely in VND" in prompt["text"]
    assert receipt.items[0].price_cents == 65000


def test_vision_scanner_empty_reply_is_an_empty_receipt():
    scanner = VisionReceiptScanner("key", client=FakeAnthropic(FakeMessages(text="   ")))
    receipt = scanner.scan(b"img", currency_code="USD")
    assert receipt.items == ()
    assert receipt.message == NO_ITEMS_MESSAGE


def test_vision_scanner_api_failure_raises_scan_error():
    error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
    scanner = VisionReceiptScanner("key", client=FakeAnthropic(FakeMessages(error=error)))
    with pytest.raises(ReceiptScanError):
        scanner.scan(b"img")


def test_local_scanner_parses_ocr_lines():
    seen = {}

    def read_lines(image_bytes, *, currency_code):
        seen["args"] = (image_bytes, currency_code)
        return ["Coffee 3.50", "Bagel 2.25", "Total 5.75"]

    receipt = LocalReceiptScanner(read_lines).scan(b"img", currency_code="USD")

    assert seen["args"] == (b"img", "USD")
    assert [(i.description, i.price_cents) for i in receipt.items] == [("Coffee", 350), ("Bagel", 225)]
    assert receipt.total_cents == 575


def test_local_scanner_wraps_ocr_failures():
    def read_lines(image_bytes, *, currency_code):
        raise RuntimeError("corrupt image")

    with pytest.raises(ReceiptScanError):
        LocalReceiptScanner(read_lines).scan(b"img")
