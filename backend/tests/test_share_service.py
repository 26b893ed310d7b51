# backend/tests/test_share_service.py
import json

import pytest
import redis

from tabbit.codec.bill_codec import COMPACT_TOKEN_THRESHOLD, is_compact_token
from tabbit.db.share_store import ShareStore
from tabbit.domain.models import Assignment, Item, ModelValidationError, Profile, Rabbit, SharedTab, SharedTabData
from tabbit.services.share_service import (
    SHARE_TTL_SECONDS,
    bill_key,
    generate_share_token,
    resolve_bill,
    share_bill,
    share_url,
)


class FakeRedis:
    def __init__(self, *, fail=False):
        self.data = {}
        self.ttls = {}
        self.fail = fail

    def set(self, key, value, ex=None):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.data[key] = value
        self.ttls[key] = ex

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        return self.data.get(key)


def _bill():
    return SharedTabData(
        tab=SharedTab(name="Tacos", tax_percent=8, tip_percent=18, currency_code="MXN"),
        items=(Item(id="i1", description="Al pastor", price_cents=4500),),
        rabbits=(Rabbit(id="r1", name="Luz", color="warning"),),
        assignments=(Assignment(item_id="i1", rabbit_id="r1"),),
        owner_profile=Profile(display_name="Luz", paypal_username="luz", currency_code="MXN"),
    )


def test_generated_tokens_are_short_and_url_safe():
    token = generate_share_token()
    assert len(token) == 8
    assert not is_compact_token(token)
    assert set(token) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")


def test_share_url():
    assert share_url("abc12345", "https://example.com/") == "https://example.com/bill/abc12345"


def test_share_bill_stores_blob_with_expiry():
    client = FakeRedis()
    token = share_bill(_bill(), ShareStore("", client=client))

    assert len(token) <= COMPACT_TOKEN_THRESHOLD
    blob = client.data[bill_key(token)]
    assert json.loads(blob)["ownerProfile"]["paypal_username"] == "luz"
    assert client.ttls[bill_key(token)] == SHARE_TTL_SECONDS


def test_remote_token_resolves_to_the_stored_bill():
    store = ShareStore("", client=FakeRedis())
    token = share_bill(_bill(), store)

    bill = resolve_bill(token, store)

    assert bill == _bill()


def test_share_bill_falls_back_to_compact_when_store_is_down():
    token = share_bill(_bill(), ShareStore("", client=FakeRedis(fail=True)))
    assert is_compact_token(token)

    bill = resolve_bill(token)
    assert bill is not None
    assert bill.tab.currency_code == "MXN"
    assert bill.items[0].price_cents == 4500


def test_share_bill_without_store_is_compact():
    assert is_compact_token(share_bill(_bill(), ShareStore("")))
    assert is_compact_token(share_bill(_bill()))


def test_unknown_remote_token_is_none():
    assert resolve_bill("Zz9_-aQ1", ShareStore("", client=FakeRedis())) is None


def test_remote_token_without_store_is_none():
    assert resolve_bill("Zz9_-aQ1", ShareStore("")) is None


def test_store_failure_on_lookup_is_none():
    assert resolve_bill("Zz9_-aQ1", ShareStore("", client=FakeRedis(fail=True))) is None


def test_malformed_stored_blob_is_none():
    client = FakeRedis()
    client.data[bill_key("Zz9_-aQ1")] = "{not json"
    client.data[bill_key("Yy8_-bR2")] = json.dumps({"tab": "wrong"})
    store = ShareStore("", client=client)

    assert resolve_bill("Zz9_-aQ1", store) is None
    assert resolve_bill("Yy8_-bR2", store) is None


def test_corrupt_compact_token_is_none():
    assert resolve_bill("x" * (COMPACT_TOKEN_THRESHOLD + 5)) is None


def test_empty_token_is_none():
    assert resolve_bill("") is None


def test_store_decodes_bytes_replies():
    client = FakeRedis()
    client.data["k"] = b"hello"
    assert ShareStore("", client=client).get("k") == "hello"


@pytest.mark.parametrize("bad", [float("nan"), float("inf")])
def test_non_finite_percentages_are_rejected(bad):
    raw = _bill().to_dict()
    raw["tab"]["tip_percent"] = bad
    with pytest.raises(ModelValidationError):
        SharedTabData.from_dict(raw)
    with pytest.raises(ModelValidationError):
        SharedTab(name="Tacos", tax_percent=bad)


def test_stored_blob_with_nan_is_none():
    raw = _bill().to_dict()
    raw["tab"]["tax_percent"] = float("nan")
    client = FakeRedis()
    client.data[bill_key("Nn4_-cS3")] = json.dumps(raw)
    assert resolve_bill("Nn4_-cS3", ShareStore("", client=client)) is None
