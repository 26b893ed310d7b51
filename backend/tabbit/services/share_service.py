# backend/tabbit/services/share_service.py
from __future__ import annotations

import json
import logging
import secrets
from typing import Optional

from tabbit.codec.bill_codec import encode_bill, is_compact_token, try_decode_bill
from tabbit.db.share_store import ShareStore, ShareStoreError
from tabbit.domain.models import ModelValidationError, SharedTabData

logger = logging.getLogger(__name__)

BILL_KEY_PREFIX = "bill:"
SHARE_TTL_SECONDS = 90 * 24 * 60 * 60
DEFAULT_SHARE_BASE_URL = "https://tabbitrabbit.com"

# 6 random bytes -> 8 URL-safe base64 characters, well under the compact
# token threshold.
_TOKEN_BYTES = 6


def generate_share_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


def bill_key(token: str) -> str:
    return f"{BILL_KEY_PREFIX}{token}"


def share_url(token: str, base_url: str = DEFAULT_SHARE_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/bill/{token}"


def create_share_token(store: ShareStore, data: SharedTabData, *, ttl_seconds: int = SHARE_TTL_SECONDS) -> str:
    """
    Store the full bill under a short random token. Raises ShareStoreError
    when the store cannot take it.
    """
    token = generate_share_token()
    store.set(bill_key(token), json.dumps(data.to_dict()), ttl_seconds)
    logger.info("Created share token %s (%d items)", token, len(data.items))
    return token


def share_bill(
    data: SharedTabData,
    store: Optional[ShareStore] = None,
    *,
    ttl_seconds: int = SHARE_TTL_SECONDS,
) -> str:
    """
    Token for a bill: a short remote reference when the store is available,
    otherwise a self-contained compact token.
    """
    if store is not None and store.enabled:
        try:
            return create_share_token(store, data, ttl_seconds=ttl_seconds)
        except ShareStoreError as e:
            logger.warning("Share store unavailable, falling back to compact token: %s", e)
    return encode_bill(data)


def fetch_remote_bill(store: Optional[ShareStore], token: str) -> Optional[SharedTabData]:
    if store is None or not store.enabled:
        return None
    try:
        blob = store.get(bill_key(token))
    except ShareStoreError as e:
        logger.warning("Share lookup for %s failed: %s", token, e)
        return None
    if blob is None:
        return None

    try:
        return SharedTabData.from_dict(json.loads(blob))
    except (json.JSONDecodeError, ModelValidationError) as e:
        logger.warning("Stored bill %s is malformed: %s", token, e)
        return None


def resolve_bill(token: str, store: Optional[ShareStore] = None) -> Optional[SharedTabData]:
    """
    Load a shared bill from any kind of token.

    Tokens longer than the compact threshold are decoded locally; shorter
    ones are looked up in the key-value store. Every failure mode returns
    None, which callers show as "bill not found".
    """
    if not isinstance(token, str) or not token:
        return None
    if is_compact_token(token):
        return try_decode_bill(token)
    return fetch_remote_bill(store, token)
