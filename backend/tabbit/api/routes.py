from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from tabbit.api.validators import ApiValidationError, parse_bill, parse_receipt_upload
from tabbit.db.repository import TabNotFoundError, TabRepository
from tabbit.db.share_store import ShareStore
from tabbit.domain.currency import DEFAULT_CURRENCY, default_tax_tip, format_amount, is_known_currency
from tabbit.domain.models import Tab, TabSnapshot
from tabbit.domain.split_logic import SplitLogicError, SplitSummary, calculate_split
from tabbit.services.receipt_scanner import LocalReceiptScanner, ReceiptScanError, VisionReceiptScanner
from tabbit.services.share_service import resolve_bill, share_bill, share_url

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _json_error(message: str, *, status: int = 400, code: str = "bad_request"):
    return jsonify({"error": {"code": code, "message": message}}), status


def _repo() -> TabRepository:
    return TabRepository(current_app.config.get("DATABASE_URL", ""))


def _share_store() -> ShareStore:
    return ShareStore(current_app.config.get("REDIS_URL", ""))


def _scanner():
    if current_app.config.get("RECEIPT_SCANNER", "vision") == "local":
        return LocalReceiptScanner()
    api_key = current_app.config.get("ANTHROPIC_API_KEY", "")
    if not api_key:
        return None
    return VisionReceiptScanner(api_key, model=current_app.config.get("ANTHROPIC_MODEL", ""))


def _tab_json(tab: Tab) -> Dict[str, Any]:
    return {
        "id": tab.id,
        "name": tab.name,
        "tax_percent": tab.tax_percent,
        "tip_percent": tab.tip_percent,
        "currency_code": tab.currency_code,
        "created_at": tab.created_at.isoformat() if tab.created_at else None,
        "updated_at": tab.updated_at.isoformat() if tab.updated_at else None,
    }


def _snapshot_json(snapshot: TabSnapshot) -> Dict[str, Any]:
    return {
        "tab": _tab_json(snapshot.tab),
        "items": [{"id": i.id, "description": i.description, "price_cents": i.price_cents} for i in snapshot.items],
        "rabbits": [
            {"id": r.id, "name": r.name, "color": r.color, "profile_id": r.profile_id} for r in snapshot.rabbits
        ],
        "assignments": [{"item_id": a.item_id, "rabbit_id": a.rabbit_id} for a in snapshot.assignments],
    }


def _summary_json(summary: SplitSummary, currency_code: str) -> Dict[str, Any]:
    return {
        "currency_code": currency_code,
        "rabbits": [
            {
                "rabbit_id": rt.rabbit_id,
                "subtotal": rt.subtotal,
                "tax": rt.tax,
                "tip": rt.tip,
                "total": rt.total,
                "total_display": format_amount(rt.total, currency_code),
            }
            for rt in summary.rabbit_totals
        ],
        "items_subtotal": summary.items_subtotal,
        "tax_amount": summary.tax_amount,
        "tip_amount": summary.tip_amount,
        "grand_total": summary.grand_total,
        "grand_total_display": format_amount(summary.grand_total, currency_code),
        "unassigned_item_count": summary.unassigned_item_count,
    }


@api_bp.get("/health")
def health():
    return jsonify({"status": "ok"}), 200


@api_bp.post("/calculate")
def calculate_endpoint():
    data = request.get_json(silent=True)
    if data is None:
        return _json_error("Request body must be JSON.", status=400)

    try:
        bill = parse_bill(data)
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    try:
        summary = calculate_split(
            bill.items,
            bill.rabbits,
            bill.assignments,
            bill.tab.tax_percent,
            bill.tab.tip_percent,
        )
    except SplitLogicError as e:
        return _json_error(str(e), status=422, code="split_failed")

    return jsonify(_summary_json(summary, bill.tab.currency_code)), 200


@api_bp.post("/parse-receipt")
def parse_receipt_endpoint():
    """
    JSON: {image_base64, media_type, currency_code}
    Response: {items: [{description, price_cents}], tax_percent, tip_percent, ..., message}
    A receipt with nothing readable is a 200 with an empty item list and a message.
    """
    try:
        upload = parse_receipt_upload(
            request.get_json(silent=True),
            max_bytes=current_app.config.get("MAX_RECEIPT_BYTES", 10 * 1024 * 1024),
        )
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    scanner = _scanner()
    if scanner is None:
        return _json_error("Receipt scanning is not configured.", status=503, code="scanner_unavailable")

    try:
        receipt = scanner.scan(upload.image_bytes, media_type=upload.media_type, currency_code=upload.currency_code)
    except ReceiptScanError as e:
        return _json_error(str(e), status=502, code="scan_failed")

    return jsonify(receipt.to_dict()), 200


@api_bp.post("/share")
def share_endpoint():
    try:
        bill = parse_bill(request.get_json(silent=True))
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    token = share_bill(
        bill,
        _share_store(),
        ttl_seconds=current_app.config.get("SHARE_TTL_SECONDS", 90 * 24 * 60 * 60),
    )
    base_url = current_app.config.get("SHARE_BASE_URL", "https://tabbitrabbit.com")
    return jsonify({"token": token, "url": share_url(token, base_url)}), 200


@api_bp.get("/bill/<token>")
def bill_endpoint(token: str):
    bill = resolve_bill(token, _share_store())
    if bill is None:
        return _json_error("Bill not found or could not be loaded.", status=404, code="bill_not_found")
    return jsonify(bill.to_dict()), 200


@api_bp.get("/tabs")
def list_tabs_endpoint():
    repo = _repo()
    if not repo.enabled:
        return _json_error("Database is not configured.", status=503, code="db_unavailable")
    try:
        tabs = repo.list_tabs(owner_id=current_app.config.get("TAB_OWNER_ID", "mvp-owner"))
    except Exception:
        logger.exception("Listing tabs failed")
        return _json_error("Failed to load tabs.", status=500, code="db_error")
    return jsonify({"tabs": [_tab_json(t) for t in tabs]}), 200


@api_bp.post("/tabs")
def create_tab_endpoint():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("Request body must be a JSON object.", status=400)
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return _json_error("'name' must be a non-empty string.", status=400)

    currency_code = data.get("currency_code") or DEFAULT_CURRENCY
    if not isinstance(currency_code, str) or not is_known_currency(currency_code):
        return _json_error("'currency_code' is not a supported currency.", status=400)
    currency_code = currency_code.strip().upper()
    tax_percent, tip_percent = default_tax_tip(currency_code)

    repo = _repo()
    if not repo.enabled:
        return _json_error("Database is not configured.", status=503, code="db_unavailable")
    try:
        tab = repo.create_tab(
            owner_id=current_app.config.get("TAB_OWNER_ID", "mvp-owner"),
            name=name.strip(),
            currency_code=currency_code,
            tax_percent=tax_percent,
            tip_percent=tip_percent,
        )
    except Exception:
        logger.exception("Creating tab failed")
        return _json_error("Failed to create tab.", status=500, code="db_error")
    return jsonify(_tab_json(tab)), 201


@api_bp.get("/tabs/<tab_id>")
def get_tab_endpoint(tab_id: str):
    repo = _repo()
    if not repo.enabled:
        return _json_error("Database is not configured.", status=503, code="db_unavailable")
    try:
        snapshot = repo.load_tab(tab_id=tab_id)
    except TabNotFoundError:
        return _json_error("Tab not found.", status=404, code="tab_not_found")
    except Exception:
        logger.exception("Loading tab %s failed", tab_id)
        return _json_error("Failed to load tab.", status=500, code="db_error")
    return jsonify(_snapshot_json(snapshot)), 200


@api_bp.delete("/tabs/<tab_id>")
def delete_tab_endpoint(tab_id: str):
    repo = _repo()
    if not repo.enabled:
        return _json_error("Database is not configured.", status=503, code="db_unavailable")
    try:
        deleted = repo.delete_tab(tab_id=tab_id)
    except Exception:
        logger.exception("Deleting tab %s failed", tab_id)
        return _json_error("Failed to delete tab.", status=500, code="db_error")
    if not deleted:
        return _json_error("Tab not found.", status=404, code="tab_not_found")
    return jsonify({"deleted": True}), 200
