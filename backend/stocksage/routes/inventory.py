# backend/stocksage/routes/inventory.py
"""
Inventory routes.

SECURITY: All routes require an identity (user, admin or guest). Products and
logs are always scoped to the caller's owner id.

- POST /batch/stocktake: reconcile counted quantities by barcode
- POST /<product_id>/adjust: relative stock in/out movement
- GET  /logs: owner's inventory log, newest first
- GET  /barcode?barcode=...: owner's product by barcode
- POST /barcode: assign a barcode (unique across all owners) to a product

Time semantics:
- `since` accepts ISO-8601 with Z/offsets; normalized to UTC-naive internally.
"""
from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..time_utils import parse_iso_datetime
from ..decorators import require_auth
from ..services.stocktake_service import (
    BarcodeInUseError,
    ProductNotFoundError,
    StockAdjustmentError,
    StocktakeEngine,
    StocktakeValidationError,
    parse_stocktake_items,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MAX_LOG_LIMIT = 500


def _engine() -> StocktakeEngine:
    return StocktakeEngine(
        db.session,
        attempts=current_app.config.get("STOCKTAKE_RETRY_ATTEMPTS", 3),
        logger=current_app.logger,
    )


@inventory_bp.post("/batch/stocktake")
@require_auth
def batch_stocktake_route():
    """
    Set each scanned product's stock to the counted quantity.

    Body: {"items": [{"barcode": "...", "quantity": 12}, ...]}

    Items are processed independently; a missing barcode or a failed write
    is reported per item and the rest still apply.
    """
    payload = request.get_json(silent=True) or {}

    try:
        items = parse_stocktake_items(payload.get("items"))
    except StocktakeValidationError as e:
        return {"success": False, "error": str(e)}, 400

    try:
        result = _engine().reconcile(g.current_user_id, items)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Stocktake batch aborted for owner %s", g.current_user_id)
        return {
            "success": False,
            "error": "Failed to process stocktake. Items processed before the failure have been applied.",
        }, 500

    current_app.logger.info(
        "Stocktake for %s: %s updated, %s failed",
        g.current_user_id, result.success_count, result.fail_count,
    )
    return {
        "success": True,
        "message": result.message,
        "successCount": result.success_count,
        "failCount": result.fail_count,
        "results": result.results,
    }, 200


@inventory_bp.post("/<int:product_id>/adjust")
@require_auth
def adjust_stock_route(product_id: int):
    """
    Body: {"type": "in"|"out", "quantity": 5, "reference": "PO-12", "notes": "..."}
    """
    payload = request.get_json(silent=True) or {}

    try:
        log = _engine().adjust(
            owner_user_id=g.current_user_id,
            product_id=product_id,
            quantity_change=payload.get("quantity"),
            log_type=payload.get("type"),
            reference=payload.get("reference"),
            notes=payload.get("notes"),
        )
    except ProductNotFoundError as e:
        return {"success": False, "error": str(e)}, 404
    except StockAdjustmentError as e:
        return {"success": False, "error": str(e)}, 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock for product %s", product_id)
        return {"success": False, "error": "Failed to adjust stock"}, 500

    return {"success": True, "data": log.to_dict()}, 200


@inventory_bp.get("/logs")
@require_auth
def list_logs_route():
    product_id = request.args.get("product_id", type=int)
    limit = request.args.get("limit", default=100, type=int)
    since_raw = request.args.get("since")

    if limit is None or limit < 1:
        return {"success": False, "error": "limit must be a positive integer"}, 400
    limit = min(limit, MAX_LOG_LIMIT)

    since = None
    if since_raw:
        try:
            since = parse_iso_datetime(since_raw)
        except ValueError:
            return {"success": False, "error": "since must be an ISO-8601 datetime"}, 400

    logs = _engine().list_logs(g.current_user_id, product_id=product_id, since=since, limit=limit)
    return {"success": True, "data": [log.to_dict() for log in logs]}, 200


@inventory_bp.get("/barcode")
@require_auth
def get_product_by_barcode_route():
    barcode = (request.args.get("barcode") or "").strip()
    if not barcode:
        return {"success": False, "error": "Barcode is required"}, 400

    product = _engine().find_by_barcode(g.current_user_id, barcode)
    if product is None:
        return {"success": False, "error": "Product not found", "barcode": barcode}, 404

    return {"success": True, "product": product.to_dict()}, 200


@inventory_bp.post("/barcode")
@require_auth
def assign_barcode_route():
    """
    Body: {"productId": 12, "barcode": "4006381333931"}
    """
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("productId")
    if not isinstance(product_id, int) or isinstance(product_id, bool):
        return {"success": False, "error": "Product ID and barcode are required"}, 400

    try:
        product = _engine().assign_barcode(g.current_user_id, product_id, payload.get("barcode"))
    except ProductNotFoundError as e:
        return {"success": False, "error": str(e)}, 404
    except BarcodeInUseError as e:
        return {"success": False, "error": str(e)}, 409
    except StockAdjustmentError as e:
        return {"success": False, "error": str(e)}, 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to assign barcode to product %s", product_id)
        return {"success": False, "error": "Failed to update product"}, 500

    return {"success": True, "product": product.to_dict()}, 200
