# backend/stocksage/routes/invoices.py
"""
Invoice routes.

SECURITY: Requires an identity; every operation is limited to invoices the
caller owns.
"""
from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..decorators import require_auth
from ..services.invoice_bulk_service import OP_EXPORT, BulkInvoiceEngine, BulkOperationError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("/bulk")
@require_auth
def bulk_invoices_route():
    """
    Apply one operation to many invoices.

    Body: {"operation": "updateStatus"|"delete"|"export",
           "invoiceIds": [1, 2, 3],
           "data": {"status": "paid"}}
    """
    payload = request.get_json(silent=True) or {}
    operation = payload.get("operation")

    try:
        result = BulkInvoiceEngine(db.session).apply(
            g.current_user_id,
            operation,
            payload.get("invoiceIds"),
            payload.get("data"),
        )
    except BulkOperationError as e:
        return {"success": False, "error": str(e)}, 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Bulk invoice operation %s failed", operation)
        return {"success": False, "error": "Failed to perform bulk operation"}, 500

    if result.operation == OP_EXPORT:
        return {"success": True, "data": result.data, "message": result.message}, 200
    return {"success": True, "message": result.message, "count": result.count}, 200
