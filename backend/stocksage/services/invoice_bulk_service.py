# backend/stocksage/services/invoice_bulk_service.py
"""
Bulk invoice operations.

One operation is applied to a set of invoice ids owned by the caller:

- updateStatus: one UPDATE; count = rows matched
- delete:       items first, then invoices, one transaction; count = invoices removed
- export:       read-only; invoices with their items as dicts

Ids that do not match one of the caller's invoices are not errors, including
ids that are not integers at all; they are simply not counted. Request-shape
problems raise BulkOperationError before the session is touched.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import selectinload

from ..models import Invoice, InvoiceItem


OP_UPDATE_STATUS = "updateStatus"
OP_DELETE = "delete"
OP_EXPORT = "export"
OPERATIONS = (OP_UPDATE_STATUS, OP_DELETE, OP_EXPORT)

BULK_STATUSES = ("paid", "pending", "overdue")


class BulkOperationError(Exception):
    """Raised for invalid bulk requests; nothing has been written."""
    pass


@dataclass
class OperationResult:
    operation: str
    count: int = 0
    data: list[dict] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.operation == OP_UPDATE_STATUS:
            return f"Updated status for {self.count} invoices"
        if self.operation == OP_DELETE:
            return f"Deleted {self.count} invoices"
        return f"Exported {self.count} invoices"


def _coerce_id(raw) -> int | None:
    # bool is an int subclass; floats are not ids
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.isascii() and raw.isdigit():
        return int(raw)
    return None


def _normalize_ids(invoice_ids) -> list[int]:
    """Integer ids in first-seen order; ids no invoice can have are dropped."""
    if not invoice_ids or not isinstance(invoice_ids, list):
        raise BulkOperationError("Invalid request, missing operation or invoiceIds")

    ids = [_coerce_id(raw) for raw in invoice_ids]
    return list(dict.fromkeys(i for i in ids if i is not None))


class BulkInvoiceEngine:
    def __init__(self, session):
        self.session = session

    def apply(self, owner_user_id: str, operation: str, invoice_ids, payload: dict | None = None) -> OperationResult:
        if not operation:
            raise BulkOperationError("Invalid request, missing operation or invoiceIds")
        if operation not in OPERATIONS:
            raise BulkOperationError(f"Unsupported operation: {operation}")
        ids = _normalize_ids(invoice_ids)

        if operation == OP_UPDATE_STATUS:
            status = (payload or {}).get("status")
            if not status:
                raise BulkOperationError("Status is required for updateStatus operation")
            if status not in BULK_STATUSES:
                raise BulkOperationError("Invalid status value")
            return self._update_status(owner_user_id, ids, status)

        if operation == OP_DELETE:
            return self._delete(owner_user_id, ids)

        return self._export(owner_user_id, ids)

    def _owned_ids_query(self, owner_user_id: str, ids: list[int]):
        return self.session.query(Invoice.id).filter(
            Invoice.id.in_(ids),
            Invoice.owner_user_id == owner_user_id,
        )

    def _update_status(self, owner_user_id: str, ids: list[int], status: str) -> OperationResult:
        try:
            count = self.session.query(Invoice).filter(
                Invoice.id.in_(ids),
                Invoice.owner_user_id == owner_user_id,
            ).update({Invoice.status: status}, synchronize_session=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return OperationResult(OP_UPDATE_STATUS, count=count)

    def _delete(self, owner_user_id: str, ids: list[int]) -> OperationResult:
        try:
            owned = [row.id for row in self._owned_ids_query(owner_user_id, ids).all()]
            if not owned:
                return OperationResult(OP_DELETE, count=0)

            self.session.query(InvoiceItem).filter(
                InvoiceItem.invoice_id.in_(owned)
            ).delete(synchronize_session=False)

            count = self.session.query(Invoice).filter(
                Invoice.id.in_(owned)
            ).delete(synchronize_session=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        # Drop stale identity-map entries for the removed rows
        self.session.expire_all()
        return OperationResult(OP_DELETE, count=count)

    def _export(self, owner_user_id: str, ids: list[int]) -> OperationResult:
        invoices = (
            self.session.query(Invoice)
            .options(selectinload(Invoice.items))
            .filter(Invoice.id.in_(ids), Invoice.owner_user_id == owner_user_id)
            .order_by(Invoice.id)
            .all()
        )
        data = [invoice.to_dict(include_items=True) for invoice in invoices]
        return OperationResult(OP_EXPORT, count=len(data), data=data)
