from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stocksage.time_utils import to_utc_z


INVOICE_STATUSES = ("draft", "sent", "paid", "pending", "overdue", "canceled")
PAYMENT_STATUSES = ("PENDING", "PAID", "FAILED", "REFUNDED", "CANCELLED")


def _money(value) -> str | None:
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal("0.01")))


class Invoice(db.Model):
    """
    Customer invoice owned by a single user.

    Items are owned exclusively by the invoice but the foreign key has no
    ON DELETE CASCADE: deleting invoices means deleting their items first.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.CheckConstraint("total_amount >= 0", name="ck_invoices_total_nonneg"),
        db.Index("ix_invoices_owner_status", "owner_user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, index=True)

    invoice_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING")

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("User", backref=db.backref("invoices", lazy=True))
    items = db.relationship("InvoiceItem", back_populates="invoice", lazy="select")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "owner_user_id": self.owner_user_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_amount": _money(self.total_amount),
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "due_date": to_utc_z(self.due_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_pos"),
        db.CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    product_sku = db.Column(db.String(64), nullable=True)

    invoice = db.relationship("Invoice", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "total_price": _money(self.total_price),
            "product_sku": self.product_sku,
        }
