from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from stocksage.time_utils import to_utc_z


LOG_TYPE_IN = "in"
LOG_TYPE_OUT = "out"
LOG_TYPE_ADJUST_ADD = "adjustment-add"
LOG_TYPE_ADJUST_REMOVE = "adjustment-remove"
LOG_TYPES = (LOG_TYPE_IN, LOG_TYPE_OUT, LOG_TYPE_ADJUST_ADD, LOG_TYPE_ADJUST_REMOVE)


class Product(db.Model):
    """
    Stock-tracked product owned by a single user.

    SKU is unique per owner; barcode, when set, is unique across all owners.
    current_stock is the only contended counter in the system, so every write
    goes through the version_id optimistic check (UPDATE ... WHERE version_id=?).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("owner_user_id", "sku", name="uq_products_owner_sku"),
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_nonneg"),
        db.CheckConstraint("min_stock_level >= 0", name="ck_products_min_stock_nonneg"),
        db.Index("ix_products_owner_barcode", "owner_user_id", "barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(128), nullable=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("User", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.min_stock_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_user_id": self.owner_user_id,
            "sku": self.sku,
            "name": self.name,
            "barcode": self.barcode,
            "current_stock": self.current_stock,
            "min_stock_level": self.min_stock_level,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLog(db.Model):
    """
    Append-only audit trail of stock movements.

    quantity is the resulting stock after the movement; quantity_change is the
    signed delta. Summing quantity_change for a product gives current_stock
    minus the stock it was created with.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.Index("ix_inventory_logs_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    quantity_change = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(32), nullable=False, index=True)

    reference = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "quantity_change": self.quantity_change,
            "type": self.type,
            "reference": self.reference,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class AppendOnlyViolation(Exception):
    """Raised when code tries to mutate a persisted inventory log entry."""


@event.listens_for(InventoryLog, "before_update")
def _refuse_log_update(mapper, connection, target):
    raise AppendOnlyViolation(f"Inventory log {target.id} is immutable")


@event.listens_for(InventoryLog, "before_delete")
def _refuse_log_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"Inventory log {target.id} cannot be deleted")
