# backend/stocksage/services/stocktake_service.py
"""
Stock reconciliation service.

A stocktake submits absolute counted quantities per barcode. Each item is
reconciled on its own:

1. find the owner's product by barcode
2. delta = counted - current_stock
3. current_stock = counted
4. append an InventoryLog (adjustment-add when delta >= 0, else
   adjustment-remove), even when delta == 0
5. report previous/new stock and the delta

Items never abort each other and each one commits by itself, so a batch that
dies halfway leaves the processed items applied; clients retry by barcode.

CONCURRENCY: the read-modify-write on Product.current_stock runs under
SELECT ... FOR UPDATE and the product's version_id check. A concurrent writer
surfaces as StaleDataError (or a lock OperationalError); the item is rolled
back and recomputed from a fresh read, so the delta logged is always against
the stock actually replaced.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError

from ..models import InventoryLog, Product
from ..models.inventory import (
    LOG_TYPE_ADJUST_ADD,
    LOG_TYPE_ADJUST_REMOVE,
    LOG_TYPE_IN,
    LOG_TYPE_OUT,
)
from .concurrency import RETRYABLE_ERRORS, lock_for_update, run_with_retry


STOCKTAKE_REFERENCE = "Bulk Scan Stocktake"
PRODUCT_NOT_FOUND = "Product not found"
ITEM_FAILED = "Failed to update stock"

MAX_BATCH_ITEMS = 1000


class StocktakeValidationError(Exception):
    """Raised when a batch payload is rejected before any item is processed."""
    pass


class StockAdjustmentError(Exception):
    """Raised when a single stock adjustment is rejected."""
    pass


class ProductNotFoundError(StockAdjustmentError):
    pass


class BarcodeInUseError(StockAdjustmentError):
    pass


@dataclass(frozen=True)
class StocktakeItem:
    barcode: str
    counted_quantity: int


@dataclass
class StocktakeResult:
    results: list[dict] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r["success"])

    @property
    def fail_count(self) -> int:
        return len(self.results) - self.success_count

    @property
    def message(self) -> str:
        return (
            f"Processed {len(self.results)} items. "
            f"Updated: {self.success_count}, Failed: {self.fail_count}"
        )


def _is_non_negative_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def parse_stocktake_items(raw_items) -> list[StocktakeItem]:
    """
    Validate a request payload's items list.

    Each entry must be {"barcode": non-empty str, "quantity": int >= 0}.
    Raises StocktakeValidationError on the first bad entry.
    """
    if not raw_items or not isinstance(raw_items, list):
        raise StocktakeValidationError("No items provided")
    if len(raw_items) > MAX_BATCH_ITEMS:
        raise StocktakeValidationError(f"At most {MAX_BATCH_ITEMS} items per batch")

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise StocktakeValidationError(f"Item {index} must be an object")
        barcode = raw.get("barcode")
        quantity = raw.get("quantity")
        if not isinstance(barcode, str) or not barcode.strip():
            raise StocktakeValidationError(f"Item {index} is missing a barcode")
        if not _is_non_negative_int(quantity):
            raise StocktakeValidationError(f"Item {index} quantity must be a non-negative integer")
        items.append(StocktakeItem(barcode=barcode.strip(), counted_quantity=quantity))
    return items


class StocktakeEngine:
    """Reconciles counted stock against recorded stock, one product at a time."""

    def __init__(self, session, *, attempts: int = 3, backoff_base: float = 0.05, logger=None):
        self.session = session
        self.attempts = attempts
        self.backoff_base = backoff_base
        self.logger = logger

    def reconcile(self, owner_user_id: str, items: list[StocktakeItem]) -> StocktakeResult:
        result = StocktakeResult()
        for item in items:
            result.results.append(self._reconcile_item(owner_user_id, item))
        return result

    def _reconcile_item(self, owner_user_id: str, item: StocktakeItem) -> dict:
        def _op():
            product = lock_for_update(
                self.session.query(Product).filter_by(
                    barcode=item.barcode,
                    owner_user_id=owner_user_id,
                )
            ).first()

            if product is None:
                self.session.rollback()
                return {"barcode": item.barcode, "success": False, "error": PRODUCT_NOT_FOUND}

            previous_stock = product.current_stock
            quantity_change = item.counted_quantity - previous_stock

            product.current_stock = item.counted_quantity
            self.session.add(InventoryLog(
                product_id=product.id,
                quantity=item.counted_quantity,
                quantity_change=quantity_change,
                type=LOG_TYPE_ADJUST_ADD if quantity_change >= 0 else LOG_TYPE_ADJUST_REMOVE,
                reference=STOCKTAKE_REFERENCE,
                notes=(
                    f"Stock adjusted from {previous_stock} to {item.counted_quantity} "
                    "via barcode scanning"
                ),
                created_by=owner_user_id,
            ))
            self.session.commit()

            return {
                "barcode": item.barcode,
                "productId": product.id,
                "productName": product.name,
                "success": True,
                "previousStock": previous_stock,
                "newStock": item.counted_quantity,
                "quantityChange": quantity_change,
            }

        try:
            return run_with_retry(
                self.session, _op, attempts=self.attempts, backoff_base=self.backoff_base
            )
        except RETRYABLE_ERRORS:
            self._log_failure("Stocktake item %s kept conflicting; giving up", item.barcode)
        except Exception:
            self.session.rollback()
            self._log_failure("Stocktake item %s failed", item.barcode)
        return {"barcode": item.barcode, "success": False, "error": ITEM_FAILED}

    def _log_failure(self, message: str, *args) -> None:
        if self.logger is not None:
            self.logger.exception(message, *args)

    def adjust(
        self,
        owner_user_id: str,
        product_id: int,
        quantity_change: int,
        log_type: str,
        reference: str,
        notes: str | None = None,
    ) -> InventoryLog:
        """
        Apply a relative stock movement ("in" adds, "out" removes).

        quantity_change is the magnitude; its sign follows log_type.
        Raises StockAdjustmentError when the result would go negative.
        """
        if log_type not in (LOG_TYPE_IN, LOG_TYPE_OUT):
            raise StockAdjustmentError(f"Invalid adjustment type: {log_type}")
        if not isinstance(quantity_change, int) or isinstance(quantity_change, bool) or quantity_change <= 0:
            raise StockAdjustmentError("Quantity must be a positive integer")
        if not reference or not isinstance(reference, str):
            raise StockAdjustmentError("Reference is required")

        signed_change = quantity_change if log_type == LOG_TYPE_IN else -quantity_change

        def _op():
            product = lock_for_update(
                self.session.query(Product).filter_by(id=product_id, owner_user_id=owner_user_id)
            ).first()
            if product is None:
                self.session.rollback()
                raise ProductNotFoundError(f"Product {product_id} not found")

            new_stock = product.current_stock + signed_change
            if new_stock < 0:
                self.session.rollback()
                raise StockAdjustmentError(
                    f"Insufficient stock: {product.current_stock} on hand, {quantity_change} requested"
                )

            product.current_stock = new_stock
            log = InventoryLog(
                product_id=product.id,
                quantity=new_stock,
                quantity_change=signed_change,
                type=log_type,
                reference=reference,
                notes=notes,
                created_by=owner_user_id,
            )
            self.session.add(log)
            self.session.commit()
            return log

        return run_with_retry(self.session, _op, attempts=self.attempts, backoff_base=self.backoff_base)

    def list_logs(self, owner_user_id: str, product_id: int | None = None, since=None, limit: int = 100):
        """Owner's log entries, newest first."""
        query = (
            self.session.query(InventoryLog)
            .join(Product, Product.id == InventoryLog.product_id)
            .filter(Product.owner_user_id == owner_user_id)
        )
        if product_id is not None:
            query = query.filter(InventoryLog.product_id == product_id)
        if since is not None:
            query = query.filter(InventoryLog.created_at >= since)
        return query.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc()).limit(limit).all()

    def find_by_barcode(self, owner_user_id: str, barcode: str) -> Product | None:
        return self.session.query(Product).filter_by(barcode=barcode, owner_user_id=owner_user_id).first()

    def assign_barcode(self, owner_user_id: str, product_id: int, barcode: str) -> Product:
        """
        Set a product's barcode.

        Barcodes are unique across all owners; a barcode held by any other
        product raises BarcodeInUseError.
        """
        if not isinstance(barcode, str) or not barcode.strip():
            raise StockAdjustmentError("Product ID and barcode are required")
        barcode = barcode.strip()

        def _op():
            product = lock_for_update(
                self.session.query(Product).filter_by(id=product_id, owner_user_id=owner_user_id)
            ).first()
            if product is None:
                self.session.rollback()
                raise ProductNotFoundError(f"Product {product_id} not found")

            holder = self.session.query(Product.id).filter(
                Product.barcode == barcode,
                Product.id != product.id,
            ).first()
            if holder is not None:
                self.session.rollback()
                raise BarcodeInUseError("Barcode already exists for another product")

            product.barcode = barcode
            try:
                self.session.commit()
            except IntegrityError:
                # another product took the barcode since the check above
                self.session.rollback()
                raise BarcodeInUseError("Barcode already exists for another product")
            return product

        return run_with_retry(self.session, _op, attempts=self.attempts, backoff_base=self.backoff_base)
