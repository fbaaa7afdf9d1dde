from .auth import User, SessionToken
from .inventory import Product, InventoryLog
from .invoices import Invoice, InvoiceItem

__all__ = [
    'User', 'SessionToken',
    'Product', 'InventoryLog',
    'Invoice', 'InvoiceItem',
]
