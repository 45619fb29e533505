from .inventory import Product, StockMovement
from .purchasing import PurchaseOrder, PurchaseOrderLine
from .credit import CreditRequest, CreditAccount, CreditTransaction
from .orders import Order, OrderLine, OrderStatusChange
from .audit import AuditLogEntry, IdempotencyRecord

__all__ = [
    'Product', 'StockMovement',
    'PurchaseOrder', 'PurchaseOrderLine',
    'CreditRequest', 'CreditAccount', 'CreditTransaction',
    'Order', 'OrderLine', 'OrderStatusChange',
    'AuditLogEntry', 'IdempotencyRecord',
]
