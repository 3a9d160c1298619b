from .auth import User
from .customers import Customer
from .inventory import Product, InventoryLevel, StockBatch, StockMovement
from .sales import Sale, SaleItem, Payment
from .documents import DocumentSequence

__all__ = [
    'User',
    'Customer',
    'Product', 'InventoryLevel', 'StockBatch', 'StockMovement',
    'Sale', 'SaleItem', 'Payment',
    'DocumentSequence',
]
