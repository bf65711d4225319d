from .inventory import Product, InventoryBatch, name_key
from .orders import Order, AllocationLineItem

__all__ = [
    'Product', 'InventoryBatch', 'name_key',
    'Order', 'AllocationLineItem',
]
