from .catalog import Customer, Product, CustomerPrice
from .orders import Order, OrderItem
from .inventory import InventoryMovement, DailyInventorySnapshot
from .sequences import SequenceBucket

__all__ = [
    'Customer', 'Product', 'CustomerPrice',
    'Order', 'OrderItem',
    'InventoryMovement', 'DailyInventorySnapshot',
    'SequenceBucket',
]
