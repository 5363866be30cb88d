from .inventory import Client, Inventory, Cloth
from .orders import Order, OrderItem
from .payments import Payment
from .custody import Custody, CustodyReturn
from .rentals import Rent, ClothReturnPhoto
from .history import OrderHistory, ClothHistory

__all__ = [
    'Client', 'Inventory', 'Cloth',
    'Order', 'OrderItem',
    'Payment',
    'Custody', 'CustodyReturn',
    'Rent', 'ClothReturnPhoto',
    'OrderHistory', 'ClothHistory',
]
