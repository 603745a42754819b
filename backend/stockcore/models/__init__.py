from .auth import User
from .customers import Customer, CustomerRewardAccount, CustomerRewardTransaction
from .inventory import Unit, Product, ProductLocationStock, ProductUnit, StockMovement
from .orders import Order, OrderLine

__all__ = [
    'User',
    'Customer', 'CustomerRewardAccount', 'CustomerRewardTransaction',
    'Unit', 'Product', 'ProductLocationStock', 'ProductUnit', 'StockMovement',
    'Order', 'OrderLine',
]
