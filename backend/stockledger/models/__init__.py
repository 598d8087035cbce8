from .inventory import Product
from .stock import MonthlyStock, StockEntry

__all__ = [
    'Product',
    'MonthlyStock', 'StockEntry',
]
