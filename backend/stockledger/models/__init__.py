from .tenancy import Shop
from .catalog import Product
from .inventory import StockCostLayer, StockMovement
from .customers import Customer, CustomerCreditTransaction
from .sales import Sale, SaleItem, SaleReturn, SaleRefund

__all__ = [
    'Shop',
    'Product',
    'StockCostLayer', 'StockMovement',
    'Customer', 'CustomerCreditTransaction',
    'Sale', 'SaleItem', 'SaleReturn', 'SaleRefund',
]
