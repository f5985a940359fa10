from .tenancy import Tenant, Store, User
from .catalog import Category, Product, Tax, Discount
from .customers import Customer, LoyaltyTransaction
from .inventory import Inventory, InventoryEvent
from .sales import Sale, SaleItem, Payment
from .tills import Till, TillSession, CashTransaction

__all__ = [
    'Tenant', 'Store', 'User',
    'Category', 'Product', 'Tax', 'Discount',
    'Customer', 'LoyaltyTransaction',
    'Inventory', 'InventoryEvent',
    'Sale', 'SaleItem', 'Payment',
    'Till', 'TillSession', 'CashTransaction',
]
