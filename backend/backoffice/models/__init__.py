from .auth import User, SessionToken, USER_ROLES
from .catalog import Category, Product
from .customers import Customer
from .inventory import InventoryLog, MovementType
from .sales import Sale, SaleItem, SaleStatus, PaymentMethod
from .audit import AuditLog

__all__ = [
    'User', 'SessionToken', 'USER_ROLES',
    'Category', 'Product',
    'Customer',
    'InventoryLog', 'MovementType',
    'Sale', 'SaleItem', 'SaleStatus', 'PaymentMethod',
    'AuditLog',
]
