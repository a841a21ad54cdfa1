from .auth import Role, User
from .catalog import Category, Product, Warehouse
from .inventory import AuditAction, AuditEntry, Stock

__all__ = [
    'Role', 'User',
    'Category', 'Product', 'Warehouse',
    'AuditAction', 'AuditEntry', 'Stock',
]
