from .tenancy import Plan, Tenant, Subscription
from .auth import User, TenantMembership, SessionToken
from .security import SecurityEvent
from .inventory import Product, StockMovement
from .customers import Customer, LoyaltyTransaction
from .sales import Sale, SaleItem

__all__ = [
    'Plan', 'Tenant', 'Subscription',
    'User', 'TenantMembership', 'SessionToken',
    'SecurityEvent',
    'Product', 'StockMovement',
    'Customer', 'LoyaltyTransaction',
    'Sale', 'SaleItem',
]
