from orderauth.core.database import Base
from orderauth.models.catalog import Item, Order
from orderauth.models.records import AdminInvitation, AdminRole, Administrator, Customer

__all__ = [
    "AdminInvitation",
    "AdminRole",
    "Administrator",
    "Base",
    "Customer",
    "Item",
    "Order",
]
