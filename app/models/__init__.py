from .audit import AuditLog
from .coupon import Coupon
from .download import DownloadGrant
from .error_log import ErrorLog
from .inventory import InventoryItem
from .order import Order, OrderItem
from .payment import Payment, Refund
from .product import Product, ProductFile
from .security_log import SecurityLog
from .user import User

__all__ = [
    "AuditLog",
    "Coupon",
    "DownloadGrant",
    "ErrorLog",
    "InventoryItem",
    "Order",
    "OrderItem",
    "Payment",
    "Product",
    "ProductFile",
    "Refund",
    "SecurityLog",
    "User",
]
