from .models import (
    CartItem,
    Customer,
    EditLine,
    ExchangeRate,
    NewSaleItem,
    PaymentMethod,
    Product,
    Receipt,
    Sale,
    SaleItem,
)
from .errors import (
    AuthorizationError,
    FxUnavailableError,
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

__all__ = [
    "CartItem",
    "Customer",
    "EditLine",
    "ExchangeRate",
    "NewSaleItem",
    "PaymentMethod",
    "Product",
    "Receipt",
    "Sale",
    "SaleItem",
    "AuthorizationError",
    "FxUnavailableError",
    "InsufficientStockError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
]
