from __future__ import annotations


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, message: str, product_id: int | None = None, available: int | None = None):
        super().__init__(message)
        self.product_id = product_id
        self.available = available


class FxUnavailableError(AppError):
    """No usable exchange rate. Fatal to any money-moving operation."""


class PersistenceError(AppError):
    """Storage failed; the transaction was rolled back."""


class AuthorizationError(AppError):
    pass
