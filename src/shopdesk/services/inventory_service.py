from __future__ import annotations

import logging
from typing import Optional

from shopdesk.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from shopdesk.domain.models import LedgerEntry, Product, StockCheck

log = logging.getLogger("shopdesk.stock")

MOVEMENT_TYPES = {"in": 1, "out": -1}


class InventoryService:
    def __init__(self, repo):
        self.repo = repo

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def find_products(self, term: str) -> list[Product]:
        term = (term or "").strip()
        if not term:
            return self.repo.list_products()
        return self.repo.find_products(term)

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def add_product(self, barcode: str, name: str, cost: float, price: float, stock: int, min_stock: int = 0) -> int:
        barcode = (barcode or "").strip()
        name = (name or "").strip()
        if not barcode or not name:
            raise ValidationError("Barcode and Name are required.")
        if stock < 0 or min_stock < 0:
            raise ValidationError("Stock values must be >= 0.")
        if cost < 0:
            raise ValidationError("Cost must be >= 0.")
        if price <= 0:
            raise ValidationError("Price must be > 0.")
        return self.repo.add_product(barcode, name, float(cost), float(price), int(stock), int(min_stock))

    def check_stock(self, product_id: int, requested_delta: int) -> StockCheck:
        current = self.repo.get_product_stock(int(product_id))
        if current is None:
            raise NotFoundError("Product not found.")
        return StockCheck(ok=int(requested_delta) <= int(current), available=int(current))

    def record_movement(
        self,
        product_id: int,
        movement_type: str,
        qty: int,
        actor_user_id: int | None = None,
        notes: Optional[str] = None,
    ) -> int:
        """Manual stock in/out. Returns the stock after the movement."""
        sign = MOVEMENT_TYPES.get(movement_type)
        if sign is None:
            raise ValidationError(f"Unknown movement type: {movement_type!r}")
        if int(qty) <= 0:
            raise ValidationError("Quantity must be > 0.")

        try:
            stock_after = self.repo.apply_stock_movement(
                int(product_id), sign * int(qty), movement_type, actor_user_id=actor_user_id, notes=notes
            )
        except InsufficientStockError:
            log.warning("stock_out_rejected product_id=%s qty=%s", product_id, qty)
            raise
        log.info("stock_movement product_id=%s type=%s qty=%s stock_after=%s actor=%s",
                 product_id, movement_type, qty, stock_after, actor_user_id)
        return stock_after

    def set_stock_count(
        self,
        product_id: int,
        new_value: int,
        actor_user_id: int | None = None,
        notes: Optional[str] = None,
    ) -> int:
        if int(new_value) < 0:
            raise ValidationError("Stock values must be >= 0.")
        delta = self.repo.set_product_stock(int(product_id), int(new_value), actor_user_id=actor_user_id, notes=notes)
        log.info("stock_count product_id=%s new_value=%s delta=%s actor=%s", product_id, new_value, delta, actor_user_id)
        return delta

    def movement_history(self, product_id: int | None = None, limit: int = 100) -> list[LedgerEntry]:
        return self.repo.movement_history(product_id, limit)
