from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Iterator, Optional

from shopdesk.domain.currency import to_base, to_quoted, validate_price
from shopdesk.domain.errors import InsufficientStockError, NotFoundError
from shopdesk.domain.models import CartItem, NewSaleItem, Product

# Kept for future use; no tax is charged today.
TAX_RATE = 0.0


def to_new_sale_item(line: CartItem, rate: float) -> NewSaleItem:
    return NewSaleItem(
        product_id=line.product_id,
        qty=int(line.quantity),
        unit_price_usd=to_base(line.unit_price_quoted, rate),
    )


def lines_subtotal(lines: Iterable[CartItem]) -> float:
    return sum(line.line_total_quoted for line in lines)


def lines_total(lines: Iterable[CartItem]) -> float:
    """Amount due in the quoted currency, tax included."""
    subtotal = lines_subtotal(lines)
    return subtotal + subtotal * TAX_RATE


class Cart:
    """Lines being rung up at the till, one per product, in insertion order."""

    def __init__(self) -> None:
        self._lines: dict[int, CartItem] = {}

    def __iter__(self) -> Iterator[CartItem]:
        return iter(list(self._lines.values()))

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> list[CartItem]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get(self, product_id: int) -> Optional[CartItem]:
        return self._lines.get(int(product_id))

    def _require(self, product_id: int) -> CartItem:
        line = self._lines.get(int(product_id))
        if line is None:
            raise NotFoundError("Product is not in the cart.")
        return line

    def add(self, product: Product, rate: float) -> CartItem:
        existing = self._lines.get(product.id)
        if existing:
            if existing.quantity + 1 > existing.available_stock:
                raise InsufficientStockError(
                    f"Not enough stock for {product.name}. Available: {existing.available_stock}",
                    product_id=product.id,
                    available=existing.available_stock,
                )
            line = replace(existing, quantity=existing.quantity + 1)
        else:
            if int(product.stock) < 1:
                raise InsufficientStockError(
                    f"{product.name} is out of stock.", product_id=product.id, available=int(product.stock)
                )
            line = CartItem(
                product_id=product.id,
                name=product.name,
                unit_price_quoted=to_quoted(product.price_usd, rate),
                quantity=1,
                available_stock=int(product.stock),
            )
        self._lines[product.id] = line
        return line

    def set_quantity(self, product_id: int, qty: int) -> Optional[CartItem]:
        line = self._require(product_id)
        qty = max(0, min(int(qty), line.available_stock))
        if qty == 0:
            del self._lines[line.product_id]
            return None
        line = replace(line, quantity=qty)
        self._lines[line.product_id] = line
        return line

    def set_unit_price(self, product_id: int, price: float) -> CartItem:
        line = self._require(product_id)
        line = replace(line, unit_price_quoted=validate_price(price))
        self._lines[line.product_id] = line
        return line

    def remove(self, product_id: int) -> None:
        self._lines.pop(int(product_id), None)

    def clear(self) -> None:
        self._lines.clear()

    def displayed_stock(self, product: Product) -> int:
        line = self._lines.get(product.id)
        return int(product.stock) - (line.quantity if line else 0)

    def subtotal(self) -> float:
        return lines_subtotal(self._lines.values())

    def total(self) -> float:
        return lines_total(self._lines.values())
