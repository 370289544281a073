from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional

from shopdesk.domain.cart import Cart
from shopdesk.domain.errors import FxUnavailableError, ValidationError
from shopdesk.domain.models import CartItem, Customer, Product, Receipt, User

log = logging.getLogger("shopdesk.sales")


class CheckoutState(str, Enum):
    EMPTY_CART = "empty_cart"
    ITEMS_SELECTED = "items_selected"
    CUSTOMER_RESOLVED = "customer_resolved"
    PAYMENT_SELECTED = "payment_selected"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"


class Checkout:
    """One till: the cart being built, who is buying, how they pay, and the last receipt."""

    def __init__(self, sales_service, fx_service, inventory_service, customer_service):
        self.sales = sales_service
        self.fx = fx_service
        self.inventory = inventory_service
        self.customers = customer_service

        self.cart = Cart()
        self.customer: Optional[Customer] = None
        self.payment_method: Optional[str] = None
        self.products: list[Product] = []
        self.display_rate: Optional[float] = None
        self.last_receipt: Optional[Receipt] = None
        self.last_error: Optional[Exception] = None

        self._outcome: Optional[CheckoutState] = None
        self._submitting = False
        self._submit_lock = threading.Lock()

    @property
    def state(self) -> CheckoutState:
        if self._submitting:
            return CheckoutState.SUBMITTING
        if self._outcome is not None:
            return self._outcome
        if self.cart.is_empty:
            return CheckoutState.EMPTY_CART
        if self.customer is None:
            return CheckoutState.ITEMS_SELECTED
        if self.payment_method is None:
            return CheckoutState.CUSTOMER_RESOLVED
        return CheckoutState.PAYMENT_SELECTED

    @property
    def total_quoted(self) -> float:
        return self.cart.total()

    @property
    def can_submit(self) -> bool:
        return self.state is CheckoutState.PAYMENT_SELECTED

    def refresh_products(self) -> list[Product]:
        self.products = self.inventory.list_products()
        return self.products

    def refresh_rate(self) -> Optional[float]:
        """Rate shown on screen; submit re-reads it anyway."""
        latest = self.fx.get_latest_rate()
        self.display_rate = latest.rate if latest else None
        return self.display_rate

    def _touch(self) -> None:
        self._outcome = None
        self.last_error = None

    def add_product(self, product_id: int) -> CartItem:
        rate = self.display_rate if self.display_rate else self.refresh_rate()
        if not rate:
            raise FxUnavailableError("No exchange rate available to price the item.")
        product = self.inventory.get_product(product_id)
        line = self.cart.add(product, rate)
        self._touch()
        return line

    def set_quantity(self, product_id: int, qty: int) -> Optional[CartItem]:
        line = self.cart.set_quantity(product_id, qty)
        self._touch()
        return line

    def set_unit_price(self, product_id: int, price: float) -> CartItem:
        line = self.cart.set_unit_price(product_id, price)
        self._touch()
        return line

    def remove(self, product_id: int) -> None:
        self.cart.remove(product_id)
        self._touch()

    def resolve_customer(self, phone: str | None) -> Customer:
        self.customer = self.customers.lookup(phone)
        self._touch()
        return self.customer

    def select_payment(self, method: str) -> str:
        self.payment_method = self.sales.validate_payment_method(method)
        self._touch()
        return self.payment_method

    def submit(self, actor: Optional[User] = None) -> Receipt:
        if not self._submit_lock.acquire(blocking=False):
            raise ValidationError("A sale is already being submitted.")
        try:
            if self.cart.is_empty:
                raise ValidationError("Cart is empty.")
            if self.customer is None:
                raise ValidationError("Confirm the customer before completing the sale.")
            if self.payment_method is None:
                raise ValidationError("Choose a payment method.")

            self._touch()
            self._submitting = True
            try:
                receipt = self.sales.finalize_sale(self.cart.lines, self.payment_method, self.customer, actor)
            except Exception as e:
                self._outcome = CheckoutState.FAILED
                self.last_error = e
                log.warning("checkout_failed error=%s", e)
                raise

            self.last_receipt = receipt
            self.display_rate = receipt.fx_rate
            self.cart.clear()
            self.customer = None
            self.payment_method = None
            self._outcome = CheckoutState.COMPLETED
        finally:
            self._submitting = False
            self._submit_lock.release()

        # sale is already committed at this point
        try:
            self.refresh_products()
        except Exception:
            log.exception("checkout_refresh_failed sale_id=%s", receipt.sale_id)
        return receipt
