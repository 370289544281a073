from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from shopdesk.domain.cart import lines_total, to_new_sale_item
from shopdesk.domain.currency import to_base, validate_price, validate_rate
from shopdesk.domain.errors import (
    FxUnavailableError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from shopdesk.domain.models import (
    CartItem,
    Customer,
    PaymentMethod,
    Receipt,
    ReceiptLine,
    Sale,
    SaleItem,
    User,
)
from shopdesk.repositories.contracts import SaleRepository
from shopdesk.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork
from shopdesk.services.auth_service import role_can

log = logging.getLogger("shopdesk.sales")


def invoice_number(sale_id: int | str, when: datetime | None = None, prefix: str = "Fac") -> str:
    when = when or datetime.now()
    return f"{prefix}-{when:%y%m}-{str(sale_id)[:6].upper()}"


def _parse_dt(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return datetime.now()


class SalesService:
    def __init__(
        self,
        repo: SaleRepository,
        fx_service,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        enabled_payment_methods: Sequence[str] = (PaymentMethod.CASH.value,),
    ):
        self.repo = repo
        self.fx = fx_service
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))
        self.enabled_payment_methods = tuple(enabled_payment_methods)

    def validate_payment_method(self, method: str | PaymentMethod | None) -> str:
        if not method:
            raise ValidationError("Choose a payment method.")
        value = method.value if isinstance(method, PaymentMethod) else str(method).strip().lower()
        if value not in {m.value for m in PaymentMethod}:
            raise ValidationError(f"Unknown payment method: {value}")
        if value not in self.enabled_payment_methods:
            raise ValidationError(f"Payment method '{value}' is not enabled.")
        return value

    def _current_rate(self) -> float:
        try:
            return validate_rate(self.fx.require_rate())
        except FxUnavailableError:
            raise
        except (TypeError, ValueError) as e:
            raise FxUnavailableError(str(e)) from e

    def finalize_sale(
        self,
        lines: Iterable[CartItem],
        payment_method: str | PaymentMethod | None,
        customer: Optional[Customer] = None,
        actor: Optional[User] = None,
    ) -> Receipt:
        """
        lines: cart lines, unit prices in the quoted currency.

        Re-reads the current rate, then writes header, items and stock
        decrements in one transaction. Nothing is written if any step fails.
        """
        lines = list(lines)
        if not lines:
            raise ValidationError("Cart is empty.")

        seen: set[int] = set()
        for line in lines:
            if int(line.quantity) <= 0:
                raise ValidationError("Qty must be >= 1.")
            validate_price(line.unit_price_quoted)
            if line.product_id in seen:
                raise ValidationError(f"{line.name} appears twice in the cart.")
            seen.add(line.product_id)

        method = self.validate_payment_method(payment_method)
        if customer is None:
            customer = self.repo.get_standard_customer()

        rate = self._current_rate()
        total_quoted = lines_total(lines)
        total_usd = to_base(total_quoted, rate)
        items = [to_new_sale_item(line, rate) for line in lines]
        actor_id = actor.id if actor else None

        try:
            with self.uow_factory() as uow:
                sale_id, dt_iso = uow.create_sale(
                    total_usd,
                    rate,
                    method,
                    customer.id if customer else None,
                    items,
                    actor_user_id=actor_id,
                )
        except InsufficientStockError as e:
            log.warning("sale_rejected_stock product_id=%s available=%s", e.product_id, e.available)
            raise

        log.info(
            "sale_created sale_id=%s items=%s total_usd=%.2f fx=%.4f method=%s actor=%s",
            sale_id, len(items), total_usd, rate, method, actor_id,
        )
        return Receipt(
            sale_id=sale_id,
            invoice_number=invoice_number(sale_id, _parse_dt(dt_iso)),
            datetime=dt_iso,
            lines=tuple(ReceiptLine(l.name, int(l.quantity), float(l.unit_price_quoted)) for l in lines),
            total_quoted=total_quoted,
            total_usd=total_usd,
            customer_name=customer.full_name if customer else None,
            payment_method=method,
            fx_rate=rate,
            operator_name=actor.username if actor else None,
        )

    def delete_sale(self, sale_id: int, actor: Optional[User] = None) -> None:
        actor_id = actor.id if actor else None
        with self.uow_factory() as uow:
            restored = uow.delete_sale(int(sale_id), actor_user_id=actor_id)
        log.info("sale_deleted sale_id=%s lines_restored=%s actor=%s", sale_id, restored, actor_id)

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.repo.get_sale(int(sale_id))
        if not sale:
            raise NotFoundError("Sale not found.")
        return sale

    def sale_items_for_sale(self, sale_id: int) -> list[SaleItem]:
        return self.repo.get_sale_items(int(sale_id))

    def list_sales_between(self, start_iso: str, end_iso: str) -> list[Sale]:
        return self.repo.list_sales_between(start_iso, end_iso)

    def list_sales_for(self, user: User, start_iso: str, end_iso: str, today: date | None = None) -> list[Sale]:
        """Sellers only ever see today's sales, whatever window they ask for."""
        if not role_can(user.role, "view_all_sales"):
            today = today or date.today()
            start_iso = today.isoformat()
            end_iso = (today + timedelta(days=1)).isoformat()
        return self.repo.list_sales_between(start_iso, end_iso)

    def receipt_for(self, sale_id: int) -> Receipt:
        """Duplicate receipt rebuilt from the stored rate snapshot."""
        sale = self.get_sale(sale_id)
        items = self.repo.get_sale_items(sale.id)
        return Receipt(
            sale_id=sale.id,
            invoice_number="Dupli " + invoice_number(sale.id, _parse_dt(sale.datetime)),
            datetime=sale.datetime,
            lines=tuple(ReceiptLine(it.product_name, it.qty, it.unit_price_usd * sale.fx_rate) for it in items),
            total_quoted=sale.total_quoted,
            total_usd=sale.total_usd,
            customer_name=sale.customer_name,
            payment_method=sale.payment_method,
            fx_rate=sale.fx_rate,
            operator_name=sale.agent_name,
        )
