from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Optional

from shopdesk.domain.currency import to_base, validate_price, validate_rate
from shopdesk.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from shopdesk.domain.models import EditLine, Sale, SaleItem, StockCheck, User
from shopdesk.domain.reconciliation import plan_reconciliation, sale_total
from shopdesk.repositories.contracts import SaleRepository
from shopdesk.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("shopdesk.sales")


class SaleEditSession:
    """
    Editable copy of a saved sale, one line per product, prices in USD.

    Quantity increases and new lines are checked against current stock
    before they enter the buffer; decreases and removals never are.
    """

    def __init__(self, sale: Sale, items: list[SaleItem], inventory_service):
        self.sale = sale
        self.rate = validate_rate(sale.fx_rate)
        self.original: dict[int, SaleItem] = {it.product_id: it for it in items}
        self._lines: dict[int, EditLine] = {it.product_id: EditLine.from_sale_item(it) for it in items}
        self._inventory = inventory_service

    @property
    def lines(self) -> list[EditLine]:
        return list(self._lines.values())

    def get(self, product_id: int) -> Optional[EditLine]:
        return self._lines.get(int(product_id))

    def _require(self, product_id: int) -> EditLine:
        line = self._lines.get(int(product_id))
        if line is None:
            raise NotFoundError("Product is not part of this sale.")
        return line

    def persisted_qty(self, product_id: int) -> int:
        old = self.original.get(int(product_id))
        return int(old.qty) if old else 0

    def check_stock(self, product_id: int, requested_delta: int) -> StockCheck:
        return self._inventory.check_stock(int(product_id), int(requested_delta))

    def _require_stock_for(self, product_id: int, name: str, new_qty: int) -> None:
        # stock already reflects the saved quantity, so only the excess is checked
        delta = int(new_qty) - self.persisted_qty(product_id)
        if delta <= 0:
            return
        check = self.check_stock(product_id, delta)
        if not check.ok:
            raise InsufficientStockError(
                f"Not enough stock for {name}. Available: {check.available}",
                product_id=int(product_id),
                available=check.available,
            )

    def remove_line(self, product_id: int) -> None:
        self._require(product_id)
        del self._lines[int(product_id)]

    def set_quantity(self, product_id: int, qty: int) -> EditLine:
        line = self._require(product_id)
        qty = int(qty)
        if qty < 1:
            raise ValidationError("Qty must be >= 1. Remove the line instead.")
        self._require_stock_for(line.product_id, line.name, qty)
        line = replace(line, qty=qty)
        self._lines[line.product_id] = line
        return line

    def set_unit_price(self, product_id: int, price_usd: float) -> EditLine:
        line = self._require(product_id)
        line = replace(line, unit_price_usd=validate_price(price_usd))
        self._lines[line.product_id] = line
        return line

    def set_unit_price_quoted(self, product_id: int, price_quoted: float) -> EditLine:
        return self.set_unit_price(product_id, to_base(validate_price(price_quoted), self.rate))

    def add_product(self, product_id: int) -> EditLine:
        existing = self._lines.get(int(product_id))
        if existing:
            return self.set_quantity(existing.product_id, existing.qty + 1)

        product = self._inventory.get_product(int(product_id))
        self._require_stock_for(product.id, product.name, 1)
        line = EditLine(product_id=product.id, name=product.name, qty=1, unit_price_usd=float(product.price_usd))
        self._lines[product.id] = line
        return line

    def total_usd(self) -> float:
        return sale_total(self._lines.values())

    def total_quoted(self) -> float:
        return self.total_usd() * self.rate


class SaleEditService:
    def __init__(
        self,
        repo: SaleRepository,
        inventory_service,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.inventory = inventory_service
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def open(self, sale_id: int) -> SaleEditSession:
        sale = self.repo.get_sale(int(sale_id))
        if not sale:
            raise NotFoundError("Sale not found.")
        return SaleEditSession(sale, self.repo.get_sale_items(sale.id), self.inventory)

    def save(self, session: SaleEditSession, actor: Optional[User] = None) -> Sale:
        lines = session.lines
        if not lines:
            raise ValidationError("A sale needs at least one item. Delete the sale instead.")
        for line in lines:
            if int(line.qty) < 1:
                raise ValidationError("Qty must be >= 1.")
            validate_price(line.unit_price_usd)

        # compare against what is stored now, not what was loaded when the edit began
        old_items = self.repo.get_sale_items(session.sale.id)
        plan = plan_reconciliation(old_items, lines)
        actor_id = actor.id if actor else None

        try:
            with self.uow_factory() as uow:
                uow.apply_sale_edit(session.sale.id, plan, actor_user_id=actor_id)
        except InsufficientStockError as e:
            log.warning("sale_edit_rejected_stock sale_id=%s product_id=%s available=%s",
                        session.sale.id, e.product_id, e.available)
            raise

        log.info(
            "sale_edited sale_id=%s removed=%s updated=%s added=%s stock=%s total_usd=%.2f actor=%s",
            session.sale.id, len(plan.removals), len(plan.updates), len(plan.additions),
            plan.stock_deltas(), plan.total_usd, actor_id,
        )
        updated = self.repo.get_sale(session.sale.id)
        if not updated:
            raise NotFoundError("Sale not found.")
        return updated
