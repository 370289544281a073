from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from shopdesk.domain.models import EditLine, SaleItem


@dataclass(frozen=True)
class ItemUpdate:
    item_id: int
    product_id: int
    old_qty: int
    new_qty: int
    unit_price_usd: float

    @property
    def delta(self) -> int:
        """Positive: more units leave the shelf. Negative: units come back."""
        return self.new_qty - self.old_qty


@dataclass(frozen=True)
class ReconciliationPlan:
    removals: tuple[SaleItem, ...]
    updates: tuple[ItemUpdate, ...]
    additions: tuple[EditLine, ...]
    total_usd: float

    def stock_deltas(self) -> dict[int, int]:
        """Net stock change per product (negative means stock goes down)."""
        out: dict[int, int] = {}
        for old in self.removals:
            out[old.product_id] = out.get(old.product_id, 0) + old.qty
        for up in self.updates:
            if up.delta:
                out[up.product_id] = out.get(up.product_id, 0) - up.delta
        for new in self.additions:
            out[new.product_id] = out.get(new.product_id, 0) - new.qty
        return out


def sale_total(lines: Iterable[EditLine]) -> float:
    return sum(line.qty * line.unit_price_usd for line in lines)


def plan_reconciliation(old_items: Iterable[SaleItem], new_lines: Iterable[EditLine]) -> ReconciliationPlan:
    """
    Compare persisted items with the edited lines, keyed by product:
      old only -> removal (stock back, row deleted)
      both     -> update (stock moves by the qty delta, row rewritten)
      new only -> addition (stock out, row inserted)
    """
    old_by_product = {it.product_id: it for it in old_items}
    new_by_product = {ln.product_id: ln for ln in new_lines}

    removals = tuple(it for pid, it in old_by_product.items() if pid not in new_by_product)

    updates: list[ItemUpdate] = []
    additions: list[EditLine] = []
    for pid, line in new_by_product.items():
        old = old_by_product.get(pid)
        if old is None:
            additions.append(line)
            continue
        updates.append(
            ItemUpdate(
                item_id=old.id,
                product_id=pid,
                old_qty=int(old.qty),
                new_qty=int(line.qty),
                unit_price_usd=float(line.unit_price_usd),
            )
        )

    return ReconciliationPlan(
        removals=removals,
        updates=tuple(updates),
        additions=tuple(additions),
        total_usd=sale_total(new_by_product.values()),
    )
