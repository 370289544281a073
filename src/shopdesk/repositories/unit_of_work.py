from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from shopdesk.domain.models import NewSaleItem
from shopdesk.domain.reconciliation import ReconciliationPlan
from shopdesk.repositories.sqlite_repo import now_iso


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def create_sale(
        self,
        total_usd: float,
        fx_rate: float,
        payment_method: str,
        customer_id: Optional[int],
        items: Iterable[NewSaleItem],
        actor_user_id: int | None = None,
    ) -> tuple[int, str]: ...
    def apply_sale_edit(self, sale_id: int, plan: ReconciliationPlan, actor_user_id: int | None = None) -> None: ...
    def delete_sale(self, sale_id: int, actor_user_id: int | None = None) -> int: ...


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for transactional write use-cases.

    Each repository method below runs in a single SQL transaction.
    This class stamps the server-side time and keeps services persistence-agnostic.
    """

    repo: object

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def create_sale(
        self,
        total_usd: float,
        fx_rate: float,
        payment_method: str,
        customer_id: Optional[int],
        items: Iterable[NewSaleItem],
        actor_user_id: int | None = None,
    ) -> tuple[int, str]:
        dt_iso = now_iso()
        sale_id = self.repo.create_sale_with_items(
            datetime_iso=dt_iso,
            total_usd=total_usd,
            fx_rate=fx_rate,
            payment_method=payment_method,
            customer_id=customer_id,
            items=items,
            actor_user_id=actor_user_id,
        )
        return int(sale_id), dt_iso

    def apply_sale_edit(self, sale_id: int, plan: ReconciliationPlan, actor_user_id: int | None = None) -> None:
        self.repo.apply_sale_edit(sale_id, plan, now_iso(), actor_user_id=actor_user_id)

    def delete_sale(self, sale_id: int, actor_user_id: int | None = None) -> int:
        return int(self.repo.delete_sale_restoring_stock(sale_id, now_iso(), actor_user_id=actor_user_id))
