from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path

from shopdesk.config import Settings, load_settings
from shopdesk.repositories.sqlite_repo import SqliteRepository
from shopdesk.services.auth_service import AuthService
from shopdesk.services.checkout import Checkout
from shopdesk.services.customer_service import CustomerService
from shopdesk.services.excel_service import ExcelService
from shopdesk.services.fx_service import FxService
from shopdesk.services.inventory_service import InventoryService
from shopdesk.services.ledger_service import LedgerService
from shopdesk.services.sale_edit_service import SaleEditService
from shopdesk.services.sales_service import SalesService
from shopdesk.services.session import SessionManager


@dataclass(frozen=True)
class AppContainer:
    settings: Settings
    repo: SqliteRepository
    fx: FxService
    inventory: InventoryService
    customers: CustomerService
    sales: SalesService
    edits: SaleEditService
    excel: ExcelService
    ledger: LedgerService
    auth: AuthService
    session: SessionManager

    def new_checkout(self) -> Checkout:
        checkout = Checkout(self.sales, self.fx, self.inventory, self.customers)
        checkout.refresh_rate()
        checkout.refresh_products()
        return checkout


def build_container(db_path: Path | str, settings: Settings | None = None, timer_factory=None) -> AppContainer:
    settings = settings or load_settings()

    repo = SqliteRepository(db_path)
    repo.init_db()

    fx = FxService(
        repo,
        sources=settings.fx_sources,
        quoted_currency=settings.quoted_currency,
        timeout=settings.fx_timeout_seconds,
    )
    inventory = InventoryService(repo)
    customers = CustomerService(repo)
    sales = SalesService(repo, fx, enabled_payment_methods=settings.enabled_payment_methods)
    edits = SaleEditService(repo, inventory)
    excel = ExcelService(repo)
    ledger = LedgerService(repo, fx, base_currency=settings.base_currency)
    auth = AuthService(repo)
    session = SessionManager(
        auth,
        idle_timeout_seconds=settings.idle_timeout_seconds,
        timer_factory=timer_factory or threading.Timer,
    )

    return AppContainer(
        settings=settings,
        repo=repo,
        fx=fx,
        inventory=inventory,
        customers=customers,
        sales=sales,
        edits=edits,
        excel=excel,
        ledger=ledger,
        auth=auth,
        session=session,
    )
