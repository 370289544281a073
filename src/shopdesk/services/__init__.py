from .fx_service import FxService
from .inventory_service import InventoryService
from .customer_service import CustomerService
from .sales_service import SalesService
from .sale_edit_service import SaleEditService, SaleEditSession
from .checkout import Checkout, CheckoutState
from .excel_service import ExcelService
from .auth_service import AuthService
from .ledger_service import LedgerService
from .session import SessionManager

__all__ = [
    "FxService",
    "InventoryService",
    "CustomerService",
    "SalesService",
    "SaleEditService",
    "SaleEditSession",
    "Checkout",
    "CheckoutState",
    "ExcelService",
    "AuthService",
    "LedgerService",
    "SessionManager",
]
