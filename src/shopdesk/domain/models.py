from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile_money"


@dataclass(frozen=True)
class Product:
    id: int
    barcode: str
    name: str
    cost_usd: float
    price_usd: float
    stock: int
    min_stock: int
    active: int = 1


@dataclass(frozen=True)
class ExchangeRate:
    id: int
    rate: float
    created_at: str
    actor_user_id: Optional[int] = None


@dataclass(frozen=True)
class Customer:
    id: int
    full_name: str
    phone: Optional[str]
    is_standard: int = 0


@dataclass(frozen=True)
class CartItem:
    """A cart line. Prices are in the quoted currency."""

    product_id: int
    name: str
    unit_price_quoted: float
    quantity: int
    available_stock: int

    @property
    def line_total_quoted(self) -> float:
        return self.unit_price_quoted * self.quantity


@dataclass(frozen=True)
class NewSaleItem:
    """A sale item about to be written. Prices are in the base currency."""

    product_id: int
    qty: int
    unit_price_usd: float


@dataclass(frozen=True)
class Sale:
    id: int
    datetime: str
    total_usd: float
    fx_rate: float
    payment_method: str
    customer_id: Optional[int]
    customer_name: Optional[str]
    actor_user_id: Optional[int]
    agent_name: Optional[str] = None

    @property
    def total_quoted(self) -> float:
        return self.total_usd * self.fx_rate


@dataclass(frozen=True)
class SaleItem:
    id: int
    sale_id: int
    product_id: int
    product_name: str
    qty: int
    unit_price_usd: float

    @property
    def line_total_usd(self) -> float:
        return self.qty * self.unit_price_usd


@dataclass(frozen=True)
class EditLine:
    """Editable copy of a sale item; `item_id` is None for lines added during the edit."""

    product_id: int
    name: str
    qty: int
    unit_price_usd: float
    item_id: Optional[int] = None

    @classmethod
    def from_sale_item(cls, item: SaleItem) -> "EditLine":
        return cls(
            product_id=item.product_id,
            name=item.product_name,
            qty=item.qty,
            unit_price_usd=item.unit_price_usd,
            item_id=item.id,
        )


@dataclass(frozen=True)
class ReceiptLine:
    name: str
    quantity: int
    unit_price_quoted: float

    @property
    def line_total_quoted(self) -> float:
        return self.quantity * self.unit_price_quoted


@dataclass(frozen=True)
class Receipt:
    sale_id: int
    invoice_number: str
    datetime: str
    lines: tuple[ReceiptLine, ...]
    total_quoted: float
    total_usd: float
    customer_name: Optional[str]
    payment_method: str
    fx_rate: float
    operator_name: Optional[str] = None


@dataclass(frozen=True)
class StockCheck:
    ok: bool
    available: int


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: str
    active: int = 1
    must_change_pin: int = 0


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    datetime: str
    product_id: int
    movement_type: str
    qty_delta: int
    stock_after: int
    reference_type: str
    reference_id: Optional[int]
    actor_user_id: Optional[int]
    notes: Optional[str]


@dataclass(frozen=True)
class ExpenseCategory:
    id: int
    name: str


@dataclass(frozen=True)
class Expense:
    id: int
    date: str
    description: Optional[str]
    amount_usd: float
    category_id: Optional[int]
    category_name: Optional[str] = None
    actor_user_id: Optional[int] = None


@dataclass(frozen=True)
class CashEntry:
    id: int
    date: str
    description: str
    amount_usd: float
    actor_user_id: Optional[int] = None


@dataclass(frozen=True)
class CashLedgerRow:
    """One line of the cash book. `entry` and `exit` are USD; `balance` is the running total."""
    date: str
    kind: str
    description: str
    entry: float
    exit: float
    balance: float
    reference_id: Optional[int] = None


@dataclass(frozen=True)
class CashLedger:
    rows: tuple[CashLedgerRow, ...]
    total_entry: float
    total_exit: float

    @property
    def balance(self) -> float:
        return self.total_entry - self.total_exit


@dataclass(frozen=True)
class DailyProfit:
    date: str
    revenue_usd: float
    cost_usd: float

    @property
    def profit_usd(self) -> float:
        return self.revenue_usd - self.cost_usd

    @property
    def margin(self) -> float:
        """Profit over revenue, 0.0 on a day with no revenue."""
        return self.profit_usd / self.revenue_usd if self.revenue_usd else 0.0
