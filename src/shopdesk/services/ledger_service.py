from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from shopdesk.domain.currency import to_base, validate_amount
from shopdesk.domain.errors import AuthorizationError, NotFoundError, ValidationError
from shopdesk.domain.models import (
    CashEntry,
    CashLedger,
    CashLedgerRow,
    DailyProfit,
    Expense,
    ExpenseCategory,
    User,
)
from shopdesk.services.auth_service import role_can

log = logging.getLogger("shopdesk.cash")

# open-ended bounds for date-only filters
_FIRST_DAY = "0001-01-01"
_LAST_DAY = "9999-12-31"


def _day(value: date | str | None, default: str) -> str:
    if value is None or value == "":
        return default
    if isinstance(value, date):
        return value.isoformat()[:10]
    text = str(value).strip()[:10]
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value!r}. Use YYYY-MM-DD.") from exc


def _text(value: str | None) -> Optional[str]:
    return (value or "").strip() or None


class LedgerService:
    """
    Money that moves through the till outside of sales.

    Expenses and cash entries are stored in the base currency; amounts typed
    in the quoted currency are converted at the latest recorded rate. The
    cash book merges daily sales totals, cash entries and expenses.
    """

    def __init__(self, repo, fx_service, base_currency: str = "USD"):
        self.repo = repo
        self.fx = fx_service
        self.base_currency = base_currency.lower()

    def _check(self, actor: Optional[User], action: str) -> Optional[int]:
        if actor is None:
            return None
        if not role_can(actor.role, action):
            raise AuthorizationError(f"Role '{actor.role}' is not allowed to perform '{action}'.")
        return actor.id

    def _to_usd(self, amount: float, currency: str | None) -> float:
        amount = validate_amount(amount)
        code = (currency or self.base_currency).strip().lower()
        if code == self.base_currency:
            return amount
        if code == self.fx.quoted_currency:
            return to_base(amount, self.fx.require_rate())
        raise ValidationError(f"Unsupported currency: {currency}")

    # ---------- Categories ----------
    def list_categories(self) -> list[ExpenseCategory]:
        return self.repo.list_expense_categories()

    def add_category(self, name: str, actor: Optional[User] = None) -> int:
        self._check(actor, "manage_cash")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required.")
        if self.repo.get_expense_category_by_name(name):
            raise ValidationError(f"Category '{name}' already exists.")
        return self.repo.add_expense_category(name)

    def rename_category(self, category_id: int, name: str, actor: Optional[User] = None) -> None:
        self._check(actor, "manage_cash")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required.")
        existing = self.repo.get_expense_category_by_name(name)
        if existing and existing.id != int(category_id):
            raise ValidationError(f"Category '{name}' already exists.")
        if not self.repo.rename_expense_category(int(category_id), name):
            raise NotFoundError("Category not found.")

    def delete_category(self, category_id: int, actor: Optional[User] = None) -> None:
        self._check(actor, "manage_cash")
        if not self.repo.delete_expense_category(int(category_id)):
            raise NotFoundError("Category not found.")

    def _category_id(self, category_id: Optional[int]) -> Optional[int]:
        if category_id is None:
            return None
        if not any(c.id == int(category_id) for c in self.repo.list_expense_categories()):
            raise NotFoundError("Category not found.")
        return int(category_id)

    # ---------- Expenses ----------
    def add_expense(
        self,
        amount: float,
        currency: str | None = None,
        description: str | None = None,
        category_id: Optional[int] = None,
        on: date | str | None = None,
        actor: Optional[User] = None,
    ) -> int:
        actor_id = self._check(actor, "manage_cash")
        amount_usd = self._to_usd(amount, currency)
        day = _day(on, date.today().isoformat())
        eid = self.repo.add_expense(day, _text(description), amount_usd, self._category_id(category_id), actor_id)
        log.info("expense_added id=%s date=%s amount_usd=%.2f category=%s actor=%s",
                 eid, day, amount_usd, category_id, actor_id)
        return eid

    def update_expense(
        self,
        expense_id: int,
        amount: float,
        currency: str | None = None,
        description: str | None = None,
        category_id: Optional[int] = None,
        on: date | str | None = None,
        actor: Optional[User] = None,
    ) -> Expense:
        actor_id = self._check(actor, "manage_cash")
        current = self.get_expense(expense_id)
        amount_usd = self._to_usd(amount, currency)
        day = _day(on, current.date)
        self.repo.update_expense(current.id, day, _text(description), amount_usd, self._category_id(category_id))
        log.info("expense_updated id=%s date=%s amount_usd=%.2f actor=%s", current.id, day, amount_usd, actor_id)
        return self.get_expense(current.id)

    def delete_expense(self, expense_id: int, actor: Optional[User] = None) -> None:
        actor_id = self._check(actor, "manage_cash")
        if not self.repo.delete_expense(int(expense_id)):
            raise NotFoundError("Expense not found.")
        log.info("expense_deleted id=%s actor=%s", expense_id, actor_id)

    def get_expense(self, expense_id: int) -> Expense:
        found = self.repo.get_expense(int(expense_id))
        if not found:
            raise NotFoundError("Expense not found.")
        return found

    def list_expenses(self, start: date | str | None = None, end: date | str | None = None) -> list[Expense]:
        return self.repo.list_expenses_between(_day(start, _FIRST_DAY), _day(end, _LAST_DAY))

    # ---------- Cash entries ----------
    def add_cash_entry(
        self,
        description: str,
        amount: float,
        currency: str | None = None,
        on: date | str | None = None,
        actor: Optional[User] = None,
    ) -> int:
        actor_id = self._check(actor, "manage_cash")
        text = _text(description)
        if not text:
            raise ValidationError("Description is required.")
        amount_usd = self._to_usd(amount, currency)
        day = _day(on, date.today().isoformat())
        cid = self.repo.add_cash_entry(day, text, amount_usd, actor_id)
        log.info("cash_entry_added id=%s date=%s amount_usd=%.2f actor=%s", cid, day, amount_usd, actor_id)
        return cid

    def update_cash_entry(
        self,
        entry_id: int,
        description: str,
        amount: float,
        currency: str | None = None,
        on: date | str | None = None,
        actor: Optional[User] = None,
    ) -> CashEntry:
        actor_id = self._check(actor, "manage_cash")
        current = self.get_cash_entry(entry_id)
        text = _text(description)
        if not text:
            raise ValidationError("Description is required.")
        amount_usd = self._to_usd(amount, currency)
        day = _day(on, current.date)
        self.repo.update_cash_entry(current.id, day, text, amount_usd)
        log.info("cash_entry_updated id=%s date=%s amount_usd=%.2f actor=%s", current.id, day, amount_usd, actor_id)
        return self.get_cash_entry(current.id)

    def delete_cash_entry(self, entry_id: int, actor: Optional[User] = None) -> None:
        actor_id = self._check(actor, "manage_cash")
        if not self.repo.delete_cash_entry(int(entry_id)):
            raise NotFoundError("Cash entry not found.")
        log.info("cash_entry_deleted id=%s actor=%s", entry_id, actor_id)

    def get_cash_entry(self, entry_id: int) -> CashEntry:
        found = self.repo.get_cash_entry(int(entry_id))
        if not found:
            raise NotFoundError("Cash entry not found.")
        return found

    def list_cash_entries(self, start: date | str | None = None, end: date | str | None = None) -> list[CashEntry]:
        return self.repo.list_cash_entries_between(_day(start, _FIRST_DAY), _day(end, _LAST_DAY))

    # ---------- Reports ----------
    def cash_ledger(self, start: date | str | None = None, end: date | str | None = None) -> CashLedger:
        """
        Entries are each day's sales total plus manual cash entries; exits are
        expenses. Rows are sorted by date (sales, then entries, then expenses
        within a day) and carry a running balance from the start of the window.
        """
        first = _day(start, _FIRST_DAY)
        last = _day(end, _LAST_DAY)
        if first > last:
            raise ValidationError("Start date must not be after end date.")

        # (date, order within day, kind, description, entry, exit, reference)
        moves: list[tuple[str, int, str, str, float, float, Optional[int]]] = []
        for day, total in self.repo.daily_sales_totals(first, last):
            moves.append((day, 0, "sales", "Daily sales", total, 0.0, None))
        for c in self.repo.list_cash_entries_between(first, last):
            moves.append((c.date, 1, "cash_entry", c.description, c.amount_usd, 0.0, c.id))
        for e in self.repo.list_expenses_between(first, last):
            label = e.description or e.category_name or "Expense"
            moves.append((e.date, 2, "expense", label, 0.0, e.amount_usd, e.id))
        moves.sort(key=lambda m: (m[0], m[1], m[6] or 0))

        rows: list[CashLedgerRow] = []
        balance = total_entry = total_exit = 0.0
        for day, _order, kind, text, entry, exit_, ref in moves:
            balance += entry - exit_
            total_entry += entry
            total_exit += exit_
            rows.append(CashLedgerRow(day, kind, text, entry, exit_, balance, ref))

        return CashLedger(rows=tuple(rows), total_entry=total_entry, total_exit=total_exit)

    def daily_profit(
        self,
        start: date | str | None = None,
        end: date | str | None = None,
        actor: Optional[User] = None,
    ) -> list[DailyProfit]:
        self._check(actor, "view_reports")
        return self.repo.daily_profit(_day(start, _FIRST_DAY), _day(end, _LAST_DAY))
