import math
from pathlib import Path

import pytest

from shopdesk.domain.errors import AuthorizationError, FxUnavailableError, NotFoundError, ValidationError
from shopdesk.domain.models import NewSaleItem, User
from shopdesk.repositories.sqlite_repo import SqliteRepository
from shopdesk.services.fx_service import FxService
from shopdesk.services.ledger_service import LedgerService

MANAGER = User(id=2, username="mia", role="manager")
SELLER = User(id=3, username="sam", role="seller")


def _setup(tmp_path: Path, rate: float | None = 2000.0):
    repo = SqliteRepository(tmp_path / "cash.db")
    repo.init_db()
    fx = FxService(repo)
    if rate is not None:
        fx.record_rate(rate)
    return repo, LedgerService(repo, fx)


def _sale_on(repo: SqliteRepository, when: str, *items: tuple[int, int, float]) -> int:
    lines = [NewSaleItem(product_id=pid, qty=qty, unit_price_usd=price) for pid, qty, price in items]
    total = sum(it.qty * it.unit_price_usd for it in lines)
    return repo.create_sale_with_items(when, total, 2000.0, "cash", None, lines)


def test_expense_categories_are_unique_and_deleting_keeps_expenses(tmp_path: Path):
    _repo, ledger = _setup(tmp_path)

    rent = ledger.add_category("Rent")
    with pytest.raises(ValidationError, match="already exists"):
        ledger.add_category("  rent ")
    with pytest.raises(ValidationError):
        ledger.add_category("")

    ledger.rename_category(rent, "Shop rent")
    assert [c.name for c in ledger.list_categories()] == ["Shop rent"]

    eid = ledger.add_expense(30, description="March", category_id=rent, on="2026-03-01")
    assert ledger.get_expense(eid).category_name == "Shop rent"

    ledger.delete_category(rent)
    kept = ledger.get_expense(eid)
    assert kept.category_id is None
    assert kept.amount_usd == 30.0

    with pytest.raises(NotFoundError):
        ledger.delete_category(rent)
    with pytest.raises(NotFoundError):
        ledger.add_expense(5, category_id=999)


def test_expense_in_quoted_currency_is_stored_in_usd(tmp_path: Path):
    _repo, ledger = _setup(tmp_path, rate=2000.0)

    eid = ledger.add_expense(10000, currency="CDF", description="Transport", on="2026-03-02")
    assert ledger.get_expense(eid).amount_usd == pytest.approx(5.0)

    updated = ledger.update_expense(eid, 8, currency="usd", description="Transport")
    assert updated.amount_usd == 8.0
    assert updated.date == "2026-03-02"

    ledger.delete_expense(eid)
    assert ledger.list_expenses() == []
    with pytest.raises(NotFoundError):
        ledger.delete_expense(eid)


@pytest.mark.parametrize("bad", [0, -1, math.nan, math.inf, "abc"])
def test_expense_amount_must_be_finite_and_positive(tmp_path: Path, bad):
    _repo, ledger = _setup(tmp_path)

    with pytest.raises(ValidationError):
        ledger.add_expense(bad)
    assert ledger.list_expenses() == []


def test_quoted_expense_without_rate_and_bad_inputs_are_rejected(tmp_path: Path):
    _repo, ledger = _setup(tmp_path, rate=None)

    with pytest.raises(FxUnavailableError):
        ledger.add_expense(1000, currency="CDF")
    with pytest.raises(ValidationError, match="Unsupported currency"):
        ledger.add_expense(10, currency="EUR")
    with pytest.raises(ValidationError, match="Invalid date"):
        ledger.add_expense(10, on="03/01/2026")

    assert ledger.add_expense(10, currency="USD") > 0


def test_cash_entries_need_description_and_positive_amount(tmp_path: Path):
    _repo, ledger = _setup(tmp_path)

    with pytest.raises(ValidationError, match="Description"):
        ledger.add_cash_entry("  ", 10)
    with pytest.raises(ValidationError):
        ledger.add_cash_entry("Float", 0)

    cid = ledger.add_cash_entry("Opening float", 4000, currency="CDF", on="2026-03-01")
    assert ledger.get_cash_entry(cid).amount_usd == pytest.approx(2.0)

    changed = ledger.update_cash_entry(cid, "Opening float", 25)
    assert changed.amount_usd == 25.0
    assert [c.id for c in ledger.list_cash_entries("2026-03-01", "2026-03-01")] == [cid]

    ledger.delete_cash_entry(cid)
    with pytest.raises(NotFoundError):
        ledger.get_cash_entry(cid)


def test_cash_ledger_merges_sales_entries_and_expenses_with_running_balance(tmp_path: Path):
    repo, ledger = _setup(tmp_path)
    pid = repo.add_product("SKU-1", "Soap", 0.2, 0.5, 100, 0)

    _sale_on(repo, "2026-01-01 09:00:00", (pid, 10, 0.5))
    _sale_on(repo, "2026-01-01 17:30:00", (pid, 10, 0.5))
    _sale_on(repo, "2026-01-02 10:00:00", (pid, 8, 0.5))
    ledger.add_cash_entry("Owner top-up", 5, on="2026-01-01")
    ledger.add_expense(3, description="Bags", on="2026-01-02")

    book = ledger.cash_ledger()

    assert [(r.date, r.kind, r.entry, r.exit, r.balance) for r in book.rows] == [
        ("2026-01-01", "sales", 10.0, 0.0, 10.0),
        ("2026-01-01", "cash_entry", 5.0, 0.0, 15.0),
        ("2026-01-02", "sales", 4.0, 0.0, 19.0),
        ("2026-01-02", "expense", 0.0, 3.0, 16.0),
    ]
    assert book.total_entry == pytest.approx(19.0)
    assert book.total_exit == pytest.approx(3.0)
    assert book.balance == pytest.approx(16.0)

    window = ledger.cash_ledger(start="2026-01-02", end="2026-01-02")
    assert [r.balance for r in window.rows] == [4.0, 1.0]

    with pytest.raises(ValidationError):
        ledger.cash_ledger(start="2026-01-03", end="2026-01-02")


def test_daily_profit_uses_product_cost_newest_day_first(tmp_path: Path):
    repo, ledger = _setup(tmp_path)
    soap = repo.add_product("SKU-1", "Soap", 0.2, 0.5, 100, 0)
    rice = repo.add_product("SKU-2", "Rice", 1.0, 1.5, 100, 0)

    _sale_on(repo, "2026-02-01 09:00:00", (soap, 2, 0.5), (rice, 1, 1.5))
    _sale_on(repo, "2026-02-03 12:00:00", (soap, 1, 0.6))

    days = ledger.daily_profit(actor=MANAGER)

    assert [d.date for d in days] == ["2026-02-03", "2026-02-01"]
    assert days[0].revenue_usd == pytest.approx(0.6)
    assert days[0].cost_usd == pytest.approx(0.2)
    assert days[1].profit_usd == pytest.approx(2.5 - 1.4)
    assert days[1].margin == pytest.approx((2.5 - 1.4) / 2.5)

    assert [d.date for d in ledger.daily_profit("2026-02-02", "2026-02-28")] == ["2026-02-03"]
    assert ledger.daily_profit("2030-01-01", "2030-12-31") == []


def test_sellers_cannot_touch_the_cash_book(tmp_path: Path):
    _repo, ledger = _setup(tmp_path)

    with pytest.raises(AuthorizationError):
        ledger.add_expense(10, actor=SELLER)
    with pytest.raises(AuthorizationError):
        ledger.add_cash_entry("Float", 10, actor=SELLER)
    with pytest.raises(AuthorizationError):
        ledger.daily_profit(actor=SELLER)

    eid = ledger.add_expense(10, actor=MANAGER)
    assert ledger.get_expense(eid).actor_user_id == MANAGER.id


def test_schema_rejects_non_positive_cash_amounts(tmp_path: Path):
    repo, _ledger = _setup(tmp_path)

    conn = repo._conn()
    with pytest.raises(Exception):
        conn.execute("INSERT INTO expenses (date, amount_usd) VALUES ('2026-01-01', 0)")
    with pytest.raises(Exception):
        conn.execute("INSERT INTO cash_entries (date, description, amount_usd) VALUES ('2026-01-01', 'x', -5)")
    conn.close()
