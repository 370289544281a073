import logging
from dataclasses import replace
from pathlib import Path

import pytest

from shopdesk.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from shopdesk.domain.models import CartItem, EditLine, SaleItem
from shopdesk.domain.reconciliation import plan_reconciliation
from shopdesk.repositories.sqlite_repo import SqliteRepository
from shopdesk.services.fx_service import FxService
from shopdesk.services.inventory_service import InventoryService
from shopdesk.services.sale_edit_service import SaleEditService
from shopdesk.services.sales_service import SalesService


def _setup(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "edit.db")
    repo.init_db()
    inv = InventoryService(repo)
    fx = FxService(repo)
    fx.record_rate(2000)
    sales = SalesService(repo, fx)
    edits = SaleEditService(repo, inv)
    return repo, inv, sales, edits


def _sell(sales: SalesService, *lines: tuple[int, int]) -> int:
    cart = [
        CartItem(product_id=pid, name=f"P{pid}", unit_price_quoted=1000.0, quantity=qty, available_stock=99)
        for pid, qty in lines
    ]
    return sales.finalize_sale(cart, "cash").sale_id


def _items_by_product(repo: SqliteRepository, sale_id: int) -> dict[int, int]:
    return {it.product_id: it.qty for it in repo.get_sale_items(sale_id)}


def test_plan_classifies_removed_updated_and_added_products():
    old = [
        SaleItem(id=1, sale_id=7, product_id=10, product_name="A", qty=2, unit_price_usd=1.0),
        SaleItem(id=2, sale_id=7, product_id=11, product_name="B", qty=1, unit_price_usd=3.0),
    ]
    new = [
        EditLine(product_id=10, name="A", qty=5, unit_price_usd=1.0, item_id=1),
        EditLine(product_id=12, name="C", qty=1, unit_price_usd=2.0),
    ]

    plan = plan_reconciliation(old, new)

    assert [it.product_id for it in plan.removals] == [11]
    assert [(u.item_id, u.delta) for u in plan.updates] == [(1, 3)]
    assert [ln.product_id for ln in plan.additions] == [12]
    assert plan.total_usd == 7.0
    assert plan.stock_deltas() == {10: -3, 11: 1, 12: -1}


def test_increase_up_to_remaining_stock_is_allowed(tmp_path: Path):
    repo, inv, sales, edits = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 5, 0)
    sale_id = _sell(sales, (pid, 2))
    assert repo.get_product_stock(pid) == 3

    session = edits.open(sale_id)
    with pytest.raises(InsufficientStockError) as err:
        session.set_quantity(pid, 6)
    assert err.value.available == 3
    assert session.get(pid).qty == 2

    session.set_quantity(pid, 5)
    updated = edits.save(session)

    assert repo.get_product_stock(pid) == 0
    assert _items_by_product(repo, sale_id) == {pid: 5}
    assert updated.total_usd == pytest.approx(2.5)


def test_decrease_returns_units_without_stock_check(tmp_path: Path):
    repo, inv, sales, edits = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 3, 0)
    sale_id = _sell(sales, (pid, 3))
    assert repo.get_product_stock(pid) == 0

    session = edits.open(sale_id)
    session.set_quantity(pid, 1)
    edits.save(session)

    assert repo.get_product_stock(pid) == 2
    assert _items_by_product(repo, sale_id) == {pid: 1}
    entry = inv.movement_history(pid)[0]
    assert (entry.movement_type, entry.qty_delta, entry.reference_id) == ("sale_edit", 2, sale_id)


def test_removed_line_restores_stock_and_deletes_row(tmp_path: Path):
    repo, inv, sales, edits = _setup(tmp_path)
    a = inv.add_product("SKU-A", "Soap", 0.2, 0.5, 5, 0)
    b = inv.add_product("SKU-B", "Rice", 1.0, 2.0, 5, 0)
    sale_id = _sell(sales, (a, 2), (b, 1))

    session = edits.open(sale_id)
    session.remove_line(b)
    updated = edits.save(session)

    assert repo.get_product_stock(b) == 5
    assert repo.get_product_stock(a) == 3
    assert _items_by_product(repo, sale_id) == {a: 2}
    assert updated.total_usd == pytest.approx(1.0)


def test_added_product_takes_stock_at_list_price(tmp_path: Path):
    repo, inv, sales, edits = _setup(tmp_path)
    a = inv.add_product("SKU-A", "Soap", 0.2, 0.5, 5, 0)
    c = inv.add_product("SKU-C", "Oil", 1.0, 4.0, 2, 0)
    sale_id = _sell(sales, (a, 1))

    session = edits.open(sale_id)
    session.add_product(c)
    session.add_product(c)
    with pytest.raises(InsufficientStockError):
        session.add_product(c)
    updated = edits.save(session)

    assert repo.get_product_stock(c) == 0
    assert _items_by_product(repo, sale_id) == {a: 1, c: 2}
    assert updated.total_usd == pytest.approx(0.5 + 8.0)


def test_quoted_price_override_uses_sale_rate(tmp_path: Path):
    repo, inv, sales, edits = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 5, 0)
    sale_id = _sell(sales, (pid, 2))
    FxService(repo).record_rate(4000)

    session = edits.open(sale_id)
    session.set_unit_price_quoted(pid, 3000)
    assert session.get(pid).unit_price_usd == pytest.approx(1.5)
    assert session.total_quoted() == pytest.approx(6000.0)

    updated = edits.save(session)
    assert updated.total_usd == pytest.approx(3.0)
    assert updated.fx_rate == 2000.0
    assert repo.get_product_stock(pid) == 3


def test_failed_save_leaves_sale_and_stock_untouched(tmp_path: Path):
    repo, inv, sales, edits = _setup(tmp_path)
    a = inv.add_product("SKU-A", "Soap", 0.2, 0.5, 5, 0)
    b = inv.add_product("SKU-B", "Rice", 1.0, 2.0, 5, 0)
    sale_id = _sell(sales, (a, 2), (b, 1))

    session = edits.open(sale_id)
    session.remove_line(b)
    session.set_quantity(a, 5)

    # stock moved between the check and the save
    inv.record_movement(a, "out", 1)

    with pytest.raises(InsufficientStockError):
        edits.save(session)

    assert _items_by_product(repo, sale_id) == {a: 2, b: 1}
    assert repo.get_product_stock(a) == 2
    assert repo.get_product_stock(b) == 4
    assert repo.get_sale(sale_id).total_usd == pytest.approx(1.5)


def test_edit_buffer_rules(tmp_path: Path):
    _repo, inv, sales, edits = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 5, 0)
    sale_id = _sell(sales, (pid, 1))

    session = edits.open(sale_id)
    with pytest.raises(ValidationError):
        session.set_quantity(pid, 0)
    with pytest.raises(ValidationError):
        session.set_unit_price(pid, -1)
    with pytest.raises(NotFoundError):
        session.remove_line(pid + 100)

    session.remove_line(pid)
    with pytest.raises(ValidationError, match="Delete the sale"):
        edits.save(session)

    with pytest.raises(NotFoundError):
        edits.open(sale_id + 100)


@pytest.mark.parametrize("bad", [float("inf"), float("nan")])
def test_non_finite_edit_price_is_rejected(tmp_path: Path, bad):
    repo, inv, sales, edits = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 5, 0)
    sale_id = _sell(sales, (pid, 2))

    session = edits.open(sale_id)
    with pytest.raises(ValidationError, match="Unit price"):
        session.set_unit_price(pid, bad)
    with pytest.raises(ValidationError, match="Unit price"):
        session.set_unit_price_quoted(pid, bad)
    assert session.get(pid).unit_price_usd == pytest.approx(0.5)

    # a line that slipped past the setters is still refused on save
    session._lines[pid] = replace(session.get(pid), unit_price_usd=bad)
    with pytest.raises(ValidationError, match="Unit price"):
        edits.save(session)

    assert repo.get_sale(sale_id).total_usd == pytest.approx(1.0)
    assert _items_by_product(repo, sale_id) == {pid: 2}


def test_saved_edit_logs_net_stock_change(tmp_path: Path, caplog):
    _repo, inv, sales, edits = _setup(tmp_path)
    a = inv.add_product("SKU-A", "Soap", 0.2, 0.5, 5, 0)
    b = inv.add_product("SKU-B", "Rice", 1.0, 2.0, 5, 0)
    sale_id = _sell(sales, (a, 2), (b, 1))

    session = edits.open(sale_id)
    session.set_quantity(a, 3)
    session.remove_line(b)
    with caplog.at_level(logging.INFO, logger="shopdesk.sales"):
        edits.save(session)

    edited = [r.getMessage() for r in caplog.records if r.getMessage().startswith("sale_edited")]
    assert edited
    assert f"{a}: -1" in edited[0] and f"{b}: 1" in edited[0]
