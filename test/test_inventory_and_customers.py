from pathlib import Path

import pytest

from shopdesk.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from shopdesk.repositories.sqlite_repo import SqliteRepository
from shopdesk.services.customer_service import CustomerService
from shopdesk.services.inventory_service import InventoryService


def _setup(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "inv.db")
    repo.init_db()
    return repo, InventoryService(repo), CustomerService(repo)


def test_add_product_validates_input(tmp_path: Path):
    _repo, inv, _customers = _setup(tmp_path)

    with pytest.raises(ValidationError):
        inv.add_product("", "No barcode", 1.0, 2.0, 1, 0)
    with pytest.raises(ValidationError):
        inv.add_product("SKU-1", "Free", 1.0, 0.0, 1, 0)
    with pytest.raises(ValidationError):
        inv.add_product("SKU-1", "Negative", 1.0, 2.0, -1, 0)


def test_find_products_matches_name_or_barcode(tmp_path: Path):
    _repo, inv, _customers = _setup(tmp_path)
    soap = inv.add_product("6001234", "Soap bar", 0.2, 0.5, 5, 0)
    inv.add_product("7009999", "Rice 1kg", 1.0, 2.0, 5, 0)

    assert [p.id for p in inv.find_products("SOAP")] == [soap]
    assert [p.id for p in inv.find_products("600123")] == [soap]
    assert len(inv.find_products("  ")) == 2

    with pytest.raises(NotFoundError):
        inv.get_product(9999)


def test_check_stock_reports_available_units(tmp_path: Path):
    _repo, inv, _customers = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 3, 0)

    assert inv.check_stock(pid, 3).ok
    check = inv.check_stock(pid, 4)
    assert not check.ok
    assert check.available == 3


def test_manual_movements_are_ledgered(tmp_path: Path):
    repo, inv, _customers = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 3, 0)

    assert inv.record_movement(pid, "in", 4, actor_user_id=1, notes="delivery") == 7
    assert inv.record_movement(pid, "out", 2, actor_user_id=1) == 5

    with pytest.raises(InsufficientStockError):
        inv.record_movement(pid, "out", 6)
    assert repo.get_product_stock(pid) == 5

    with pytest.raises(ValidationError):
        inv.record_movement(pid, "sale", 1)
    with pytest.raises(ValidationError):
        inv.record_movement(pid, "in", 0)

    history = inv.movement_history(pid)
    assert [(e.movement_type, e.qty_delta, e.stock_after) for e in history] == [("out", -2, 5), ("in", 4, 7)]
    assert history[1].notes == "delivery"
    assert history[1].reference_type == "manual"


def test_stock_count_overwrites_and_records_delta(tmp_path: Path):
    repo, inv, _customers = _setup(tmp_path)
    pid = inv.add_product("SKU-1", "Soap", 0.2, 0.5, 3, 0)

    assert inv.set_stock_count(pid, 10, notes="shelf count") == 7
    assert repo.get_product_stock(pid) == 10
    entry = inv.movement_history(pid)[0]
    assert (entry.movement_type, entry.qty_delta, entry.stock_after) == ("count", 7, 10)

    with pytest.raises(ValidationError):
        inv.set_stock_count(pid, -1)
    with pytest.raises(NotFoundError):
        inv.set_stock_count(9999, 1)


def test_customer_lookup_falls_back_to_standard(tmp_path: Path):
    _repo, _inv, customers = _setup(tmp_path)

    standard = customers.lookup("")
    assert standard.is_standard == 1
    assert standard.full_name == "Standard"
    assert customers.lookup(None) == standard
    assert customers.lookup("0810000000") == standard

    cid = customers.add_customer("  Amani  ", "0810000000")
    found = customers.lookup(" 0810000000 ")
    assert found.id == cid
    assert found.full_name == "Amani"


def test_add_customer_rejects_missing_name_and_duplicate_phone(tmp_path: Path):
    _repo, _inv, customers = _setup(tmp_path)
    customers.add_customer("Amani", "0810000000")

    with pytest.raises(ValidationError):
        customers.add_customer("", "0820000000")
    with pytest.raises(ValidationError, match="already exists"):
        customers.add_customer("Other", "0810000000")

    names = [c.full_name for c in customers.list_customers()]
    assert names == ["Standard", "Amani"]
