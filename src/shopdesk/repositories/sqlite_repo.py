from __future__ import annotations

import sqlite3
import hashlib
import hmac
import os
import secrets
import shutil
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from shopdesk.domain.errors import InsufficientStockError, NotFoundError, PersistenceError
from shopdesk.domain.models import (
    CashEntry,
    Customer,
    DailyProfit,
    ExchangeRate,
    Expense,
    ExpenseCategory,
    LedgerEntry,
    NewSaleItem,
    Product,
    Sale,
    SaleItem,
    User,
)
from shopdesk.domain.reconciliation import ReconciliationPlan


_PRODUCT_COLS = "id, barcode, name, cost_usd, price_usd, stock, min_stock, active"

_SALE_SELECT = """
    SELECT s.id, s.datetime, s.total_usd, s.fx_rate, s.payment_method,
           s.customer_id, c.full_name, s.actor_user_id, u.username
    FROM sales s
    LEFT JOIN customers c ON c.id = s.customer_id
    LEFT JOIN users u ON u.id = s.actor_user_id
"""


def _product(r) -> Product:
    return Product(
        id=int(r[0]),
        barcode=str(r[1]),
        name=str(r[2]),
        cost_usd=float(r[3]),
        price_usd=float(r[4]),
        stock=int(r[5]),
        min_stock=int(r[6]),
        active=int(r[7]),
    )


def _sale(r) -> Sale:
    return Sale(
        id=int(r[0]),
        datetime=str(r[1]),
        total_usd=float(r[2]),
        fx_rate=float(r[3]),
        payment_method=str(r[4]),
        customer_id=(int(r[5]) if r[5] is not None else None),
        customer_name=(str(r[6]) if r[6] is not None else None),
        actor_user_id=(int(r[7]) if r[7] is not None else None),
        agent_name=(str(r[8]) if r[8] is not None else None),
    )


def _customer(r) -> Customer:
    return Customer(id=int(r[0]), full_name=str(r[1]), phone=(r[2] if r[2] is not None else None), is_standard=int(r[3]))


_EXPENSE_SELECT = """
    SELECT e.id, e.date, e.description, e.amount_usd, e.category_id, c.name, e.actor_user_id
    FROM expenses e
    LEFT JOIN expense_categories c ON c.id = e.category_id
"""


def _expense(r) -> Expense:
    return Expense(
        id=int(r[0]),
        date=str(r[1]),
        description=(str(r[2]) if r[2] is not None else None),
        amount_usd=float(r[3]),
        category_id=(int(r[4]) if r[4] is not None else None),
        category_name=(str(r[5]) if r[5] is not None else None),
        actor_user_id=(int(r[6]) if r[6] is not None else None),
    )


def _cash_entry(r) -> CashEntry:
    return CashEntry(
        id=int(r[0]),
        date=str(r[1]),
        description=str(r[2]),
        amount_usd=float(r[3]),
        actor_user_id=(int(r[4]) if r[4] is not None else None),
    )


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self._conn()
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"Storage error, nothing was saved: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        self.run_migrations()
        self._ensure_bootstrap_admin()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_catalog_and_sales),
                (2, self._migration_v2_users_and_ledger),
                (3, self._migration_v3_expenses_and_cash),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_catalog_and_sales(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                barcode TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                cost_usd REAL NOT NULL CHECK(cost_usd >= 0),
                price_usd REAL NOT NULL CHECK(price_usd >= 0),
                stock INTEGER NOT NULL DEFAULT 0 CHECK(stock >= 0),
                min_stock INTEGER NOT NULL DEFAULT 0 CHECK(min_stock >= 0),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                full_name TEXT NOT NULL,
                phone TEXT UNIQUE,
                is_standard INTEGER NOT NULL DEFAULT 0 CHECK(is_standard IN (0,1))
            )
            """
        )
        # walk-in customer used when the phone lookup finds nobody
        cur.execute(
            """
            INSERT INTO customers (full_name, phone, is_standard)
            SELECT 'Standard', '0', 1
            WHERE NOT EXISTS (SELECT 1 FROM customers WHERE is_standard = 1)
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS exchange_rates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                rate REAL NOT NULL CHECK(rate > 0),
                created_at TEXT NOT NULL,
                actor_user_id INTEGER
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                datetime TEXT NOT NULL,
                total_usd REAL NOT NULL CHECK(total_usd >= 0),
                fx_rate REAL NOT NULL CHECK(fx_rate > 0),
                payment_method TEXT NOT NULL CHECK(payment_method IN ('cash','card','mobile_money')),
                customer_id INTEGER REFERENCES customers(id),
                actor_user_id INTEGER
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                qty INTEGER NOT NULL CHECK(qty > 0),
                unit_price_usd REAL NOT NULL CHECK(unit_price_usd >= 0),
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id),
                UNIQUE(sale_id, product_id)
            )
            """
        )

    def _migration_v2_users_and_ledger(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                pin TEXT NOT NULL,
                role TEXT NOT NULL CHECK(role IN ('admin','manager','seller')),
                active INTEGER NOT NULL DEFAULT 1,
                failed_attempts INTEGER NOT NULL DEFAULT 0,
                locked_until TEXT,
                must_change_pin INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_ledger (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                datetime TEXT NOT NULL,
                product_id INTEGER NOT NULL,
                movement_type TEXT NOT NULL
                    CHECK(movement_type IN ('sale','sale_edit','sale_delete','in','out','count')),
                qty_delta INTEGER NOT NULL,
                stock_after INTEGER NOT NULL CHECK(stock_after >= 0),
                reference_type TEXT NOT NULL CHECK(reference_type IN ('sale','manual')),
                reference_id INTEGER,
                actor_user_id INTEGER,
                notes TEXT,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_stock_ledger_product ON stock_ledger(product_id, datetime)")

    def _migration_v3_expenses_and_cash(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            )
            """
        )

        # amounts are always stored in USD
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                description TEXT,
                amount_usd REAL NOT NULL CHECK(amount_usd > 0),
                category_id INTEGER,
                actor_user_id INTEGER,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(category_id) REFERENCES expense_categories(id) ON DELETE SET NULL
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS cash_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                description TEXT NOT NULL,
                amount_usd REAL NOT NULL CHECK(amount_usd > 0),
                actor_user_id INTEGER,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_cash_entries_date ON cash_entries(date)")

    def _ensure_bootstrap_admin(self) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM users WHERE active=1 AND role='admin'")
        if int(cur.fetchone()[0]) > 0:
            conn.close()
            return

        bootstrap_pin = os.environ.get("SHOPDESK_BOOTSTRAP_ADMIN_PIN", "").strip() or secrets.token_urlsafe(12)
        cur.execute("SELECT id FROM users WHERE username='admin'")
        row = cur.fetchone()
        if row:
            cur.execute(
                """
                UPDATE users
                SET pin=?, role='admin', active=1, must_change_pin=1, failed_attempts=0, locked_until=NULL
                WHERE id=?
                """,
                (self._hash_pin(bootstrap_pin), int(row[0])),
            )
        else:
            cur.execute(
                """
                INSERT INTO users (username, pin, role, active, must_change_pin)
                VALUES ('admin', ?, 'admin', 1, 1)
                """,
                (self._hash_pin(bootstrap_pin),),
            )
        conn.commit()
        conn.close()

        # one-time onboarding PIN, readable by the owner only
        pin_file = Path(self.db_path).parent / ".admin_bootstrap_pin"
        pin_file.write_text(bootstrap_pin + "\n", encoding="utf-8")
        try:
            pin_file.chmod(0o600)
        except OSError:
            pass

    # ---------- Users ----------
    def list_users(self) -> list[User]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, username, role, active, must_change_pin FROM users WHERE active=1 ORDER BY username")
        rows = cur.fetchall()
        conn.close()
        return [User(id=int(r[0]), username=str(r[1]), role=str(r[2]), active=int(r[3]), must_change_pin=int(r[4])) for r in rows]

    def _get_user_row(self, cur: sqlite3.Cursor, username: str):
        cur.execute(
            """
            SELECT id, username, role, active, pin, failed_attempts, locked_until, must_change_pin
            FROM users
            WHERE active=1 AND username=?
            """,
            (username,),
        )
        return cur.fetchone()

    def get_user_security_state(self, username: str) -> tuple[int, Optional[str]] | None:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, username)
        conn.close()
        if not row:
            return None
        return int(row[5]), (str(row[6]) if row[6] is not None else None)

    def record_login_failure(self, username: str, max_attempts: int, lockout_seconds: int) -> tuple[int, Optional[str]]:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, username)
        if not row:
            conn.close()
            return 0, None

        attempts = int(row[5]) + 1
        locked_until = None
        if attempts >= int(max_attempts):
            attempts = 0
            cur.execute(
                "UPDATE users SET failed_attempts=?, locked_until=datetime('now', ?) WHERE id=?",
                (attempts, f"+{int(lockout_seconds)} seconds", int(row[0])),
            )
            cur.execute("SELECT locked_until FROM users WHERE id=?", (int(row[0]),))
            locked_until = str(cur.fetchone()[0])
        else:
            cur.execute("UPDATE users SET failed_attempts=? WHERE id=?", (attempts, int(row[0])))
        conn.commit()
        conn.close()
        return attempts, locked_until

    def authenticate_user(self, username: str, pin: str) -> Optional[User]:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, username)
        if row and self._verify_pin(str(row[4]), pin):
            cur.execute("UPDATE users SET failed_attempts=0, locked_until=NULL WHERE id=?", (int(row[0]),))
            conn.commit()
            conn.close()
            return User(id=int(row[0]), username=str(row[1]), role=str(row[2]), active=int(row[3]), must_change_pin=int(row[7]))
        conn.close()
        return None

    def create_user(self, username: str, pin: str, role: str, must_change_pin: int = 0) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO users (username, pin, role, active, must_change_pin)
            VALUES (?, ?, ?, 1, ?)
            """,
            (username, self._hash_pin(pin), role, int(must_change_pin)),
        )
        uid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return uid

    def change_user_pin(self, user_id: int, current_pin: str, new_pin: str) -> bool:
        """False when the current PIN does not match. Clears the must-change flag."""
        with self._transaction() as cur:
            cur.execute("SELECT pin FROM users WHERE id=? AND active=1", (int(user_id),))
            row = cur.fetchone()
            if not row or not self._verify_pin(str(row[0]), current_pin):
                return False
            cur.execute(
                "UPDATE users SET pin=?, must_change_pin=0 WHERE id=?",
                (self._hash_pin(new_pin), int(user_id)),
            )
        return True

    # ---------- Products ----------
    def add_product(self, barcode: str, name: str, cost_usd: float, price_usd: float, stock: int, min_stock: int) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO products (barcode, name, cost_usd, price_usd, stock, min_stock)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (barcode, name, cost_usd, price_usd, stock, min_stock),
        )
        pid = cur.lastrowid
        conn.commit()
        conn.close()
        return int(pid)

    def list_products(self) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {_PRODUCT_COLS} FROM products WHERE active = 1 ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [_product(r) for r in rows]

    def find_products(self, term: str) -> list[Product]:
        like = f"%{term.strip().lower()}%"
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {_PRODUCT_COLS}
            FROM products
            WHERE active = 1 AND (lower(name) LIKE ? OR lower(barcode) LIKE ?)
            ORDER BY name
            """,
            (like, like),
        )
        rows = cur.fetchall()
        conn.close()
        return [_product(r) for r in rows]

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {_PRODUCT_COLS} FROM products WHERE active=1 AND id=?", (int(product_id),))
        r = cur.fetchone()
        conn.close()
        return _product(r) if r else None

    def get_product_stock(self, product_id: int) -> Optional[int]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT stock FROM products WHERE id=?", (int(product_id),))
        row = cur.fetchone()
        conn.close()
        return int(row[0]) if row else None

    def set_product_stock(
        self,
        product_id: int,
        new_value: int,
        actor_user_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Point write of an inventory count. Returns the applied delta."""
        with self._transaction() as cur:
            cur.execute("SELECT stock FROM products WHERE id=? AND active=1", (int(product_id),))
            row = cur.fetchone()
            if not row:
                raise NotFoundError("Product not found.")
            delta = int(new_value) - int(row[0])
            cur.execute("UPDATE products SET stock=? WHERE id=?", (int(new_value), int(product_id)))
            self._append_ledger(cur, now_iso(), int(product_id), "count", delta, int(new_value), "manual", None, actor_user_id, notes)
        return delta

    def apply_stock_movement(
        self,
        product_id: int,
        qty_delta: int,
        movement_type: str,
        actor_user_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> int:
        with self._transaction() as cur:
            return self._apply_stock_delta(
                cur, int(product_id), int(qty_delta), movement_type, "manual", None, now_iso(), actor_user_id, notes
            )

    def _apply_stock_delta(
        self,
        cur: sqlite3.Cursor,
        product_id: int,
        qty_delta: int,
        movement_type: str,
        reference_type: str,
        reference_id: Optional[int],
        datetime_iso: str,
        actor_user_id: Optional[int],
        notes: Optional[str],
    ) -> int:
        """Atomic stock change; a decrement only applies while stock covers it. Returns stock after."""
        if qty_delta < 0:
            need = -qty_delta
            cur.execute(
                "UPDATE products SET stock = stock - ? WHERE id = ? AND active = 1 AND stock >= ?",
                (need, product_id, need),
            )
            if cur.rowcount == 0:
                cur.execute("SELECT name, stock FROM products WHERE id=? AND active=1", (product_id,))
                row = cur.fetchone()
                if not row:
                    raise NotFoundError(f"Product not found/active: {product_id}")
                raise InsufficientStockError(
                    f"Not enough stock for {row[0]}. Available: {int(row[1])}",
                    product_id=product_id,
                    available=int(row[1]),
                )
        elif qty_delta > 0:
            cur.execute("UPDATE products SET stock = stock + ? WHERE id = ?", (qty_delta, product_id))
            if cur.rowcount == 0:
                raise NotFoundError(f"Product not found: {product_id}")

        cur.execute("SELECT stock FROM products WHERE id=?", (product_id,))
        stock_after = int(cur.fetchone()[0])
        if qty_delta:
            self._append_ledger(
                cur, datetime_iso, product_id, movement_type, qty_delta, stock_after,
                reference_type, reference_id, actor_user_id, notes,
            )
        return stock_after

    def _append_ledger(
        self,
        cur: sqlite3.Cursor,
        datetime_iso: str,
        product_id: int,
        movement_type: str,
        qty_delta: int,
        stock_after: int,
        reference_type: str,
        reference_id: Optional[int],
        actor_user_id: Optional[int],
        notes: Optional[str],
    ) -> None:
        cur.execute(
            """
            INSERT INTO stock_ledger (
                datetime, product_id, movement_type, qty_delta, stock_after,
                reference_type, reference_id, actor_user_id, notes
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (datetime_iso, int(product_id), movement_type, int(qty_delta), int(stock_after),
             reference_type, reference_id, actor_user_id, notes),
        )

    def movement_history(self, product_id: Optional[int] = None, limit: int = 100) -> list[LedgerEntry]:
        conn = self._conn()
        cur = conn.cursor()
        sql = """
            SELECT id, datetime, product_id, movement_type, qty_delta, stock_after,
                   reference_type, reference_id, actor_user_id, notes
            FROM stock_ledger
        """
        params: tuple = ()
        if product_id is not None:
            sql += " WHERE product_id = ?"
            params = (int(product_id),)
        sql += " ORDER BY datetime DESC, id DESC LIMIT ?"
        cur.execute(sql, params + (int(limit),))
        rows = cur.fetchall()
        conn.close()
        return [LedgerEntry(*r) for r in rows]

    # ---------- Customers ----------
    def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, full_name, phone, is_standard FROM customers WHERE phone=?", (phone,))
        r = cur.fetchone()
        conn.close()
        return _customer(r) if r else None

    def get_standard_customer(self) -> Optional[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, full_name, phone, is_standard FROM customers WHERE is_standard=1 ORDER BY id LIMIT 1")
        r = cur.fetchone()
        conn.close()
        return _customer(r) if r else None

    def add_customer(self, full_name: str, phone: Optional[str]) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("INSERT INTO customers (full_name, phone) VALUES (?, ?)", (full_name, phone))
        cid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return cid

    def list_customers(self) -> list[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, full_name, phone, is_standard FROM customers ORDER BY is_standard DESC, full_name")
        rows = cur.fetchall()
        conn.close()
        return [_customer(r) for r in rows]

    # ---------- FX ----------
    def get_latest_exchange_rate(self) -> Optional[ExchangeRate]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, rate, created_at, actor_user_id FROM exchange_rates ORDER BY created_at DESC, id DESC LIMIT 1"
        )
        r = cur.fetchone()
        conn.close()
        return ExchangeRate(id=int(r[0]), rate=float(r[1]), created_at=str(r[2]), actor_user_id=r[3]) if r else None

    def insert_exchange_rate(self, rate: float, created_at: str, actor_user_id: Optional[int] = None) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO exchange_rates (rate, created_at, actor_user_id) VALUES (?, ?, ?)",
            (float(rate), created_at, actor_user_id),
        )
        rid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return rid

    def list_exchange_rates(self, limit: int = 30) -> list[ExchangeRate]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, rate, created_at, actor_user_id FROM exchange_rates ORDER BY created_at DESC, id DESC LIMIT ?",
            (int(limit),),
        )
        rows = cur.fetchall()
        conn.close()
        return [ExchangeRate(id=int(r[0]), rate=float(r[1]), created_at=str(r[2]), actor_user_id=r[3]) for r in rows]

    # ---------- Sales ----------
    def create_sale_with_items(
        self,
        datetime_iso: str,
        total_usd: float,
        fx_rate: float,
        payment_method: str,
        customer_id: Optional[int],
        items: Iterable[NewSaleItem],
        actor_user_id: Optional[int] = None,
    ) -> int:
        items = list(items)
        with self._transaction() as cur:
            sale_id = self._insert_sale(cur, datetime_iso, total_usd, fx_rate, payment_method, customer_id, actor_user_id)
            self._insert_sale_items(cur, sale_id, items)
            for it in items:
                self._apply_stock_delta(
                    cur, it.product_id, -int(it.qty), "sale", "sale", sale_id, datetime_iso, actor_user_id, None
                )
        return sale_id

    def _insert_sale(
        self,
        cur: sqlite3.Cursor,
        datetime_iso: str,
        total_usd: float,
        fx_rate: float,
        payment_method: str,
        customer_id: Optional[int],
        actor_user_id: Optional[int],
    ) -> int:
        cur.execute(
            """
            INSERT INTO sales (datetime, total_usd, fx_rate, payment_method, customer_id, actor_user_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (datetime_iso, float(total_usd), float(fx_rate), payment_method, customer_id, actor_user_id),
        )
        return int(cur.lastrowid)

    def _insert_sale_items(self, cur: sqlite3.Cursor, sale_id: int, items: Iterable[NewSaleItem]) -> None:
        cur.executemany(
            "INSERT INTO sale_items (sale_id, product_id, qty, unit_price_usd) VALUES (?, ?, ?, ?)",
            [(int(sale_id), int(it.product_id), int(it.qty), float(it.unit_price_usd)) for it in items],
        )

    def _update_sale_item(self, cur: sqlite3.Cursor, item_id: int, qty: int, unit_price_usd: float) -> None:
        cur.execute(
            "UPDATE sale_items SET qty=?, unit_price_usd=? WHERE id=?",
            (int(qty), float(unit_price_usd), int(item_id)),
        )

    def _delete_sale_item(self, cur: sqlite3.Cursor, item_id: int) -> None:
        cur.execute("DELETE FROM sale_items WHERE id=?", (int(item_id),))

    def _update_sale_total(self, cur: sqlite3.Cursor, sale_id: int, total_usd: float) -> None:
        cur.execute("UPDATE sales SET total_usd=? WHERE id=?", (float(total_usd), int(sale_id)))

    def apply_sale_edit(
        self,
        sale_id: int,
        plan: ReconciliationPlan,
        datetime_iso: str,
        actor_user_id: Optional[int] = None,
    ) -> None:
        sale_id = int(sale_id)
        with self._transaction() as cur:
            cur.execute("SELECT 1 FROM sales WHERE id=?", (sale_id,))
            if not cur.fetchone():
                raise NotFoundError("Sale not found.")

            # returns first, so stock freed by a removed line can cover an addition
            for old in plan.removals:
                self._apply_stock_delta(
                    cur, old.product_id, int(old.qty), "sale_edit", "sale", sale_id, datetime_iso, actor_user_id, None
                )
                self._delete_sale_item(cur, old.id)

            for up in sorted(plan.updates, key=lambda u: u.delta):
                if up.delta:
                    self._apply_stock_delta(
                        cur, up.product_id, -up.delta, "sale_edit", "sale", sale_id, datetime_iso, actor_user_id, None
                    )
                self._update_sale_item(cur, up.item_id, up.new_qty, up.unit_price_usd)

            for new in plan.additions:
                self._apply_stock_delta(
                    cur, new.product_id, -int(new.qty), "sale_edit", "sale", sale_id, datetime_iso, actor_user_id, None
                )
            self._insert_sale_items(
                cur,
                sale_id,
                [NewSaleItem(product_id=n.product_id, qty=n.qty, unit_price_usd=n.unit_price_usd) for n in plan.additions],
            )

            self._update_sale_total(cur, sale_id, plan.total_usd)

    def delete_sale_restoring_stock(self, sale_id: int, datetime_iso: str, actor_user_id: Optional[int] = None) -> int:
        """Deletes a sale and puts its units back on the shelf. Returns the number of lines restored."""
        sale_id = int(sale_id)
        with self._transaction() as cur:
            cur.execute("SELECT 1 FROM sales WHERE id=?", (sale_id,))
            if not cur.fetchone():
                raise NotFoundError("Sale not found.")
            cur.execute("SELECT product_id, qty FROM sale_items WHERE sale_id=?", (sale_id,))
            rows = cur.fetchall()
            for product_id, qty in rows:
                self._apply_stock_delta(
                    cur, int(product_id), int(qty), "sale_delete", "sale", sale_id, datetime_iso, actor_user_id, None
                )
            cur.execute("DELETE FROM sales WHERE id=?", (sale_id,))
        return len(rows)

    def get_sale(self, sale_id: int) -> Optional[Sale]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(_SALE_SELECT + " WHERE s.id = ?", (int(sale_id),))
        r = cur.fetchone()
        conn.close()
        return _sale(r) if r else None

    def list_sales_between(self, start_iso: str, end_iso: str) -> list[Sale]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            _SALE_SELECT + " WHERE s.datetime >= ? AND s.datetime < ? ORDER BY s.datetime DESC, s.id DESC",
            (start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [_sale(r) for r in rows]

    def get_sale_items(self, sale_id: int) -> list[SaleItem]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT si.id, si.sale_id, si.product_id, p.name, si.qty, si.unit_price_usd
            FROM sale_items si
            JOIN products p ON p.id = si.product_id
            WHERE si.sale_id = ?
            ORDER BY si.id
            """,
            (int(sale_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            SaleItem(id=int(r[0]), sale_id=int(r[1]), product_id=int(r[2]), product_name=str(r[3]), qty=int(r[4]), unit_price_usd=float(r[5]))
            for r in rows
        ]

    # ---------- Expenses ----------
    def add_expense_category(self, name: str) -> int:
        with self._transaction() as cur:
            cur.execute("INSERT INTO expense_categories (name) VALUES (?)", (name,))
            return int(cur.lastrowid)

    def rename_expense_category(self, category_id: int, name: str) -> bool:
        with self._transaction() as cur:
            cur.execute("UPDATE expense_categories SET name=? WHERE id=?", (name, int(category_id)))
            return cur.rowcount > 0

    def delete_expense_category(self, category_id: int) -> bool:
        """Expenses filed under the category keep their rows, uncategorized."""
        with self._transaction() as cur:
            cur.execute("DELETE FROM expense_categories WHERE id=?", (int(category_id),))
            return cur.rowcount > 0

    def get_expense_category_by_name(self, name: str) -> Optional[ExpenseCategory]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name FROM expense_categories WHERE lower(name)=lower(?)", (name,))
        r = cur.fetchone()
        conn.close()
        return ExpenseCategory(id=int(r[0]), name=str(r[1])) if r else None

    def list_expense_categories(self) -> list[ExpenseCategory]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name FROM expense_categories ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [ExpenseCategory(id=int(r[0]), name=str(r[1])) for r in rows]

    def add_expense(
        self,
        date_iso: str,
        description: Optional[str],
        amount_usd: float,
        category_id: Optional[int],
        actor_user_id: Optional[int] = None,
    ) -> int:
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO expenses (date, description, amount_usd, category_id, actor_user_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                (date_iso, description, float(amount_usd), category_id, actor_user_id),
            )
            return int(cur.lastrowid)

    def update_expense(
        self,
        expense_id: int,
        date_iso: str,
        description: Optional[str],
        amount_usd: float,
        category_id: Optional[int],
    ) -> bool:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE expenses SET date=?, description=?, amount_usd=?, category_id=? WHERE id=?",
                (date_iso, description, float(amount_usd), category_id, int(expense_id)),
            )
            return cur.rowcount > 0

    def delete_expense(self, expense_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute("DELETE FROM expenses WHERE id=?", (int(expense_id),))
            return cur.rowcount > 0

    def get_expense(self, expense_id: int) -> Optional[Expense]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(_EXPENSE_SELECT + " WHERE e.id = ?", (int(expense_id),))
        r = cur.fetchone()
        conn.close()
        return _expense(r) if r else None

    def list_expenses_between(self, start_date: str, end_date: str) -> list[Expense]:
        """Both bounds are inclusive calendar dates (YYYY-MM-DD)."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            _EXPENSE_SELECT + " WHERE e.date >= ? AND e.date <= ? ORDER BY e.date, e.id",
            (start_date, end_date),
        )
        rows = cur.fetchall()
        conn.close()
        return [_expense(r) for r in rows]

    # ---------- Cash book ----------
    def add_cash_entry(
        self, date_iso: str, description: str, amount_usd: float, actor_user_id: Optional[int] = None
    ) -> int:
        with self._transaction() as cur:
            cur.execute(
                "INSERT INTO cash_entries (date, description, amount_usd, actor_user_id) VALUES (?, ?, ?, ?)",
                (date_iso, description, float(amount_usd), actor_user_id),
            )
            return int(cur.lastrowid)

    def update_cash_entry(self, entry_id: int, date_iso: str, description: str, amount_usd: float) -> bool:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE cash_entries SET date=?, description=?, amount_usd=? WHERE id=?",
                (date_iso, description, float(amount_usd), int(entry_id)),
            )
            return cur.rowcount > 0

    def delete_cash_entry(self, entry_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute("DELETE FROM cash_entries WHERE id=?", (int(entry_id),))
            return cur.rowcount > 0

    def get_cash_entry(self, entry_id: int) -> Optional[CashEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "SELECT id, date, description, amount_usd, actor_user_id FROM cash_entries WHERE id=?",
            (int(entry_id),),
        )
        r = cur.fetchone()
        conn.close()
        return _cash_entry(r) if r else None

    def list_cash_entries_between(self, start_date: str, end_date: str) -> list[CashEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, date, description, amount_usd, actor_user_id
            FROM cash_entries
            WHERE date >= ? AND date <= ?
            ORDER BY date, id
            """,
            (start_date, end_date),
        )
        rows = cur.fetchall()
        conn.close()
        return [_cash_entry(r) for r in rows]

    # ---------- Reports ----------
    def daily_sales_totals(self, start_date: str, end_date: str) -> list[tuple[str, float]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT substr(datetime, 1, 10) AS d, COALESCE(SUM(total_usd), 0)
            FROM sales
            WHERE substr(datetime, 1, 10) >= ? AND substr(datetime, 1, 10) <= ?
            GROUP BY d ORDER BY d
            """,
            (start_date, end_date),
        )
        rows = cur.fetchall()
        conn.close()
        return [(str(r[0]), float(r[1])) for r in rows]

    def daily_profit(self, start_date: str, end_date: str) -> list[DailyProfit]:
        """Revenue at the sold price against today's product cost, newest day first."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT substr(s.datetime, 1, 10) AS d,
                   SUM(si.qty * si.unit_price_usd) AS revenue_usd,
                   SUM(si.qty * p.cost_usd) AS cost_usd
            FROM sale_items si
            JOIN sales s ON s.id = si.sale_id
            JOIN products p ON p.id = si.product_id
            WHERE substr(s.datetime, 1, 10) >= ? AND substr(s.datetime, 1, 10) <= ?
            GROUP BY d ORDER BY d DESC
            """,
            (start_date, end_date),
        )
        rows = cur.fetchall()
        conn.close()
        return [DailyProfit(date=str(r[0]), revenue_usd=float(r[1]), cost_usd=float(r[2])) for r in rows]

    @staticmethod
    def _hash_pin(pin: str, *, rounds: int = 200_000, salt: str | None = None) -> str:
        salt = salt or secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac("sha256", pin.encode("utf-8"), bytes.fromhex(salt), rounds).hex()
        return f"pbkdf2_sha256${rounds}${salt}${digest}"

    @staticmethod
    def _verify_pin(stored: str, provided: str) -> bool:
        if not stored.startswith("pbkdf2_sha256$"):
            return False
        try:
            _algo, rounds_s, salt, digest = stored.split("$", 3)
            candidate = hashlib.pbkdf2_hmac("sha256", provided.encode("utf-8"), bytes.fromhex(salt), int(rounds_s)).hex()
        except ValueError:
            return False
        return hmac.compare_digest(candidate, digest)
