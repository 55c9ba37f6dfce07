from __future__ import annotations

import json
import shutil
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from nsm.domain.errors import StoreError
from nsm.domain.models import (
    BillOfMaterialLine,
    Brand,
    Category,
    ConsumedLine,
    FinancialRecord,
    PendingIntent,
    Product,
    RowId,
    Service,
    ServiceType,
    StockEntry,
    Unit,
)

_PRODUCT_COLUMNS = (
    "id, name, unit, conversion_factor, current_quantity, min_quantity, "
    "last_unit_cost, code, brand_id, category_id, description"
)
_PRODUCT_WRITABLE = {
    "name",
    "unit",
    "conversion_factor",
    "current_quantity",
    "min_quantity",
    "code",
    "brand_id",
    "category_id",
    "description",
}
# current_quantity and last_unit_cost are owned by the stock primitives.
_PRODUCT_UPDATABLE = _PRODUCT_WRITABLE - {"current_quantity"}


def _product_from_row(r) -> Product:
    return Product(
        id=int(r[0]),
        name=str(r[1]),
        unit=str(r[2]),
        conversion_factor=float(r[3]),
        current_quantity=float(r[4]),
        min_quantity=float(r[5]),
        last_unit_cost=float(r[6]) if r[6] is not None else None,
        code=r[7],
        brand_id=r[8],
        category_id=r[9],
        description=r[10],
    )


def _date_filters(column: str, start_iso: str | None, end_iso: str | None) -> tuple[list[str], list]:
    clauses: list[str] = []
    params: list = []
    if start_iso:
        clauses.append(f"{column} >= ?")
        params.append(start_iso)
    if end_iso:
        clauses.append(f"{column} <= ?")
        params.append(end_iso)
    return clauses, params


class SqliteRepository:
    supports_transactions = True

    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)
        self._tx_conn: sqlite3.Connection | None = None

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Cursor on the open transaction, or on a short-lived connection."""
        if self._tx_conn is not None:
            try:
                yield self._tx_conn.cursor()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
            return

        conn = self._conn()
        try:
            yield conn.cursor()
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All writes issued inside the block commit or roll back together.

        BEGIN IMMEDIATE takes the write lock up front, so concurrent writers
        on the same file are serialized. Nested blocks join the outer one.
        """
        if self._tx_conn is not None:
            yield
            return

        conn = self._conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            conn.close()
            raise StoreError(f"Could not start transaction: {e}") from e

        self._tx_conn = conn
        try:
            yield
        except BaseException:
            self._tx_conn = None
            conn.rollback()
            conn.close()
            raise

        self._tx_conn = None
        try:
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Commit failed: {e}") from e
        finally:
            conn.close()

    # ---------- Schema ----------
    def init_db(self) -> None:
        self.run_migrations()

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
                (1, self._migration_v1_base),
                (2, self._migration_v2_snapshots_and_intents),
                (3, self._migration_v3_consumption_marker),
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

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS units (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                abbreviation TEXT NOT NULL UNIQUE,
                default_value REAL NOT NULL DEFAULT 1 CHECK(default_value > 0)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS brands (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                prefix TEXT NOT NULL,
                user_id TEXT,
                UNIQUE(user_id, name)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                brand_id INTEGER REFERENCES brands(id) ON DELETE SET NULL,
                category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,
                unit TEXT NOT NULL DEFAULT 'un',
                conversion_factor REAL NOT NULL DEFAULT 1 CHECK(conversion_factor > 0),
                current_quantity REAL NOT NULL DEFAULT 0 CHECK(current_quantity >= 0),
                min_quantity REAL NOT NULL DEFAULT 0 CHECK(min_quantity >= 0),
                last_unit_cost REAL CHECK(last_unit_cost IS NULL OR last_unit_cost >= 0)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                quantity REAL NOT NULL CHECK(quantity > 0),
                unit_price REAL NOT NULL CHECK(unit_price > 0),
                cost REAL NOT NULL CHECK(cost > 0),
                date TEXT NOT NULL,
                notes TEXT,
                actor_user_id TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS service_types (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                price REAL NOT NULL CHECK(price > 0)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS service_products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                service_type_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                default_quantity REAL NOT NULL CHECK(default_quantity > 0),
                use_unit_system INTEGER NOT NULL DEFAULT 0 CHECK(use_unit_system IN (0,1)),
                FOREIGN KEY(service_type_id) REFERENCES service_types(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS services (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_name TEXT NOT NULL,
                service_type_id INTEGER,
                date TEXT NOT NULL,
                notes TEXT,
                price REAL NOT NULL CHECK(price > 0),
                product_cost REAL NOT NULL DEFAULT 0 CHECK(product_cost >= 0),
                actor_user_id TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(service_type_id) REFERENCES service_types(id) ON DELETE SET NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS financial_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL CHECK(type IN ('income','expense')),
                amount REAL NOT NULL CHECK(amount > 0),
                description TEXT,
                reference_type TEXT CHECK(reference_type IS NULL OR reference_type IN ('stock_entry','service')),
                reference_id INTEGER,
                date TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_financial_records_date ON financial_records(date)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_financial_records_ref ON financial_records(reference_type, reference_id)")

    def _migration_v2_snapshots_and_intents(self, cur: sqlite3.Cursor) -> None:
        # Entry reversal subtracts what the entry actually added, in base units.
        self._add_column_if_missing(cur, "stock_entries", "stock_increase", "REAL")
        cur.execute(
            """
            UPDATE stock_entries
            SET stock_increase = quantity * COALESCE(
                (SELECT conversion_factor FROM products WHERE products.id = stock_entries.product_id), 1
            )
            WHERE stock_increase IS NULL
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS service_consumption (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                service_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                quantity REAL NOT NULL CHECK(quantity > 0),
                unit_cost REAL NOT NULL DEFAULT 0 CHECK(unit_cost >= 0),
                FOREIGN KEY(service_id) REFERENCES services(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS pending_intents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                reference TEXT,
                payload TEXT NOT NULL,
                completed_steps TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                applied INTEGER NOT NULL DEFAULT 0 CHECK(applied IN (0,1)),
                closed_at TEXT
            )
            """
        )

    def _migration_v3_consumption_marker(self, cur: sqlite3.Cursor) -> None:
        # Separates "no snapshot taken" from "snapshot taken, nothing consumed".
        self._add_column_if_missing(
            cur, "services", "consumption_recorded", "INTEGER NOT NULL DEFAULT 0 CHECK(consumption_recorded IN (0,1))"
        )
        cur.execute(
            """
            UPDATE services SET consumption_recorded = 1
            WHERE id IN (SELECT DISTINCT service_id FROM service_consumption)
            """
        )

    def _add_column_if_missing(self, cur: sqlite3.Cursor, table: str, column: str, definition: str) -> None:
        cur.execute(f"PRAGMA table_info({table})")
        cols = {str(r[1]) for r in cur.fetchall()}
        if column in cols:
            return
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    # ---------- Units / brands / categories ----------
    def add_unit(self, name: str, abbreviation: str, default_value: float) -> int:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO units (name, abbreviation, default_value) VALUES (?, ?, ?)",
                (name, abbreviation, float(default_value)),
            )
            return int(cur.lastrowid)

    def list_units(self) -> list[Unit]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name, abbreviation, default_value FROM units ORDER BY name")
            rows = cur.fetchall()
        return [Unit(id=int(r[0]), name=str(r[1]), abbreviation=str(r[2]), default_value=float(r[3])) for r in rows]

    def get_unit_by_abbreviation(self, abbreviation: str) -> Optional[Unit]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name, abbreviation, default_value FROM units WHERE abbreviation=?", (abbreviation,))
            r = cur.fetchone()
        if not r:
            return None
        return Unit(id=int(r[0]), name=str(r[1]), abbreviation=str(r[2]), default_value=float(r[3]))

    def add_brand(self, name: str) -> int:
        with self._cursor() as cur:
            cur.execute("INSERT INTO brands (name) VALUES (?)", (name,))
            return int(cur.lastrowid)

    def list_brands(self) -> list[Brand]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name FROM brands ORDER BY name")
            rows = cur.fetchall()
        return [Brand(id=int(r[0]), name=str(r[1])) for r in rows]

    def add_category(self, name: str, prefix: str, user_id: str | None = None) -> int:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO categories (name, prefix, user_id) VALUES (?, ?, ?)",
                (name, prefix, user_id),
            )
            return int(cur.lastrowid)

    def get_category(self, category_id: RowId) -> Optional[Category]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name, prefix, user_id FROM categories WHERE id=?", (int(category_id),))
            r = cur.fetchone()
        if not r:
            return None
        return Category(id=int(r[0]), name=str(r[1]), prefix=str(r[2]), user_id=r[3])

    def list_categories(self) -> list[Category]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name, prefix, user_id FROM categories ORDER BY name")
            rows = cur.fetchall()
        return [Category(id=int(r[0]), name=str(r[1]), prefix=str(r[2]), user_id=r[3]) for r in rows]

    def upsert_categories(self, rows: Iterable[tuple[str, str]], user_id: str) -> int:
        count = 0
        with self._cursor() as cur:
            for name, prefix in rows:
                cur.execute(
                    """
                    INSERT INTO categories (name, prefix, user_id) VALUES (?, ?, ?)
                    ON CONFLICT(user_id, name) DO UPDATE SET prefix=excluded.prefix
                    """,
                    (name, prefix, user_id),
                )
                count += 1
        return count

    # ---------- Products ----------
    def add_product(self, values: dict) -> int:
        cols = [k for k in values if k in _PRODUCT_WRITABLE]
        placeholders = ", ".join("?" for _ in cols)
        with self._cursor() as cur:
            cur.execute(
                f"INSERT INTO products ({', '.join(cols)}) VALUES ({placeholders})",
                tuple(values[k] for k in cols),
            )
            return int(cur.lastrowid)

    def update_product(self, product_id: RowId, values: dict) -> bool:
        cols = [k for k in values if k in _PRODUCT_UPDATABLE]
        if not cols:
            return self.get_product_by_id(product_id) is not None
        assignments = ", ".join(f"{k}=?" for k in cols)
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE products SET {assignments} WHERE id=?",
                tuple(values[k] for k in cols) + (int(product_id),),
            )
            return cur.rowcount > 0

    def delete_product(self, product_id: RowId) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM products WHERE id=?", (int(product_id),))
            return cur.rowcount > 0

    def _fetch_product(self, cur: sqlite3.Cursor, product_id: RowId) -> Optional[Product]:
        cur.execute(f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE id=?", (int(product_id),))
        r = cur.fetchone()
        return _product_from_row(r) if r else None

    def get_product_by_id(self, product_id: RowId) -> Optional[Product]:
        with self._cursor() as cur:
            return self._fetch_product(cur, product_id)

    def list_products(self) -> list[Product]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_PRODUCT_COLUMNS} FROM products ORDER BY name COLLATE NOCASE, id")
            rows = cur.fetchall()
        return [_product_from_row(r) for r in rows]

    def next_product_code(self, prefix: str) -> str:
        with self._cursor() as cur:
            cur.execute("SELECT code FROM products WHERE code LIKE ?", (f"{prefix}%",))
            codes = [str(r[0]) for r in cur.fetchall()]
        numbers = [int(c[len(prefix):]) for c in codes if c[len(prefix):].isdigit()]
        return f"{prefix}{(max(numbers) if numbers else 0) + 1:03d}"

    def add_product_stock(self, product_id: RowId, amount: float, last_unit_cost: float | None = None) -> Optional[Product]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE products
                SET current_quantity = current_quantity + ?,
                    last_unit_cost = COALESCE(?, last_unit_cost)
                WHERE id=?
                """,
                (float(amount), last_unit_cost, int(product_id)),
            )
            if cur.rowcount == 0:
                return None
            return self._fetch_product(cur, product_id)

    def take_product_stock(self, product_id: RowId, amount: float) -> Optional[Product]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE products
                SET current_quantity = current_quantity - ?
                WHERE id=? AND current_quantity >= ?
                """,
                (float(amount), int(product_id), float(amount)),
            )
            if cur.rowcount == 0:
                return None
            return self._fetch_product(cur, product_id)

    def release_product_stock(self, product_id: RowId, amount: float) -> Optional[Product]:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE products SET current_quantity = MAX(0, current_quantity - ?) WHERE id=?",
                (float(amount), int(product_id)),
            )
            if cur.rowcount == 0:
                return None
            return self._fetch_product(cur, product_id)

    # ---------- Stock entries ----------
    def create_stock_entry(
        self,
        product_id: RowId,
        quantity: float,
        unit_price: float,
        cost: float,
        stock_increase: float,
        date_iso: str,
        notes: Optional[str],
        actor_user_id: Optional[str] = None,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO stock_entries (product_id, quantity, unit_price, cost, stock_increase, date, notes, actor_user_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (int(product_id), float(quantity), float(unit_price), float(cost), float(stock_increase), date_iso, notes, actor_user_id),
            )
            return int(cur.lastrowid)

    def _entries_query(self, where: list[str], params: list) -> list[StockEntry]:
        sql = """
            SELECT e.id, e.product_id, e.quantity, e.unit_price, e.cost, e.stock_increase, e.date, e.notes, p.name
            FROM stock_entries e
            LEFT JOIN products p ON p.id = e.product_id
        """
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY e.date DESC, e.id DESC"
        with self._cursor() as cur:
            cur.execute(sql, tuple(params))
            rows = cur.fetchall()
        return [
            StockEntry(
                id=int(r[0]),
                product_id=int(r[1]),
                quantity=float(r[2]),
                unit_price=float(r[3]),
                cost=float(r[4]),
                stock_increase=float(r[5]),
                date=str(r[6]),
                notes=r[7],
                product_name=r[8],
            )
            for r in rows
        ]

    def get_stock_entry(self, entry_id: RowId) -> Optional[StockEntry]:
        rows = self._entries_query(["e.id = ?"], [int(entry_id)])
        return rows[0] if rows else None

    def list_stock_entries(
        self, product_id: RowId | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[StockEntry]:
        where, params = _date_filters("e.date", start_iso, end_iso)
        if product_id is not None:
            where.insert(0, "e.product_id = ?")
            params.insert(0, int(product_id))
        return self._entries_query(where, params)

    def delete_stock_entry(self, entry_id: RowId) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM stock_entries WHERE id=?", (int(entry_id),))
            return cur.rowcount > 0

    # ---------- Service types / bill of materials ----------
    def create_service_type(self, name: str, price: float) -> int:
        with self._cursor() as cur:
            cur.execute("INSERT INTO service_types (name, price) VALUES (?, ?)", (name, float(price)))
            return int(cur.lastrowid)

    def update_service_type(self, service_type_id: RowId, name: str, price: float) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE service_types SET name=?, price=? WHERE id=?",
                (name, float(price), int(service_type_id)),
            )
            return cur.rowcount > 0

    def delete_service_type(self, service_type_id: RowId) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM service_types WHERE id=?", (int(service_type_id),))
            return cur.rowcount > 0

    def get_service_type(self, service_type_id: RowId) -> Optional[ServiceType]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name, price FROM service_types WHERE id=?", (int(service_type_id),))
            r = cur.fetchone()
        if not r:
            return None
        return ServiceType(
            id=int(r[0]),
            name=str(r[1]),
            price=float(r[2]),
            products=tuple(self.bill_of_materials(int(r[0]))),
        )

    def list_service_types(self) -> list[ServiceType]:
        with self._cursor() as cur:
            cur.execute("SELECT id, name, price FROM service_types ORDER BY name COLLATE NOCASE, id")
            rows = cur.fetchall()
        return [
            ServiceType(id=int(r[0]), name=str(r[1]), price=float(r[2]), products=tuple(self.bill_of_materials(int(r[0]))))
            for r in rows
        ]

    def replace_bill_of_materials(self, service_type_id: RowId, lines: Iterable[dict]) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM service_products WHERE service_type_id=?", (int(service_type_id),))
            for line in lines:
                cur.execute(
                    """
                    INSERT INTO service_products (service_type_id, product_id, default_quantity, use_unit_system)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        int(service_type_id),
                        int(line["product_id"]),
                        float(line["default_quantity"]),
                        1 if line.get("use_unit_system") else 0,
                    ),
                )

    def bill_of_materials(self, service_type_id: RowId) -> list[BillOfMaterialLine]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT sp.id, sp.product_id, sp.default_quantity, sp.use_unit_system,
                       p.name, p.unit, p.current_quantity, p.conversion_factor, p.last_unit_cost
                FROM service_products sp
                JOIN products p ON p.id = sp.product_id
                WHERE sp.service_type_id = ?
                ORDER BY sp.id
                """,
                (int(service_type_id),),
            )
            rows = cur.fetchall()
        return [
            BillOfMaterialLine(
                id=int(r[0]),
                product_id=int(r[1]),
                default_quantity=float(r[2]),
                use_unit_system=bool(r[3]),
                product_name=str(r[4]),
                product_unit=str(r[5]),
                current_quantity=float(r[6]),
                conversion_factor=float(r[7]),
                last_unit_cost=float(r[8]) if r[8] is not None else None,
            )
            for r in rows
        ]

    # ---------- Services ----------
    def create_service(
        self,
        client_name: str,
        service_type_id: RowId,
        date_iso: str,
        notes: Optional[str],
        price: float,
        product_cost: float,
        actor_user_id: Optional[str] = None,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO services (client_name, service_type_id, date, notes, price, product_cost, actor_user_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (client_name, int(service_type_id), date_iso, notes, float(price), float(product_cost), actor_user_id),
            )
            return int(cur.lastrowid)

    def _services_query(self, where: list[str], params: list) -> list[Service]:
        sql = """
            SELECT s.id, s.client_name, s.service_type_id, s.date, s.notes, s.price, s.product_cost, t.name,
                   s.consumption_recorded
            FROM services s
            LEFT JOIN service_types t ON t.id = s.service_type_id
        """
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY s.date DESC, s.id DESC"
        with self._cursor() as cur:
            cur.execute(sql, tuple(params))
            rows = cur.fetchall()
        return [
            Service(
                id=int(r[0]),
                client_name=str(r[1]),
                service_type_id=int(r[2]) if r[2] is not None else None,
                date=str(r[3]),
                notes=r[4],
                price=float(r[5]),
                product_cost=float(r[6]),
                service_type_name=r[7],
                consumption_recorded=bool(r[8]),
            )
            for r in rows
        ]

    def get_service(self, service_id: RowId) -> Optional[Service]:
        rows = self._services_query(["s.id = ?"], [int(service_id)])
        return rows[0] if rows else None

    def list_services(
        self, service_type_id: RowId | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[Service]:
        where, params = _date_filters("s.date", start_iso, end_iso)
        if service_type_id is not None:
            where.insert(0, "s.service_type_id = ?")
            params.insert(0, int(service_type_id))
        return self._services_query(where, params)

    def delete_service(self, service_id: RowId) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM services WHERE id=?", (int(service_id),))
            return cur.rowcount > 0

    def add_service_consumption(self, service_id: RowId, lines: Iterable[ConsumedLine]) -> None:
        with self._cursor() as cur:
            for line in lines:
                cur.execute(
                    "INSERT INTO service_consumption (service_id, product_id, quantity, unit_cost) VALUES (?, ?, ?, ?)",
                    (int(service_id), int(line.product_id), float(line.quantity), float(line.unit_cost)),
                )
            cur.execute("UPDATE services SET consumption_recorded=1 WHERE id=?", (int(service_id),))

    def service_consumption(self, service_id: RowId) -> list[ConsumedLine]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT product_id, quantity, unit_cost FROM service_consumption WHERE service_id=? ORDER BY id",
                (int(service_id),),
            )
            rows = cur.fetchall()
        return [ConsumedLine(product_id=int(r[0]), quantity=float(r[1]), unit_cost=float(r[2])) for r in rows]

    # ---------- Financial records ----------
    def create_financial_record(
        self,
        record_type: str,
        amount: float,
        description: Optional[str],
        reference_type: Optional[str],
        reference_id: Optional[RowId],
        date_iso: str,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO financial_records (type, amount, description, reference_type, reference_id, date)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (record_type, float(amount), description, reference_type, reference_id, date_iso),
            )
            return int(cur.lastrowid)

    def _records_query(self, where: list[str], params: list) -> list[FinancialRecord]:
        sql = "SELECT id, type, amount, description, reference_type, reference_id, date FROM financial_records"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY date DESC, id DESC"
        with self._cursor() as cur:
            cur.execute(sql, tuple(params))
            rows = cur.fetchall()
        return [
            FinancialRecord(
                id=int(r[0]),
                type=str(r[1]),
                amount=float(r[2]),
                description=r[3],
                reference_type=r[4],
                reference_id=r[5],
                date=str(r[6]),
            )
            for r in rows
        ]

    def get_financial_record(self, record_id: RowId) -> Optional[FinancialRecord]:
        rows = self._records_query(["id = ?"], [int(record_id)])
        return rows[0] if rows else None

    def list_financial_records(
        self, record_type: str | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[FinancialRecord]:
        where, params = _date_filters("date", start_iso, end_iso)
        if record_type:
            where.insert(0, "type = ?")
            params.insert(0, record_type)
        return self._records_query(where, params)

    def delete_financial_record(self, record_id: RowId) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM financial_records WHERE id=?", (int(record_id),))
            return cur.rowcount > 0

    def delete_financial_records_for(self, reference_type: str, reference_id: RowId) -> int:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM financial_records WHERE reference_type=? AND reference_id=?",
                (reference_type, reference_id),
            )
            return int(cur.rowcount)

    # ---------- Intent log ----------
    def create_intent(self, operation: str, reference: Optional[str], payload: dict) -> int:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO pending_intents (operation, reference, payload) VALUES (?, ?, ?)",
                (operation, reference, json.dumps(payload, ensure_ascii=False, default=str)),
            )
            return int(cur.lastrowid)

    def update_intent_steps(self, intent_id: RowId, completed_steps: Iterable[str]) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE pending_intents SET completed_steps=? WHERE id=?",
                (json.dumps(list(completed_steps), ensure_ascii=False), int(intent_id)),
            )

    def close_intent(self, intent_id: RowId) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE pending_intents SET applied=1, closed_at=datetime('now') WHERE id=?",
                (int(intent_id),),
            )

    def list_pending_intents(self) -> list[PendingIntent]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, operation, reference, payload, completed_steps, created_at, applied
                FROM pending_intents
                WHERE applied=0
                ORDER BY id
                """
            )
            rows = cur.fetchall()
        return [
            PendingIntent(
                id=int(r[0]),
                operation=str(r[1]),
                reference=r[2],
                payload=json.loads(r[3]),
                completed_steps=tuple(json.loads(r[4])),
                created_at=str(r[5]),
                applied=bool(r[6]),
            )
            for r in rows
        ]
