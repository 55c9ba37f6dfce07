import sqlite3
from pathlib import Path

import pytest

from conftest import make_repo
from nsm.domain.errors import StoreError
from nsm.repositories.sqlite_repo import SqliteRepository


def test_migrations_record_latest_version(tmp_path: Path):
    repo = make_repo(tmp_path)
    repo.init_db()

    conn = repo._conn()
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
    conn.close()
    assert versions == [1, 2, 3]


def test_v2_backfills_stock_increase_from_conversion_factor(tmp_path: Path):
    db = tmp_path / "legacy.db"
    legacy = SqliteRepository(db)
    conn = sqlite3.connect(db)
    conn.execute("CREATE TABLE schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
    cur = conn.cursor()
    legacy._migration_v1_base(cur)
    cur.execute("INSERT INTO schema_migrations VALUES (1, datetime('now'))")
    cur.execute("INSERT INTO products (name, conversion_factor) VALUES ('Gel', 5)")
    cur.execute("INSERT INTO stock_entries (product_id, quantity, unit_price, cost, date) VALUES (1, 2, 10, 20, '2024-01-01')")
    conn.commit()
    conn.close()

    legacy.init_db()

    assert legacy.get_stock_entry(1).stock_increase == 10
    assert legacy.list_pending_intents() == []


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v3_consumption_marker(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = make_repo(tmp_path, "broken.db")

    conn = repo._conn()
    conn.execute("DELETE FROM schema_migrations WHERE version = 3")
    conn.commit()
    conn.close()

    with pytest.raises(RuntimeError, match="Original database restored"):
        BrokenMigrationRepo(db).run_migrations()

    conn = repo._conn()
    after = int(conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()[0])
    conn.close()
    assert after == 2


def test_constraints_reject_negative_quantity(tmp_path: Path):
    repo = make_repo(tmp_path)
    with pytest.raises(StoreError):
        repo.add_product({"name": "Bad", "current_quantity": -1})


def test_v3_marks_services_that_have_a_consumption_snapshot(tmp_path: Path):
    db = tmp_path / "legacy.db"
    legacy = SqliteRepository(db)
    conn = sqlite3.connect(db)
    conn.execute("CREATE TABLE schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
    cur = conn.cursor()
    legacy._migration_v1_base(cur)
    legacy._migration_v2_snapshots_and_intents(cur)
    cur.execute("INSERT INTO schema_migrations VALUES (1, datetime('now')), (2, datetime('now'))")
    cur.execute("INSERT INTO products (name, current_quantity) VALUES ('Gel', 5)")
    cur.execute("INSERT INTO services (client_name, date, price) VALUES ('Ana', '2024-01-01', 50)")
    cur.execute("INSERT INTO services (client_name, date, price) VALUES ('Bia', '2024-01-02', 50)")
    cur.execute("INSERT INTO service_consumption (service_id, product_id, quantity) VALUES (1, 1, 2)")
    conn.commit()
    conn.close()

    legacy.init_db()

    assert legacy.get_service(1).consumption_recorded is True
    assert legacy.get_service(2).consumption_recorded is False
