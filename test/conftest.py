import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def make_repo(tmp_path: Path, name: str = "studio.db"):
    from nsm.repositories.sqlite_repo import SqliteRepository

    repo = SqliteRepository(tmp_path / name)
    repo.init_db()
    return repo


def add_product(repo, name: str = "Gel Base", conversion_factor: float = 1.0, current_quantity: float = 0.0, min_quantity: float = 0.0, last_unit_cost=None) -> int:
    product_id = repo.add_product(
        {
            "name": name,
            "unit": "un",
            "conversion_factor": conversion_factor,
            "current_quantity": current_quantity,
            "min_quantity": min_quantity,
        }
    )
    if last_unit_cost is not None:
        conn = repo._conn()
        conn.execute("UPDATE products SET last_unit_cost=? WHERE id=?", (last_unit_cost, product_id))
        conn.commit()
        conn.close()
    return product_id


def set_quantity(repo, product_id: int, quantity: float) -> None:
    conn = repo._conn()
    conn.execute("UPDATE products SET current_quantity=? WHERE id=?", (quantity, product_id))
    conn.commit()
    conn.close()
