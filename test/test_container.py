from pathlib import Path

import pytest

from nsm.application.cache import ReadCache
from nsm.application.container import build_container
from nsm.config import StoreSettings, load_store_settings
from nsm.repositories.contracts import DataStore
from nsm.repositories.rest_repo import RestRepository
from nsm.repositories.sqlite_repo import SqliteRepository


def test_container_wires_sqlite_store_and_identity(tmp_path: Path):
    c = build_container(tmp_path / "studio.db", StoreSettings(user_id="u-1"))

    assert isinstance(c.repo, SqliteRepository)
    assert c.identity.current_user_id() == "u-1"
    assert c.catalog.seed_default_categories() == 9

    p = c.catalog.add_product("Removedor")
    st = c.service_types.create_service_type("Remocao", 25, [{"product_id": p.id, "default_quantity": 1}])
    c.stock_entries.record_entry(p.id, 3, 2, 6, "2024-06-01")
    service = c.services.create_service("Bia", st.id, "2024-06-02")
    c.compensation.delete_service(service.id)

    assert c.catalog.list_products()[0].current_quantity == 3
    summary = c.financial.summary_between("2024-06-01", "2024-06-30")
    assert (summary.total_income, summary.total_expense) == (0, 6)


def test_container_builds_rest_store_without_touching_network(tmp_path: Path):
    settings = StoreSettings(backend="rest", url="https://x.supabase.co", api_key="k")
    c = build_container(tmp_path / "unused.db", settings)

    assert isinstance(c.repo, RestRepository)
    assert not (tmp_path / "unused.db").exists()


def test_load_store_settings_reads_environment():
    s = load_store_settings(
        {"NSM_STORE_BACKEND": "REST", "NSM_STORE_URL": "https://x", "NSM_STORE_KEY": "k", "NSM_STORE_TIMEOUT": "2.5", "NSM_USER_ID": "u"}
    )
    assert (s.backend, s.url, s.api_key, s.timeout, s.user_id) == ("rest", "https://x", "k", 2.5, "u")
    assert load_store_settings({}).backend == "sqlite"


@pytest.mark.parametrize(
    "env",
    [
        {"NSM_STORE_BACKEND": "mongo"},
        {"NSM_STORE_BACKEND": "rest", "NSM_STORE_URL": "https://x"},
        {"NSM_STORE_TIMEOUT": "0"},
    ],
)
def test_load_store_settings_rejects_bad_config(env):
    with pytest.raises(ValueError):
        load_store_settings(env)


def test_read_cache_reloads_after_invalidate():
    cache = ReadCache()
    loads = []

    def loader():
        loads.append(1)
        return len(loads)

    assert cache.get("products", loader) == 1
    assert cache.get("products", loader) == 1
    cache.invalidate("products")
    assert cache.get("products", loader) == 2


def test_read_cache_unsubscribe_and_failing_subscriber():
    cache = ReadCache()
    seen = []

    def broken(_keys):
        raise RuntimeError("view closed")

    cache.subscribe(broken)
    unsubscribe = cache.subscribe(seen.append)
    cache.invalidate("services")
    unsubscribe()
    cache.invalidate("services")

    assert seen == [("services",)]


@pytest.mark.parametrize("store_cls", [SqliteRepository, RestRepository])
def test_store_implements_every_data_store_method(store_cls):
    required = [name for name in dir(DataStore) if not name.startswith("_")]

    missing = [name for name in required if not callable(getattr(store_cls, name, None))]

    assert "take_product_stock" in required
    assert missing == []
    assert isinstance(store_cls.supports_transactions, bool)
