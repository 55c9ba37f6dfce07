from pathlib import Path

import pytest

from conftest import make_repo
from nsm.application.identity import StaticIdentity
from nsm.domain.errors import AuthorizationError, NotFoundError, ValidationError
from nsm.services.catalog_service import CatalogService
from nsm.services.stock_entry_service import StockEntryService


def test_product_defaults_conversion_factor_from_unit(tmp_path: Path):
    repo = make_repo(tmp_path)
    catalog = CatalogService(repo)
    catalog.add_unit("Frasco 15ml", "fr15", 15)

    product = catalog.add_product("Base coat", unit="fr15")
    plain = catalog.add_product("Algodao")

    assert product.conversion_factor == 15
    assert plain.conversion_factor == 1
    assert plain.unit == "un"


def test_product_rejects_non_positive_factor(tmp_path: Path):
    catalog = CatalogService(make_repo(tmp_path))
    with pytest.raises(ValidationError, match="Conversion factor"):
        catalog.add_product("Top coat", conversion_factor=0)


def test_product_code_follows_category_prefix(tmp_path: Path):
    repo = make_repo(tmp_path)
    catalog = CatalogService(repo)
    gel = catalog.add_category("Gel", "gl")

    first = catalog.add_product("Gel 1", category_id=gel)
    second = catalog.add_product("Gel 2", category_id=gel)

    assert (first.code, second.code) == ("GL001", "GL002")
    with pytest.raises(NotFoundError):
        catalog.add_product("Orphan", category_id=999)


def test_category_prefix_needs_two_characters(tmp_path: Path):
    catalog = CatalogService(make_repo(tmp_path))
    with pytest.raises(ValidationError, match="at least 2"):
        catalog.add_category("Lixa", "L")


def test_seed_default_categories_requires_user(tmp_path: Path):
    repo = make_repo(tmp_path)
    with pytest.raises(AuthorizationError):
        CatalogService(repo, StaticIdentity()).seed_default_categories()

    catalog = CatalogService(repo, StaticIdentity("user-1", "studio@example.com"))
    assert catalog.seed_default_categories() == 9
    catalog.seed_default_categories()

    categories = catalog.list_categories()
    assert len(categories) == 9
    assert {c.prefix for c in categories} >= {"EQ", "GL", "PQ"}
    assert all(c.user_id == "user-1" for c in categories)


def test_update_product_leaves_stock_alone(tmp_path: Path):
    repo = make_repo(tmp_path)
    catalog = CatalogService(repo)
    p = catalog.add_product("Esmalte", min_quantity=1)
    StockEntryService(repo).record_entry(p.id, 4, 2, 8, "2024-01-01")

    updated = catalog.update_product(p.id, name="Esmalte Vermelho", min_quantity=3)

    assert updated.name == "Esmalte Vermelho"
    assert updated.min_quantity == 3
    assert updated.current_quantity == 4
    assert updated.last_unit_cost == 2


def test_low_stock_includes_products_at_minimum(tmp_path: Path):
    repo = make_repo(tmp_path)
    catalog = CatalogService(repo)
    catalog.add_product("At minimum", min_quantity=2, current_quantity=2)
    catalog.add_product("Below", min_quantity=2, current_quantity=1)
    catalog.add_product("Fine", min_quantity=2, current_quantity=3)

    assert sorted(p.name for p in catalog.low_stock_products()) == ["At minimum", "Below"]


def test_delete_missing_product_raises(tmp_path: Path):
    with pytest.raises(NotFoundError):
        CatalogService(make_repo(tmp_path)).delete_product(5)
