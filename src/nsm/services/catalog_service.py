from __future__ import annotations

from typing import Optional

from nsm.domain.errors import AuthorizationError, NotFoundError, ValidationError
from nsm.domain.models import Brand, Category, Product, RowId, Unit
from nsm.domain.units import validate_conversion_factor
from nsm.repositories.contracts import DataStore
from nsm.services.validators import require_non_negative, require_positive, require_text

DEFAULT_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("Equipamento", "EQ"),
    ("Ferramenta", "FR"),
    ("Lixa", "LX"),
    ("Higiene", "HP"),
    ("Tips", "TP"),
    ("Gel", "GL"),
    ("Esmalte", "ES"),
    ("Finalizado", "FN"),
    ("Preparador", "PQ"),
)


class CatalogService:
    def __init__(self, repo: DataStore, identity=None, cache=None):
        self.repo = repo
        self.identity = identity
        self.cache = cache

    # ---------- Units / brands ----------
    def add_unit(self, name: str, abbreviation: str, default_value: float = 1.0) -> RowId:
        name = require_text(name, "Unit name")
        abbreviation = require_text(abbreviation, "Abbreviation")
        default_value = require_positive(default_value, "Default value")
        if self.repo.get_unit_by_abbreviation(abbreviation):
            raise ValidationError(f"Unit '{abbreviation}' already exists.")
        unit_id = self.repo.add_unit(name, abbreviation, default_value)
        self._invalidate("units")
        return unit_id

    def list_units(self) -> list[Unit]:
        return self._read("units", self.repo.list_units)

    def add_brand(self, name: str) -> RowId:
        name = require_text(name, "Brand name")
        if any(b.name.lower() == name.lower() for b in self.repo.list_brands()):
            raise ValidationError(f"Brand '{name}' already exists.")
        brand_id = self.repo.add_brand(name)
        self._invalidate("brands")
        return brand_id

    def list_brands(self) -> list[Brand]:
        return self._read("brands", self.repo.list_brands)

    # ---------- Categories ----------
    def add_category(self, name: str, prefix: str) -> RowId:
        name = require_text(name, "Category name")
        prefix = require_text(prefix, "Prefix").upper()
        if len(prefix) < 2:
            raise ValidationError("Prefix must have at least 2 characters.")
        user_id = self._current_user_id()
        category_id = self.repo.add_category(name, prefix, user_id)
        self._invalidate("categories")
        return category_id

    def list_categories(self) -> list[Category]:
        return self._read("categories", self.repo.list_categories)

    def seed_default_categories(self) -> int:
        user_id = self._current_user_id()
        if not user_id:
            raise AuthorizationError("Sign in to create the default categories.")
        count = self.repo.upsert_categories(DEFAULT_CATEGORIES, user_id)
        self._invalidate("categories")
        return count

    # ---------- Products ----------
    def add_product(
        self,
        name: str,
        unit: str = "un",
        conversion_factor: Optional[float] = None,
        min_quantity: float = 0,
        current_quantity: float = 0,
        brand_id: Optional[RowId] = None,
        category_id: Optional[RowId] = None,
        description: Optional[str] = None,
    ) -> Product:
        name = require_text(name, "Name")
        unit = (unit or "").strip() or "un"
        if conversion_factor is None:
            known = self.repo.get_unit_by_abbreviation(unit)
            conversion_factor = known.default_value if known else 1.0
        conversion_factor = validate_conversion_factor(conversion_factor)
        min_quantity = require_non_negative(min_quantity, "Min quantity")
        current_quantity = require_non_negative(current_quantity, "Current quantity")

        values = {
            "name": name,
            "unit": unit,
            "conversion_factor": conversion_factor,
            "min_quantity": min_quantity,
            "current_quantity": current_quantity,
            "brand_id": brand_id,
            "category_id": category_id,
            "description": (description or "").strip() or None,
        }
        if category_id is not None:
            category = self.repo.get_category(category_id)
            if not category:
                raise NotFoundError("Category not found.")
            values["code"] = self.repo.next_product_code(category.prefix)

        product_id = self.repo.add_product(values)
        self._invalidate("products")
        return self.get_product(product_id)

    def update_product(
        self,
        product_id: RowId,
        name: Optional[str] = None,
        unit: Optional[str] = None,
        conversion_factor: Optional[float] = None,
        min_quantity: Optional[float] = None,
        brand_id: Optional[RowId] = None,
        category_id: Optional[RowId] = None,
        description: Optional[str] = None,
    ) -> Product:
        """Quantity and last unit cost are left alone; only stock entries and services move them."""
        self.get_product(product_id)
        values: dict = {}
        if name is not None:
            values["name"] = require_text(name, "Name")
        if unit is not None:
            values["unit"] = require_text(unit, "Unit")
        if conversion_factor is not None:
            values["conversion_factor"] = validate_conversion_factor(conversion_factor)
        if min_quantity is not None:
            values["min_quantity"] = require_non_negative(min_quantity, "Min quantity")
        if brand_id is not None:
            values["brand_id"] = brand_id
        if category_id is not None:
            if not self.repo.get_category(category_id):
                raise NotFoundError("Category not found.")
            values["category_id"] = category_id
        if description is not None:
            values["description"] = description.strip() or None

        if not self.repo.update_product(product_id, values):
            raise NotFoundError("Product not found.")
        self._invalidate("products")
        return self.get_product(product_id)

    def delete_product(self, product_id: RowId) -> None:
        self.get_product(product_id)
        if not self.repo.delete_product(product_id):
            raise NotFoundError("Product not found.")
        self._invalidate("products")

    def get_product(self, product_id: RowId) -> Product:
        p = self.repo.get_product_by_id(product_id)
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def list_products(self) -> list[Product]:
        return self._read("products", self.repo.list_products)

    def low_stock_products(self) -> list[Product]:
        return [p for p in self.list_products() if p.is_low_stock]

    def _current_user_id(self) -> Optional[str]:
        if self.identity is None:
            return None
        return self.identity.current_user_id()

    def _read(self, key: str, loader):
        if self.cache is None:
            return loader()
        return self.cache.get(key, loader)

    def _invalidate(self, *keys: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(*keys)
