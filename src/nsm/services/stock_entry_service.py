from __future__ import annotations

import logging
from typing import Callable, Optional

from nsm.domain.errors import NotFoundError, ValidationError
from nsm.domain.models import EXPENSE, REF_STOCK_ENTRY, RowId, StockEntry
from nsm.domain.units import to_base_units
from nsm.repositories.contracts import DataStore
from nsm.repositories.unit_of_work import StoreUnitOfWork, UnitOfWork
from nsm.services.validators import optional_date, require_date, require_positive, require_reference

log = logging.getLogger("nsm.stock")

UowFactory = Callable[[str, Optional[str], dict], UnitOfWork]


def reconcile_cost_with_quantity(
    quantity: float, unit_price: float | None = None, cost: float | None = None
) -> tuple[float, float]:
    """Fills whichever of unit price / total cost is missing.

    Returns (unit_price, cost). When both are given they are returned as-is;
    the two are not forced to agree.
    """
    quantity = require_positive(quantity, "Quantity")
    if unit_price is None and cost is None:
        raise ValidationError("Unit price or cost is required.")
    if cost is None:
        unit_price = require_positive(unit_price, "Unit price")
        return unit_price, quantity * unit_price
    cost = require_positive(cost, "Cost")
    if unit_price is None:
        return cost / quantity, cost
    return require_positive(unit_price, "Unit price"), cost


class StockEntryService:
    def __init__(self, repo: DataStore, cache=None, uow_factory: UowFactory | None = None):
        self.repo = repo
        self.cache = cache
        self.uow_factory = uow_factory or (
            lambda operation, reference, payload: StoreUnitOfWork(repo, operation, reference, payload)
        )

    def record_entry(
        self,
        product_id: RowId,
        quantity: float,
        unit_price: float,
        cost: float,
        date,
        notes: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> StockEntry:
        """
        Records a purchase of `quantity` purchase units.

        The product gains quantity * conversion_factor base units and its
        last_unit_cost becomes cost / that increase. This is the price of the
        most recent purchase, not an average over past purchases.
        """
        require_reference(product_id, "Select a product.")
        quantity = require_positive(quantity, "Quantity")
        unit_price = require_positive(unit_price, "Unit price")
        cost = require_positive(cost, "Cost")
        date_iso = require_date(date)
        notes = (notes or "").strip() or None

        product = self.repo.get_product_by_id(product_id)
        if not product:
            raise NotFoundError("Product not found.")

        stock_increase = to_base_units(quantity, product.conversion_factor)
        if stock_increase <= 0:
            raise ValidationError("Stock increase must be > 0.")
        unit_cost = cost / stock_increase

        payload = {
            "product_id": product.id,
            "quantity": quantity,
            "unit_price": unit_price,
            "cost": cost,
            "stock_increase": stock_increase,
            "unit_cost": unit_cost,
            "date": date_iso,
        }
        with self.uow_factory("record_stock_entry", f"product:{product.id}", payload) as uow:
            with uow.step("stock entry inserted"):
                entry_id = self.repo.create_stock_entry(
                    product.id, quantity, unit_price, cost, stock_increase, date_iso, notes, actor_user_id=actor_user_id
                )
            with uow.step("stock updated"):
                if self.repo.add_product_stock(product.id, stock_increase, last_unit_cost=unit_cost) is None:
                    raise NotFoundError("Product not found.")
            with uow.step("financial record created"):
                self.repo.create_financial_record(
                    EXPENSE,
                    cost,
                    f"Stock entry: {product.name} ({quantity:g} un)",
                    REF_STOCK_ENTRY,
                    entry_id,
                    date_iso,
                )

        if self.cache is not None:
            self.cache.invalidate("products", "stock_entries", "financial_records")

        log.info(
            "stock_entry_created entry_id=%s product_id=%s qty=%s increase=%s unit_cost=%.6f actor=%s",
            entry_id,
            product.id,
            quantity,
            stock_increase,
            unit_cost,
            actor_user_id,
        )
        entry = self.repo.get_stock_entry(entry_id)
        if entry is None:
            raise NotFoundError("Stock entry not found after insert.")
        return entry

    def list_entries(self, product_id: RowId | None = None, start_date=None, end_date=None) -> list[StockEntry]:
        return self.repo.list_stock_entries(product_id, optional_date(start_date), optional_date(end_date))

    def get_entry(self, entry_id: RowId) -> StockEntry:
        entry = self.repo.get_stock_entry(entry_id)
        if not entry:
            raise NotFoundError("Stock entry not found.")
        return entry
