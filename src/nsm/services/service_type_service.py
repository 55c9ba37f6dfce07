from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from nsm.domain.errors import NotFoundError, ValidationError
from nsm.domain.models import RowId, ServiceType
from nsm.repositories.contracts import DataStore
from nsm.repositories.unit_of_work import StoreUnitOfWork, UnitOfWork
from nsm.services.validators import require_positive, require_reference, require_text

log = logging.getLogger("nsm.services")


class ServiceTypeService:
    def __init__(
        self,
        repo: DataStore,
        cache=None,
        uow_factory: Callable[[str, Optional[str], dict], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.cache = cache
        self.uow_factory = uow_factory or (
            lambda operation, reference, payload: StoreUnitOfWork(repo, operation, reference, payload)
        )

    def _validate_lines(self, products: Iterable[dict] | None) -> list[dict]:
        """
        products: [{product_id, default_quantity, use_unit_system?}]
        """
        lines: list[dict] = []
        seen: set[str] = set()
        for it in products or ():
            product_id = require_reference(it.get("product_id"), "Each product line needs a product.")
            quantity = require_positive(it.get("default_quantity"), "Default quantity")
            # Availability is checked per line, so one product may appear only once.
            if str(product_id) in seen:
                raise ValidationError(f"Product {product_id} appears more than once.")
            seen.add(str(product_id))
            if not self.repo.get_product_by_id(product_id):
                raise NotFoundError(f"Product not found: {product_id}")
            lines.append(
                {
                    "product_id": product_id,
                    "default_quantity": quantity,
                    "use_unit_system": bool(it.get("use_unit_system", False)),
                }
            )
        return lines

    def create_service_type(self, name: str, price: float, products: Iterable[dict] | None = None) -> ServiceType:
        name = require_text(name, "Name")
        price = require_positive(price, "Price")
        lines = self._validate_lines(products)

        with self.uow_factory("create_service_type", name, {"price": price, "products": lines}) as uow:
            with uow.step("service type inserted"):
                type_id = self.repo.create_service_type(name, price)
            if lines:
                with uow.step("bill of materials stored"):
                    self.repo.replace_bill_of_materials(type_id, lines)

        self._invalidate()
        log.info("service_type_created id=%s name=%s lines=%s", type_id, name, len(lines))
        return self.get_service_type(type_id)

    def update_service_type(
        self, service_type_id: RowId, name: str, price: float, products: Iterable[dict] | None = None
    ) -> ServiceType:
        """Updates name and price, then replaces the whole bill of materials."""
        require_reference(service_type_id, "Select a service type.")
        name = require_text(name, "Name")
        price = require_positive(price, "Price")
        lines = self._validate_lines(products)
        if not self.repo.get_service_type(service_type_id):
            raise NotFoundError("Service type not found.")

        payload = {"name": name, "price": price, "products": lines}
        with self.uow_factory("update_service_type", f"service_type:{service_type_id}", payload) as uow:
            with uow.step("service type updated"):
                if not self.repo.update_service_type(service_type_id, name, price):
                    raise NotFoundError("Service type not found.")
            with uow.step("bill of materials replaced"):
                self.repo.replace_bill_of_materials(service_type_id, lines)

        self._invalidate()
        log.info("service_type_updated id=%s lines=%s", service_type_id, len(lines))
        return self.get_service_type(service_type_id)

    def delete_service_type(self, service_type_id: RowId) -> None:
        if not self.repo.get_service_type(service_type_id):
            raise NotFoundError("Service type not found.")
        with self.uow_factory("delete_service_type", f"service_type:{service_type_id}", {}) as uow:
            with uow.step("bill of materials removed"):
                self.repo.replace_bill_of_materials(service_type_id, [])
            with uow.step("service type deleted"):
                self.repo.delete_service_type(service_type_id)
        self._invalidate()
        log.info("service_type_deleted id=%s", service_type_id)

    def get_service_type(self, service_type_id: RowId) -> ServiceType:
        st = self.repo.get_service_type(service_type_id)
        if not st:
            raise NotFoundError("Service type not found.")
        return st

    def list_service_types(self) -> list[ServiceType]:
        # Not cached: each line carries the product's live quantity.
        return self.repo.list_service_types()

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate("service_types")
