from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from nsm.domain.errors import InsufficientStockError, NotFoundError
from nsm.domain.models import (
    INCOME,
    REF_SERVICE,
    AvailabilityLine,
    AvailabilityReport,
    ConsumedLine,
    RowId,
    Service,
    Shortfall,
)
from nsm.repositories.contracts import DataStore
from nsm.repositories.unit_of_work import StoreUnitOfWork, UnitOfWork
from nsm.services.validators import optional_date, require_date, require_reference, require_text

log = logging.getLogger("nsm.services")


def describe_shortfalls(shortfalls: Iterable[Shortfall]) -> str:
    return "\n".join(f"{s.name}: required {s.required:g}, available {s.available:g}" for s in shortfalls)


class ServiceExecutionService:
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

    def check_availability(self, service_type_id: RowId) -> AvailabilityReport:
        """
        Compares each bill-of-materials line against the product's current
        stock. A line is short when current_quantity < deduced quantity;
        having exactly the required amount is enough.
        """
        service_type = self.repo.get_service_type(service_type_id)
        if not service_type:
            raise NotFoundError("Service type not found.")

        products: list[AvailabilityLine] = []
        shortfalls: list[Shortfall] = []
        for line in service_type.products:
            deduced = line.deduced_quantity
            products.append(AvailabilityLine(line=line, deduced_quantity=deduced))
            if line.current_quantity < deduced:
                shortfalls.append(
                    Shortfall(
                        product_id=line.product_id,
                        name=line.product_name,
                        required=deduced,
                        available=line.current_quantity,
                    )
                )

        return AvailabilityReport(
            service_type_id=service_type.id,
            available=not shortfalls,
            insufficient_products=shortfalls,
            products=products,
        )

    def create_service(
        self,
        client_name: str,
        service_type_id: RowId,
        date,
        notes: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> Service:
        client_name = require_text(client_name, "Client name")
        require_reference(service_type_id, "Select a service type.")
        date_iso = require_date(date)
        notes = (notes or "").strip() or None

        service_type = self.repo.get_service_type(service_type_id)
        if not service_type:
            raise NotFoundError("Service type not found.")

        report = self.check_availability(service_type.id)
        if not report.available:
            log.info(
                "service_rejected service_type_id=%s short=%s",
                service_type.id,
                [s.product_id for s in report.insufficient_products],
            )
            raise InsufficientStockError(
                "Insufficient stock:\n" + describe_shortfalls(report.insufficient_products),
                report.insufficient_products,
            )

        consumed = [
            ConsumedLine(product_id=p.line.product_id, quantity=p.deduced_quantity, unit_cost=p.line.last_unit_cost or 0.0)
            for p in report.products
        ]
        product_cost = sum(c.quantity * c.unit_cost for c in consumed)
        price = service_type.price
        names = {p.line.product_id: p.line.product_name for p in report.products}

        payload = {
            "client_name": client_name,
            "service_type_id": service_type.id,
            "date": date_iso,
            "price": price,
            "product_cost": product_cost,
            "consumed": [{"product_id": c.product_id, "quantity": c.quantity} for c in consumed],
        }
        with self.uow_factory("create_service", f"service_type:{service_type.id}", payload) as uow:
            with uow.step("service inserted"):
                service_id = self.repo.create_service(
                    client_name, service_type.id, date_iso, notes, price, product_cost, actor_user_id=actor_user_id
                )
            with uow.step("consumption recorded"):
                self.repo.add_service_consumption(service_id, consumed)
            for c in consumed:
                with uow.step(f"stock taken for {names[c.product_id]}"):
                    self._take(c, names[c.product_id])
            with uow.step("financial record created"):
                self.repo.create_financial_record(
                    INCOME,
                    price,
                    f"Service: {service_type.name} - Client: {client_name}",
                    REF_SERVICE,
                    service_id,
                    date_iso,
                )

        if self.cache is not None:
            self.cache.invalidate("products", "services", "financial_records")

        log.info(
            "service_created service_id=%s service_type_id=%s price=%.2f product_cost=%.4f lines=%s actor=%s",
            service_id,
            service_type.id,
            price,
            product_cost,
            len(consumed),
            actor_user_id,
        )
        service = self.repo.get_service(service_id)
        if service is None:
            raise NotFoundError("Service not found after insert.")
        return service

    def _take(self, line: ConsumedLine, name: str) -> None:
        # Conditional decrement: another writer may have consumed the stock
        # between the availability check and this write.
        if self.repo.take_product_stock(line.product_id, line.quantity) is not None:
            return
        product = self.repo.get_product_by_id(line.product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {name}")
        shortfall = Shortfall(
            product_id=line.product_id,
            name=name,
            required=line.quantity,
            available=product.current_quantity,
        )
        raise InsufficientStockError("Insufficient stock:\n" + describe_shortfalls([shortfall]), [shortfall])

    def list_services(self, service_type_id: RowId | None = None, start_date=None, end_date=None) -> list[Service]:
        return self.repo.list_services(service_type_id, optional_date(start_date), optional_date(end_date))

    def get_service(self, service_id: RowId) -> Service:
        service = self.repo.get_service(service_id)
        if not service:
            raise NotFoundError("Service not found.")
        return service
