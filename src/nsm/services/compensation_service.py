from __future__ import annotations

import logging
from typing import Callable, Optional

from nsm.domain.errors import NotFoundError, StoreError
from nsm.domain.models import REF_SERVICE, REF_STOCK_ENTRY, ConsumedLine, RowId, Service, StockEntry
from nsm.repositories.contracts import DataStore
from nsm.repositories.unit_of_work import StoreUnitOfWork, UnitOfWork

log = logging.getLogger("nsm.stock")


class CompensationService:
    """Reverses stock entries and services.

    Both deletions load the row first, so a second delete of the same id
    raises NotFoundError instead of restoring stock twice.
    """

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

    def delete_stock_entry(self, entry_id: RowId) -> StockEntry:
        entry = self.repo.get_stock_entry(entry_id)
        if not entry:
            raise NotFoundError("Stock entry not found.")

        # stock_increase is what the entry added in base units; the product's
        # conversion factor may have changed since.
        payload = {"entry_id": entry.id, "product_id": entry.product_id, "stock_increase": entry.stock_increase}
        with self.uow_factory("delete_stock_entry", f"stock_entry:{entry.id}", payload) as uow:
            with uow.step("stock released"):
                if self.repo.release_product_stock(entry.product_id, entry.stock_increase) is None:
                    log.warning("stock_release_skipped entry_id=%s product_id=%s reason=product_missing", entry.id, entry.product_id)
            self._drop_financial_records(REF_STOCK_ENTRY, entry.id)
            with uow.step("stock entry deleted"):
                if not self.repo.delete_stock_entry(entry.id):
                    raise NotFoundError("Stock entry not found.")

        if self.cache is not None:
            self.cache.invalidate("products", "stock_entries", "financial_records")
        log.info(
            "stock_entry_deleted entry_id=%s product_id=%s released=%s",
            entry.id,
            entry.product_id,
            entry.stock_increase,
        )
        return entry

    def delete_service(self, service_id: RowId) -> Service:
        service = self.repo.get_service(service_id)
        if not service:
            raise NotFoundError("Service not found.")

        consumed = self._consumed_lines(service)
        payload = {
            "service_id": service.id,
            "restore": [{"product_id": c.product_id, "quantity": c.quantity} for c in consumed],
        }
        with self.uow_factory("delete_service", f"service:{service.id}", payload) as uow:
            for c in consumed:
                with uow.step(f"stock restored for product {c.product_id}"):
                    if self.repo.add_product_stock(c.product_id, c.quantity) is None:
                        log.warning(
                            "stock_restore_skipped service_id=%s product_id=%s reason=product_missing",
                            service.id,
                            c.product_id,
                        )
            self._drop_financial_records(REF_SERVICE, service.id)
            with uow.step("service deleted"):
                if not self.repo.delete_service(service.id):
                    raise NotFoundError("Service not found.")

        if self.cache is not None:
            self.cache.invalidate("products", "services", "financial_records")
        log.info("service_deleted service_id=%s restored_lines=%s", service.id, len(consumed))
        return service

    def _consumed_lines(self, service: Service) -> list[ConsumedLine]:
        if service.consumption_recorded:
            # May be empty: the type had no lines when the service ran.
            return self.repo.service_consumption(service.id)
        if service.service_type_id is None:
            log.warning("service_restore_skipped service_id=%s reason=no_snapshot_and_no_type", service.id)
            return []
        # Rows written before consumption snapshots existed.
        lines = self.repo.bill_of_materials(service.service_type_id)
        log.warning(
            "service_restore_from_current_bom service_id=%s service_type_id=%s lines=%s",
            service.id,
            service.service_type_id,
            len(lines),
        )
        return [ConsumedLine(product_id=line.product_id, quantity=line.deduced_quantity) for line in lines]

    def _drop_financial_records(self, reference_type: str, reference_id: RowId) -> None:
        try:
            deleted = self.repo.delete_financial_records_for(reference_type, reference_id)
        except StoreError as e:
            log.warning(
                "financial_record_delete_failed reference_type=%s reference_id=%s error=%s",
                reference_type,
                reference_id,
                e,
            )
            return
        if not deleted:
            log.warning("financial_record_missing reference_type=%s reference_id=%s", reference_type, reference_id)
