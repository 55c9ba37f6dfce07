from __future__ import annotations

from typing import ContextManager, Iterable, Optional, Protocol

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


class ProductRepository(Protocol):
    def get_product_by_id(self, product_id: RowId) -> Optional[Product]: ...
    def list_products(self) -> list[Product]: ...
    def add_product(self, values: dict) -> RowId: ...
    def update_product(self, product_id: RowId, values: dict) -> bool: ...
    def delete_product(self, product_id: RowId) -> bool: ...
    def next_product_code(self, prefix: str) -> str: ...

    # Stock counters change only through these three.
    def add_product_stock(self, product_id: RowId, amount: float, last_unit_cost: float | None = None) -> Optional[Product]: ...
    def take_product_stock(self, product_id: RowId, amount: float) -> Optional[Product]: ...
    def release_product_stock(self, product_id: RowId, amount: float) -> Optional[Product]: ...


class CatalogRepository(Protocol):
    def add_unit(self, name: str, abbreviation: str, default_value: float) -> RowId: ...
    def list_units(self) -> list[Unit]: ...
    def get_unit_by_abbreviation(self, abbreviation: str) -> Optional[Unit]: ...
    def add_brand(self, name: str) -> RowId: ...
    def list_brands(self) -> list[Brand]: ...
    def add_category(self, name: str, prefix: str, user_id: str | None = None) -> RowId: ...
    def get_category(self, category_id: RowId) -> Optional[Category]: ...
    def list_categories(self) -> list[Category]: ...
    def upsert_categories(self, rows: Iterable[tuple[str, str]], user_id: str) -> int: ...


class StockEntryRepository(Protocol):
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
    ) -> RowId: ...
    def get_stock_entry(self, entry_id: RowId) -> Optional[StockEntry]: ...
    def list_stock_entries(
        self, product_id: RowId | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[StockEntry]: ...
    def delete_stock_entry(self, entry_id: RowId) -> bool: ...


class ServiceRepository(Protocol):
    def create_service_type(self, name: str, price: float) -> RowId: ...
    def update_service_type(self, service_type_id: RowId, name: str, price: float) -> bool: ...
    def delete_service_type(self, service_type_id: RowId) -> bool: ...
    def get_service_type(self, service_type_id: RowId) -> Optional[ServiceType]: ...
    def list_service_types(self) -> list[ServiceType]: ...
    def replace_bill_of_materials(self, service_type_id: RowId, lines: Iterable[dict]) -> None: ...
    def bill_of_materials(self, service_type_id: RowId) -> list[BillOfMaterialLine]: ...

    def create_service(
        self,
        client_name: str,
        service_type_id: RowId,
        date_iso: str,
        notes: Optional[str],
        price: float,
        product_cost: float,
        actor_user_id: Optional[str] = None,
    ) -> RowId: ...
    def get_service(self, service_id: RowId) -> Optional[Service]: ...
    def list_services(
        self, service_type_id: RowId | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[Service]: ...
    def delete_service(self, service_id: RowId) -> bool: ...
    def add_service_consumption(self, service_id: RowId, lines: Iterable[ConsumedLine]) -> None: ...
    def service_consumption(self, service_id: RowId) -> list[ConsumedLine]: ...


class FinancialRepository(Protocol):
    def create_financial_record(
        self,
        record_type: str,
        amount: float,
        description: Optional[str],
        reference_type: Optional[str],
        reference_id: Optional[RowId],
        date_iso: str,
    ) -> RowId: ...
    def get_financial_record(self, record_id: RowId) -> Optional[FinancialRecord]: ...
    def list_financial_records(
        self, record_type: str | None = None, start_iso: str | None = None, end_iso: str | None = None
    ) -> list[FinancialRecord]: ...
    def delete_financial_record(self, record_id: RowId) -> bool: ...
    def delete_financial_records_for(self, reference_type: str, reference_id: RowId) -> int: ...


class IntentRepository(Protocol):
    def create_intent(self, operation: str, reference: Optional[str], payload: dict) -> RowId: ...
    def update_intent_steps(self, intent_id: RowId, completed_steps: Iterable[str]) -> None: ...
    def close_intent(self, intent_id: RowId) -> None: ...
    def list_pending_intents(self) -> list[PendingIntent]: ...


class DataStore(
    ProductRepository,
    CatalogRepository,
    StockEntryRepository,
    ServiceRepository,
    FinancialRepository,
    IntentRepository,
    Protocol,
):
    supports_transactions: bool

    def transaction(self) -> ContextManager[None]: ...
