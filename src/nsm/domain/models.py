from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union

from nsm.domain.units import line_consumption

RowId = Union[int, str]

INCOME = "income"
EXPENSE = "expense"
RECORD_TYPES = (INCOME, EXPENSE)

REF_STOCK_ENTRY = "stock_entry"
REF_SERVICE = "service"


@dataclass(frozen=True)
class Unit:
    id: RowId
    name: str
    abbreviation: str
    default_value: float = 1.0


@dataclass(frozen=True)
class Brand:
    id: RowId
    name: str


@dataclass(frozen=True)
class Category:
    id: RowId
    name: str
    prefix: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class Product:
    id: RowId
    name: str
    unit: str
    conversion_factor: float
    current_quantity: float
    min_quantity: float
    last_unit_cost: Optional[float] = None
    code: Optional[str] = None
    brand_id: Optional[RowId] = None
    category_id: Optional[RowId] = None
    description: Optional[str] = None

    @property
    def is_low_stock(self) -> bool:
        return self.current_quantity <= self.min_quantity

    @property
    def unit_cost(self) -> float:
        return float(self.last_unit_cost or 0.0)


@dataclass(frozen=True)
class StockEntry:
    id: RowId
    product_id: RowId
    quantity: float
    unit_price: float
    cost: float
    stock_increase: float
    date: str
    notes: Optional[str] = None
    product_name: Optional[str] = None


@dataclass(frozen=True)
class BillOfMaterialLine:
    product_id: RowId
    default_quantity: float
    use_unit_system: bool = False
    product_name: str = ""
    product_unit: str = ""
    current_quantity: float = 0.0
    conversion_factor: float = 1.0
    last_unit_cost: Optional[float] = None
    id: Optional[RowId] = None

    @property
    def deduced_quantity(self) -> float:
        return line_consumption(self.default_quantity, self.use_unit_system, self.conversion_factor)


@dataclass(frozen=True)
class ServiceType:
    id: RowId
    name: str
    price: float
    products: tuple[BillOfMaterialLine, ...] = ()


@dataclass(frozen=True)
class ConsumedLine:
    product_id: RowId
    quantity: float
    unit_cost: float = 0.0


@dataclass(frozen=True)
class Service:
    id: RowId
    client_name: str
    service_type_id: Optional[RowId]
    date: str
    notes: Optional[str]
    price: float
    product_cost: float
    service_type_name: Optional[str] = None
    consumption_recorded: bool = False

    @property
    def margin(self) -> float:
        return self.price - self.product_cost


@dataclass(frozen=True)
class FinancialRecord:
    id: RowId
    type: str
    amount: float
    description: Optional[str]
    reference_type: Optional[str]
    reference_id: Optional[RowId]
    date: str


@dataclass(frozen=True)
class FinancialSummary:
    total_income: float = 0.0
    total_expense: float = 0.0

    @property
    def profit(self) -> float:
        return self.total_income - self.total_expense

    def combine(self, other: "FinancialSummary") -> "FinancialSummary":
        return FinancialSummary(
            total_income=self.total_income + other.total_income,
            total_expense=self.total_expense + other.total_expense,
        )


@dataclass(frozen=True)
class MonthlySummary:
    year: int
    month: int
    total_income: float
    total_expense: float
    profit: float


@dataclass(frozen=True)
class Shortfall:
    product_id: RowId
    name: str
    required: float
    available: float


@dataclass(frozen=True)
class AvailabilityLine:
    line: BillOfMaterialLine
    deduced_quantity: float


@dataclass(frozen=True)
class AvailabilityReport:
    service_type_id: RowId
    available: bool
    insufficient_products: list[Shortfall] = field(default_factory=list)
    products: list[AvailabilityLine] = field(default_factory=list)


@dataclass(frozen=True)
class PendingIntent:
    id: RowId
    operation: str
    reference: Optional[str]
    payload: dict
    completed_steps: tuple[str, ...]
    created_at: str
    applied: bool = False
