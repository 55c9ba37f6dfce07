from .models import (
    Product,
    StockEntry,
    ServiceType,
    BillOfMaterialLine,
    Service,
    FinancialRecord,
    FinancialSummary,
)
from .errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    PartialFailureError,
    StoreError,
)

__all__ = [
    "Product",
    "StockEntry",
    "ServiceType",
    "BillOfMaterialLine",
    "Service",
    "FinancialRecord",
    "FinancialSummary",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "PartialFailureError",
    "StoreError",
]
