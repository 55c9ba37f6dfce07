from .catalog_service import CatalogService
from .stock_entry_service import StockEntryService
from .service_type_service import ServiceTypeService
from .service_execution_service import ServiceExecutionService
from .compensation_service import CompensationService
from .financial_service import FinancialService
from .reconciliation_service import ReconciliationService
from .reporting_service import ReportingService

__all__ = [
    "CatalogService",
    "StockEntryService",
    "ServiceTypeService",
    "ServiceExecutionService",
    "CompensationService",
    "FinancialService",
    "ReconciliationService",
    "ReportingService",
]
