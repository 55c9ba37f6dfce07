from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import requests

from nsm.application.cache import ReadCache
from nsm.application.identity import StaticIdentity
from nsm.config import StoreSettings, get_app_paths
from nsm.repositories.contracts import DataStore
from nsm.repositories.rest_repo import RestRepository
from nsm.repositories.sqlite_repo import SqliteRepository
from nsm.services.catalog_service import CatalogService
from nsm.services.compensation_service import CompensationService
from nsm.services.financial_service import FinancialService
from nsm.services.reconciliation_service import ReconciliationService
from nsm.services.reporting_service import ReportingService
from nsm.services.service_execution_service import ServiceExecutionService
from nsm.services.service_type_service import ServiceTypeService
from nsm.services.stock_entry_service import StockEntryService


@dataclass(frozen=True)
class AppContainer:
    repo: object
    cache: ReadCache
    identity: StaticIdentity
    catalog: CatalogService
    stock_entries: StockEntryService
    service_types: ServiceTypeService
    services: ServiceExecutionService
    compensation: CompensationService
    financial: FinancialService
    reconciliation: ReconciliationService
    reporting: ReportingService


def build_store(settings: StoreSettings, db_path: Path | str | None = None, session: requests.Session | None = None) -> DataStore:
    if settings.backend == "rest":
        return RestRepository(settings.url, settings.api_key, timeout=settings.timeout, session=session)
    repo = SqliteRepository(db_path or get_app_paths().db_path)
    repo.init_db()
    return repo


def build_container(
    db_path: Path | str | None = None,
    settings: StoreSettings | None = None,
    identity: StaticIdentity | None = None,
    session: requests.Session | None = None,
) -> AppContainer:
    settings = settings or StoreSettings()
    repo = build_store(settings, db_path, session)

    cache = ReadCache()
    identity = identity or StaticIdentity(settings.user_id, settings.user_email)

    catalog = CatalogService(repo, identity, cache)
    stock_entries = StockEntryService(repo, cache)
    service_types = ServiceTypeService(repo, cache)
    services = ServiceExecutionService(repo, cache)
    compensation = CompensationService(repo, cache)
    financial = FinancialService(repo, cache)
    reconciliation = ReconciliationService(repo)
    reporting = ReportingService(financial, catalog)

    return AppContainer(
        repo=repo,
        cache=cache,
        identity=identity,
        catalog=catalog,
        stock_entries=stock_entries,
        service_types=service_types,
        services=services,
        compensation=compensation,
        financial=financial,
        reconciliation=reconciliation,
        reporting=reporting,
    )
