import logging
from pathlib import Path

import pytest

from conftest import add_product, make_repo, set_quantity
from nsm.domain.errors import PartialFailureError, StoreError
from nsm.repositories.sqlite_repo import SqliteRepository
from nsm.services.compensation_service import CompensationService
from nsm.services.reconciliation_service import ReconciliationService
from nsm.services.service_execution_service import ServiceExecutionService
from nsm.services.service_type_service import ServiceTypeService
from nsm.services.stock_entry_service import StockEntryService


class LedgerDownRepo(SqliteRepository):
    def create_financial_record(self, *args, **kwargs):
        raise StoreError("ledger offline")


class NoTransactionLedgerDownRepo(LedgerDownRepo):
    supports_transactions = False


def test_sqlite_rolls_back_entry_when_ledger_insert_fails(tmp_path: Path):
    repo = make_repo(tmp_path)
    pid = add_product(repo)
    failing = LedgerDownRepo(repo.db_path)

    with pytest.raises(StoreError):
        StockEntryService(failing).record_entry(pid, 3, 1, 3, "2024-01-01")

    product = repo.get_product_by_id(pid)
    assert product.current_quantity == 0
    assert product.last_unit_cost is None
    assert repo.list_stock_entries() == []
    assert repo.list_pending_intents() == []


def test_store_without_transactions_reports_partial_failure(tmp_path: Path, caplog):
    repo = make_repo(tmp_path)
    pid = add_product(repo)
    failing = NoTransactionLedgerDownRepo(repo.db_path)

    with caplog.at_level(logging.ERROR, logger="nsm.reconciliation"):
        with pytest.raises(PartialFailureError) as exc:
            StockEntryService(failing).record_entry(pid, 3, 1, 3, "2024-01-01")

    err = exc.value
    assert err.failed_step == "financial record created"
    assert err.completed_steps == ["stock entry inserted", "stock updated"]
    assert err.orphaned_state == "stock entry inserted, stock updated; financial record created missing"
    assert repo.get_product_by_id(pid).current_quantity == 3

    event = next(r.event for r in caplog.records if getattr(r, "event", None))
    assert event["type"] == "partial_failure"
    assert event["operation"] == "record_stock_entry"

    pending = repo.list_pending_intents()
    assert len(pending) == 1
    assert pending[0].id == err.intent_id
    assert pending[0].completed_steps == ("stock entry inserted", "stock updated")
    assert pending[0].payload["stock_increase"] == 3


def test_resolve_closes_pending_intent(tmp_path: Path):
    repo = make_repo(tmp_path)
    pid = add_product(repo)
    with pytest.raises(PartialFailureError):
        StockEntryService(NoTransactionLedgerDownRepo(repo.db_path)).record_entry(pid, 1, 1, 1, "2024-01-01")

    recon = ReconciliationService(repo)
    [intent] = recon.pending()
    resolved = recon.resolve(intent.id)

    assert resolved.operation == "record_stock_entry"
    assert recon.pending() == []


def test_successful_operation_without_transactions_closes_intent(tmp_path: Path):
    class NoTransactionRepo(SqliteRepository):
        supports_transactions = False

    repo = make_repo(tmp_path)
    pid = add_product(repo)
    StockEntryService(NoTransactionRepo(repo.db_path)).record_entry(pid, 1, 1, 1, "2024-01-01")

    assert repo.list_pending_intents() == []
    assert len(repo.list_financial_records()) == 1


def test_failure_before_first_write_leaves_no_intent(tmp_path: Path):
    class NoTransactionBrokenInsertRepo(SqliteRepository):
        supports_transactions = False

        def create_stock_entry(self, *args, **kwargs):
            raise StoreError("insert failed")

    repo = make_repo(tmp_path)
    pid = add_product(repo)

    with pytest.raises(StoreError):
        StockEntryService(NoTransactionBrokenInsertRepo(repo.db_path)).record_entry(pid, 1, 1, 1, "2024-01-01")

    assert repo.list_pending_intents() == []


def test_nested_transaction_joins_outer(tmp_path: Path):
    repo = make_repo(tmp_path)
    pid = add_product(repo, current_quantity=5)

    with pytest.raises(RuntimeError):
        with repo.transaction():
            repo.take_product_stock(pid, 2)
            with repo.transaction():
                repo.take_product_stock(pid, 1)
            raise RuntimeError("abort")

    assert repo.get_product_by_id(pid).current_quantity == 5


class NoTransactionStockDownRepo(SqliteRepository):
    supports_transactions = False

    def take_product_stock(self, product_id, amount):
        raise StoreError("stock table locked")


class NoTransactionEntryDeleteDownRepo(SqliteRepository):
    supports_transactions = False

    def delete_stock_entry(self, entry_id):
        raise StoreError("delete failed")


class NoTransactionServiceDeleteDownRepo(SqliteRepository):
    supports_transactions = False

    def delete_service(self, service_id):
        raise StoreError("delete failed")


def test_create_service_without_transactions_reports_stock_step(tmp_path: Path):
    repo = make_repo(tmp_path)
    a = add_product(repo, "A", current_quantity=10)
    st = ServiceTypeService(repo).create_service_type("Gel", 50, [{"product_id": a, "default_quantity": 2}])

    with pytest.raises(PartialFailureError) as exc:
        ServiceExecutionService(NoTransactionStockDownRepo(repo.db_path)).create_service("Ana", st.id, "2024-05-02")

    err = exc.value
    assert err.operation == "create_service"
    assert err.failed_step == "stock taken for A"
    assert err.completed_steps == ["service inserted", "consumption recorded"]
    assert err.orphaned_state == "service inserted, consumption recorded; stock taken for A missing"
    assert repo.get_product_by_id(a).current_quantity == 10
    assert len(repo.list_services()) == 1
    assert repo.list_financial_records() == []

    [pending] = repo.list_pending_intents()
    assert pending.id == err.intent_id
    assert pending.operation == "create_service"
    assert pending.reference == f"service_type:{st.id}"
    assert pending.completed_steps == ("service inserted", "consumption recorded")
    assert pending.payload["consumed"] == [{"product_id": a, "quantity": 2}]


def test_delete_stock_entry_without_transactions_reports_partial_failure(tmp_path: Path):
    repo = make_repo(tmp_path)
    pid = add_product(repo)
    entry = StockEntryService(repo).record_entry(pid, 4, 1, 4, "2024-01-01")
    set_quantity(repo, pid, 10)

    with pytest.raises(PartialFailureError) as exc:
        CompensationService(NoTransactionEntryDeleteDownRepo(repo.db_path)).delete_stock_entry(entry.id)

    err = exc.value
    assert err.failed_step == "stock entry deleted"
    assert err.completed_steps == ["stock released"]
    assert err.orphaned_state == "stock released; stock entry deleted missing"
    assert repo.get_product_by_id(pid).current_quantity == 6
    assert repo.get_stock_entry(entry.id) is not None

    [pending] = repo.list_pending_intents()
    assert pending.operation == "delete_stock_entry"
    assert pending.reference == f"stock_entry:{entry.id}"
    assert pending.completed_steps == ("stock released",)
    assert pending.payload["stock_increase"] == 4


def test_delete_service_without_transactions_reports_partial_failure(tmp_path: Path):
    repo = make_repo(tmp_path)
    a = add_product(repo, "A", current_quantity=10)
    st = ServiceTypeService(repo).create_service_type("Gel", 50, [{"product_id": a, "default_quantity": 2}])
    service = ServiceExecutionService(repo).create_service("Ana", st.id, "2024-05-02")

    with pytest.raises(PartialFailureError) as exc:
        CompensationService(NoTransactionServiceDeleteDownRepo(repo.db_path)).delete_service(service.id)

    err = exc.value
    assert err.failed_step == "service deleted"
    assert err.completed_steps == [f"stock restored for product {a}"]
    assert err.orphaned_state == f"stock restored for product {a}; service deleted missing"
    assert repo.get_product_by_id(a).current_quantity == 10
    assert repo.get_service(service.id) is not None

    [pending] = repo.list_pending_intents()
    assert pending.operation == "delete_service"
    assert pending.reference == f"service:{service.id}"
    assert pending.payload["restore"] == [{"product_id": a, "quantity": 2}]
