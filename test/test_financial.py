from datetime import date
from pathlib import Path

import pytest

from conftest import make_repo
from nsm.domain.errors import NotFoundError, ValidationError
from nsm.domain.models import FinancialRecord
from nsm.services.financial_service import FinancialService, summarize


def _record(id_, type_, amount, day="2024-01-01"):
    return FinancialRecord(id=id_, type=type_, amount=amount, description=None, reference_type=None, reference_id=None, date=day)


def test_summarize_is_additive_over_concatenation():
    a = [_record(1, "income", 50), _record(2, "expense", 20)]
    b = [_record(3, "income", 10), _record(4, "expense", 35)]

    combined = summarize(a).combine(summarize(b))
    whole = summarize(a + b)

    assert whole == combined
    assert whole.total_income == 60
    assert whole.total_expense == 55
    assert whole.profit == 5


def test_summarize_empty_is_zero():
    s = summarize([])
    assert (s.total_income, s.total_expense, s.profit) == (0, 0, 0)


def test_fetch_records_filters_and_orders(tmp_path: Path):
    repo = make_repo(tmp_path)
    fin = FinancialService(repo)
    r1 = fin.add_manual_record("income", 10, "tip", "2024-01-10")
    r2 = fin.add_manual_record("expense", 4, "coffee", "2024-01-10")
    r3 = fin.add_manual_record("income", 7, None, "2024-02-01")

    assert [r.id for r in fin.fetch_records()] == [r3.id, r2.id, r1.id]
    assert [r.id for r in fin.fetch_records("income")] == [r3.id, r1.id]
    assert [r.id for r in fin.fetch_records(start_date="2024-01-10", end_date="2024-01-10")] == [r2.id, r1.id]
    with pytest.raises(ValidationError):
        fin.fetch_records("refund")


def test_monthly_summary_covers_whole_month(tmp_path: Path):
    repo = make_repo(tmp_path)
    fin = FinancialService(repo)
    fin.add_manual_record("income", 100, None, "2024-02-01")
    fin.add_manual_record("income", 50, None, "2024-02-29")
    fin.add_manual_record("expense", 30, None, "2024-02-15")
    fin.add_manual_record("income", 999, None, "2024-03-01")

    m = fin.monthly_summary(2024, 2)

    assert (m.total_income, m.total_expense, m.profit) == (150, 30, 120)


@pytest.mark.parametrize("month", [0, 13])
def test_monthly_summary_rejects_bad_month(tmp_path: Path, month):
    fin = FinancialService(make_repo(tmp_path))
    with pytest.raises(ValidationError):
        fin.monthly_summary(2024, month)


def test_monthly_trend_is_oldest_first_and_crosses_years(tmp_path: Path):
    repo = make_repo(tmp_path)
    fin = FinancialService(repo)
    fin.add_manual_record("income", 10, None, "2023-12-05")
    fin.add_manual_record("expense", 3, None, "2024-02-05")

    trend = fin.monthly_trend(3, today=date(2024, 2, 20))

    assert [(m.year, m.month) for m in trend] == [(2023, 12), (2024, 1), (2024, 2)]
    assert [m.profit for m in trend] == [10, 0, -3]


def test_manual_record_delete_refuses_linked_records(tmp_path: Path):
    repo = make_repo(tmp_path)
    fin = FinancialService(repo)
    linked_id = repo.create_financial_record("expense", 5, "Stock entry: X (1 un)", "stock_entry", 1, "2024-01-01")
    manual = fin.add_manual_record("expense", 2, "rent", "2024-01-01")

    with pytest.raises(ValidationError):
        fin.delete_manual_record(linked_id)
    fin.delete_manual_record(manual.id)

    assert [r.id for r in fin.fetch_records()] == [linked_id]
    with pytest.raises(NotFoundError):
        fin.delete_manual_record(manual.id)


def test_manual_record_requires_positive_amount(tmp_path: Path):
    fin = FinancialService(make_repo(tmp_path))
    with pytest.raises(ValidationError, match="Amount must be > 0"):
        fin.add_manual_record("income", 0, None, "2024-01-01")
