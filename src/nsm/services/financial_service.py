from __future__ import annotations

import calendar
import logging
from datetime import date
from typing import Iterable, Optional

from nsm.domain.errors import NotFoundError, ValidationError
from nsm.domain.models import (
    EXPENSE,
    INCOME,
    RECORD_TYPES,
    FinancialRecord,
    FinancialSummary,
    MonthlySummary,
    RowId,
)
from nsm.repositories.contracts import FinancialRepository
from nsm.services.validators import optional_date, require_date, require_positive

log = logging.getLogger("nsm.financial")


def summarize(records: Iterable[FinancialRecord]) -> FinancialSummary:
    income = 0.0
    expense = 0.0
    for r in records:
        if r.type == INCOME:
            income += r.amount
        elif r.type == EXPENSE:
            expense += r.amount
    return FinancialSummary(total_income=income, total_expense=expense)


def month_bounds(year: int, month: int) -> tuple[str, str]:
    if not 1 <= int(month) <= 12:
        raise ValidationError("Month must be between 1 and 12.")
    last_day = calendar.monthrange(int(year), int(month))[1]
    return date(int(year), int(month), 1).isoformat(), date(int(year), int(month), last_day).isoformat()


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


class FinancialService:
    def __init__(self, repo: FinancialRepository, cache=None):
        self.repo = repo
        self.cache = cache

    def fetch_records(
        self, record_type: Optional[str] = None, start_date=None, end_date=None
    ) -> list[FinancialRecord]:
        """Records newest first, ties broken by id descending."""
        if record_type is not None and record_type not in RECORD_TYPES:
            raise ValidationError("Record type must be 'income' or 'expense'.")
        return self.repo.list_financial_records(record_type, optional_date(start_date), optional_date(end_date))

    def summarize(self, records: Iterable[FinancialRecord]) -> FinancialSummary:
        return summarize(records)

    def summary_between(self, start_date=None, end_date=None) -> FinancialSummary:
        return summarize(self.fetch_records(None, start_date, end_date))

    def monthly_summary(self, year: int, month: int) -> MonthlySummary:
        start_iso, end_iso = month_bounds(year, month)
        s = summarize(self.repo.list_financial_records(None, start_iso, end_iso))
        return MonthlySummary(
            year=int(year),
            month=int(month),
            total_income=s.total_income,
            total_expense=s.total_expense,
            profit=s.profit,
        )

    def monthly_trend(self, months: int = 6, today: date | None = None) -> list[MonthlySummary]:
        """`months` consecutive months ending at the current one, oldest first."""
        if int(months) < 1:
            raise ValidationError("Months must be >= 1.")
        today = today or date.today()
        return [
            self.monthly_summary(*_shift_month(today.year, today.month, -offset))
            for offset in range(int(months) - 1, -1, -1)
        ]

    def add_manual_record(self, record_type: str, amount: float, description: Optional[str], date) -> FinancialRecord:
        if record_type not in RECORD_TYPES:
            raise ValidationError("Record type must be 'income' or 'expense'.")
        amount = require_positive(amount, "Amount")
        date_iso = require_date(date)
        description = (description or "").strip() or None

        record_id = self.repo.create_financial_record(record_type, amount, description, None, None, date_iso)
        if self.cache is not None:
            self.cache.invalidate("financial_records")
        log.info("manual_record_created id=%s type=%s amount=%.2f", record_id, record_type, amount)
        return self.repo.get_financial_record(record_id)

    def delete_manual_record(self, record_id: RowId) -> None:
        record = self.repo.get_financial_record(record_id)
        if not record:
            raise NotFoundError("Financial record not found.")
        if record.reference_type is not None:
            raise ValidationError(
                f"This record belongs to a {record.reference_type.replace('_', ' ')}; delete that instead."
            )
        self.repo.delete_financial_record(record.id)
        if self.cache is not None:
            self.cache.invalidate("financial_records")
        log.info("manual_record_deleted id=%s", record.id)
