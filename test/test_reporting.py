from pathlib import Path

from openpyxl import load_workbook

from conftest import make_repo
from nsm.services.catalog_service import CatalogService
from nsm.services.financial_service import FinancialService
from nsm.services.reporting_service import ReportingService
from nsm.services.stock_entry_service import StockEntryService


def test_export_financial_report_writes_three_sheets(tmp_path: Path):
    repo = make_repo(tmp_path)
    catalog = CatalogService(repo)
    financial = FinancialService(repo)
    p = catalog.add_product("Acetona", min_quantity=10)
    StockEntryService(repo).record_entry(p.id, 2, 4, 8, "2024-03-01")
    financial.add_manual_record("income", 30, "Gift card", "2024-03-02")
    financial.add_manual_record("income", 99, "Outside window", "2024-04-01")

    out = tmp_path / "report.xlsx"
    ReportingService(financial, catalog).export_financial_report_excel(str(out), "2024-03-01", "2024-03-31")

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Records", "Low Stock"]

    summary = {wb["Summary"][f"A{r}"].value: wb["Summary"][f"B{r}"].value for r in range(5, 9)}
    assert summary == {"Records": 2, "Income": 30, "Expense": 8, "Profit": 22}

    rows = list(wb["Records"].iter_rows(min_row=2, values_only=True))
    assert rows[0] == ("2024-03-02", "income", "Gift card", "manual", 30)
    assert rows[1][1:] == ("expense", "Stock entry: Acetona (2 un)", "stock_entry", -8)

    low = list(wb["Low Stock"].iter_rows(min_row=2, values_only=True))
    assert low == [(None, "Acetona", "un", 2, 10, 4)]


def test_monthly_profit_series_labels(tmp_path: Path):
    repo = make_repo(tmp_path)
    financial = FinancialService(repo)
    series = ReportingService(financial, CatalogService(repo)).monthly_profit_series(2)
    assert len(series) == 2
    assert all(len(label) == 7 and label[4] == "-" for label, _ in series)
