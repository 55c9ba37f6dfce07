from __future__ import annotations

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from nsm.domain.models import INCOME
from nsm.services.validators import optional_date


class ReportingService:
    def __init__(self, financial, catalog):
        self.financial = financial
        self.catalog = catalog

    def monthly_profit_series(self, months: int = 6) -> list[tuple[str, float]]:
        return [(f"{m.year:04d}-{m.month:02d}", m.profit) for m in self.financial.monthly_trend(months)]

    def export_financial_report_excel(self, path: str, start_date=None, end_date=None) -> None:
        start_iso = optional_date(start_date)
        end_iso = optional_date(end_date)
        records = self.financial.fetch_records(None, start_iso, end_iso)
        summary = self.financial.summarize(records)
        low_stock = self.catalog.low_stock_products()

        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Financial summary"
        ws["A1"].font = Font(bold=True, size=14)

        ws["A3"] = "Window"
        ws["B3"] = f"{start_iso or 'start'}  ->  {end_iso or 'today'}"

        rows = [
            ("Records", len(records), "int"),
            ("Income", summary.total_income, "money"),
            ("Expense", summary.total_expense, "money"),
            ("Profit", summary.profit, "money"),
        ]
        start_row = 5
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 20, "B": 34})

        # -------- 2) Records --------
        ws2 = wb.create_sheet("Records")
        ws2.append(["Date", "Type", "Description", "Reference", "Amount"])
        bold_row(ws2, 1)
        for out_row, rec in enumerate(records, start=2):
            signed = rec.amount if rec.type == INCOME else -rec.amount
            ws2.append([rec.date, rec.type, rec.description or "", rec.reference_type or "manual", float(signed)])
            money(ws2[f"E{out_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 12, "B": 10, "C": 48, "D": 14, "E": 14})
        if ws2.max_row >= 2:
            add_table(ws2, "FinancialRecords", 1, 1, ws2.max_row, 5)

        # -------- 3) Low Stock --------
        ws3 = wb.create_sheet("Low Stock")
        ws3.append(["Code", "Product", "Unit", "Current", "Minimum", "Last Unit Cost"])
        bold_row(ws3, 1)
        for out_row, p in enumerate(low_stock, start=2):
            ws3.append([p.code, p.name, p.unit, p.current_quantity, p.min_quantity, p.unit_cost])
            money(ws3[f"F{out_row}"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 10, "B": 34, "C": 8, "D": 12, "E": 12, "F": 16})
        if ws3.max_row >= 2:
            add_table(ws3, "LowStock", 1, 1, ws3.max_row, 6)

        wb.save(path)
