from __future__ import annotations

import logging

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

log = logging.getLogger(__name__)

HEADERS = [
    "Sale No.", "Date", "Customer",
    "Total USD", "Rate", "Total CDF",
    "Items", "Payment", "Agent",
]


class ExcelService:
    def __init__(self, repo):
        self.repo = repo

    def export_sales_excel(self, path: str, start_iso: str, end_iso: str) -> int:
        """Writes one row per sale in [start, end). Returns the number of sales exported."""
        wb = Workbook()
        ws = wb.active
        ws.title = "Sales"
        ws.append(HEADERS)
        for c in ws[1]:
            c.font = Font(bold=True)

        sales = self.repo.list_sales_between(start_iso, end_iso)
        for r, s in enumerate(sales, start=2):
            items = self.repo.get_sale_items(s.id)
            ws.append([
                f"VTE-{s.id}", s.datetime, s.customer_name or "Unknown",
                float(s.total_usd), float(s.fx_rate), float(s.total_quoted),
                len(items), s.payment_method, s.agent_name or "",
            ])
            ws[f"D{r}"].number_format = "#,##0.00"
            ws[f"E{r}"].number_format = "#,##0.00"
            ws[f"F{r}"].number_format = "#,##0"

        widths = {"A": 12, "B": 22, "C": 28, "D": 14, "E": 12, "F": 16, "G": 8, "H": 14, "I": 18}
        for col, w in widths.items():
            ws.column_dimensions[col].width = w
        ws.freeze_panes = "A2"

        if sales:
            tab = Table(displayName="SalesExport", ref=f"A1:{get_column_letter(len(HEADERS))}{ws.max_row}")
            tab.tableStyleInfo = TableStyleInfo(name="TableStyleMedium9", showRowStripes=True, showColumnStripes=False)
            ws.add_table(tab)

        wb.save(path)
        log.info("sales_exported path=%s rows=%s", path, len(sales))
        return len(sales)
