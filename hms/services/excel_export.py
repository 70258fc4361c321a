from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter


def _money(x) -> float:
    return float(Decimal(str(x or "0")))


def _finish(ws, ncols: int, width: int = 18) -> None:
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for col in range(1, ncols + 1):
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = "A2"


def build_outstanding_excel(fp, report: Dict[str, Any]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Outstanding"

    headers = [
        "Bill No", "Patient", "Bill Date", "Due Date",
        "Total", "Paid", "Due", "Status", "Days Overdue",
    ]
    ws.append(headers)

    for r in report["rows"]:
        ws.append([
            r["bill_number"],
            r["patient_name"],
            r["bill_date"],
            r["due_date"],
            _money(r["total_amount"]),
            _money(r["amount_paid"]),
            _money(r["amount_due"]),
            r["payment_status"],
            r["days_overdue"],
        ])

    ws.append([])
    ws.append(["TOTAL", "", "", "", "", "", _money(report["total_due"])])

    _finish(ws, len(headers))
    wb.save(fp)


def build_revenue_excel(fp, report: Dict[str, Any], methods: Dict[str, Any]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Daily Revenue"

    headers = ["Date", "Collected", "Refunded", "Net"]
    ws.append(headers)
    for r in report["rows"]:
        ws.append([r["date"], _money(r["collected"]), _money(r["refunded"]), _money(r["net"])])
    ws.append([])
    ws.append([
        "TOTAL",
        _money(report["total_collected"]),
        _money(report["total_refunded"]),
        _money(report["net_revenue"]),
    ])
    _finish(ws, len(headers))

    ws2 = wb.create_sheet("Payment Methods")
    headers2 = ["Method", "Count", "Amount", "Share %"]
    ws2.append(headers2)
    for r in methods["rows"]:
        ws2.append([r["payment_method"], r["count"], _money(r["amount"]), _money(r["share_percent"])])
    _finish(ws2, len(headers2))

    wb.save(fp)
