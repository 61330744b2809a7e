"""
Export Service - Styled Excel statements (openpyxl)

Builds XLSX files with a title block, styled header row, one row per wallet
entry and a totals row.
"""
import io
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from app.core.config import settings
from app.db.models.wallet_transaction import TransactionType


# ==================== Styles ====================

_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_HEADER_FONT = Font(name="Arial", bold=True, color="FFFFFF", size=11)
_TITLE_FONT = Font(name="Arial", bold=True, size=14)
_SUBTITLE_FONT = Font(name="Arial", bold=False, size=10, color="666666")
_TOTAL_FONT = Font(name="Arial", bold=True, size=11)
_TOTAL_FILL = PatternFill(start_color="D9E2F3", end_color="D9E2F3", fill_type="solid")
_MONEY_FORMAT = '#,##0.00'

_THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

_TEXT_ALIGN = Alignment(horizontal="left", vertical="center", wrap_text=True)
_NUMBER_ALIGN = Alignment(horizontal="right", vertical="center")

STATEMENT_HEADERS = ["Date", "Type", "Source", "Order", "Settlement", "Amount", "Balance after"]


def _auto_fit_columns(ws: Any) -> None:
    """Fit column widths to content"""
    for col_cells in ws.columns:
        max_length = 0
        col_letter = get_column_letter(col_cells[0].column)
        for cell in col_cells:
            if cell.value is not None:
                cell_len = len(str(cell.value))
                if cell_len > max_length:
                    max_length = cell_len
        # min 10, max 40
        ws.column_dimensions[col_letter].width = min(max(max_length + 4, 10), 40)


def _style_row(ws: Any, row: int, col_count: int, font=None, fill=None) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        if font is not None:
            cell.font = font
        if fill is not None:
            cell.fill = fill
        if cell.number_format != _MONEY_FORMAT:
            cell.alignment = _TEXT_ALIGN
        cell.border = _THIN_BORDER


def _write_title(ws: Any, title: str, subtitle: str, start_row: int = 1) -> int:
    """Title and subtitle; returns the next free row"""
    ws.cell(row=start_row, column=1, value=title).font = _TITLE_FONT
    ws.cell(row=start_row + 1, column=1, value=subtitle).font = _SUBTITLE_FONT
    return start_row + 3


def _money_cell(ws: Any, row: int, column: int, value) -> None:
    cell = ws.cell(row=row, column=column, value=float(value or 0))
    cell.number_format = _MONEY_FORMAT
    cell.alignment = _NUMBER_ALIGN


# Excel treats these leading characters as a formula (CSV/formula injection)
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_text(value: str) -> str:
    """Prefix a single quote so Excel shows the text instead of evaluating it."""
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def _enum_value(value) -> str:
    return getattr(value, "value", value) or ""


# ==================== Wallet statement ====================


def export_statement_xlsx(entries: Iterable[Any], worker_name: str = "", type_filter: str = "all") -> bytes:
    """
    Wallet statement as an XLSX file.

    Args:
        entries: WalletTransaction rows, newest first
        worker_name: shown in the title
        type_filter: all / credit / debit, shown in the subtitle

    Returns:
        XLSX file content
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Statement"

    title = "Wallet statement"
    if worker_name:
        title += f" - {_sanitize_text(worker_name)}"
    subtitle = (
        f"Filter: {type_filter} | Currency: {settings.CURRENCY} | "
        f"Generated: {datetime.utcnow().strftime('%Y-%m-%d %H:%M')} UTC"
    )
    data_row = _write_title(ws, title, subtitle)

    col_count = len(STATEMENT_HEADERS)
    for col, header in enumerate(STATEMENT_HEADERS, 1):
        ws.cell(row=data_row, column=col, value=header)
    _style_row(ws, data_row, col_count, font=_HEADER_FONT, fill=_HEADER_FILL)

    credits = Decimal("0")
    debits = Decimal("0")
    row = data_row
    for entry in entries:
        row += 1
        entry_type = _enum_value(entry.type)
        amount = Decimal(str(entry.amount or 0))
        if entry_type == TransactionType.CREDIT.value:
            credits += amount
        else:
            debits += amount

        created = entry.created_at.strftime("%Y-%m-%d %H:%M") if entry.created_at else ""
        ws.cell(row=row, column=1, value=created)
        ws.cell(row=row, column=2, value=entry_type)
        ws.cell(row=row, column=3, value=_enum_value(entry.source))
        ws.cell(row=row, column=4, value=entry.order_id)
        ws.cell(row=row, column=5, value=entry.settlement_id)
        _money_cell(ws, row, 6, amount)
        _money_cell(ws, row, 7, entry.balance_after)
        _style_row(ws, row, col_count)

    totals = [
        ("Total credits", credits),
        ("Total debits", debits),
        ("Net", credits - debits),
    ]
    for label, value in totals:
        row += 1
        ws.cell(row=row, column=1, value=label)
        _money_cell(ws, row, 6, value)
        _style_row(ws, row, col_count, font=_TOTAL_FONT, fill=_TOTAL_FILL)

    _auto_fit_columns(ws)

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()
