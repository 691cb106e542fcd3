# utils/sales_ops/export.py
"""
CSV and Excel Export for Sales Ops

CSV (table download buttons) is written by pandas:
- Header labels quoted, one line per record
- Dotted column keys read nested values ("source.name")
- Optional per-column formatter
- None -> "", text quoted with embedded quotes doubled, numbers bare,
  booleans "Yes"/"No", datetimes ISO-8601 UTC, dicts/lists JSON

Excel (full report) uses openpyxl:
- Summary sheet with the dashboard KPIs
- Calls, Closers, Setters and Sources sheets
"""

import csv
import json
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from io import BytesIO
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .constants import EXCEL_STYLES, DEFAULT_TIMEZONE
from .fields import is_missing, to_records, to_timestamp

logger = logging.getLogger(__name__)


# =============================================================================
# CSV
# =============================================================================

@dataclass
class CsvColumn:
    key: str
    label: str
    format: Optional[Callable[[Any, Mapping], Any]] = None


def _resolve_key(row: Mapping, key: str) -> Any:
    if '.' not in key:
        return row.get(key)
    value: Any = row
    for part in key.split('.'):
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            return None
    return value


def _iso_utc(value) -> str:
    ts = to_timestamp(value)
    return ts.strftime('%Y-%m-%dT%H:%M:%S.') + f"{ts.microsecond // 1000:03d}Z"


def format_csv_value(value: Any) -> Any:
    """Cell handed to the CSV writer: numbers stay numeric, everything else is text."""
    if isinstance(value, (bool, np.bool_)):
        return 'Yes' if value else 'No'
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, str):
        return value
    if is_missing(value):
        return ''
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        number = float(value)
        if math.isinf(number):
            return ''
        return int(number) if number.is_integer() else number
    if isinstance(value, (datetime, pd.Timestamp)):
        return _iso_utc(value)
    if isinstance(value, date):
        return value.isoformat()
    return json.dumps(value, default=str)


def to_csv(records, columns: Sequence[CsvColumn]) -> str:
    """
    Build CSV text for a table.

    Returns:
        CSV string, or "" when there are no records
    """
    rows = to_records(records)
    if not rows:
        return ''

    cells = []
    for row in rows:
        line = []
        for col in columns:
            value = _resolve_key(row, col.key)
            if col.format is not None:
                value = col.format(value, row)
            line.append(format_csv_value(value))
        cells.append(line)

    # object dtype keeps ints as ints (no "1500.0") and leaves strings quoted
    df = pd.DataFrame(cells, columns=[col.label for col in columns], dtype=object)
    return df.to_csv(index=False, quoting=csv.QUOTE_NONNUMERIC, lineterminator='\n')


def export_filename(name: str) -> str:
    return name if name.lower().endswith('.csv') else f"{name}.csv"


# =============================================================================
# FORMATTERS
# =============================================================================

def format_date_for_export(value: Any, tz: str = DEFAULT_TIMEZONE) -> str:
    """'01/15/2024, 10:30 AM' in local (Eastern) time; '' when missing."""
    ts = to_timestamp(value)
    if ts is None:
        return '' if is_missing(value) else str(value)
    return ts.tz_convert(tz).strftime('%m/%d/%Y, %I:%M %p')


def format_currency_for_export(value: Any) -> str:
    if is_missing(value):
        return ''
    return f"{float(value):.2f}"


def format_percent_for_export(value: Any) -> str:
    if is_missing(value):
        return ''
    return f"{float(value):.1f}%"


def format_currency(value: Any, decimals: int = 0) -> str:
    """Display currency: 1234.5 -> '$1,235', -50 -> '-$50'."""
    amount = 0.0 if is_missing(value) else float(value)
    sign = '-' if amount < 0 else ''
    return f"{sign}${abs(amount):,.{decimals}f}"


def format_percent(value: Any, decimals: int = 1) -> str:
    amount = 0.0 if is_missing(value) else float(value)
    return f"{amount:.{decimals}f}%"


# =============================================================================
# EXCEL REPORT
# =============================================================================

class SalesOpsExport:
    """
    Excel report generator for the sales ops dashboard.

    Usage:
        exporter = SalesOpsExport()
        excel_bytes = exporter.create_report(
            summary=summary_metrics,
            filters={'start_date': ..., 'end_date': ...},
            calls_df=report_df,
            closers_df=closer_df,
        )

        st.download_button(
            label="Download Report",
            data=excel_bytes,
            file_name="sales_ops_report.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
    """

    CALL_COLUMNS = [
        ('scheduled_at', 'Scheduled', 20),
        ('lead_name', 'Lead', 24),
        ('lead_email', 'Email', 28),
        ('closer_name', 'Closer', 20),
        ('setter', 'Setter', 20),
        ('traffic_source', 'Source', 14),
        ('event_name', 'Event Type', 24),
        ('call_status', 'Status', 14),
        ('event_outcome', 'Outcome', 20),
        ('revenue', 'Cash', 12),
    ]

    CLOSER_COLUMNS = [
        ('name', 'Closer', 24),
        ('booked', 'Booked', 10),
        ('showed', 'Showed', 10),
        ('no_shows', 'No Shows', 10),
        ('show_rate', 'Show %', 10),
        ('offers_made', 'Offers', 10),
        ('offer_rate', 'Offer %', 10),
        ('closed', 'Closed', 10),
        ('close_rate', 'Close %', 10),
        ('cash_collected', 'Cash Collected', 16),
        ('cash_per_booked_call', 'Cash / Booked', 14),
    ]

    SETTER_COLUMNS = [
        ('name', 'Setter', 24),
        ('calls_set', 'Calls Set', 10),
        ('showed', 'Showed', 10),
        ('no_shows', 'No Shows', 10),
        ('closed', 'Closed', 10),
        ('show_rate', 'Show %', 10),
        ('close_rate', 'Close %', 10),
        ('attribution_source', 'Source', 10),
    ]

    SOURCE_COLUMNS = [
        ('source', 'Source', 20),
        ('scheduled_count', 'Scheduled', 12),
        ('booked_count', 'Booked', 10),
        ('showed', 'Showed', 10),
        ('no_shows', 'No Shows', 10),
        ('closed', 'Closed', 10),
        ('show_rate', 'Show %', 10),
        ('close_rate', 'Close %', 10),
        ('revenue', 'Revenue', 14),
    ]

    CURRENCY_FIELDS = {'revenue', 'cash_collected', 'cash_per_booked_call'}

    def __init__(self):
        self.wb = None
        self._init_styles()

    def _init_styles(self):
        """Initialize reusable styles."""
        self.header_fill = PatternFill(
            start_color=EXCEL_STYLES['header_fill'],
            end_color=EXCEL_STYLES['header_fill'],
            fill_type='solid'
        )
        self.header_font = Font(bold=True, color=EXCEL_STYLES['header_font_color'], size=11)
        self.title_font = Font(bold=True, size=16)
        self.subtitle_font = Font(bold=True, size=12)

        thin = Side(style='thin', color='000000')
        self.cell_border = Border(left=thin, right=thin, top=thin, bottom=thin)

        self.center_align = Alignment(horizontal='center', vertical='center')
        self.right_align = Alignment(horizontal='right', vertical='center')

        self.currency_format = EXCEL_STYLES['currency_format']

    def create_report(
        self,
        summary: Dict,
        filters: Dict,
        calls_df: pd.DataFrame = None,
        closers_df: pd.DataFrame = None,
        setters_df: pd.DataFrame = None,
        sources_df: pd.DataFrame = None
    ) -> BytesIO:
        """
        Create the Excel report.

        Returns:
            BytesIO containing the workbook
        """
        self.wb = Workbook()

        self._create_summary_sheet(summary, filters)
        self._create_table_sheet("Calls", calls_df, self.CALL_COLUMNS)
        self._create_table_sheet("Closers", closers_df, self.CLOSER_COLUMNS)
        self._create_table_sheet("Setters", setters_df, self.SETTER_COLUMNS)
        self._create_table_sheet("Sources", sources_df, self.SOURCE_COLUMNS)

        output = BytesIO()
        self.wb.save(output)
        output.seek(0)

        logger.info("Excel report created successfully")
        return output

    def _create_summary_sheet(self, summary: Dict, filters: Dict):
        ws = self.wb.active
        ws.title = "Summary"

        row = 1
        ws.cell(row=row, column=1, value="Sales Ops Report").font = self.title_font
        ws.merge_cells(start_row=row, start_column=1, end_row=row, end_column=3)
        row += 2

        ws.cell(row=row, column=1, value="Date Range:")
        ws.cell(row=row, column=2, value=f"{filters.get('start_date', '')} to {filters.get('end_date', '')}")
        row += 1
        ws.cell(row=row, column=1, value="Generated:")
        ws.cell(row=row, column=2, value=datetime.now().strftime('%Y-%m-%d %H:%M'))
        row += 2

        ws.cell(row=row, column=1, value="Key Metrics").font = self.subtitle_font
        row += 1

        kpi_rows = self._summary_rows(summary)
        for label, value in kpi_rows:
            ws.cell(row=row, column=1, value=label)
            cell = ws.cell(row=row, column=2, value=value)
            cell.alignment = self.right_align
            row += 1

        ws.column_dimensions['A'].width = 25
        ws.column_dimensions['B'].width = 20

    @staticmethod
    def _summary_rows(summary: Dict) -> List[Tuple[str, str]]:
        return [
            ("Total Calls", f"{summary.get('total_calls', 0):,}"),
            ("Booked Calls", f"{summary.get('booked_calls', 0):,}"),
            ("Showed", f"{summary.get('showed', 0):,}"),
            ("No Shows", f"{summary.get('no_shows', 0):,}"),
            ("Show Rate", format_percent(summary.get('show_rate', 0))),
            ("Offer Rate", format_percent(summary.get('offer_rate', 0))),
            ("Close Rate", format_percent(summary.get('close_rate', 0))),
            ("Closed Deals", f"{summary.get('closed', 0):,}"),
            ("Revenue", format_currency(summary.get('revenue', 0))),
            ("Pending PCFs", f"{summary.get('pending_pcfs', 0):,}"),
        ]

    def _create_table_sheet(self, title: str, df: Optional[pd.DataFrame], columns: List[Tuple[str, str, int]]):
        if df is None or df.empty:
            return

        ws = self.wb.create_sheet(title)
        present = [c for c in columns if c[0] in df.columns]

        for col_idx, (_, header, width) in enumerate(present, 1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.fill = self.header_fill
            cell.font = self.header_font
            cell.alignment = self.center_align
            cell.border = self.cell_border
            ws.column_dimensions[get_column_letter(col_idx)].width = width

        for row_idx, record in enumerate(df.to_dict('records'), 2):
            for col_idx, (col_name, _, _) in enumerate(present, 1):
                cell = ws.cell(row=row_idx, column=col_idx, value=self._excel_value(record.get(col_name)))
                cell.border = self.cell_border
                if col_name in self.CURRENCY_FIELDS:
                    cell.number_format = self.currency_format
                    cell.alignment = self.right_align

        ws.freeze_panes = 'A2'

    @staticmethod
    def _excel_value(value: Any) -> Any:
        """openpyxl rejects tz-aware datetimes, numpy scalars and containers."""
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        if is_missing(value):
            return None
        if isinstance(value, (datetime, pd.Timestamp)):
            ts = to_timestamp(value)
            return ts.tz_convert(DEFAULT_TIMEZONE).tz_localize(None).to_pydatetime()
        if isinstance(value, np.generic):
            return value.item()
        return value
