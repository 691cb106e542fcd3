"""Tests for CSV rendering and the Excel report."""

import io
from datetime import date, datetime, timezone

import numpy as np
import pandas as pd
from openpyxl import load_workbook

from utils.sales_ops.export import (
    CsvColumn, SalesOpsExport, export_filename, format_csv_value, format_currency,
    format_currency_for_export, format_date_for_export, format_percent, to_csv,
)


class TestCsv:

    def test_table(self):
        rows = [{
            'name': 'Jane "JD" Doe',
            'amount': 1500.0,
            'paid': True,
            'source': {'name': 'IG'},
            'created_at': datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            'notes': None,
            'rate': 12.5,
        }]
        columns = [
            CsvColumn('name', 'Name'),
            CsvColumn('amount', 'Amount'),
            CsvColumn('paid', 'Paid'),
            CsvColumn('source.name', 'Source'),
            CsvColumn('created_at', 'Created'),
            CsvColumn('notes', 'Notes'),
            CsvColumn('rate', 'Rate'),
        ]
        assert to_csv(rows, columns) == (
            '"Name","Amount","Paid","Source","Created","Notes","Rate"\n'
            '"Jane ""JD"" Doe",1500,"Yes","IG","2024-05-01T12:00:00.000Z","",12.5\n'
        )

    def test_reads_back_with_pandas(self):
        rows = [{'closer': 'Sam, Jr.', 'calls': 4}, {'closer': 'Ann', 'calls': np.int64(2)}]
        text = to_csv(rows, [CsvColumn('closer', 'Closer'), CsvColumn('calls', 'Calls')])

        df = pd.read_csv(io.StringIO(text))
        assert df['Closer'].tolist() == ['Sam, Jr.', 'Ann']
        assert df['Calls'].tolist() == [4, 2]

    def test_formatter_gets_value_and_row(self):
        columns = [CsvColumn('amount', 'Amount', lambda v, row: format_currency_for_export(v))]
        assert to_csv(pd.DataFrame([{'amount': 99.5}]), columns) == '"Amount"\n"99.50"\n'

    def test_no_records(self):
        assert to_csv([], [CsvColumn('a', 'A')]) == ''
        assert to_csv(pd.DataFrame(), [CsvColumn('a', 'A')]) == ''

    def test_cells(self):
        assert format_csv_value(float('nan')) == ''
        assert format_csv_value(float('inf')) == ''
        assert format_csv_value(np.int64(3)) == 3
        assert type(format_csv_value(np.float64(2.0))) is int
        assert format_csv_value(np.bool_(False)) == 'No'
        assert format_csv_value(date(2024, 5, 1)) == '2024-05-01'
        assert format_csv_value([1, 2]) == '[1, 2]'
        assert format_csv_value('') == ''

    def test_filename(self):
        assert export_filename('calls_20240501') == 'calls_20240501.csv'
        assert export_filename('report.CSV') == 'report.CSV'


class TestFormatters:

    def test_date_in_eastern_time(self):
        assert format_date_for_export('2024-01-15T15:30:00Z') == '01/15/2024, 10:30 AM'
        assert format_date_for_export(None) == ''
        assert format_date_for_export('soon') == 'soon'

    def test_currency_and_percent(self):
        assert format_currency(1234.6) == '$1,235'
        assert format_currency(-50) == '-$50'
        assert format_currency(None) == '$0'
        assert format_currency(10, decimals=2) == '$10.00'
        assert format_percent(12.345) == '12.3%'
        assert format_currency_for_export(None) == ''


class TestExcelReport:

    def test_sheets_and_values(self):
        calls = pd.DataFrame([{
            'scheduled_at': pd.Timestamp('2024-05-01T12:00:00Z'),
            'lead_name': 'Jane Roe',
            'event_outcome': 'closed',
            'revenue': np.float64(2500.0),
            'booking_metadata': {'utm_platform': 'ig'},
        }])
        output = SalesOpsExport().create_report(
            summary={'total_calls': 5, 'show_rate': 66.7, 'revenue': 3500.0},
            filters={'start_date': date(2024, 5, 1), 'end_date': date(2024, 5, 31)},
            calls_df=calls,
            closers_df=pd.DataFrame(),
        )

        wb = load_workbook(output)
        assert wb.sheetnames == ['Summary', 'Calls']

        summary = wb['Summary']
        assert summary['A1'].value == 'Sales Ops Report'
        assert summary['B3'].value == '2024-05-01 to 2024-05-31'
        assert summary['A7'].value == 'Total Calls'
        assert summary['B7'].value == '5'

        sheet = wb['Calls']
        assert [c.value for c in sheet[1]] == ['Scheduled', 'Lead', 'Outcome', 'Cash']
        assert sheet['A2'].value == datetime(2024, 5, 1, 8, 0)
        assert sheet['D2'].value == 2500.0
        assert sheet['D2'].number_format == '$#,##0'
