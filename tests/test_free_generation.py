"""Tests for free generation (no template)."""

import datetime
import os
import sys
from io import BytesIO

import pytest
from openpyxl import load_workbook

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from excel_report.dataset import Column, ColumnType, Dataset
from excel_report.document import DocumentContext
from excel_report.free_generation import (
    DATE_FORMAT,
    create_default_workbook,
    new_sheet_name,
    write_dataset,
)
from excel_report.options import ReportOptions


def customers():
    return Dataset.from_records(
        "Customers", ["Name", "Since"],
        [["Ana", datetime.date(2024, 1, 1)], ["Bo", datetime.date(2023, 6, 15)]],
    )


def generate(datasets, options=None):
    with DocumentContext.new() as doc:
        create_default_workbook(doc, datasets, ReportOptions(options))
        payload = doc.to_bytes()
    return load_workbook(BytesIO(payload))


class TestSheetNames:
    def test_first_sheet_uses_prefix(self):
        with DocumentContext.new() as doc:
            assert new_sheet_name(doc.workbook, "Sheet") == "Sheet"
            doc.workbook.create_sheet("Sheet")
            assert new_sheet_name(doc.workbook, "Sheet") == "Sheet2"

    def test_one_sheet_per_dataset(self):
        orders = Dataset.from_records("Orders", ["Id"], [[1]])
        wb = generate([customers(), orders])
        assert wb.sheetnames == ["Sheet", "Sheet2"]
        assert wb["Sheet2"]["A1"].value == "Id"

    def test_custom_prefix(self):
        wb = generate([customers(), customers(), customers()],
                      {"excel.defaults.sheetname": "Data"})
        assert wb.sheetnames == ["Data", "Data2", "Data3"]

    def test_no_datasets_gives_one_empty_sheet(self):
        wb = generate([])
        assert wb.sheetnames == ["Sheet"]
        assert wb["Sheet"].max_row == 1
        assert wb["Sheet"]["A1"].value is None


class TestContent:
    @pytest.fixture
    def sheet(self):
        return generate([customers()])["Sheet"]

    def test_header_bold(self, sheet):
        assert [sheet["A1"].value, sheet["B1"].value] == ["Name", "Since"]
        assert sheet["A1"].font.b
        assert sheet["B1"].font.b

    def test_rows(self, sheet):
        assert sheet["A2"].value == "Ana"
        assert sheet["A3"].value == "Bo"
        assert sheet.max_row == 3

    def test_dates(self, sheet):
        assert sheet["B2"].value == datetime.datetime(2024, 1, 1)
        assert sheet["B2"].number_format == DATE_FORMAT
        assert sheet["B3"].is_date

    def test_header_disabled(self):
        ws = generate([customers()], {"excel.defaults.header": False})["Sheet"]
        assert ws["A1"].value == "Ana"
        assert ws.max_row == 2

    def test_empty_dataset_header_only(self):
        empty = Dataset.from_records("Empty", ["A", "B"], [])
        ws = generate([empty])["Sheet"]
        assert [ws["A1"].value, ws["B1"].value] == ["A", "B"]
        assert ws.max_row == 1


class TestWriteDataset:
    def test_returns_last_row(self):
        with DocumentContext.new() as doc:
            ws = doc.workbook.create_sheet("S")
            assert write_dataset(ws, customers()) == 3
            ws2 = doc.workbook.create_sheet("T")
            assert write_dataset(ws2, customers(), header=False) == 2

    def test_iso_string_in_date_column(self):
        ds = Dataset.from_records("D", [Column("When", ColumnType.DATE)], [["2024-05-06"]])
        with DocumentContext.new() as doc:
            ws = doc.workbook.create_sheet("S")
            write_dataset(ws, ds)
            assert ws["A2"].value == datetime.date(2024, 5, 6)
            assert ws["A2"].number_format == DATE_FORMAT
