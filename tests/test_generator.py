"""End-to-end tests for ExcelGenerator."""

import datetime
import os
import sys
from io import BytesIO

import pytest
from openpyxl import load_workbook

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tests.create_sample_template import create_sample_template
from excel_report.dataset import Dataset
from excel_report.errors import ConfigError, ResourceNotFound
from excel_report.generator import ExcelGenerator
from excel_report.options import ReportDescriptor

VARIABLES = {"period": "2024-Q1", "user": "tester"}


@pytest.fixture
def datasets():
    return [
        Dataset.from_records(
            "Customers", ["Name", "Since"],
            [["Ana", datetime.date(2024, 1, 1)], ["Bo", datetime.date(2023, 6, 15)]],
        ),
        Dataset.from_records("Orders", ["Id", "Amount"], [[100, 5.5], [101, 7.25], [102, 1.0]]),
    ]


@pytest.fixture
def templated_report(tmp_path):
    create_sample_template(str(tmp_path / "template.xlsx"))
    return ReportDescriptor(
        label="Customer report",
        description="Customers and orders",
        version="2",
        authors=["Ana"],
        work_directory=str(tmp_path),
        options={"excel.template": "template.xlsx"},
    )


class TestExcelGeneratorAttributes:
    def test_descriptor(self):
        assert ExcelGenerator.file_extension == ".xlsx"
        assert ExcelGenerator.mime_type.endswith("spreadsheetml.sheet")
        assert ExcelGenerator.is_embed is False
        assert ExcelGenerator.id


class TestTemplated:
    @pytest.fixture
    def workbook(self, templated_report, datasets):
        payload = ExcelGenerator().generate(templated_report, datasets, VARIABLES)
        return load_workbook(BytesIO(payload))

    def test_variables_substituted(self, workbook):
        ws = workbook["Report"]
        assert ws["A1"].value == "Customers for 2024-Q1"
        assert ws["A8"].value == "Generated by tester"

    def test_bound_cells(self, workbook):
        ws = workbook["Report"]
        assert ws["B2"].value == "Ana"
        assert ws["B15"].value == "##Orders.Total##NotFound"

    def test_tables_expanded(self, workbook):
        ws = workbook["Report"]
        assert ws.tables["Customers"].ref == "A4:B6"
        assert ws.tables["Orders"].ref == "A10:C13"
        assert ws["A13"].value == 102

    def test_metadata(self, workbook):
        props = workbook.properties
        assert props.title == "Customer report"
        assert props.subject == "Customers and orders"
        assert props.creator == "Ana"
        assert props.description == "Report v2. Private: False"

    def test_idempotent(self, templated_report, datasets):
        generator = ExcelGenerator()
        first = generator.generate(templated_report, datasets, VARIABLES)
        second = generator.generate(templated_report, datasets, VARIABLES)
        assert first == second

    def test_template_left_untouched(self, templated_report, datasets, tmp_path):
        path = tmp_path / "template.xlsx"
        before = path.read_bytes()
        ExcelGenerator().generate(templated_report, datasets, VARIABLES)
        assert path.read_bytes() == before

    def test_missing_template(self, templated_report, datasets):
        templated_report.options = {"excel.template": "missing.xlsx"}
        with pytest.raises(ResourceNotFound):
            ExcelGenerator().generate(templated_report, datasets)

    def test_non_string_template(self, templated_report, datasets):
        templated_report.options = {"excel.template": 3}
        with pytest.raises(ConfigError):
            ExcelGenerator().generate(templated_report, datasets)


class TestFree:
    def test_free_generation(self, datasets):
        payload = ExcelGenerator().generate(ReportDescriptor(label="Free"), datasets)
        wb = load_workbook(BytesIO(payload))
        assert wb.sheetnames == ["Sheet", "Sheet2"]
        assert wb["Sheet"]["A2"].value == "Ana"
        assert wb.properties.title == "Free"

    def test_idempotent(self, datasets):
        report = ReportDescriptor(label="Free")
        assert ExcelGenerator().generate(report, datasets) == ExcelGenerator().generate(report, datasets)

    def test_write(self, datasets, tmp_path):
        output = str(tmp_path / "out" / "free.xlsx")
        ExcelGenerator().write(ReportDescriptor(), datasets, None, output)
        assert os.path.isfile(output)
        assert load_workbook(output).sheetnames == ["Sheet", "Sheet2"]
