"""Tests for report options and YAML configuration loading."""

import datetime
import os
import sys
import textwrap

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from excel_report.errors import ConfigError, ResourceNotFound
from excel_report.options import (
    DEFAULT_PROTECTION_PASSWORD,
    ReportDescriptor,
    ReportOptions,
    flatten_options,
    load_config,
    load_report,
)


def write(path, text):
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# ReportOptions
# ---------------------------------------------------------------------------

class TestReportOptions:
    def test_defaults(self):
        opts = ReportOptions()
        assert not opts.is_templating()
        assert opts.header_enabled() is True
        assert opts.read_only() is False
        assert opts.default_sheet_name_prefix() == "Sheet"
        assert opts.protection_password() == DEFAULT_PROTECTION_PASSWORD
        assert opts.column_alias("Name") == "Name"

    def test_empty_template_is_free_mode(self):
        assert not ReportOptions({"excel.template": ""}).is_templating()

    def test_template(self):
        opts = ReportOptions({"excel.template": "t.xlsx"})
        assert opts.is_templating()
        assert opts.template_file("/reports") == os.path.join("/reports", "t.xlsx")

    def test_template_file_requires_string(self):
        with pytest.raises(ConfigError):
            ReportOptions({"excel.template": 5}).template_file()

    @pytest.mark.parametrize("value, expected", [
        (False, False),
        (True, True),
        ("", True),
        (None, True),
        ("false", True),
        (0, True),
    ])
    def test_header_flag(self, value, expected):
        assert ReportOptions({"excel.defaults.header": value}).header_enabled() is expected

    def test_protect_flag_non_bool_ignored(self):
        assert ReportOptions({"excel.defaults.protect": "yes"}).read_only() is False
        assert ReportOptions({"excel.defaults.protect": True}).read_only() is True

    def test_sheet_name_prefix(self):
        assert ReportOptions({"excel.defaults.sheetname": "Data"}).default_sheet_name_prefix() == "Data"

    def test_column_alias(self):
        opts = ReportOptions({"excel.headings.Name": "Customer", "excel.headings.Id": 7})
        assert opts.column_alias("Name") == "Customer"
        assert opts.column_alias("Id") == "Id"


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

class TestFlatten:
    def test_nested_keys(self):
        nested = {"excel": {"template": "t.xlsx", "headings": {"Name": "Customer"}}}
        assert flatten_options(nested) == {
            "excel.template": "t.xlsx",
            "excel.headings.Name": "Customer",
        }

    def test_dotted_keys_kept(self):
        assert flatten_options({"excel.defaults.header": False}) == {"excel.defaults.header": False}


class TestLoadConfig:
    def test_missing_path(self, tmp_path):
        assert load_config(str(tmp_path / "none.yaml")) == {}
        assert load_config(None) == {}

    def test_nested(self, tmp_path):
        path = write(tmp_path / "c.yaml", """
            excel:
              defaults:
                header: false
        """)
        assert load_config(path) == {"excel.defaults.header": False}

    def test_invalid_yaml(self, tmp_path):
        path = write(tmp_path / "c.yaml", "excel: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = write(tmp_path / "c.yaml", "- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)


class TestLoadReport:
    def test_full_report(self, tmp_path):
        path = write(tmp_path / "report.yaml", """
            label: Sales
            description: Monthly sales
            version: 2
            is_private: true
            authors: Ana
            keywords: [sales, monthly]
            created: 2024-01-05
            work_directory: templates
            options:
              excel:
                template: sales.xlsx
                defaults:
                  protect: true
        """)
        report = load_report(path)
        assert report.label == "Sales"
        assert report.version == "2"
        assert report.is_private is True
        assert report.authors == ["Ana"]
        assert report.keywords == ["sales", "monthly"]
        assert report.created == datetime.datetime(2024, 1, 5)
        assert report.work_directory == os.path.join(str(tmp_path), "templates")
        assert report.options == {"excel.template": "sales.xlsx",
                                  "excel.defaults.protect": True}
        assert report.report_options.read_only()
        assert report.comment == "Report v2. Private: True"

    def test_minimal_report(self, tmp_path):
        path = write(tmp_path / "report.yaml", "label: Only\n")
        report = load_report(path)
        assert report.options == {}
        assert report.timestamp == datetime.datetime(2000, 1, 1)
        assert os.path.normpath(report.work_directory) == str(tmp_path)

    def test_unknown_keys_warn(self, tmp_path, caplog):
        path = write(tmp_path / "report.yaml", "label: X\ncolour: blue\n")
        with caplog.at_level("WARNING"):
            load_report(path)
        assert "colour" in caplog.text

    def test_missing_file(self, tmp_path):
        with pytest.raises(ResourceNotFound):
            load_report(str(tmp_path / "none.yaml"))

    def test_bad_options(self, tmp_path):
        path = write(tmp_path / "report.yaml", "options: [1, 2]\n")
        with pytest.raises(ConfigError):
            load_report(path)


class TestReportDescriptor:
    def test_comment(self):
        assert ReportDescriptor(version="4", is_private=False).comment == "Report v4. Private: False"

    def test_created_overrides_timestamp(self):
        when = datetime.datetime(2024, 2, 2, 8, 0)
        assert ReportDescriptor(created=when).timestamp == when
