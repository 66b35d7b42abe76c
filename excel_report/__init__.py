"""Excel Report Generator.

Populates ``.xlsx`` workbooks from named, row-oriented datasets in one of
two modes:

  * **Free generation** – a new workbook with one sheet per dataset, a bold
    header row and date-formatted date columns.
  * **Templated generation** – an existing workbook whose named cells and
    tables are filled in place: ``_``-prefixed cells get ``%key%``
    variables substituted, ``table.column`` cells receive the first row of
    a dataset, and every table is expanded or shrunk to its dataset's rows.

The entry point is :class:`ExcelGenerator`; the command line lives in
:mod:`excel_report.main`.
"""

from .dataset import Column, ColumnType, Dataset, Field, load_datasets
from .errors import ConfigError, DatasetError, ReportError, ResourceNotFound
from .generator import ExcelGenerator
from .options import ReportDescriptor, ReportOptions, load_config, load_report

__all__ = [
    "Column",
    "ColumnType",
    "ConfigError",
    "Dataset",
    "DatasetError",
    "ExcelGenerator",
    "Field",
    "ReportDescriptor",
    "ReportError",
    "ReportOptions",
    "ResourceNotFound",
    "load_config",
    "load_datasets",
    "load_report",
]
