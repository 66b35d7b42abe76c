"""
Free generation: one new sheet per dataset, header row plus data rows.
"""

import logging

from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .dataset import ColumnType, cell_value

logger = logging.getLogger(__name__)

DATE_FORMAT = "yyyy-mm-dd"
_HEADER_FONT = Font(bold=True)


def new_sheet_name(workbook, prefix):
    """``prefix`` for the first sheet, ``prefix<N>`` afterwards."""
    count = len(workbook.worksheets)
    if count == 0:
        return prefix
    return f"{prefix}{count + 1}"


def _write_header(ws, dataset):
    """Write the bold header row; return the columns that hold dates."""
    date_columns = set()
    for ci, column in enumerate(dataset.columns, 1):
        cell = ws.cell(row=1, column=ci, value=column.name)
        cell.font = _HEADER_FONT
        if column.type is ColumnType.DATE:
            ws.column_dimensions[get_column_letter(ci)].number_format = DATE_FORMAT
            date_columns.add(ci)
    ws.row_dimensions[1].font = _HEADER_FONT
    return date_columns


def write_dataset(ws, dataset, header=True):
    """Write *dataset* into the empty worksheet *ws*."""
    row_index = 1
    date_columns = set()
    if header and dataset.columns:
        date_columns = _write_header(ws, dataset)
        row_index += 1

    types = [c.type for c in dataset.columns]
    for row in dataset.rows:
        for ci, (fld, column_type) in enumerate(zip(row, types), 1):
            cell = ws.cell(row=row_index, column=ci, value=cell_value(fld.value, column_type))
            if ci in date_columns:
                cell.number_format = DATE_FORMAT
        row_index += 1
    return row_index - 1


def create_default_workbook(document, datasets, options):
    """Add one sheet per dataset to *document*'s workbook, in input order."""
    wb = document.workbook
    prefix = options.default_sheet_name_prefix()
    header = options.header_enabled()

    for dataset in datasets:
        ws = wb.create_sheet(title=new_sheet_name(wb, prefix))
        last_row = write_dataset(ws, dataset, header=header)
        logger.info(f"Sheet '{ws.title}': dataset '{dataset.name}', {last_row} rows written")

    if not wb.worksheets:
        wb.create_sheet(title=prefix)
    return wb.worksheets
