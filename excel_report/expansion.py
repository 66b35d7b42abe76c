"""
Table expansion: grows or shrinks every template table to fit its dataset.

For each table on the sheet (in the order openpyxl reports them) the
matching dataset's rows are inserted at the first body row, pushing the
template's sample rows down, the data is written, and the now stale sample
rows are deleted.  Header cells are relabelled through the
``excel.headings.*`` aliases afterwards.

Tables are expected to be laid out top to bottom; row shifts caused by one
table are applied to every table, name and merged range below it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .dataset import cell_value, find_dataset

logger = logging.getLogger(__name__)

OPTIONAL_PREFIX = "_"

MISSING_COLUMNS_MESSAGE = (
    "Required columns are missing from the data: {columns}. "
    "Prefix optional columns with an underscore."
)


@dataclass
class ExpansionResult:
    table: str
    rows_inserted: int = 0
    rows_removed: int = 0
    matched: bool = False
    error: Optional[str] = None


def required_columns(column_names):
    return [n for n in column_names if not n.startswith(OPTIONAL_PREFIX)]


def relabel_headers(table, options):
    """Rename header cells (and table columns) through the alias map."""
    ws = table.worksheet
    header_row = table.min_row
    for position, col in enumerate(range(table.min_col, table.max_col + 1)):
        cell = ws.cell(row=header_row, column=col)
        if cell.value is None:
            continue
        current = str(cell.value)
        alias = options.column_alias(current)
        if alias and alias != current:
            cell.value = alias
            table.rename_column(position, alias)


def expand_table(document, table, datasets, options):
    """Expand one table region in place; returns an :class:`ExpansionResult`."""
    ws = table.worksheet
    result = ExpansionResult(table.name)
    dataset = find_dataset(datasets, table.name)

    row_index = table.min_row + (1 if table.show_header else 0)
    col_index = table.min_col
    template_row_count = table.body_row_count

    if options.read_only():
        document.protect(ws, options.protection_password())

    if dataset is None:
        logger.warning(f"Table '{table.name}': no dataset with that name, left as is")
    else:
        result.matched = True
        column_names = table.column_names
        missing = [n for n in required_columns(column_names) if not dataset.has_column(n)]
        if missing:
            result.error = MISSING_COLUMNS_MESSAGE.format(columns=", ".join(missing))
            ws.cell(row=row_index, column=col_index, value=result.error)
            logger.warning(f"Table '{table.name}': {result.error}")
            return result

        if dataset.has_rows:
            document.insert_rows(ws, row_index, len(dataset.rows), owner=table,
                                 copy_style=template_row_count > 0)
            targets = [
                (offset, name, dataset.column(name).type)
                for offset, name in enumerate(column_names)
                if not name.startswith(OPTIONAL_PREFIX)
            ]
            for row in dataset.rows:
                for offset, name, column_type in targets:
                    ws.cell(row=row_index, column=col_index + offset,
                            value=cell_value(dataset.value(row, name), column_type))
                row_index += 1
            result.rows_inserted = len(dataset.rows)

        if template_row_count > 0:
            document.delete_rows(ws, row_index, template_row_count)
            result.rows_removed = template_row_count

        logger.info(f"Table '{table.name}': {result.rows_inserted} rows inserted, "
                    f"{result.rows_removed} template rows removed")

    if table.show_header:
        relabel_headers(table, options)
    return result


def expand_tables(document, datasets, options, worksheet=None):
    """Expand every table on *worksheet* (default: the first sheet)."""
    results = []
    for table in document.tables(worksheet):
        results.append(expand_table(document, table, datasets, options))
    return results
