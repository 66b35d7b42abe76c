"""
Document context: the single mutable handle the generation passes share.

Wraps one openpyxl :class:`~openpyxl.workbook.Workbook` for the duration of a
generation call and provides

* discovery of singleton named cells (:class:`NamedCellRef`) and table
  regions (:class:`NamedTableRef`);
* structural row insertion / deletion that keeps row heights, merged
  ranges, tables, auto-filters, defined names, formulas, conditional
  formats and data validations in step with the cells (openpyxl itself
  only moves cells, leaving formula text untouched);
* sheet protection, document metadata and reproducible serialisation.

Row shifting follows one rule, expressed by :func:`shift_row` and
:func:`shift_span`; formula references are rewritten token by token with
openpyxl's formula tokenizer (:func:`shift_formula`).
"""

import logging
import os
from copy import copy
from dataclasses import dataclass
from io import BytesIO
from typing import Optional
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from openpyxl import Workbook, load_workbook
from openpyxl.formatting.formatting import ConditionalFormatting, ConditionalFormattingList
from openpyxl.formula.tokenizer import Token, Tokenizer, TokenizerError
from openpyxl.formula.translate import Translator
from openpyxl.utils import get_column_letter, range_boundaries
from openpyxl.worksheet.cell_range import MultiCellRange
from openpyxl.worksheet.formula import ArrayFormula
from openpyxl.writer.excel import ExcelWriter

from .errors import ResourceNotFound

logger = logging.getLogger(__name__)

# Zip entries get a constant timestamp so equal workbooks give equal bytes.
_ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)

_REF_ERROR = "#REF!"


# ---------------------------------------------------------------------------
# Index shifting
# ---------------------------------------------------------------------------

def shift_row(row, at, amount):
    """Return the new index of *row* after a structural change at row *at*.

    ``amount > 0`` inserts that many rows before *at*: rows ``>= at`` move
    down.  ``amount < 0`` deletes ``-amount`` rows starting at *at*: rows in
    the deleted block return ``None`` and rows below move up.
    """
    if amount >= 0:
        return row + amount if row >= at else row
    removed = -amount
    if row < at:
        return row
    if row < at + removed:
        return None
    return row - removed


def shift_span(first, last, at, amount):
    """Shift the inclusive row span ``first..last``.

    Insertion moves each end independently, so inserting strictly inside the
    span grows it.  Deletion clips the span to the surviving rows and returns
    ``None`` when every row of the span was removed.
    """
    if amount >= 0:
        return shift_row(first, at, amount), shift_row(last, at, amount)
    new_first = shift_row(first, at, amount)
    new_last = shift_row(last, at, amount)
    if new_first is None:
        new_first = at
    if new_last is None:
        new_last = at - 1
    if new_first > new_last:
        return None
    return new_first, new_last


def _range_string(min_col, min_row, max_col, max_row):
    return (f"{get_column_letter(min_col)}{min_row}:"
            f"{get_column_letter(max_col)}{max_row}")


# ---------------------------------------------------------------------------
# Reference shifting
# ---------------------------------------------------------------------------

def _with_row(row_str, row):
    """Write *row* keeping the ``$`` anchor of *row_str*."""
    return ("$" if row_str.startswith("$") else "") + str(row)


def _row_number(row_str):
    return int(row_str.lstrip("$"))


def shift_reference(ref, at, amount):
    """Shift the rows of an A1 reference without sheet part.

    Handles single cells (``B4``), cell ranges (``$A$1:B5``) and row ranges
    (``3:5``).  Column ranges and names come back unchanged.  Returns
    ``None`` when every referenced row was deleted.
    """
    match = Translator.ROW_RANGE_RE.match(ref)
    if match is not None:
        ends = [match.group(1), match.group(2)]
        cols = ["", ""]
    else:
        pieces = ref.split(":")
        if len(pieces) > 2:
            return ref
        matches = [Translator.CELL_REF_RE.match(p) for p in pieces]
        if not all(matches):
            return ref
        cols = [m.group(1) for m in matches]
        ends = [m.group(2) for m in matches]

    if len(ends) == 1:
        row = shift_row(_row_number(ends[0]), at, amount)
        if row is None:
            return None
        return cols[0] + _with_row(ends[0], row)

    first, last = (_row_number(e) for e in ends)
    low, high = min(first, last), max(first, last)
    span = shift_span(low, high, at, amount)
    if span is None:
        return None
    new_first, new_last = span if first <= last else span[::-1]
    return (f"{cols[0]}{_with_row(ends[0], new_first)}:"
            f"{cols[1]}{_with_row(ends[1], new_last)}")


def _unquote_sheet(sheet_part):
    title = sheet_part[:-1]
    if title.startswith("'") and title.endswith("'"):
        title = title[1:-1].replace("''", "'")
    return title


def shift_formula(formula, sheet_title, origin_title, at, amount):
    """Rewrite the references of *formula* that point at *sheet_title*.

    *origin_title* is the sheet unqualified references belong to (``None``
    for defined names, which always name their sheet).  References to
    deleted rows become ``#REF!``.
    """
    try:
        tokenizer = Tokenizer(formula)
    except TokenizerError as exc:
        logger.debug(f"Formula {formula!r} left as is: {exc}")
        return formula

    changed = False
    for token in tokenizer.items:
        if token.type != Token.OPERAND or token.subtype != Token.RANGE:
            continue
        sheet_part, ref = Translator.strip_ws_name(token.value)
        target = _unquote_sheet(sheet_part) if sheet_part else origin_title
        if target != sheet_title:
            continue
        new_ref = shift_reference(ref, at, amount)
        if new_ref is None:
            new_ref = _REF_ERROR
        if new_ref != ref:
            token.value = sheet_part + new_ref
            changed = True
    return tokenizer.render() if changed else formula


def shift_expression(text, sheet_title, origin_title, at, amount):
    """:func:`shift_formula` for text stored without the leading ``=``."""
    if not text:
        return text
    shifted = shift_formula("=" + text, sheet_title, origin_title, at, amount)
    return shifted[1:] if shifted.startswith("=") else shifted


def shift_ranges(sqref, at, amount):
    """Shift a space separated range list; ``None`` when nothing survives."""
    kept = []
    for cell_range in MultiCellRange(str(sqref)).sorted():
        span = shift_span(cell_range.min_row, cell_range.max_row, at, amount)
        if span is None:
            continue
        coord = _range_string(cell_range.min_col, span[0], cell_range.max_col, span[1])
        if cell_range.min_col == cell_range.max_col and span[0] == span[1]:
            coord = coord.split(":")[0]
        kept.append(coord)
    return " ".join(kept) or None


# ---------------------------------------------------------------------------
# Document entities
# ---------------------------------------------------------------------------

@dataclass
class NamedCellRef:
    """A defined name that addresses exactly one cell."""
    name: str
    worksheet: object
    row: int
    column: int

    @property
    def cell(self):
        return self.worksheet.cell(row=self.row, column=self.column)

    @property
    def value(self):
        return self.cell.value

    @value.setter
    def value(self, value):
        self.cell.value = value


class NamedTableRef:
    """Live view over an openpyxl table; bounds are re-read on every access."""

    def __init__(self, worksheet, table):
        self.worksheet = worksheet
        self.table = table

    def __repr__(self):
        return f"NamedTableRef({self.name!r}, {self.table.ref})"

    @property
    def name(self):
        return self.table.displayName or self.table.name

    @property
    def bounds(self):
        """``(min_col, min_row, max_col, max_row)`` of the table ref."""
        return range_boundaries(self.table.ref)

    @property
    def min_row(self):
        return self.bounds[1]

    @property
    def max_row(self):
        return self.bounds[3]

    @property
    def min_col(self):
        return self.bounds[0]

    @property
    def max_col(self):
        return self.bounds[2]

    @property
    def show_header(self) -> bool:
        return self.table.headerRowCount != 0

    @property
    def totals_row_count(self) -> int:
        return self.table.totalsRowCount or 0

    @property
    def body_row_count(self) -> int:
        """Rows between the header and the totals row."""
        header = 1 if self.show_header else 0
        return self.max_row - self.min_row + 1 - header - self.totals_row_count

    @property
    def column_names(self):
        if self.table.tableColumns:
            return [c.name for c in self.table.tableColumns]
        if self.show_header:
            return [
                str(self.worksheet.cell(row=self.min_row, column=c).value)
                for c in range(self.min_col, self.max_col + 1)
            ]
        return [f"Column{i}" for i in range(1, self.max_col - self.min_col + 2)]

    def rename_column(self, position, new_name):
        if position < len(self.table.tableColumns):
            self.table.tableColumns[position].name = new_name

    def set_rows(self, min_row, max_row):
        min_col, _, max_col, _ = self.bounds
        self.table.ref = _range_string(min_col, min_row, max_col, max_row)
        if self.table.autoFilter is not None:
            filter_end = max(min_row, max_row - self.totals_row_count)
            self.table.autoFilter.ref = _range_string(min_col, min_row, max_col, filter_end)


# ---------------------------------------------------------------------------
# Document context
# ---------------------------------------------------------------------------

class DocumentContext:
    """Owns one workbook for one generation call.

    Use as a context manager so the workbook is closed on every exit path::

        with DocumentContext.open_template(path) as document:
            ...
            payload = document.to_bytes()
    """

    def __init__(self, workbook, source=None):
        self.workbook = workbook
        self.source = source

    @classmethod
    def new(cls):
        """Create an empty workbook (its default sheet removed)."""
        wb = Workbook()
        wb.remove(wb.active)
        return cls(wb)

    @classmethod
    def open_template(cls, path):
        """Load a template from *path* without ever writing to that file."""
        if not os.path.isfile(path):
            raise ResourceNotFound("Template file not found", os.path.abspath(path))
        with open(path, "rb") as f:
            payload = f.read()
        logger.info(f"Opened template: {path}")
        return cls(load_workbook(BytesIO(payload)), source=path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        self.workbook.close()

    @property
    def first_sheet(self):
        return self.workbook.worksheets[0]

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _defined_names(self):
        """Yield ``(defined_name, scope_sheet_or_None)`` pairs."""
        for defn in list(self.workbook.defined_names.values()):
            yield defn, None
        for ws in self.workbook.worksheets:
            for defn in list(ws.defined_names.values()):
                yield defn, ws

    def _single_destination(self, defn, scope):
        if defn.is_reserved or defn.name.startswith("_xlnm."):
            return None
        try:
            destinations = list(defn.destinations)
        except (TypeError, AttributeError, ValueError):
            return None
        if len(destinations) != 1:
            return None
        title, coord = destinations[0]
        if title is None and scope is not None:
            title = scope.title
        if title not in self.workbook.sheetnames:
            return None
        return self.workbook[title], coord

    def named_cells(self):
        """Yield a :class:`NamedCellRef` for every one-cell defined name."""
        for defn, scope in self._defined_names():
            target = self._single_destination(defn, scope)
            if target is None:
                continue
            ws, coord = target
            try:
                min_col, min_row, max_col, max_row = range_boundaries(coord.replace("$", ""))
            except (TypeError, ValueError):
                continue
            if min_row != max_row or min_col != max_col or min_row is None:
                continue
            yield NamedCellRef(defn.name, ws, min_row, min_col)

    def tables(self, worksheet=None):
        """Table regions of *worksheet* (default: first sheet), in file order."""
        ws = worksheet if worksheet is not None else self.first_sheet
        return [NamedTableRef(ws, table) for table in list(ws.tables.values())]

    # ------------------------------------------------------------------
    # Structural mutation
    # ------------------------------------------------------------------

    def insert_rows(self, worksheet, idx, amount=1, owner: Optional[NamedTableRef] = None,
                    copy_style=True):
        """Insert *amount* blank rows before row *idx*.

        *owner* is the table being expanded: it grows to include the new
        rows even when *idx* is its first row.  With *copy_style* the new
        rows take the cell styles and height of the row pushed down to
        ``idx + amount``.
        """
        if amount <= 0:
            return
        owner_rows = None
        if owner is not None:
            owner_rows = (owner.min_row, owner.max_row)
        worksheet.insert_rows(idx, amount)
        self._shift_structures(worksheet, idx, amount)
        if owner_rows is not None and owner_rows[0] <= idx <= owner_rows[1] + 1:
            owner.set_rows(owner_rows[0], owner_rows[1] + amount)
        if copy_style:
            self._copy_row_style(worksheet, idx + amount, range(idx, idx + amount))
        logger.debug(f"Inserted {amount} row(s) at {worksheet.title}!{idx}")

    def delete_rows(self, worksheet, idx, amount=1):
        """Delete *amount* rows starting at row *idx*."""
        if amount <= 0:
            return
        worksheet.delete_rows(idx, amount)
        self._shift_structures(worksheet, idx, -amount)
        logger.debug(f"Deleted {amount} row(s) at {worksheet.title}!{idx}")

    def _shift_structures(self, ws, at, amount):
        self._shift_row_dimensions(ws, at, amount)
        self._shift_merged_cells(ws, at, amount)
        self._shift_tables(ws, at, amount)
        self._shift_auto_filter(ws, at, amount)
        self._shift_defined_names(ws, at, amount)
        self._shift_formulas(ws, at, amount)
        self._shift_conditional_formatting(ws, at, amount)
        self._shift_data_validations(ws, at, amount)

    @staticmethod
    def _shift_row_dimensions(ws, at, amount):
        dimensions = sorted(ws.row_dimensions.items())
        ws.row_dimensions.clear()
        for index, dimension in dimensions:
            new_index = shift_row(index, at, amount)
            if new_index is None:
                continue
            dimension.index = new_index
            ws.row_dimensions[new_index] = dimension

    @staticmethod
    def _shift_merged_cells(ws, at, amount):
        kept = []
        for merged in list(ws.merged_cells.ranges):
            span = shift_span(merged.min_row, merged.max_row, at, amount)
            if span is None:
                continue
            merged.min_row, merged.max_row = span
            if merged.min_row == merged.max_row and merged.min_col == merged.max_col:
                continue
            kept.append(merged)
        ws.merged_cells.ranges = set(kept)

    @staticmethod
    def _shift_tables(ws, at, amount):
        for table in list(ws.tables.values()):
            view = NamedTableRef(ws, table)
            span = shift_span(view.min_row, view.max_row, at, amount)
            if span is None:
                logger.warning(f"Table '{view.name}' lost all of its rows and was removed")
                del ws.tables[table.name]
                continue
            if span != (view.min_row, view.max_row):
                view.set_rows(*span)

    @staticmethod
    def _shift_auto_filter(ws, at, amount):
        if not ws.auto_filter.ref:
            return
        min_col, min_row, max_col, max_row = range_boundaries(ws.auto_filter.ref)
        span = shift_span(min_row, max_row, at, amount)
        ws.auto_filter.ref = None if span is None else _range_string(min_col, span[0], max_col, span[1])

    def _shift_defined_names(self, ws, at, amount):
        for defn, scope in self._defined_names():
            origin = scope.title if scope is not None else None
            text = shift_expression(defn.attr_text, ws.title, origin, at, amount)
            if text == defn.attr_text:
                continue
            defn.attr_text = text
            if _REF_ERROR in text:
                logger.debug(f"Defined name '{defn.name}' now refers to deleted cells")

    def _shift_formulas(self, ws, at, amount):
        """Rewrite every formula in the workbook that refers to rows of *ws*."""
        for sheet in self.workbook.worksheets:
            # existing cells only; iter_rows() would create blank ones
            for cell in list(sheet._cells.values()):
                if cell.data_type != "f":
                    continue
                value = cell.value
                if isinstance(value, ArrayFormula):
                    value.text = shift_formula(value.text, ws.title, sheet.title, at, amount)
                    if sheet is ws and value.ref:
                        value.ref = shift_ranges(value.ref, at, amount) or value.ref
                elif isinstance(value, str):
                    cell.value = shift_formula(value, ws.title, sheet.title, at, amount)

    def _shift_conditional_formatting(self, ws, at, amount):
        for sheet in self.workbook.worksheets:
            rebuilt = ConditionalFormattingList()
            for cf in sheet.conditional_formatting:
                sqref = cf.sqref
                if sheet is ws:
                    sqref = shift_ranges(cf.sqref, at, amount)
                    if sqref is None:
                        logger.debug(f"Conditional format on {cf.sqref} removed with its rows")
                        continue
                target = ConditionalFormatting(sqref=sqref, pivot=cf.pivot)
                for rule in cf.rules:
                    rule.formula = [
                        shift_expression(f, ws.title, sheet.title, at, amount)
                        for f in rule.formula
                    ]
                    rebuilt.add(target, rule)
            sheet.conditional_formatting = rebuilt

    def _shift_data_validations(self, ws, at, amount):
        for sheet in self.workbook.worksheets:
            kept = []
            for dv in sheet.data_validations.dataValidation:
                if sheet is ws:
                    sqref = shift_ranges(dv.sqref, at, amount)
                    if sqref is None:
                        logger.debug(f"Data validation on {dv.sqref} removed with its rows")
                        continue
                    dv.sqref = MultiCellRange(sqref)
                dv.formula1 = shift_expression(dv.formula1, ws.title, sheet.title, at, amount)
                dv.formula2 = shift_expression(dv.formula2, ws.title, sheet.title, at, amount)
                kept.append(dv)
            sheet.data_validations.dataValidation = kept

    @staticmethod
    def _copy_row_style(ws, source_row, target_rows):
        source_height = None
        if source_row in ws.row_dimensions:
            source_height = ws.row_dimensions[source_row].height
        sources = [c for c in next(ws.iter_rows(min_row=source_row, max_row=source_row), ())
                   if c.has_style]
        for row in target_rows:
            for source in sources:
                ws.cell(row=row, column=source.column)._style = copy(source._style)
            if source_height is not None:
                ws.row_dimensions[row].height = source_height

    # ------------------------------------------------------------------
    # Protection, metadata, serialisation
    # ------------------------------------------------------------------

    @staticmethod
    def protect(worksheet, password):
        """Protect *worksheet*, still allowing sort, formatting and filters."""
        protection = worksheet.protection
        protection.sort = False
        protection.formatRows = False
        protection.formatCells = False
        protection.formatColumns = False
        protection.autoFilter = False
        protection.sheet = True
        protection.password = password

    def set_metadata(self, report):
        """Write the report descriptor into the document properties."""
        props = self.workbook.properties
        props.title = report.label or None
        props.subject = report.description or None
        props.description = report.comment
        props.creator = ", ".join(report.authors) or None
        props.keywords = ",".join(report.keywords) or None
        props.created = report.timestamp
        props.modified = report.timestamp
        props.lastModifiedBy = None

    def to_bytes(self) -> bytes:
        """Serialise the workbook; the result depends only on its content."""
        raw = BytesIO()
        archive = ZipFile(raw, "w", ZIP_DEFLATED, allowZip64=True)
        ExcelWriter(self.workbook, archive).save()

        output = BytesIO()
        with ZipFile(raw) as source, ZipFile(output, "w", ZIP_DEFLATED, allowZip64=True) as target:
            for info in source.infolist():
                entry = ZipInfo(info.filename, date_time=_ZIP_TIMESTAMP)
                entry.compress_type = ZIP_DEFLATED
                entry.external_attr = info.external_attr
                target.writestr(entry, source.read(info.filename))
        return output.getvalue()
