"""
Dataset Model
=============
In-memory representation of the named, row-oriented datasets handed to the
report engine.  A :class:`Dataset` carries ordered, typed columns and ordered
rows; every row is a tuple of :class:`Field` objects aligned positionally
with the dataset's columns.

Datasets can be built from plain records (:meth:`Dataset.from_records`) or
from pandas DataFrames (:meth:`Dataset.from_frame`), and
:func:`load_datasets` reads CSV / Excel files into datasets.
"""

import datetime
import decimal
import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np
import pandas as pd

from .errors import DatasetError, ResourceNotFound

logger = logging.getLogger(__name__)


class ColumnType(Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    OTHER = "other"

    @classmethod
    def infer(cls, value) -> "ColumnType":
        """Return the column type matching a sample Python value."""
        if value is None:
            return cls.OTHER
        # bool is an int subclass, test it first
        if isinstance(value, (bool, np.bool_)):
            return cls.BOOLEAN
        if isinstance(value, (int, float, decimal.Decimal, np.number)):
            return cls.NUMBER
        if isinstance(value, (datetime.date, datetime.datetime, np.datetime64)):
            return cls.DATE
        if isinstance(value, str):
            return cls.TEXT
        return cls.OTHER

    @classmethod
    def from_dtype(cls, dtype) -> "ColumnType":
        """Map a pandas dtype onto a column type."""
        if pd.api.types.is_bool_dtype(dtype):
            return cls.BOOLEAN
        if pd.api.types.is_datetime64_any_dtype(dtype):
            return cls.DATE
        if pd.api.types.is_numeric_dtype(dtype):
            return cls.NUMBER
        if pd.api.types.is_string_dtype(dtype) or pd.api.types.is_object_dtype(dtype):
            return cls.TEXT
        return cls.OTHER


@dataclass(frozen=True)
class Column:
    name: str
    type: ColumnType = ColumnType.OTHER


@dataclass(frozen=True)
class Field:
    """One value of a row, named after the column it belongs to."""
    name: str
    value: Any = None


@dataclass(frozen=True)
class Dataset:
    """A named table of rows.

    Invariant: every row has exactly ``len(columns)`` fields and field ``i``
    is named after column ``i``.  Violations raise :class:`DatasetError`.
    """
    name: str
    columns: tuple = ()
    rows: tuple = ()
    _index: dict = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(tuple(r) for r in self.rows))
        names = [c.name for c in self.columns]
        for number, row in enumerate(self.rows, 1):
            if len(row) != len(names):
                raise DatasetError(
                    f"Dataset '{self.name}' row {number} has {len(row)} values, "
                    f"expected {len(names)}"
                )
            for fld, name in zip(row, names):
                if fld.name != name:
                    raise DatasetError(
                        f"Dataset '{self.name}' row {number}: field '{fld.name}' "
                        f"does not match column '{name}'"
                    )
        object.__setattr__(self, "_index", {n: i for i, n in enumerate(names)})

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_records(cls, name, columns, records=()):
        """Build a dataset from column definitions and raw records.

        Parameters
        ----------
        name : str
            Dataset name, matched against template table names.
        columns : iterable
            :class:`Column` objects, ``(name, ColumnType)`` pairs or bare
            column names.  Bare names get their type inferred from the first
            non-null value in that position.
        records : iterable
            Sequences (positional) or mappings (keyed by column name; missing
            keys become ``None``).

        Returns
        -------
        Dataset
        """
        records = list(records)
        specs = []
        for col in columns:
            if isinstance(col, Column):
                specs.append((col.name, col.type))
            elif isinstance(col, str):
                specs.append((col, None))
            else:
                col_name, col_type = col
                specs.append((col_name, ColumnType(col_type)))

        names = [n for n, _ in specs]
        value_rows = []
        for record in records:
            if isinstance(record, dict):
                value_rows.append([record.get(n) for n in names])
            else:
                value_rows.append(list(record))

        resolved = []
        for pos, (col_name, col_type) in enumerate(specs):
            if col_type is None:
                sample = next(
                    (r[pos] for r in value_rows if pos < len(r) and r[pos] is not None),
                    None,
                )
                col_type = ColumnType.infer(sample)
            resolved.append(Column(col_name, col_type))

        rows = []
        for number, values in enumerate(value_rows, 1):
            if len(values) != len(names):
                raise DatasetError(
                    f"Dataset '{name}' record {number} has {len(values)} values, "
                    f"expected {len(names)}"
                )
            rows.append(tuple(Field(n, v) for n, v in zip(names, values)))
        return cls(name, tuple(resolved), tuple(rows))

    @classmethod
    def from_frame(cls, name, frame: pd.DataFrame):
        """Build a dataset from a pandas DataFrame (one row per frame row)."""
        columns = tuple(
            Column(str(col), ColumnType.from_dtype(frame[col].dtype))
            for col in frame.columns
        )
        names = [c.name for c in columns]
        rows = []
        for values in frame.itertuples(index=False, name=None):
            rows.append(tuple(Field(n, _python_scalar(v)) for n, v in zip(names, values)))
        return cls(name, columns, tuple(rows))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def column_names(self):
        return [c.name for c in self.columns]

    @property
    def has_rows(self) -> bool:
        return bool(self.rows)

    def has_column(self, column_name) -> bool:
        return column_name in self._index

    def column(self, column_name) -> Optional[Column]:
        idx = self._index.get(column_name)
        return None if idx is None else self.columns[idx]

    def value(self, row, column_name):
        """Return the value of *column_name* in *row* (a tuple of fields)."""
        return row[self._index[column_name]].value

    def first_value(self, column_name):
        """Value of *column_name* in the first row, ``None`` when empty."""
        if not self.rows:
            return None
        return self.value(self.rows[0], column_name)


def find_dataset(datasets, name, column=None) -> Optional[Dataset]:
    """Return the first dataset called *name* (optionally having *column*)."""
    for ds in datasets:
        if ds.name != name:
            continue
        if column is None or ds.has_column(column):
            return ds
    return None


# ---------------------------------------------------------------------------
# Cell value conversion
# ---------------------------------------------------------------------------

def _python_scalar(value):
    """Turn numpy / pandas scalars into plain Python values, NaN into None."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _parse_date(text):
    try:
        if len(text) <= 10:
            return datetime.date.fromisoformat(text)
        return datetime.datetime.fromisoformat(text)
    except ValueError:
        return text


def cell_value(value, column_type=ColumnType.OTHER):
    """Convert a dataset value into something openpyxl can store in a cell.

    ISO strings in date columns become dates so that date number formats
    apply; timezone-aware datetimes are made naive; unsupported objects are
    written as their string form.
    """
    value = _python_scalar(value)
    if value is None:
        return None
    if column_type is ColumnType.DATE and isinstance(value, str):
        value = _parse_date(value.strip())
    if isinstance(value, datetime.datetime) and value.tzinfo is not None:
        value = value.replace(tzinfo=None)
    if isinstance(value, (str, bool, int, float, decimal.Decimal,
                          datetime.date, datetime.datetime, datetime.time,
                          datetime.timedelta)):
        return value
    return str(value)


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

_EXCEL_EXTENSIONS = (".xlsx", ".xlsm", ".xls")


def load_datasets(paths):
    """Read data files into datasets.

    CSV files produce one dataset named after the file stem; Excel files
    produce one dataset per sheet, named after the sheet.
    """
    datasets = []
    for path in paths:
        if not os.path.exists(path):
            raise ResourceNotFound("Data file not found", path)
        stem, ext = os.path.splitext(os.path.basename(path))
        if ext.lower() in _EXCEL_EXTENSIONS:
            frames = pd.read_excel(path, sheet_name=None)
            for sheet_name, frame in frames.items():
                datasets.append(Dataset.from_frame(sheet_name, frame))
        else:
            frame = pd.read_csv(path)
            datasets.append(Dataset.from_frame(stem, frame))
        logger.info(f"Loaded data from {path}")
    return datasets
