"""
Named-cell passes run on a template before table expansion.

* :func:`replace_workbook_variables` fills ``%key%`` tokens inside cells
  whose defined name starts with ``_``.
* :func:`replace_data_variables` resolves cells named ``table.column`` to
  the first row of the matching dataset.
"""

import logging

from .dataset import ColumnType, cell_value, find_dataset

logger = logging.getLogger(__name__)

VARIABLE_PREFIX = "_"
BINDING_SEPARATOR = "."


def not_found_marker(table_name, column_name):
    return f"##{table_name}.{column_name}##NotFound"


def substitute(text, variables):
    """Replace every ``%key%`` in *text*, one key at a time in mapping order."""
    for key, value in variables.items():
        text = text.replace(f"%{key}%", "" if value is None else str(value))
    return text


def replace_workbook_variables(document, variables):
    """Substitute variables into every ``_``-prefixed singleton named cell.

    Cells without a value are left untouched.  Returns the number of cells
    rewritten.
    """
    variables = variables or {}
    count = 0
    for ref in document.named_cells():
        if not ref.name.startswith(VARIABLE_PREFIX):
            continue
        current = ref.value
        if current is None:
            continue
        ref.value = substitute(str(current), variables)
        logger.debug(f"Variable cell '{ref.name}': {current!r} -> {ref.value!r}")
        count += 1
    return count


def parse_binding(name):
    """Split ``table.column`` into its two parts, ``None`` for any other shape."""
    if BINDING_SEPARATOR not in name:
        return None
    parts = [p for p in name.split(BINDING_SEPARATOR) if p]
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def replace_data_variables(document, datasets):
    """Resolve ``table.column`` named cells from the first row of each dataset.

    Unresolvable bindings get a visible ``##table.column##NotFound`` marker;
    an empty dataset clears the cell.  Returns the number of cells written.
    """
    count = 0
    for ref in document.named_cells():
        binding = parse_binding(ref.name)
        if binding is None:
            continue
        table_name, column_name = binding
        dataset = find_dataset(datasets, table_name, column_name)

        if dataset is None:
            ref.value = not_found_marker(table_name, column_name)
            logger.warning(f"Named cell '{ref.name}' has no matching data")
        elif dataset.has_rows:
            column = dataset.column(column_name)
            ref.value = cell_value(dataset.first_value(column_name),
                                   column.type if column else ColumnType.OTHER)
        else:
            ref.value = None
        count += 1
    return count
