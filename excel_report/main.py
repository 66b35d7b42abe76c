#!/usr/bin/env python
"""
Excel report generator – CLI entry point.

Usage:
    # Free generation: one sheet per data file / sheet
    python -m excel_report.main report.yaml --data customers.csv orders.csv

    # Templated generation (report.yaml sets options.excel.template)
    python -m excel_report.main report.yaml --data data.xlsx --var period=2024-Q1 --output out.xlsx
"""

import argparse
import logging
import os
import sys

from .dataset import load_datasets
from .errors import ConfigError, ReportError
from .generator import ExcelGenerator
from .options import load_report


def setup_logging(level_str: str = "INFO"):
    """Configure logging."""
    level = getattr(logging, level_str.upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    )


def parse_variables(pairs):
    """Turn ``KEY=VALUE`` strings into a dict, keeping their order."""
    variables = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(f"Invalid variable '{pair}', expected KEY=VALUE")
        variables[key] = value
    return variables


def default_output_path(report, report_path):
    stem = report.label or os.path.splitext(os.path.basename(report_path))[0]
    return f"{stem}{ExcelGenerator.file_extension}"


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Generate an Excel workbook from datasets, optionally through a template"
    )
    parser.add_argument("report", help="Path to the report YAML file")
    parser.add_argument(
        "--data", "-d", nargs="*", default=[],
        help="CSV or Excel files with the datasets (one dataset per CSV / sheet)",
    )
    parser.add_argument(
        "--var", "-v", action="append", default=[], metavar="KEY=VALUE",
        help="Variable for %%KEY%% substitution (repeatable)",
    )
    parser.add_argument("--output", "-o", default=None, help="Output .xlsx path")
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        help="Logging level: DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    try:
        report = load_report(args.report)
        variables = parse_variables(args.var)
        datasets = load_datasets(args.data)
        output = args.output or default_output_path(report, args.report)
        ExcelGenerator().write(report, datasets, variables, output)
    except ReportError as exc:
        logger.error(str(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
