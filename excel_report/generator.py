"""
Excel report generator.

:class:`ExcelGenerator` turns datasets, variables and a report descriptor
into the bytes of an ``.xlsx`` workbook.  When the report options name a
template (``excel.template``) the template's named cells and tables are
filled in place; otherwise a new workbook with one sheet per dataset is
built.
"""

import logging
import os

from .document import DocumentContext
from .expansion import expand_tables
from .free_generation import create_default_workbook
from .substitution import replace_data_variables, replace_workbook_variables

logger = logging.getLogger(__name__)


class ExcelGenerator:
    """Generates ``.xlsx`` workbooks for a report."""

    id = "c8df5fce-0681-40e6-9ec9-e651f3669a47"
    name = "Excel workbook"
    file_extension = ".xlsx"
    mime_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    is_embed = False

    def generate(self, report, data, variables=None) -> bytes:
        """Return the workbook bytes for *report*.

        Parameters
        ----------
        report : ReportDescriptor
            Metadata, work directory and options of the report.
        data : list[Dataset]
            Named datasets, matched by name against tables / bound cells.
        variables : dict or None
            Values for ``%key%`` tokens in ``_``-prefixed named cells.
        """
        options = report.report_options
        if options.is_templating():
            payload = self._create_from_template(report, options, data, variables or {})
        else:
            payload = self._create_default(report, options, data)
        logger.info(f"Generated workbook of {len(payload)} bytes")
        return payload

    def write(self, report, data, variables, output_path):
        """Generate the workbook and save it to *output_path*."""
        payload = self.generate(report, data, variables)
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(payload)
        logger.info(f"Saved workbook: {output_path}")
        return output_path

    @staticmethod
    def _create_from_template(report, options, data, variables):
        template = options.template_file(report.work_directory)
        logger.info(f"Templated generation from {template}")
        with DocumentContext.open_template(template) as document:
            document.set_metadata(report)
            replace_workbook_variables(document, variables)
            replace_data_variables(document, data)
            expand_tables(document, data, options)
            return document.to_bytes()

    @staticmethod
    def _create_default(report, options, data):
        logger.info(f"Free generation of {len(data)} dataset(s)")
        with DocumentContext.new() as document:
            document.set_metadata(report)
            create_default_workbook(document, data, options)
            return document.to_bytes()
