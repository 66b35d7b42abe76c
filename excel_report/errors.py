"""Exceptions raised by the report engine."""


class ReportError(Exception):
    """Base class for every error raised while generating a workbook."""


class ConfigError(ReportError, ValueError):
    """The report configuration is malformed."""


class ResourceNotFound(ReportError, FileNotFoundError):
    """A template or input file does not exist."""

    def __init__(self, message, filename=None):
        super().__init__(message)
        self.filename = filename

    def __str__(self):
        if self.filename:
            return f"{self.args[0]}: {self.filename}"
        return self.args[0]


class DatasetError(ReportError, ValueError):
    """A dataset's rows do not line up with its columns."""
