"""
Report configuration.

Options are kept as a flat *OptionMap* (``{"excel.defaults.header": False}``)
and read through :class:`ReportOptions`, whose accessors apply the typed
defaults of each recognised key.  :func:`load_config` and :func:`load_report`
read the same information from YAML files.
"""

import datetime
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from .errors import ConfigError, ResourceNotFound

logger = logging.getLogger(__name__)

TEMPLATE_KEY = "excel.template"
HEADER_KEY = "excel.defaults.header"
PROTECT_KEY = "excel.defaults.protect"
SHEET_NAME_KEY = "excel.defaults.sheetname"
PASSWORD_KEY = "excel.defaults.password"
HEADINGS_PREFIX = "excel.headings."

DEFAULT_SHEET_NAME = "Sheet"
DEFAULT_PROTECTION_PASSWORD = "HuchimIsAlive"


def flatten_options(mapping, prefix=""):
    """Flatten nested mappings into dotted keys."""
    flat = {}
    for key, value in mapping.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_options(value, dotted + "."))
        else:
            flat[dotted] = value
    return flat


def _read_yaml(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc


def load_config(config_path):
    """Load an OptionMap from a YAML file (``{}`` when the path is missing)."""
    if not config_path or not os.path.exists(config_path):
        return {}
    data = _read_yaml(config_path)
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {config_path} must be a mapping")
    return flatten_options(data)


class ReportOptions:
    """Typed, read-only view over an OptionMap."""

    def __init__(self, options=None):
        self._options = dict(options or {})

    def __contains__(self, key):
        return key in self._options

    def get(self, key, default=None):
        return self._options.get(key, default)

    def _flag(self, key, default):
        value = self._options.get(key)
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            return value
        return default

    def template_path(self) -> Optional[str]:
        value = self._options.get(TEMPLATE_KEY)
        if value is None or str(value) == "":
            return None
        return str(value)

    def is_templating(self) -> bool:
        return self.template_path() is not None

    def header_enabled(self) -> bool:
        return self._flag(HEADER_KEY, True)

    def read_only(self) -> bool:
        return self._flag(PROTECT_KEY, False)

    def default_sheet_name_prefix(self) -> str:
        value = self._options.get(SHEET_NAME_KEY)
        if value is None:
            return DEFAULT_SHEET_NAME
        return str(value)

    def protection_password(self) -> str:
        value = self._options.get(PASSWORD_KEY)
        if not value:
            return DEFAULT_PROTECTION_PASSWORD
        return str(value)

    def column_alias(self, column_name) -> str:
        key = f"{HEADINGS_PREFIX}{column_name}"
        if key not in self._options:
            return column_name
        value = self._options[key]
        return value if isinstance(value, str) else column_name

    def template_file(self, work_directory=".") -> str:
        """Resolve the configured template path against *work_directory*."""
        value = self._options.get(TEMPLATE_KEY)
        if not isinstance(value, str) or not value:
            raise ConfigError(f"'{TEMPLATE_KEY}' must be a non-empty path")
        return os.path.join(work_directory or ".", value)


_FIXED_CREATED = datetime.datetime(2000, 1, 1)


@dataclass
class ReportDescriptor:
    """Report metadata written into every generated workbook."""
    label: str = ""
    description: str = ""
    version: str = "1"
    is_private: bool = False
    authors: list = field(default_factory=list)
    keywords: list = field(default_factory=list)
    work_directory: str = "."
    options: dict = field(default_factory=dict)
    created: Optional[datetime.datetime] = None

    @property
    def report_options(self) -> ReportOptions:
        return ReportOptions(self.options)

    @property
    def timestamp(self) -> datetime.datetime:
        """Creation time stamped into the document properties."""
        return self.created or _FIXED_CREATED

    @property
    def comment(self) -> str:
        return f"Report v{self.version}. Private: {self.is_private}"


_DESCRIPTOR_FIELDS = ("label", "description", "version", "is_private",
                      "authors", "keywords", "work_directory", "created")


def load_report(path) -> ReportDescriptor:
    """Read a :class:`ReportDescriptor` from a YAML report file.

    Top-level keys are the descriptor fields; ``options`` holds a (possibly
    nested) option mapping.  ``work_directory`` is resolved relative to the
    report file and defaults to its directory.
    """
    if not os.path.exists(path):
        raise ResourceNotFound("Report file not found", path)
    data = _read_yaml(path)
    if not isinstance(data, dict):
        raise ConfigError(f"Report file {path} must contain a mapping")

    unknown = set(data) - set(_DESCRIPTOR_FIELDS) - {"options"}
    if unknown:
        logger.warning(f"Ignoring unknown report keys: {sorted(unknown)}")

    kwargs: dict[str, Any] = {k: data[k] for k in _DESCRIPTOR_FIELDS if k in data}
    for key in ("authors", "keywords"):
        value = kwargs.get(key)
        if isinstance(value, str):
            kwargs[key] = [value]
        elif value is not None and not isinstance(value, list):
            raise ConfigError(f"'{key}' must be a list of strings")

    created = kwargs.get("created")
    if isinstance(created, datetime.date) and not isinstance(created, datetime.datetime):
        kwargs["created"] = datetime.datetime.combine(created, datetime.time())
    elif created is not None and not isinstance(created, datetime.datetime):
        raise ConfigError("'created' must be a date or timestamp")

    base = os.path.dirname(os.path.abspath(path))
    kwargs["work_directory"] = os.path.join(base, kwargs.get("work_directory") or "")
    if "version" in kwargs:
        kwargs["version"] = str(kwargs["version"])

    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise ConfigError("'options' must be a mapping")
    kwargs["options"] = flatten_options(options)
    return ReportDescriptor(**kwargs)
