"""
Manifest writer (New-ModuleManifest).

Renders a manifest table back to the data language in canonical field
order. The output reads back through ManifestLoader unchanged.
"""

import getpass
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from packaging.version import Version

from ..utils.config import DEFAULT_FILE_ENCODING
from .manifest import MANIFEST_SCHEMA
from .module_info import ModuleReference

logger = logging.getLogger(__name__)

_INDENT = "    "
# Lists longer than this are written one element per line
_INLINE_LIST_LIMIT = 4


def default_manifest(**fields: Any) -> Dict[str, Any]:
    """New-ModuleManifest defaults, overridden by fields."""
    try:
        author = getpass.getuser()
    except (KeyError, OSError):
        author = "Unknown"
    table: Dict[str, Any] = {
        "ModuleVersion": "0.0.1",
        "GUID": str(uuid.uuid4()),
        "Author": author,
        "CompanyName": "Unknown",
        "Copyright": f"(c) {author}. All rights reserved.",
        "FunctionsToExport": [],
        "CmdletsToExport": [],
        "VariablesToExport": "*",
        "AliasesToExport": [],
    }
    table.update(fields)
    return table


class ManifestWriter:
    """Serializes manifest tables."""

    def render(self, table: Dict[str, Any]) -> str:
        lines = ["@{", ""]
        for key in self._ordered_keys(table):
            lines.append(f"{_INDENT}{key} = {self._value(table[key], 1)}")
            lines.append("")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def write(self, path: Union[str, Path], table: Dict[str, Any]) -> str:
        text = self.render(table)
        Path(path).write_text(text, encoding=DEFAULT_FILE_ENCODING)
        logger.debug(f"Wrote manifest {path} ({len(table)} fields)")
        return text

    @staticmethod
    def _ordered_keys(table: Dict[str, Any]) -> List[str]:
        known = [name for name in MANIFEST_SCHEMA if name in table]
        extra = sorted(k for k in table if k not in MANIFEST_SCHEMA)
        return known + extra

    def _value(self, value: Any, level: int) -> str:
        if value is None:
            return "$null"
        if isinstance(value, bool):
            return "$true" if value else "$false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, Version):
            return _quote(str(value))
        if isinstance(value, ModuleReference):
            return self._reference(value, level)
        if isinstance(value, dict):
            return self._table(value, level)
        if isinstance(value, (list, tuple)):
            return self._list(list(value), level)
        return _quote(str(value))

    def _list(self, items: List[Any], level: int) -> str:
        if not items:
            return "@()"
        rendered = [self._value(item, level + 1) for item in items]
        if len(items) <= _INLINE_LIST_LIMIT and not any("\n" in r for r in rendered):
            return f"@({', '.join(rendered)})"
        pad = _INDENT * (level + 1)
        body = ",\n".join(pad + r for r in rendered)
        return f"@(\n{body}\n{_INDENT * level})"

    def _table(self, table: Dict[str, Any], level: int) -> str:
        if not table:
            return "@{}"
        pad = _INDENT * (level + 1)
        body = "\n".join(f"{pad}{_key(k)} = {self._value(v, level + 1)}" for k, v in table.items())
        return f"@{{\n{body}\n{_INDENT * level}}}"

    def _reference(self, ref: ModuleReference, level: int) -> str:
        if not ref.has_version_constraint:
            return _quote(ref.name)
        entry: Dict[str, Any] = {"ModuleName": ref.name}
        if ref.required_version is not None:
            entry["RequiredVersion"] = ref.required_version
        if ref.minimum_version is not None:
            entry["ModuleVersion"] = ref.minimum_version
        if ref.maximum_version is not None:
            entry["MaximumVersion"] = ref.maximum_version
        if ref.guid is not None:
            entry["GUID"] = ref.guid
        return "@{ " + "; ".join(f"{k} = {self._value(v, level)}" for k, v in entry.items()) + " }"


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _key(name: str) -> str:
    if name and (name[0].isalpha() or name[0] == "_") and all(c.isalnum() or c == "_" for c in name):
        return name
    return _quote(name)


def write_manifest(path: Union[str, Path], writer: Optional[ManifestWriter] = None, **fields: Any) -> Dict[str, Any]:
    """Create a manifest file with default fields; returns the table written."""
    table = default_manifest(**fields)
    (writer or ManifestWriter()).write(path, table)
    return table
