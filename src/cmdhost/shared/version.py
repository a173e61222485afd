"""
Module versions.

Module versions are dotted numeric versions with two to four components
(``1.0``, ``2.1.3``, ``1.0.0.4``). Parsing and ordering go through
``packaging.version`` so versions compare numerically, component by
component.
"""

import re
from typing import Iterable, Optional, Union

from packaging.version import InvalidVersion, Version

_MODULE_VERSION_RE = re.compile(r"^\d+(\.\d+){1,3}$")

VersionLike = Union[str, Version, None]


def is_version_text(text: str) -> bool:
    """True if text looks like a module version (2-4 numeric components)."""
    return bool(_MODULE_VERSION_RE.match(text.strip()))


def parse_version(value: VersionLike) -> Optional[Version]:
    """
    Parse a module version; returns None for anything that is not a dotted
    numeric version with 2-4 components.
    """
    if value is None:
        return None
    if isinstance(value, Version):
        return value
    text = str(value).strip()
    if not is_version_text(text):
        return None
    try:
        return Version(text)
    except InvalidVersion:
        return None


def require_version(value: VersionLike) -> Version:
    """Parse a module version or raise ValueError."""
    parsed = parse_version(value)
    if parsed is None:
        raise ValueError(f"'{value}' is not a valid version")
    return parsed


def parse_maximum_version(value: VersionLike) -> Optional[Version]:
    """
    Parse a MaximumVersion constraint. A trailing '*' component
    ('1.*', '2.3.*') means 'anything below the next value of the previous
    component', so '1.*' becomes 1.999999999.
    """
    if value is None or isinstance(value, Version):
        return value
    text = str(value).strip()
    if text.endswith(".*"):
        head = text[:-2]
        parts = head.split(".")
        if not all(p.isdigit() for p in parts) or len(parts) > 3:
            raise ValueError(f"'{value}' is not a valid maximum version")
        return Version(".".join(parts + ["999999999"]))
    return require_version(text)


def in_range(version: Optional[Version],
             minimum: Optional[Version] = None,
             maximum: Optional[Version] = None) -> bool:
    """minimum <= version <= maximum (either bound may be absent)."""
    if version is None:
        return minimum is None and maximum is None
    if minimum is not None and version < minimum:
        return False
    if maximum is not None and version > maximum:
        return False
    return True


def highest(versions: Iterable[Optional[Version]]) -> Optional[Version]:
    present = [v for v in versions if v is not None]
    return max(present) if present else None


def format_version(version: Optional[Version]) -> str:
    return str(version) if version is not None else "0.0"
