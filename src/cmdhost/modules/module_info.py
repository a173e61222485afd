"""
Module System Types

Data structures shared by the resolver, the binder and the lifecycle
manager. These types carry no resolution logic of their own.
"""

import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from packaging.version import Version

from ..shared.version import format_version, in_range, parse_maximum_version, parse_version
from ..shared.wildcard import WildcardPattern
from ..utils.io_utils import module_base_name


class ModuleType(Enum):
    MANIFEST = "Manifest"
    SCRIPT = "Script"
    BINARY = "Binary"
    CIM = "Cim"
    WORKFLOW = "Workflow"
    DYNAMIC = "Dynamic"


def table_get(table: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Case-insensitive lookup in a manifest hashtable."""
    if key in table:
        return table[key]
    folded = key.lower()
    for k, v in table.items():
        if k.lower() == folded:
            return v
    return default


@dataclass(frozen=True)
class ModuleReference:
    """
    A module name plus optional version / identity constraints.

    RequiredVersion, when present, is the only version filter; minimum and
    maximum are ignored.
    """
    name: str
    required_version: Optional[Version] = None
    minimum_version: Optional[Version] = None
    maximum_version: Optional[Version] = None
    guid: Optional[str] = None

    @classmethod
    def create(cls, name: str,
               required_version: Optional[str] = None,
               minimum_version: Optional[str] = None,
               maximum_version: Optional[str] = None,
               guid: Optional[str] = None) -> "ModuleReference":
        """Build a reference from text values; raises ValueError on malformed input."""
        if not name or not str(name).strip():
            raise ValueError("module name must not be empty")
        required = _version_or_error(required_version, "RequiredVersion")
        minimum = _version_or_error(minimum_version, "ModuleVersion")
        maximum = parse_maximum_version(maximum_version) if maximum_version is not None else None
        if minimum is not None and maximum is not None and minimum > maximum:
            raise ValueError(f"MaximumVersion '{maximum_version}' is lower than MinimumVersion '{minimum_version}'")
        return cls(
            name=str(name).strip(),
            required_version=required,
            minimum_version=minimum,
            maximum_version=maximum,
            guid=normalize_guid(guid) if guid else None,
        )

    @classmethod
    def from_manifest_entry(cls, entry: Any) -> "ModuleReference":
        """
        Accepts a bare module name or a module-specification table
        (@{ModuleName=...; ModuleVersion|RequiredVersion|MaximumVersion=...; GUID=...}).
        """
        if isinstance(entry, str):
            return cls.create(entry)
        if isinstance(entry, dict):
            name = table_get(entry, "ModuleName")
            if not isinstance(name, str) or not name.strip():
                raise ValueError("module specification is missing 'ModuleName'")
            known = {"modulename", "moduleversion", "requiredversion", "maximumversion", "guid"}
            unknown = [k for k in entry if k.lower() not in known]
            if unknown:
                raise ValueError(f"module specification has unknown keys: {', '.join(unknown)}")
            required = table_get(entry, "RequiredVersion")
            minimum = table_get(entry, "ModuleVersion")
            maximum = table_get(entry, "MaximumVersion")
            if required is None and minimum is None and maximum is None:
                raise ValueError(f"module specification for '{name}' needs ModuleVersion, RequiredVersion or MaximumVersion")
            if required is not None and (minimum is not None or maximum is not None):
                raise ValueError(f"RequiredVersion cannot be combined with ModuleVersion or MaximumVersion for '{name}'")
            return cls.create(
                name,
                required_version=_text(required),
                minimum_version=_text(minimum),
                maximum_version=_text(maximum),
                guid=_text(table_get(entry, "GUID")),
            )
        raise ValueError(f"'{entry}' is not a module name or module specification")

    @property
    def has_version_constraint(self) -> bool:
        return any(v is not None for v in (self.required_version, self.minimum_version, self.maximum_version))

    @property
    def identity(self) -> str:
        """Key used for cycle detection: module names compare case-insensitively."""
        return module_base_name(self.name.replace("\\", "/")).lower()

    def matches(self, version: Optional[Version], guid: Optional[str] = None) -> bool:
        if self.guid is not None and guid is not None and normalize_guid(guid) != self.guid:
            return False
        if self.guid is not None and guid is None:
            return False
        if self.required_version is not None:
            return version is not None and version == self.required_version
        return in_range(version, self.minimum_version, self.maximum_version) if self.has_version_constraint else True

    def describe(self) -> str:
        parts = [self.name]
        if self.required_version is not None:
            parts.append(f"RequiredVersion={self.required_version}")
        if self.minimum_version is not None:
            parts.append(f"MinimumVersion={self.minimum_version}")
        if self.maximum_version is not None:
            parts.append(f"MaximumVersion={self.maximum_version}")
        if self.guid is not None:
            parts.append(f"GUID={self.guid}")
        return " ".join(parts)

    def __str__(self) -> str:
        return self.name


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _version_or_error(value: Optional[str], field_name: str) -> Optional[Version]:
    if value is None:
        return None
    parsed = parse_version(value)
    if parsed is None:
        raise ValueError(f"{field_name} '{value}' is not a valid version")
    return parsed


def normalize_guid(value: Any) -> str:
    """Canonical lower-case GUID text; raises ValueError when malformed."""
    return str(uuid.UUID(str(value).strip().strip("{}")))


@dataclass
class ProcessingFlags:
    """
    Behavior switches for manifest processing and graph building.

    - write_errors: emit diagnostics (False keeps validation silent)
    - bail_on_first_error: stop at the first invalid field
    - load_elements: bind type/format/script files into the session
      (False means inspect metadata only, i.e. discovery)
    - write_warnings: emit naming-convention and similar warnings
    - force: re-process even when a matching module is already loaded
    - ignore_host_constraints: skip host/runtime/architecture checks
    """
    write_errors: bool = True
    bail_on_first_error: bool = False
    load_elements: bool = True
    write_warnings: bool = True
    force: bool = False
    ignore_host_constraints: bool = False

    @classmethod
    def discovery(cls) -> "ProcessingFlags":
        return cls(write_errors=False, load_elements=False, write_warnings=False, ignore_host_constraints=True)

    @classmethod
    def strict(cls) -> "ProcessingFlags":
        return cls(bail_on_first_error=True)


@dataclass
class ImportOptions:
    """Import-Module style options; no identity of its own."""
    no_clobber: bool = False
    scope_is_local: bool = False
    force_reload: bool = False
    function_patterns: Optional[List[WildcardPattern]] = None
    cmdlet_patterns: Optional[List[WildcardPattern]] = None
    variable_patterns: Optional[List[WildcardPattern]] = None
    alias_patterns: Optional[List[WildcardPattern]] = None
    disable_name_checking: bool = False


@dataclass
class ResolvedModule:
    """
    A loaded or discovered module instance.

    exported_* hold the live export tables (name -> definition / alias
    target / value). declared_* are the export lists written in a manifest
    (None when the manifest does not declare that list). detected_* are the
    names found by static analysis of the module files, used when listing
    available modules without loading them.
    """
    path: Optional[str]
    name: str
    module_type: ModuleType
    version: Optional[Version] = None
    guid: Optional[str] = None
    prefix: str = ""
    session: Optional[Any] = None
    nested_modules: List["ResolvedModule"] = field(default_factory=list)
    required_modules: List["ResolvedModule"] = field(default_factory=list)
    required_references: List[ModuleReference] = field(default_factory=list)

    exported_functions: Dict[str, str] = field(default_factory=dict)
    exported_cmdlets: Dict[str, str] = field(default_factory=dict)
    exported_aliases: Dict[str, str] = field(default_factory=dict)
    exported_variables: Dict[str, Any] = field(default_factory=dict)

    declared_functions: Optional[List[str]] = None
    declared_cmdlets: Optional[List[str]] = None
    declared_aliases: Optional[List[str]] = None
    declared_variables: Optional[List[str]] = None
    declared_dsc_resources: Optional[List[str]] = None

    detected_functions: Optional[Dict[str, str]] = field(default_factory=dict)
    detected_cmdlets: Optional[Dict[str, str]] = field(default_factory=dict)
    detected_aliases: Optional[Dict[str, str]] = field(default_factory=dict)

    had_errors_loading: bool = False

    # Metadata back-filled from a manifest
    description: str = ""
    author: str = ""
    company_name: str = ""
    copyright: str = ""
    private_data: Optional[Any] = None
    file_list: List[str] = field(default_factory=list)
    module_list: List[Any] = field(default_factory=list)
    help_info_uri: str = ""
    compatible_editions: List[str] = field(default_factory=list)
    required_assemblies: List[str] = field(default_factory=list)
    scripts_to_process: List[str] = field(default_factory=list)
    type_files: List[str] = field(default_factory=list)
    format_files: List[str] = field(default_factory=list)
    root_module_path: Optional[str] = None
    providers: List[str] = field(default_factory=list)
    on_remove: Optional[Callable[["ResolvedModule"], None]] = None

    @property
    def key(self) -> str:
        """Module-table key: absolute path, or the bare name for in-memory modules."""
        return self.path if self.path else self.name

    @property
    def module_base(self) -> Optional[str]:
        if not self.path:
            return None
        return os.path.dirname(self.path)

    @property
    def is_discovery_descriptor(self) -> bool:
        return self.session is None

    def exported_command_names(self) -> List[str]:
        """Functions, cmdlets and aliases visible to callers, in that order."""
        return list(self.exported_functions) + list(self.exported_cmdlets) + list(self.exported_aliases)

    def identity(self) -> Tuple[str, Optional[str], Optional[str]]:
        return (self.name.lower(), format_version(self.version), self.guid)

    def __str__(self) -> str:
        return f"Module({self.name} {format_version(self.version)}, {self.module_type.value})"

    def __repr__(self) -> str:
        return (f"ResolvedModule(name={self.name!r}, path={self.path!r}, "
                f"type={self.module_type.value}, version={format_version(self.version)}, "
                f"functions={list(self.exported_functions)}, cmdlets={list(self.exported_cmdlets)})")
