"""
Manifest Loader & Validator

Evaluates a module manifest through the restricted data-language evaluator,
validates the resulting table against the manifest schema, applies the
localized overlay and checks environment compatibility against the host.

Validation errors are accumulated (one per bad field, plus one aggregated
error for unknown keys) unless bail_on_first_error is set, in which case
the first error ends processing and no table is returned.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from packaging.version import Version

from ..frontend import DataEvaluator
from ..runtime.environment import PROCESSOR_ARCHITECTURES, HostEnvironment
from ..shared import (
    EnvironmentIncompatibleError,
    ErrorId,
    ManifestInvalidError,
    MissingModuleError,
    ModuleError,
)
from ..shared.version import parse_version
from ..utils.config import MANIFEST_ALLOWED_HELPERS, MANIFEST_ALLOWED_VARIABLES
from ..utils.io_utils import read_source_file
from .module_info import ModuleReference, ProcessingFlags, normalize_guid

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Field converters: raw evaluated value -> typed value, ValueError when invalid
# ---------------------------------------------------------------------------

def _scalar_text(value: Any) -> str:
    if isinstance(value, bool) or isinstance(value, (list, dict)) or value is None:
        raise ValueError("expected a string")
    return str(value)


def to_string(value: Any) -> str:
    return _scalar_text(value)


def to_version(value: Any) -> Version:
    parsed = parse_version(_scalar_text(value))
    if parsed is None:
        raise ValueError(f"'{value}' is not a valid version")
    return parsed


def to_guid(value: Any) -> str:
    try:
        return normalize_guid(_scalar_text(value))
    except ValueError:
        raise ValueError(f"'{value}' is not a valid GUID")


def to_string_list(value: Any) -> List[str]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [_scalar_text(item) for item in items]


def to_module_specs(value: Any) -> List[ModuleReference]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [ModuleReference.from_manifest_entry(item) for item in items]


def to_module_list(value: Any) -> List[Any]:
    """ModuleList entries are names or specification tables; kept as written after checking."""
    items = to_module_specs(value)
    return [str(ref) for ref in items]


def to_architecture(value: Any) -> str:
    text = _scalar_text(value)
    for arch in PROCESSOR_ARCHITECTURES:
        if arch.lower() == text.lower():
            return arch
    raise ValueError(f"'{text}' is not a valid processor architecture ({', '.join(PROCESSOR_ARCHITECTURES)})")


def to_editions(value: Any) -> List[str]:
    editions = to_string_list(value)
    canonical = []
    for edition in editions:
        if edition.lower() not in ("desktop", "core"):
            raise ValueError(f"'{edition}' is not a valid edition (Desktop, Core)")
        canonical.append("Desktop" if edition.lower() == "desktop" else "Core")
    return canonical


def to_any(value: Any) -> Any:
    return value


# Field name -> converter, in canonical manifest order
MANIFEST_SCHEMA: Dict[str, Callable[[Any], Any]] = {
    "RootModule": to_string,
    "ModuleToProcess": to_string,
    "ModuleVersion": to_version,
    "CompatiblePSEditions": to_editions,
    "GUID": to_guid,
    "Author": to_string,
    "CompanyName": to_string,
    "Copyright": to_string,
    "Description": to_string,
    "PowerShellVersion": to_version,
    "PowerShellHostName": to_string,
    "PowerShellHostVersion": to_version,
    "DotNetFrameworkVersion": to_version,
    "CLRVersion": to_version,
    "ProcessorArchitecture": to_architecture,
    "RequiredModules": to_module_specs,
    "RequiredAssemblies": to_string_list,
    "ScriptsToProcess": to_string_list,
    "TypesToProcess": to_string_list,
    "FormatsToProcess": to_string_list,
    "NestedModules": to_module_specs,
    "FunctionsToExport": to_string_list,
    "CmdletsToExport": to_string_list,
    "VariablesToExport": to_string_list,
    "AliasesToExport": to_string_list,
    "DscResourcesToExport": to_string_list,
    "ModuleList": to_module_list,
    "FileList": to_string_list,
    "PrivateData": to_any,
    "HelpInfoURI": to_string,
    "DefaultCommandPrefix": to_string,
}

# Fields a localized overlay may override (when its value is non-empty)
OVERLAY_FIELDS = ("Description", "DefaultCommandPrefix")

_CANONICAL_NAMES = {name.lower(): name for name in MANIFEST_SCHEMA}


@dataclass
class ManifestResult:
    """Validated table (None when processing stopped) plus the errors found."""
    path: str
    table: Optional[Dict[str, Any]]
    errors: List[ModuleError] = field(default_factory=list)
    overlay_path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.table is not None and not self.errors

    def get(self, key: str, default: Any = None) -> Any:
        if self.table is None:
            return default
        return self.table.get(key, default)


class _Bail(Exception):
    """Internal: stop validation at the first error."""


class ManifestLoader:
    """
    Reads and validates module manifests.

    The evaluator is the external interpreter collaborator; it only sees the
    allow-listed helper commands and variables.
    """

    def __init__(self,
                 evaluator: Optional[DataEvaluator] = None,
                 host: Optional[HostEnvironment] = None):
        self.evaluator = evaluator or DataEvaluator()
        self.host = host or HostEnvironment.current()
        self._identity_cache: Dict[Tuple[str, float], Tuple[Optional[Version], Optional[str]]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, path: str,
             schema: Optional[Dict[str, Callable[[Any], Any]]] = MANIFEST_SCHEMA,
             flags: Optional[ProcessingFlags] = None) -> ManifestResult:
        """Evaluate, validate, overlay and (when loading elements) environment-check a manifest."""
        flags = flags or ProcessingFlags()
        result = ManifestResult(path=path, table=None)
        try:
            raw = self.read_raw(path)
            table = self.validate(raw, path, schema, flags, result.errors)
            result.overlay_path = self._apply_overlay(table, path, flags, result.errors)
            if flags.load_elements and not flags.ignore_host_constraints:
                self.check_environment(table, path, flags, result.errors)
            result.table = table
        except _Bail:
            result.table = None
        except ModuleError as e:
            result.errors.append(e)
            result.table = None
        logger.debug(f"Manifest {path}: {len(result.errors)} error(s), table={'yes' if result.table is not None else 'no'}")
        return result

    def read_raw(self, path: str) -> Dict[str, Any]:
        """Evaluate the manifest text; the result must be a hashtable."""
        try:
            text = read_source_file(path)
        except FileNotFoundError:
            raise MissingModuleError(f"The module manifest '{path}' could not be found.",
                                     ErrorId.FILE_NOT_FOUND, path=path)
        except OSError as e:
            raise ManifestInvalidError(f"The module manifest '{path}' could not be read: {e}",
                                       ErrorId.INVALID_MANIFEST, path=path)
        value = self.evaluator.evaluate(
            text,
            allowed_helpers=MANIFEST_ALLOWED_HELPERS,
            allowed_variables=MANIFEST_ALLOWED_VARIABLES,
            variables={"PSScriptRoot": os.path.dirname(os.path.abspath(path)), "PSEdition": self.host.edition},
            source_file=path,
        )
        if not isinstance(value, dict):
            raise ManifestInvalidError(
                f"The module manifest '{path}' could not be processed because it is empty or"
                f" does not contain a hashtable.",
                ErrorId.INVALID_MANIFEST, path=path,
            )
        return value

    def validate(self, raw: Dict[str, Any], path: str,
                 schema: Optional[Dict[str, Callable[[Any], Any]]],
                 flags: ProcessingFlags,
                 errors: List[ModuleError]) -> Dict[str, Any]:
        """
        Match keys case-insensitively against schema and coerce each field.

        schema=None (discovery) skips the unknown-key check; recognized
        fields are still coerced so callers always see typed values.
        """
        def record(error: ModuleError) -> None:
            errors.append(error)
            if flags.bail_on_first_error:
                raise _Bail()

        table: Dict[str, Any] = {}
        unknown: List[str] = []
        for key, value in raw.items():
            canonical = _CANONICAL_NAMES.get(key.lower())
            if canonical is None or (schema is not None and canonical not in schema):
                unknown.append(key)
                continue
            converter = (schema or MANIFEST_SCHEMA)[canonical]
            try:
                table[canonical] = converter(value)
            except ValueError as e:
                record(ManifestInvalidError(
                    f"The '{canonical}' member of the module manifest '{path}' is not valid: {e}",
                    ErrorId.INVALID_MANIFEST_FIELD_VALUE, path=path,
                ))

        if unknown and schema is not None:
            valid = ", ".join(f"'{name}'" for name in schema)
            record(ManifestInvalidError(
                f"The module manifest '{path}' contains one or more members that are not valid"
                f" ({', '.join(repr(k) for k in unknown)}). Valid members are: {valid}.",
                ErrorId.INVALID_MANIFEST_MEMBER, path=path,
            ))

        if "RootModule" in table and "ModuleToProcess" in table:
            record(ManifestInvalidError(
                f"The module manifest '{path}' cannot contain both 'RootModule' and 'ModuleToProcess'.",
                ErrorId.INVALID_MANIFEST_MEMBER, path=path,
            ))
        elif "ModuleToProcess" in table:
            table["RootModule"] = table.pop("ModuleToProcess")

        # An invalid ModuleVersion value has already been reported as a field error
        if "ModuleVersion" not in table and not any(k.lower() == "moduleversion" for k in raw):
            record(ManifestInvalidError(
                f"The module manifest '{path}' does not contain a valid 'ModuleVersion' member.",
                ErrorId.MANIFEST_MISSING_VERSION, path=path,
            ))
        return table

    def check_environment(self, table: Dict[str, Any], path: str,
                          flags: ProcessingFlags, errors: List[ModuleError]) -> None:
        """Compare host requirements with the running host; mismatches are recorded per field."""
        host = self.host
        checks: List[Tuple[bool, str, str]] = []

        required = table.get("PowerShellVersion")
        if required is not None:
            checks.append((host.version >= required, ErrorId.INSUFFICIENT_HOST_RUNTIME_VERSION,
                           f"requires host runtime version {required}; the current version is {host.version}"))
        host_name = table.get("PowerShellHostName")
        if host_name:
            checks.append((host_name.lower() == host.name.lower(), ErrorId.INVALID_HOST_NAME,
                           f"requires host '{host_name}'; the current host is '{host.name}'"))
        host_version = table.get("PowerShellHostVersion")
        if host_version is not None:
            checks.append((host.host_version >= host_version, ErrorId.INSUFFICIENT_HOST_VERSION,
                           f"requires host version {host_version}; the current host version is {host.host_version}"))
        arch = table.get("ProcessorArchitecture")
        if arch and arch not in ("None", "MSIL"):
            checks.append((arch == host.architecture, ErrorId.INVALID_PROCESSOR_ARCHITECTURE,
                           f"requires processor architecture {arch}; the current architecture is {host.architecture}"))
        clr = table.get("CLRVersion")
        if clr is not None:
            checks.append((host.clr_version >= clr, ErrorId.INSUFFICIENT_CLR_VERSION,
                           f"requires CLR version {clr}; the current version is {host.clr_version}"))
        framework = table.get("DotNetFrameworkVersion")
        if framework is not None:
            checks.append((host.framework_version >= framework, ErrorId.INSUFFICIENT_FRAMEWORK_VERSION,
                           f"requires framework version {framework}; the current version is {host.framework_version}"))
        editions = table.get("CompatiblePSEditions")
        if editions:
            checks.append((host.edition in editions, ErrorId.EDITION_NOT_COMPATIBLE,
                           f"is compatible with editions {', '.join(editions)}; the current edition is {host.edition}"))

        for ok, error_id, detail in checks:
            if ok:
                continue
            errors.append(EnvironmentIncompatibleError(f"The module manifest '{path}' {detail}.", error_id, path=path))
            if flags.bail_on_first_error:
                raise _Bail()

    def read_identity(self, path: str) -> Tuple[Optional[Version], Optional[str]]:
        """Declared (ModuleVersion, GUID) of a manifest, or (None, None) when unreadable."""
        try:
            key = (os.path.abspath(path), os.path.getmtime(path))
        except OSError:
            return (None, None)
        if key in self._identity_cache:
            return self._identity_cache[key]
        try:
            raw = self.read_raw(path)
        except ModuleError as e:
            logger.debug(f"read_identity: {path}: {e}")
            identity: Tuple[Optional[Version], Optional[str]] = (None, None)
        else:
            identity = (_try(to_version, _lookup(raw, "ModuleVersion")), _try(to_guid, _lookup(raw, "GUID")))
        self._identity_cache[key] = identity
        return identity

    def read_declared_version(self, path: str) -> Optional[Version]:
        return self.read_identity(path)[0]

    # ------------------------------------------------------------------
    # Localized overlay
    # ------------------------------------------------------------------

    def find_overlay(self, path: str) -> Optional[str]:
        """<dir>/<culture>/<file>, most specific culture first."""
        directory, file_name = os.path.split(os.path.abspath(path))
        for culture in self.host.culture_chain():
            candidate = os.path.join(directory, culture, file_name)
            if os.path.isfile(candidate):
                return candidate
        return None

    def _apply_overlay(self, table: Dict[str, Any], path: str, flags: ProcessingFlags,
                       errors: List[ModuleError]) -> Optional[str]:
        overlay_path = self.find_overlay(path)
        if overlay_path is None:
            return None
        try:
            raw = self.read_raw(overlay_path)
        except ModuleError as e:
            errors.append(e)
            if flags.bail_on_first_error:
                raise _Bail()
            return overlay_path
        for name in OVERLAY_FIELDS:
            value = _lookup(raw, name)
            if isinstance(value, str) and value.strip():
                logger.debug(f"Overlay {overlay_path} overrides {name}")
                table[name] = value
        return overlay_path


def _lookup(raw: Dict[str, Any], name: str) -> Any:
    for key, value in raw.items():
        if key.lower() == name.lower():
            return value
    return None


def _try(converter: Callable[[Any], Any], value: Any) -> Any:
    if value is None:
        return None
    try:
        return converter(value)
    except ValueError:
        return None


def check_file_fields(table: Dict[str, Any], base_dir: str) -> List[ModuleError]:
    """
    Existence checks used by Test-ModuleManifest: every file-valued member
    must name a file relative to the manifest directory.
    """
    errors: List[ModuleError] = []

    def missing(kind: str, value: str, error_id: str = ErrorId.FILE_NOT_FOUND) -> None:
        errors.append(MissingModuleError(
            f"The {kind} '{value}' listed in the module manifest was not found in '{base_dir}'.",
            error_id, path=os.path.join(base_dir, value),
        ))

    for field_name, kind in (("TypesToProcess", "types file"), ("FormatsToProcess", "format file"),
                             ("ScriptsToProcess", "script"), ("FileList", "file")):
        for entry in table.get(field_name, []):
            if not os.path.isfile(os.path.join(base_dir, entry)):
                missing(kind, entry)
    for entry in table.get("RequiredAssemblies", []):
        if entry.lower().endswith(".dll") and not os.path.isfile(os.path.join(base_dir, entry)):
            missing("required assembly", entry, ErrorId.REQUIRED_ASSEMBLY_NOT_FOUND)
    return errors
