"""
Error Reporting

Structured module errors (stable symbolic error ids + offending path) and
the diagnostic reporter used while resolving, validating and importing
modules.
"""

import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .source_location import SourceLocation


# ---------------------------------------------------------------------------
# ANSI color helpers (disabled when NO_COLOR is set or not a TTY)
# ---------------------------------------------------------------------------

def _use_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    explicit = os.environ.get("CMDHOST_COLOR", "").lower()
    if explicit in ("0", "false", "no", "never"):
        return False
    if explicit in ("1", "true", "yes", "always"):
        return True
    return sys.stderr.isatty()

_BOLD   = "\033[1m"
_RED    = "\033[31m"
_BLUE   = "\033[34m"
_CYAN   = "\033[36m"
_YELLOW = "\033[33m"
_RESET  = "\033[0m"

def _style(text: str, *codes: str, color: bool = True) -> str:
    if not color:
        return text
    prefix = "".join(codes)
    return f"{prefix}{text}{_RESET}" if prefix else text


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class ErrorKind(Enum):
    """What went wrong, independent of the specific error id."""
    NOT_FOUND = "not-found"
    MANIFEST_INVALID = "manifest-invalid"
    ENVIRONMENT_INCOMPATIBLE = "environment-incompatible"
    CYCLIC_DEPENDENCY = "cyclic-dependency"
    LOAD_FAILURE = "load-failure"

    @property
    def fatal(self) -> bool:
        """Structural errors cannot be continued past."""
        return self in (ErrorKind.CYCLIC_DEPENDENCY, ErrorKind.LOAD_FAILURE)


class ErrorId:
    """Stable symbolic error ids used by callers for category-specific messaging."""
    MODULE_NOT_FOUND = "Modules_ModuleNotFound"
    MODULE_WITH_VERSION_NOT_FOUND = "Modules_ModuleWithVersionNotFound"
    REQUIRED_MODULE_NOT_FOUND = "Modules_RequiredModuleNotFound"
    ROOT_MODULE_NOT_FOUND = "Modules_RootModuleNotFound"
    NESTED_MODULE_NOT_FOUND = "Modules_NestedModuleNotFound"
    FILE_NOT_FOUND = "Modules_FileNotFound"
    VERSION_MISMATCH = "Modules_ModuleVersionMismatch"
    GUID_MISMATCH = "Modules_ModuleGuidMismatch"
    INVALID_MANIFEST = "Modules_InvalidManifest"
    INVALID_MANIFEST_MEMBER = "Modules_InvalidManifestMember"
    INVALID_MANIFEST_FIELD_VALUE = "Modules_InvalidManifestFieldValue"
    MANIFEST_MISSING_VERSION = "Modules_ModuleManifestMissingModuleVersion"
    MANIFEST_PARSE_ERROR = "Modules_ManifestParseError"
    INSUFFICIENT_HOST_RUNTIME_VERSION = "Modules_InsufficientPowerShellVersion"
    INVALID_HOST_NAME = "Modules_InvalidPowerShellHostName"
    INSUFFICIENT_HOST_VERSION = "Modules_InsufficientPowerShellHostVersion"
    INVALID_PROCESSOR_ARCHITECTURE = "Modules_InvalidProcessorArchitecture"
    INSUFFICIENT_CLR_VERSION = "Modules_InsufficientCLRVersion"
    INSUFFICIENT_FRAMEWORK_VERSION = "Modules_InsufficientDotNetFrameworkVersion"
    EDITION_NOT_COMPATIBLE = "Modules_PSEditionNotCompatible"
    CYCLIC_DEPENDENCY = "Modules_RequiredModulesCyclicDependency"
    NESTING_TOO_DEEP = "Modules_ModuleTooDeeplyNested"
    LOAD_FAILURE = "Modules_LoadFailure"
    WORKFLOW_NOT_SUPPORTED = "Modules_WorkflowNotSupported"
    REQUIRED_ASSEMBLY_NOT_FOUND = "Modules_RequiredAssemblyNotFound"


# ---------------------------------------------------------------------------
# Error dataclass
# ---------------------------------------------------------------------------

class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    VERBOSE = "verbose"


@dataclass
class Error:
    """One reported diagnostic."""
    message: str
    location: Optional[SourceLocation]
    code: Optional[str] = None
    path: Optional[str] = None
    severity: Severity = Severity.ERROR
    help: Optional[str] = None
    note: Optional[str] = None


# ---------------------------------------------------------------------------
# Formatting engine
# ---------------------------------------------------------------------------

_SEVERITY_COLOR = {
    Severity.ERROR: _RED,
    Severity.WARNING: _YELLOW,
    Severity.VERBOSE: _CYAN,
}


def _format_diagnostic(
    error: Error,
    source_files: Dict[str, str],
    color: bool = False,
) -> str:
    """
    Render a single diagnostic.

    Example output (plain, no color)::

        error[Modules_InvalidManifestMember]: invalid members: 'Foo'
         --> /modules/Foo/Foo.psd1:3:5
          |
        3 |     Foo = 1
          |     ^^^
    """
    out: List[str] = []

    code_str = f"[{error.code}]" if error.code else ""
    head_color = _SEVERITY_COLOR[error.severity]
    out.append(
        _style(f"{error.severity.value}{code_str}", _BOLD, head_color, color=color)
        + _style(f": {error.message}", _BOLD, color=color)
    )

    arrow = _style(" --> ", _BOLD, _BLUE, color=color)
    loc = error.location
    if loc is None:
        if error.path:
            out.append(arrow + error.path)
        _append_annotations(out, error, 1, color)
        return "\n".join(out)

    source = source_files.get(loc.file)
    if source is None:
        out.append(arrow + f"{loc.file}:{loc.line}:{loc.column}")
        _append_annotations(out, error, 1, color)
        return "\n".join(out)

    src_lines = source.split("\n")
    gw = max(len(str(loc.line)), 1)
    out.append(_style(" " * gw + "--> ", _BOLD, _BLUE, color=color) + f"{loc.file}:{loc.line}:{loc.column}")
    out.append(_style(" " * (gw + 1) + "|", _BOLD, _BLUE, color=color))

    idx = loc.line - 1
    code_line = src_lines[idx] if 0 <= idx < len(src_lines) else ""
    out.append(_style(str(loc.line).rjust(gw) + " | ", _BOLD, _BLUE, color=color) + code_line)
    col_start = max(loc.column, 1) - 1
    if loc.end_column > loc.column and (not loc.end_line or loc.end_line == loc.line):
        span_len = loc.end_column - loc.column
    else:
        span_len = _guess_span(code_line, col_start)
    carets = " " * col_start + "^" * max(1, span_len)
    out.append(_style(" " * (gw + 1) + "| ", _BOLD, _BLUE, color=color) + _style(carets, _BOLD, head_color, color=color))

    _append_annotations(out, error, gw, color)
    return "\n".join(out)


def _guess_span(code_line: str, col_start: int) -> int:
    """Guess token length when end_column is unavailable."""
    if col_start >= len(code_line):
        return 1
    length = 0
    for ch in code_line[col_start:]:
        if ch in (" ", "\t", ";", ",", ")", "}", "="):
            break
        length += 1
    return max(1, length)


def _append_annotations(out: List[str], error: Error, gw: int, color: bool) -> None:
    if not (error.help or error.note):
        return
    pad = " " * (gw + 1)
    out.append(_style(pad.rstrip() + " |", _BOLD, _BLUE, color=color))
    if error.help:
        out.append(_style(f"{pad}= ", _BOLD, _CYAN, color=color) + _style("help: ", _BOLD, color=color) + error.help)
    if error.note:
        out.append(_style(f"{pad}= ", _BOLD, _CYAN, color=color) + _style("note: ", _BOLD, color=color) + error.note)


# ---------------------------------------------------------------------------
# ErrorReporter
# ---------------------------------------------------------------------------

class ErrorReporter:
    """
    Collects errors, warnings and verbose notes produced while resolving
    modules. Nothing is printed until the caller asks for it.
    """

    def __init__(self, source_files: Optional[Dict[str, str]] = None):
        self.source_files: Dict[str, str] = source_files if source_files is not None else {}
        self.errors: List[Error] = []
        self.warnings: List[Error] = []
        self.verbose: List[Error] = []

    def report_error(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        code: Optional[str] = None,
        path: Optional[str] = None,
        help: Optional[str] = None,
        note: Optional[str] = None,
    ) -> None:
        self.errors.append(Error(message=message, location=location, code=code, path=path, help=help, note=note))

    def report_exception(self, exc: "ModuleError") -> None:
        self.errors.append(exc.to_diagnostic())
        if exc.source_code and exc.location:
            self.source_files.setdefault(exc.location.file, exc.source_code)

    def report_warning(self, message: str, code: Optional[str] = None, path: Optional[str] = None) -> None:
        self.warnings.append(Error(message=message, location=None, code=code, path=path, severity=Severity.WARNING))

    def report_verbose(self, message: str, path: Optional[str] = None) -> None:
        self.verbose.append(Error(message=message, location=None, path=path, severity=Severity.VERBOSE))

    def format_error(self, error: Error, color: Optional[bool] = None) -> str:
        use_color = color if color is not None else _use_color()
        return _format_diagnostic(error, self.source_files, color=use_color)

    def format_all_errors(self, color: Optional[bool] = None) -> str:
        parts = [self.format_error(e, color=color) for e in self.errors]
        use_color = color if color is not None else _use_color()
        count = len(self.errors)
        summary = f"{count} module error{'s' if count != 1 else ''} reported"
        parts.append(_style("error", _BOLD, _RED, color=use_color) + _style(f": {summary}", _BOLD, color=use_color))
        return "\n\n".join(parts)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def error_ids(self) -> List[str]:
        return [e.code for e in self.errors if e.code]

    def clear(self) -> None:
        self.errors.clear()
        self.warnings.clear()
        self.verbose.clear()

    def print_diagnostics(self, verbose: bool = False) -> None:
        color = _use_color()
        shown = self.errors + self.warnings + (self.verbose if verbose else [])
        for diagnostic in shown:
            print(self.format_error(diagnostic, color=color), file=sys.stderr)


# ============================================================================
# Exception Classes
# ============================================================================

class ModuleError(Exception):
    """
    Base exception for all module resolution errors.

    Carries a stable symbolic error id and the offending path so callers can
    map the failure to category-specific messaging.
    """
    kind: ErrorKind = ErrorKind.LOAD_FAILURE

    def __init__(self,
                 message: str,
                 error_id: str = ErrorId.LOAD_FAILURE,
                 path: Optional[str] = None,
                 location: Optional[SourceLocation] = None,
                 kind: Optional[ErrorKind] = None,
                 source_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_id = error_id
        self.path = path
        self.location = location
        self.source_code = source_code
        if kind is not None:
            self.kind = kind

    @property
    def fatal(self) -> bool:
        return self.kind.fatal

    def to_diagnostic(self) -> Error:
        return Error(message=self.message, location=self.location, code=self.error_id, path=self.path)

    def __str__(self):
        where = self.location or self.path
        if where:
            return f"[{self.error_id}] {self.message} ({where})"
        return f"[{self.error_id}] {self.message}"


class MissingModuleError(ModuleError):
    """No candidate path satisfied the reference and its constraints."""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, error_id: str = ErrorId.MODULE_NOT_FOUND, path: Optional[str] = None, **kwargs):
        super().__init__(message, error_id, path, **kwargs)


class ManifestInvalidError(ModuleError):
    """Schema violation, type-coercion failure or malformed manifest table."""
    kind = ErrorKind.MANIFEST_INVALID

    def __init__(self, message: str, error_id: str = ErrorId.INVALID_MANIFEST, path: Optional[str] = None, **kwargs):
        super().__init__(message, error_id, path, **kwargs)


class ManifestParseError(ManifestInvalidError):
    """The manifest text could not be evaluated by the data-language reader."""

    def __init__(self, message: str, path: Optional[str] = None, location: Optional[SourceLocation] = None,
                 source_code: Optional[str] = None):
        super().__init__(message, ErrorId.MANIFEST_PARSE_ERROR, path, location=location, source_code=source_code)


class EnvironmentIncompatibleError(ModuleError):
    """A host, runtime, edition or architecture requirement is not met."""
    kind = ErrorKind.ENVIRONMENT_INCOMPATIBLE

    def __init__(self, message: str, error_id: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, error_id, path, **kwargs)


class CyclicDependencyError(ModuleError):
    """The required-module graph revisits a module already on the resolution path."""
    kind = ErrorKind.CYCLIC_DEPENDENCY

    def __init__(self, message: str, edge: tuple, chain: List[str], path: Optional[str] = None):
        super().__init__(message, ErrorId.CYCLIC_DEPENDENCY, path)
        self.edge = edge
        self.chain = chain


class ModuleLoadError(ModuleError):
    """The classified file could not be turned into a module instance."""
    kind = ErrorKind.LOAD_FAILURE

    def __init__(self, message: str, error_id: str = ErrorId.LOAD_FAILURE, path: Optional[str] = None, **kwargs):
        super().__init__(message, error_id, path, **kwargs)


class NotSupportedError(ModuleLoadError):
    """The host configuration cannot load this kind of module at all."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, ErrorId.WORKFLOW_NOT_SUPPORTED, path)
