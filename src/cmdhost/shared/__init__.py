"""Shared types: errors, source locations, versions, wildcard patterns."""

from .errors import (
    CyclicDependencyError,
    EnvironmentIncompatibleError,
    Error,
    ErrorId,
    ErrorKind,
    ErrorReporter,
    ManifestInvalidError,
    ManifestParseError,
    MissingModuleError,
    ModuleError,
    ModuleLoadError,
    NotSupportedError,
    Severity,
)
from .source_location import SourceLocation
from .version import parse_version, parse_maximum_version, in_range
from .wildcard import WildcardPattern, compile_patterns, matches_any, contains_wildcard

__all__ = [
    "CyclicDependencyError",
    "EnvironmentIncompatibleError",
    "Error",
    "ErrorId",
    "ErrorKind",
    "ErrorReporter",
    "ManifestInvalidError",
    "ManifestParseError",
    "MissingModuleError",
    "ModuleError",
    "ModuleLoadError",
    "NotSupportedError",
    "Severity",
    "SourceLocation",
    "parse_version",
    "parse_maximum_version",
    "in_range",
    "WildcardPattern",
    "compile_patterns",
    "matches_any",
    "contains_wildcard",
]
