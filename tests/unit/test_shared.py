"""
Tests for shared helpers: versions, wildcard patterns and the error reporter.
"""

import pytest
from packaging.version import Version

from cmdhost.shared import (
    CyclicDependencyError,
    ErrorId,
    ErrorKind,
    ErrorReporter,
    ManifestInvalidError,
    MissingModuleError,
    SourceLocation,
    WildcardPattern,
    compile_patterns,
    in_range,
    matches_any,
    parse_maximum_version,
    parse_version,
)
from cmdhost.shared.version import format_version, highest


class TestVersions:

    @pytest.mark.parametrize("text", ["1.0", "2.1.3", "1.0.0.4", " 3.2 "])
    def test_valid(self, text):
        assert parse_version(text) == Version(text.strip())

    @pytest.mark.parametrize("text", ["1", "1.0.0.0.0", "one", "1.0-beta", "", None])
    def test_invalid(self, text):
        assert parse_version(text) is None

    def test_numeric_ordering(self):
        assert parse_version("1.10") > parse_version("1.9")

    def test_wildcard_maximum(self):
        maximum = parse_maximum_version("1.*")
        assert Version("1.99") <= maximum < Version("2.0")

    def test_invalid_maximum(self):
        with pytest.raises(ValueError):
            parse_maximum_version("x.*")

    def test_in_range(self):
        assert in_range(Version("1.5"), Version("1.0"), Version("2.0"))
        assert not in_range(Version("2.1"), Version("1.0"), Version("2.0"))
        assert not in_range(None, Version("1.0"))
        assert in_range(None)

    def test_highest_and_format(self):
        assert highest([None, Version("1.0"), Version("1.2")]) == Version("1.2")
        assert highest([None]) is None
        assert format_version(None) == "0.0"


class TestWildcards:

    def test_case_insensitive(self):
        assert WildcardPattern("get-*").matches("Get-Widget")
        assert WildcardPattern("Get-W?dget").matches("get-widget")
        assert WildcardPattern("[GS]et-*").matches("Set-Widget")

    def test_literal(self):
        assert WildcardPattern("Get-Widget").is_literal
        assert not WildcardPattern("Get-*").is_literal

    def test_filters(self):
        assert compile_patterns(None) is None
        assert matches_any("anything", None)
        assert not matches_any("anything", compile_patterns([]))
        assert matches_any("Get-A", compile_patterns(["Set-*", "Get-*"]))


class TestErrors:

    def test_kinds(self):
        assert MissingModuleError("missing").kind is ErrorKind.NOT_FOUND
        assert not MissingModuleError("missing").fatal
        error = CyclicDependencyError("cycle", edge=("A", "B"), chain=["A", "B", "A"])
        assert error.fatal
        assert error.error_id == ErrorId.CYCLIC_DEPENDENCY

    def test_str_includes_id_and_path(self):
        error = MissingModuleError("missing", path="/mods/X")
        assert str(error) == f"[{ErrorId.MODULE_NOT_FOUND}] missing (/mods/X)"

    def test_builtin_import_error_is_not_shadowed(self):
        import cmdhost.shared as shared
        assert not hasattr(shared, "ModuleNotFoundError")
        assert not issubclass(MissingModuleError, ImportError)


class TestErrorReporter:

    def test_collects_and_formats(self):
        reporter = ErrorReporter()
        reporter.report_exception(ManifestInvalidError("bad member", ErrorId.INVALID_MANIFEST_MEMBER, path="/m/X.psd1"))
        reporter.report_warning("odd name")
        assert reporter.has_errors()
        assert reporter.error_ids() == [ErrorId.INVALID_MANIFEST_MEMBER]
        text = reporter.format_all_errors(color=False)
        assert f"error[{ErrorId.INVALID_MANIFEST_MEMBER}]: bad member" in text
        assert " --> /m/X.psd1" in text
        assert "1 module error reported" in text

    def test_source_snippet(self):
        reporter = ErrorReporter()
        location = SourceLocation(file="/m/X.psd1", line=2, column=5)
        reporter.report_exception(ManifestInvalidError(
            "not allowed", location=location, source_code="@{\n    A = $HOME\n}"))
        text = reporter.format_error(reporter.errors[0], color=False)
        assert "2 |     A = $HOME" in text
        assert "^" in text

    def test_clear(self):
        reporter = ErrorReporter()
        reporter.report_error("x")
        reporter.report_verbose("y")
        reporter.clear()
        assert not reporter.has_errors()
        assert reporter.verbose == []
