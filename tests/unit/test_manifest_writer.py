"""
Tests for New-ModuleManifest rendering: written manifests must read back
through ManifestLoader with the same values.
"""

import uuid

import pytest
from packaging.version import Version

from cmdhost.modules.manifest import ManifestLoader
from cmdhost.modules.manifest_writer import ManifestWriter, default_manifest, write_manifest
from cmdhost.modules.module_info import ModuleReference


@pytest.fixture
def loader(evaluator, host):
    return ManifestLoader(evaluator, host)


class TestDefaults:

    def test_default_fields(self):
        table = default_manifest()
        assert table["ModuleVersion"] == "0.0.1"
        assert uuid.UUID(table["GUID"])
        assert table["FunctionsToExport"] == []
        assert table["VariablesToExport"] == "*"

    def test_overrides(self):
        table = default_manifest(ModuleVersion="2.0", Description="Widgets")
        assert table["ModuleVersion"] == "2.0"
        assert table["Description"] == "Widgets"


class TestRender:

    def test_canonical_order(self):
        text = ManifestWriter().render({"Description": "d", "RootModule": "R.psm1", "ModuleVersion": "1.0"})
        assert text.index("RootModule") < text.index("ModuleVersion") < text.index("Description")

    def test_scalars(self):
        writer = ManifestWriter()
        assert writer._value(None, 1) == "$null"
        assert writer._value(True, 1) == "$true"
        assert writer._value(3, 1) == "3"
        assert writer._value("it's", 1) == "'it''s'"
        assert writer._value([], 1) == "@()"
        assert writer._value({}, 1) == "@{}"

    def test_long_lists_are_multiline(self):
        text = ManifestWriter().render({"FunctionsToExport": [f"Get-N{i}" for i in range(6)]})
        assert "@(\n" in text

    def test_module_references(self):
        writer = ManifestWriter()
        assert writer._value(ModuleReference.create("Base"), 1) == "'Base'"
        rendered = writer._value(ModuleReference.create("Other", minimum_version="2.0"), 1)
        assert rendered == "@{ ModuleName = 'Other'; ModuleVersion = '2.0' }"


class TestRoundTrip:
    """Written manifests are valid and keep their values."""

    def test_write_and_load(self, tmp_path, loader):
        path = tmp_path / "Demo" / "Demo.psd1"
        path.parent.mkdir()
        table = write_manifest(
            path,
            RootModule="Demo.psm1",
            ModuleVersion="1.4",
            Description="It's a demo",
            RequiredModules=[ModuleReference.create("Base"), ModuleReference.create("Other", minimum_version="2.0")],
            FunctionsToExport=[f"Get-Item{i}" for i in range(6)],
            PrivateData={"PSData": {"Tags": ["demo", "test"], "ProjectUri": "https://example.invalid/demo"}},
        )
        result = loader.load(str(path))
        assert result.ok, [str(e) for e in result.errors]
        assert result.get("ModuleVersion") == Version("1.4")
        assert result.get("GUID") == table["GUID"]
        assert result.get("Description") == "It's a demo"
        assert [r.name for r in result.get("RequiredModules")] == ["Base", "Other"]
        assert result.get("FunctionsToExport") == table["FunctionsToExport"]
        assert result.get("VariablesToExport") == ["*"]
        assert result.get("PrivateData")["PSData"]["Tags"] == ["demo", "test"]
