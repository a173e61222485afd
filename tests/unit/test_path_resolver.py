"""
Tests for module path probing: search roots, multi-version directories,
extension priority and path references.
"""

import os

import pytest

from cmdhost.modules.manifest import ManifestLoader
from cmdhost.modules.module_info import ModuleReference
from cmdhost.modules.path_resolver import PathResolver
from tests.test_utils import make_module, write_file


@pytest.fixture
def resolver(module_root, evaluator, host):
    loader = ManifestLoader(evaluator, host)
    return PathResolver([str(module_root)], identity_reader=loader.read_identity)


class TestMultiVersion:
    """<root>/<name>/<version>/<name>.psd1 layouts."""

    @pytest.fixture(autouse=True)
    def _two_versions(self, module_root):
        self.v1 = make_module(module_root, "Multi", "1.0", manifest={})
        self.v2 = make_module(module_root, "Multi", "2.0", manifest={})

    def test_no_constraint_returns_every_version(self, resolver):
        found = resolver.candidate_paths("Multi")
        assert set(found) == {str(self.v1), str(self.v2)}

    def test_required_version_filters(self, resolver):
        found = resolver.candidate_paths("Multi", ModuleReference.create("Multi", required_version="1.0"))
        assert found == [str(self.v1)]

    def test_minimum_version_filters(self, resolver):
        found = resolver.candidate_paths("Multi", ModuleReference.create("Multi", minimum_version="1.5"))
        assert found == [str(self.v2)]

    def test_nothing_satisfies(self, resolver):
        result = resolver.resolve("Multi", ModuleReference.create("Multi", minimum_version="3.0"))
        assert not result.found
        assert result.path is None

    def test_pick_latest(self, resolver):
        found = resolver.candidate_paths("Multi")
        assert resolver.pick_latest(found) == str(self.v2)

    def test_directory_version_must_match_manifest(self, module_root, resolver):
        make_module(module_root, "Multi", "3.0", manifest={"ModuleVersion": "2.5"})
        found = resolver.candidate_paths("Multi")
        assert not any(os.sep + "3.0" + os.sep in path for path in found)

    def test_non_version_directories_ignored(self, module_root, resolver):
        make_module(module_root, "Multi", "latest", manifest={"ModuleVersion": "9.0"})
        assert len(resolver.candidate_paths("Multi")) == 2


class TestExtensionPriority:
    """A bare base name probes .psd1, .ni.dll, .dll, .psm1, .ps1, .cdxml in order."""

    def test_manifest_beats_script(self, module_root, resolver):
        make_module(module_root, "Both", files={"Both.psm1": "", "Both.ps1": ""}, manifest={})
        path = resolver.resolve("Both").path
        assert path.endswith("Both.psd1")

    def test_script_module_beats_script(self, module_root, resolver):
        make_module(module_root, "Scripted", files={"Scripted.ps1": "", "Scripted.psm1": ""})
        assert resolver.resolve("Scripted").path.endswith("Scripted.psm1")

    def test_precompiled_beats_plain_binary(self, module_root, resolver):
        make_module(module_root, "Bin", files={"Bin.dll": "", "Bin.ni.dll": ""})
        assert resolver.resolve("Bin").path.endswith("Bin.ni.dll")

    def test_file_directly_in_root(self, module_root, resolver):
        write_file(module_root / "Loose.psm1", "")
        assert resolver.resolve("Loose").path == str(module_root / "Loose.psm1")

    def test_explicit_extension(self, module_root, resolver):
        make_module(module_root, "Named", files={"Named.psm1": "", "Named.ps1": ""})
        assert resolver.resolve("Named.ps1").path.endswith("Named.ps1")

    def test_search_roots_in_order(self, tmp_path, evaluator, host):
        first, second = tmp_path / "first", tmp_path / "second"
        make_module(first, "Dup", files={"Dup.psm1": ""})
        make_module(second, "Dup", files={"Dup.psm1": ""})
        resolver = PathResolver([str(first), str(second)])
        result = resolver.resolve("Dup")
        assert result.path.startswith(str(first))
        assert len(result.candidates) == 2


class TestPathReferences:
    """Rooted and relative path references."""

    def test_is_path_reference(self):
        assert PathResolver.is_path_reference("/abs/Foo.psm1")
        assert PathResolver.is_path_reference("./Foo")
        assert PathResolver.is_path_reference("..\\Foo")
        assert PathResolver.is_path_reference("C:\\Mods\\Foo")
        assert not PathResolver.is_path_reference("Foo")
        assert not PathResolver.is_path_reference("Foo.psm1")

    def test_relative_to_cwd(self, tmp_path):
        make_module(tmp_path / "work", "Local", files={"Local.psm1": ""})
        resolver = PathResolver(cwd=str(tmp_path / "work"))
        assert resolver.resolve("./Local").path == str(tmp_path / "work" / "Local" / "Local.psm1")

    def test_rooted_file(self, tmp_path):
        path = write_file(tmp_path / "x" / "Thing.ps1", "")
        assert PathResolver().resolve(str(path)).path == str(path)

    def test_rooted_base_without_extension(self, tmp_path):
        write_file(tmp_path / "Thing.psm1", "")
        assert PathResolver().resolve(str(tmp_path / "Thing")).path == str(tmp_path / "Thing.psm1")

    def test_missing_path(self, tmp_path):
        assert not PathResolver().resolve(str(tmp_path / "nope.psm1")).found
