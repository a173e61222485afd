"""
End-to-end tests for the cmdhost command line.

Each test uses its own module names: the CLI runs on the process-wide
module cache.
"""

from cmdhost.__main__ import main
from tests.test_utils import make_module, script_module


class TestCli:

    def test_list(self, module_root, capsys):
        make_module(module_root, "CliList", manifest={"RootModule": "CliList.psm1", "Description": "listed"},
                    files={"CliList.psm1": script_module("Get-CliList")})
        assert main(["--module-path", str(module_root), "list"]) == 0
        out = capsys.readouterr().out
        assert "CliList" in out
        assert "1.0" in out

    def test_list_verbose_shows_commands(self, module_root, capsys):
        make_module(module_root, "CliVerbose", files={"CliVerbose.psm1": script_module("Get-CliVerbose")})
        assert main(["--module-path", str(module_root), "--verbose", "list", "CliVerbose"]) == 0
        out = capsys.readouterr().out
        assert "commands: Get-CliVerbose" in out

    def test_import(self, module_root, capsys):
        make_module(module_root, "CliImport", manifest={"RootModule": "CliImport.psm1"},
                    files={"CliImport.psm1": script_module("Get-CliImport")})
        assert main(["--module-path", str(module_root), "import", "CliImport", "--prefix", "X"]) == 0
        out = capsys.readouterr().out
        assert "Get-XCliImport" in out

    def test_import_missing(self, module_root, capsys):
        assert main(["--module-path", str(module_root), "import", "CliMissing"]) == 1
        assert "Modules_ModuleNotFound" in capsys.readouterr().err

    def test_import_bad_version_argument(self, module_root, capsys):
        code = main(["--module-path", str(module_root), "import", "CliBad", "--minimum-version", "soon"])
        assert code == 2
        assert "not a valid version" in capsys.readouterr().err

    def test_test_manifest(self, module_root, capsys):
        good = make_module(module_root, "CliGood", manifest={})
        bad = make_module(module_root, "CliSloppy", manifest={"Foo": 1})
        assert main(["test-manifest", str(good)]) == 0
        assert main(["test-manifest", str(bad)]) == 1
        assert "Modules_InvalidManifestMember" in capsys.readouterr().err

    def test_test_manifest_missing_file(self, tmp_path, capsys):
        assert main(["test-manifest", str(tmp_path / "nope.psd1")]) == 1
        assert "file not found" in capsys.readouterr().err

    def test_new_manifest(self, tmp_path, capsys):
        path = tmp_path / "CliNew.psd1"
        assert main(["new-manifest", str(path), "--module-version", "2.5", "--description", "fresh"]) == 0
        assert path.is_file()
        assert main(["test-manifest", str(path)]) == 0
        assert "2.5" in capsys.readouterr().out
