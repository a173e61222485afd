"""
Integration tests for Import-Module / Remove-Module.

Module trees are laid out under a temporary search root and imported through
ModuleManager; assertions look at the session bindings and diagnostics.
"""

import pytest

from cmdhost.host import ModuleManager
from cmdhost.modules.module_info import ImportOptions, ModuleType, ProcessingFlags
from cmdhost.runtime import CommandKind, HostEnvironment, SessionState
from cmdhost.shared import ErrorId
from cmdhost.utils.config import MAX_MODULE_NESTING_DEPTH
from tests.test_utils import cdxml_text, make_module, manifest_text, script_module, write_binary, write_file


@pytest.fixture
def widgets(module_root):
    """Manifest module exporting Get-* from its script root module."""
    return make_module(
        module_root, "Widgets",
        manifest={"RootModule": "Widgets.psm1", "FunctionsToExport": "Get-*", "Description": "Widget tools"},
        files={"Widgets.psm1": script_module("Get-Widget", "Set-Widget", "Remove-Widget")},
    )


class TestImportManifestModule:
    """Manifest + script root module."""

    def test_exports_filtered_by_manifest(self, manager, session, widgets):
        result = manager.import_module("Widgets")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert result.report.imported == ["Get-Widget"]
        assert session.get_command("Get-Widget").module is result.module
        assert session.get_command("Set-Widget") is None

    def test_root_module_becomes_the_module(self, manager, widgets):
        module = manager.import_module("Widgets").module
        assert module.module_type == ModuleType.SCRIPT
        assert module.path == str(widgets)
        assert module.root_module_path.endswith("Widgets.psm1")
        assert str(module.version) == "1.0"
        assert module.description == "Widget tools"
        assert set(module.detected_functions) == {"Get-Widget", "Set-Widget", "Remove-Widget"}

    def test_import_twice_reuses_module(self, manager, session, widgets):
        first = manager.import_module("Widgets")
        second = manager.import_module("Widgets")
        assert second.module is first.module
        assert len(session.modules) == 1
        assert len(session.commands(first.module)) == 1

    def test_import_by_rooted_path_reuses_module(self, manager, widgets):
        first = manager.import_module(str(widgets))
        second = manager.import_module(str(widgets))
        assert first.success, f"Import failed: {first.get_errors()}"
        assert second.module is first.module

    def test_name_cache_remembers_path(self, manager, cache, module_root, widgets):
        manager.import_module("Widgets")
        assert cache.lookup_path("widgets", [str(module_root)]) == str(widgets)
        assert cache.lookup_path("widgets") is None

    def test_name_cache_is_scoped_to_search_paths(self, tmp_path, host, cache):
        first_root, second_root = tmp_path / "first", tmp_path / "second"
        make_module(first_root, "Shared", "1.0", manifest={})
        expected = make_module(second_root, "Shared", "2.0", manifest={})
        first = ModuleManager(search_paths=[str(first_root)], host=host, cache=cache, session=SessionState("one"))
        second = ModuleManager(search_paths=[str(second_root)], host=host, cache=cache, session=SessionState("two"))

        assert str(first.import_module("Shared").module.version) == "1.0"
        result = second.import_module("Shared")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert result.module.path == str(expected)
        assert str(result.module.version) == "2.0"

    def test_no_clobber_keeps_existing_binding(self, manager, session, widgets):
        session.set_function("Get-Widget", "{ mine }")
        result = manager.import_module("Widgets", options=ImportOptions(no_clobber=True))
        assert result.report.skipped == ["Get-Widget"]
        assert session.get_command("Get-Widget").definition == "{ mine }"

    def test_prefix_argument(self, manager, session, widgets):
        result = manager.import_module("Widgets", prefix="Acme")
        assert result.report.imported == ["Get-AcmeWidget"]
        assert session.get_command("Get-AcmeWidget") is not None

    def test_default_command_prefix(self, manager, session, module_root):
        make_module(module_root, "Pref",
                    manifest={"RootModule": "Pref.psm1", "DefaultCommandPrefix": "Zz"},
                    files={"Pref.psm1": script_module("Get-Item2")})
        result = manager.import_module("Pref")
        assert result.report.imported == ["Get-ZzItem2"]

    def test_not_found(self, manager):
        result = manager.import_module("Nope")
        assert not result.success
        assert result.error_ids() == [ErrorId.MODULE_NOT_FOUND]
        assert "Nope" in result.get_errors()[0]


class TestVersionSelection:
    """Side-by-side versions of one module."""

    @pytest.fixture(autouse=True)
    def _versions(self, module_root):
        for version, function in (("1.0", "Get-One"), ("2.0", "Get-Two")):
            make_module(module_root, "Multi", version,
                        manifest={"RootModule": "Multi.psm1"},
                        files={"Multi.psm1": script_module(function)})

    def test_required_version(self, manager):
        result = manager.import_module("Multi", required_version="1.0")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert list(result.module.exported_functions) == ["Get-One"]

    def test_minimum_version(self, manager):
        result = manager.import_module("Multi", minimum_version="1.5")
        assert str(result.module.version) == "2.0"

    def test_unsatisfiable_version(self, manager):
        result = manager.import_module("Multi", minimum_version="3.0")
        assert not result.success
        assert result.error_ids() == [ErrorId.MODULE_WITH_VERSION_NOT_FOUND]

    def test_loaded_version_satisfies_later_import(self, manager):
        first = manager.import_module("Multi", required_version="2.0")
        second = manager.import_module("Multi", minimum_version="1.0")
        assert second.module is first.module

    def test_guid_mismatch(self, manager, module_root):
        make_module(module_root, "Ident", manifest={"GUID": "11111111-2222-3333-4444-555555555555"})
        result = manager.import_module("Ident", minimum_version="1.0", guid="99999999-2222-3333-4444-555555555555")
        assert not result.success
        assert result.error_ids() == [ErrorId.GUID_MISMATCH]


class TestManifestErrors:
    """Validation errors accumulate unless strict."""

    @pytest.fixture
    def odd(self, module_root):
        return make_module(module_root, "Odd", manifest={"RootModule": "Odd.psm1", "Foo": 1},
                           files={"Odd.psm1": script_module("Get-Odd")})

    def test_errors_accumulate(self, manager, session, odd):
        result = manager.import_module("Odd")
        assert result.success
        assert result.error_ids() == [ErrorId.INVALID_MANIFEST_MEMBER]
        assert result.module.had_errors_loading
        assert session.get_command("Get-Odd") is not None

    def test_strict_stops(self, manager, session, odd):
        result = manager.import_module("Odd", strict=True)
        assert not result.success
        assert result.error_ids() == [ErrorId.INVALID_MANIFEST_MEMBER]
        assert session.modules == {}

    def test_strict_does_not_try_later_candidates(self, tmp_path, host, cache, session):
        first_root, second_root = tmp_path / "first", tmp_path / "second"
        make_module(first_root, "Foo", manifest={"Bogus": 1})
        make_module(second_root, "Foo", manifest={"ModuleVersion": "2.0"})
        manager = ModuleManager(search_paths=[str(first_root), str(second_root)], host=host, cache=cache,
                                session=session)

        result = manager.import_module("Foo", strict=True)
        assert not result.success
        assert result.module is None
        assert result.error_ids() == [ErrorId.INVALID_MANIFEST_MEMBER]
        assert session.modules == {}

    def test_lenient_import_keeps_first_candidate(self, tmp_path, host, cache):
        first_root, second_root = tmp_path / "first", tmp_path / "second"
        bad = make_module(first_root, "Foo", manifest={"Bogus": 1})
        make_module(second_root, "Foo", manifest={"ModuleVersion": "2.0"})
        manager = ModuleManager(search_paths=[str(first_root), str(second_root)], host=host, cache=cache)

        result = manager.import_module("Foo")
        assert result.success
        assert result.module.path == str(bad)
        assert result.error_ids() == [ErrorId.INVALID_MANIFEST_MEMBER]

    def test_silent_errors_are_returned_but_not_reported(self, manager, odd):
        result = manager.import_module("Odd", flags=ProcessingFlags(write_errors=False))
        assert result.error_ids() == [ErrorId.INVALID_MANIFEST_MEMBER]
        assert not result.reporter.has_errors()

    def test_naming_warning_follows_write_warnings(self, manager, module_root):
        make_module(module_root, "Odd2", manifest={"RootModule": "Odd2.psm1"},
                    files={"Odd2.psm1": script_module("Frob-Widget")})
        quiet = manager.import_module("Odd2", flags=ProcessingFlags(write_warnings=False))
        assert quiet.report.naming_violations == ["Frob-Widget"]
        assert quiet.reporter.warnings == []

        loud = manager.import_module("Odd2", options=ImportOptions(force_reload=True))
        assert len(loud.reporter.warnings) == 1

    def test_missing_root_module(self, manager, module_root):
        make_module(module_root, "Rootless", manifest={"RootModule": "Missing.psm1"})
        result = manager.import_module("Rootless")
        assert result.error_ids() == [ErrorId.ROOT_MODULE_NOT_FOUND]

    def test_root_module_cannot_be_manifest(self, manager, module_root):
        make_module(module_root, "Loop", manifest={"RootModule": "Other.psd1"})
        result = manager.import_module("Loop")
        assert ErrorId.INVALID_MANIFEST_FIELD_VALUE in result.error_ids()

    def test_missing_required_assembly(self, manager, module_root):
        make_module(module_root, "Asm", manifest={"RequiredAssemblies": ["lib/Missing.dll", "System.Xml"]})
        result = manager.import_module("Asm")
        assert result.error_ids() == [ErrorId.REQUIRED_ASSEMBLY_NOT_FOUND]

    def test_environment_mismatch(self, manager, module_root):
        make_module(module_root, "Future", manifest={"PowerShellVersion": "99.0"})
        result = manager.import_module("Future")
        assert result.error_ids() == [ErrorId.INSUFFICIENT_HOST_RUNTIME_VERSION]

    def test_load_failure_is_fatal(self, manager, session, module_root):
        make_module(module_root, "Thrower",
                    manifest={"RootModule": "Thrower.psm1", "TypesToProcess": ["Thrower.types.ps1xml"]},
                    files={"Thrower.psm1": "throw 'not on this platform'\n", "Thrower.types.ps1xml": "<Types />"})
        result = manager.import_module("Thrower")
        assert not result.success
        assert result.error_ids() == [ErrorId.LOAD_FAILURE]
        assert session.type_files == []


class TestNestedAndRequired:
    """Nested modules merge into the parent; required modules load first."""

    def test_nested_exports_merge(self, manager, session, module_root):
        make_module(module_root, "Tools",
                    manifest={"RootModule": "Tools.psm1", "NestedModules": ["Helpers.psm1"]},
                    files={"Tools.psm1": script_module("Get-Tool"), "Helpers.psm1": script_module("Get-Helper")})
        result = manager.import_module("Tools")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert set(result.report.imported) == {"Get-Tool", "Get-Helper"}
        assert [m.name for m in result.module.nested_modules] == ["Helpers"]
        assert session.get_command("Get-Helper").module is result.module

    def test_missing_nested_module(self, manager, module_root):
        make_module(module_root, "Partial", manifest={"NestedModules": ["Gone.psm1"]})
        result = manager.import_module("Partial")
        assert result.error_ids() == [ErrorId.NESTED_MODULE_NOT_FOUND]

    def test_required_module_is_imported_into_session(self, manager, session, module_root):
        make_module(module_root, "Base", manifest={"RootModule": "Base.psm1"},
                    files={"Base.psm1": script_module("Get-BaseThing")})
        make_module(module_root, "App", manifest={"RootModule": "App.psm1", "RequiredModules": ["Base"]},
                    files={"App.psm1": script_module("Get-AppThing")})
        result = manager.import_module("App")
        assert result.success, f"Import failed: {result.get_errors()}"
        base = result.module.required_modules[0]
        assert base.name == "Base"
        assert session.get_command("Get-BaseThing").module is base
        assert {m.name for m in session.modules.values()} == {"App", "Base"}

    def test_missing_required_module(self, manager, module_root):
        make_module(module_root, "Needy", manifest={"RequiredModules": [{"ModuleName": "Absent", "ModuleVersion": "1.0"}]})
        result = manager.import_module("Needy")
        assert result.error_ids() == [ErrorId.REQUIRED_MODULE_NOT_FOUND]
        assert "minimum version '1.0'" in result.errors[0].message

    def test_required_cycle(self, manager, session, module_root):
        make_module(module_root, "A", manifest={"RequiredModules": ["B"]})
        make_module(module_root, "B", manifest={"RequiredModules": ["A"]})
        result = manager.import_module("A")
        assert not result.success
        assert result.error_ids() == [ErrorId.CYCLIC_DEPENDENCY]
        error = result.errors[0]
        assert error.edge == ("B", "A")
        assert error.chain == ["A", "B", "A"]
        assert session.modules == {}

    def test_longer_cycle(self, manager, module_root):
        make_module(module_root, "P", manifest={"RequiredModules": ["Q"]})
        make_module(module_root, "Q", manifest={"RequiredModules": ["R"]})
        make_module(module_root, "R", manifest={"RequiredModules": ["P"]})
        result = manager.import_module("P")
        assert result.errors[0].chain == ["P", "Q", "R", "P"]

    def test_diamond_is_not_a_cycle(self, manager, module_root):
        make_module(module_root, "Leaf", manifest={"RootModule": "Leaf.psm1"},
                    files={"Leaf.psm1": script_module("Get-Leaf")})
        make_module(module_root, "Left", manifest={"RequiredModules": ["Leaf"]})
        make_module(module_root, "Right", manifest={"RequiredModules": ["Leaf"]})
        make_module(module_root, "Top", manifest={"RequiredModules": ["Left", "Right"]})
        result = manager.import_module("Top")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert not result.errors


class TestNestingLimits:
    """Nested manifest chains are bounded; a manifest nesting itself fails fast."""

    @staticmethod
    def _chain(module_root, length):
        module_dir = module_root / "Deep"
        for level in range(length):
            name = "Deep" if level == 0 else f"Deep{level}"
            fields = {"ModuleVersion": "1.0"}
            if level + 1 < length:
                fields["NestedModules"] = [f"Deep{level + 1}.psd1"]
            write_file(module_dir / f"{name}.psd1", manifest_text(fields))

    def test_chain_at_the_limit_loads(self, manager, module_root):
        self._chain(module_root, MAX_MODULE_NESTING_DEPTH)
        result = manager.import_module("Deep")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert not result.errors

    def test_chain_past_the_limit_fails(self, manager, session, module_root):
        self._chain(module_root, MAX_MODULE_NESTING_DEPTH + 1)
        result = manager.import_module("Deep")
        assert not result.success
        assert result.error_ids() == [ErrorId.NESTING_TOO_DEEP]
        assert session.modules == {}

    def test_manifest_loading_itself_fails_fast(self, manager, session, module_root):
        write_file(module_root / "Loop" / "Loop.psd1",
                   manifest_text({"ModuleVersion": "1.0", "NestedModules": ["Inner.psd1"]}))
        write_file(module_root / "Loop" / "Inner.psd1",
                   manifest_text({"ModuleVersion": "1.0", "NestedModules": ["Loop.psd1"]}))
        result = manager.import_module("Loop")
        assert not result.success
        assert result.error_ids() == [ErrorId.NESTING_TOO_DEEP]
        assert "loads itself" in result.errors[0].message
        assert session.modules == {}


class TestOtherModuleKinds:
    """Binary, CIM, workflow and ScriptsToProcess handling."""

    def test_binary_module(self, manager, session, module_root):
        write_binary(module_root / "Gizmo" / "Gizmo.dll", cmdlets=["Get-Gizmo"], providers=["GizmoStore"],
                     file_version="3.0.0.0")
        result = manager.import_module("Gizmo")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert result.module.module_type == ModuleType.BINARY
        assert session.get_command("Get-Gizmo").kind == CommandKind.CMDLET
        assert "gizmostore" in session.providers

    def test_cim_module(self, manager, session, module_root):
        write_file(module_root / "Gadget" / "Gadget.cdxml", cdxml_text())
        result = manager.import_module("Gadget")
        assert result.module.module_type == ModuleType.CIM
        assert session.get_command("New-GadgetItem") is not None

    def test_workflow_not_supported(self, manager, module_root):
        make_module(module_root, "Flow", manifest={"RootModule": "Flow.xaml"}, files={"Flow.xaml": "<Activity />"})
        result = manager.import_module("Flow")
        assert not result.success
        assert result.error_ids() == [ErrorId.WORKFLOW_NOT_SUPPORTED]

    def test_workflow_supported_host(self, module_root, cache):
        path = write_file(module_root / "Flow" / "Flow.xaml", "<Activity />")
        host = HostEnvironment(culture="en-US", supports_workflows=True)
        manager = ModuleManager(search_paths=[str(module_root)], host=host, cache=cache)
        result = manager.import_module(str(path))
        assert result.module.module_type == ModuleType.WORKFLOW
        assert list(result.module.exported_functions) == ["Flow"]

    def test_scripts_to_process_run_in_caller_session(self, manager, session, module_root):
        make_module(module_root, "Setup", manifest={"ScriptsToProcess": ["init.ps1"]},
                    files={"init.ps1": script_module("Initialize-Setup", extra="$SetupReady = $true\n")})
        result = manager.import_module("Setup")
        assert result.success, f"Import failed: {result.get_errors()}"
        assert session.get_command("Initialize-Setup").module is None
        assert session.get_variable("SetupReady").value is True
        manager.remove_module("Setup")
        assert session.get_command("Initialize-Setup") is not None


class TestRemoveAndReload:
    """Remove-Module reverses an import; force reload rebuilds it."""

    def test_remove_reverses_import(self, manager, session, module_root):
        make_module(module_root, "Typed",
                    manifest={"RootModule": "Typed.psm1", "TypesToProcess": ["Typed.types.ps1xml"],
                              "FormatsToProcess": ["Typed.format.ps1xml"]},
                    files={"Typed.psm1": script_module("Get-Typed", extra="Set-Alias gt Get-Typed\n"
                                                                          "Export-ModuleMember -Function * -Alias *\n"),
                           "Typed.types.ps1xml": "<Types />", "Typed.format.ps1xml": "<Configuration />"})
        result = manager.import_module("Typed")
        assert len(session.type_files) == 1 and len(session.format_files) == 1
        assert session.get_command("gt") is not None

        removed = manager.remove_module("Typed")
        assert removed == [result.module]
        assert session.modules == {}
        assert session.get_command("Get-Typed") is None
        assert session.get_command("gt") is None
        assert session.type_files == [] and session.format_files == []
        assert result.module.session is None

    def test_remove_keeps_required_modules(self, manager, session, module_root):
        make_module(module_root, "Core2", manifest={"RootModule": "Core2.psm1"},
                    files={"Core2.psm1": script_module("Get-Core")})
        make_module(module_root, "User2", manifest={"RequiredModules": ["Core2"]})
        manager.import_module("User2")
        manager.remove_module("User2")
        assert [m.name for m in session.modules.values()] == ["Core2"]

    def test_remove_leaves_other_session_instance(self, manager, session, widgets):
        other = SessionState("other")
        manager.import_module("Widgets")
        manager.import_module("Widgets", session=other)
        manager.remove_module("Widgets", session=other)
        assert other.get_command("Get-Widget") is None
        assert session.get_command("Get-Widget") is not None

    def test_remove_unknown(self, manager):
        from cmdhost.shared import MissingModuleError
        with pytest.raises(MissingModuleError):
            manager.remove_module("NotLoaded")

    def test_on_remove_hook(self, manager, widgets):
        module = manager.import_module("Widgets").module
        calls = []
        module.on_remove = calls.append
        manager.remove_module(module)
        assert calls == [module]

    def test_force_reload_reads_disk_again(self, manager, session, widgets):
        first = manager.import_module("Widgets").module
        write_file(widgets.parent / "Widgets.psm1", script_module("Get-Widget", "Get-Extra"))
        second = manager.import_module("Widgets", options=ImportOptions(force_reload=True)).module
        assert second is not first
        assert set(second.exported_functions) == {"Get-Widget", "Get-Extra"}
        assert list(session.modules.values()) == [second]
        assert session.get_command("Get-Extra").module is second

    def test_registered_instance_of_other_type_is_rebuilt(self, manager, session, widgets):
        from cmdhost.modules.module_info import ResolvedModule
        from cmdhost.modules.module_loader import ResolutionContext
        stale = ResolvedModule(path=str(widgets), name="Widgets", module_type=ModuleType.MANIFEST)
        session.register_module(stale)
        rebuilt = manager.resolver.resolve_manifest(str(widgets), ResolutionContext.for_import(session))
        assert rebuilt is not stale
        assert rebuilt.module_type == ModuleType.SCRIPT
        assert str(widgets) not in session.modules

    def test_registered_instance_of_same_type_is_reused(self, manager, session, widgets):
        from cmdhost.modules.module_info import ResolvedModule
        from cmdhost.modules.module_loader import ResolutionContext
        current = ResolvedModule(path=str(widgets), name="Widgets", module_type=ModuleType.SCRIPT)
        session.register_module(current)
        assert manager.resolver.resolve_manifest(str(widgets), ResolutionContext.for_import(session)) is current


class TestDynamicModules:
    """New-Module style in-memory modules."""

    def test_new_dynamic_module(self, manager, session):
        module = manager.new_dynamic_module("Dyn", functions={"Get-Dyn": "{ 1 }", "Hide-Dyn": "{ 2 }"},
                                            variables={"DynValue": 7}, export_functions=["Get-*"])
        assert module.path is None
        assert module.module_type == ModuleType.DYNAMIC
        assert session.get_command("Get-Dyn").module is module
        assert session.get_command("Hide-Dyn") is None
        assert session.get_variable("DynValue").value == 7
        assert session.modules["Dyn"] is module

        manager.remove_module("Dyn")
        assert session.get_command("Get-Dyn") is None

    def test_unnamed_dynamic_module(self, manager):
        module = manager.new_dynamic_module(functions={"Get-X": "{ }"}, import_into_session=False)
        assert module.name.startswith("__DynamicModule_")
        assert module.session is None

    def test_separate_sessions(self, manager, widgets):
        other = SessionState("other")
        manager.import_module("Widgets", session=other)
        assert other.get_command("Get-Widget") is not None
        assert manager.session.get_command("Get-Widget") is None
