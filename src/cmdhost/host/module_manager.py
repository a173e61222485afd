"""
Module Manager

Import-Module / Get-Module / Remove-Module / Test-ModuleManifest /
New-Module surface over the resolver, binder and lifecycle manager.

Orchestrates one call at a time:
- builds the resolution context
- applies the already-loaded and name->path cache shortcuts
- registers the module and binds its exports
- collects diagnostics into an ImportResult
"""

import dataclasses
import logging
import os
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

from ..frontend import DataEvaluator
from ..modules.cache import ModuleCache, shared_cache
from ..modules.export_binder import ExportBinder, ImportReport
from ..modules.lifecycle import LifecycleManager
from ..modules.manifest import MANIFEST_SCHEMA, ManifestLoader, check_file_fields
from ..modules.manifest_writer import ManifestWriter, default_manifest
from ..modules.module_info import ImportOptions, ModuleReference, ModuleType, ProcessingFlags, ResolvedModule
from ..modules.module_loader import ModuleResolver, ResolutionContext
from ..modules.path_resolver import PathResolver
from ..runtime.environment import HostEnvironment
from ..runtime.session import SessionState
from ..shared import ErrorReporter, MissingModuleError, ModuleError
from ..shared.wildcard import compile_patterns, matches_any
from ..utils.config import DYNAMIC_MODULE_PREFIX, MODULE_EXTENSION_PRIORITY, module_search_paths
from ..utils.io_utils import module_base_name, module_extension

logger = logging.getLogger(__name__)


class ImportResult:
    """Outcome of one manager call"""
    def __init__(
        self,
        module: Optional[ResolvedModule] = None,
        report: Optional[ImportReport] = None,
        errors: Optional[List[ModuleError]] = None,
        reporter: Optional[ErrorReporter] = None,
        success: bool = False
    ):
        self.module = module
        self.report = report
        self.errors = errors if errors is not None else []
        self.reporter = reporter
        self.success = success

    def has_errors(self) -> bool:
        return bool(self.errors)

    def error_ids(self) -> List[str]:
        return [e.error_id for e in self.errors]

    def get_errors(self) -> List[str]:
        if self.reporter is not None and self.reporter.has_errors():
            return [self.reporter.format_all_errors(color=False)]
        return [str(e) for e in self.errors]


class ModuleManager:
    """
    Owns the collaborators shared by every call: path resolver, manifest
    loader, resolver, binder, cache and lifecycle manager, plus a default
    session.
    """

    def __init__(self,
                 search_paths: Optional[Sequence[str]] = None,
                 host: Optional[HostEnvironment] = None,
                 cache: Optional[ModuleCache] = None,
                 session: Optional[SessionState] = None,
                 cwd: Optional[str] = None):
        self.host = host or HostEnvironment.current()
        self.cache = cache if cache is not None else shared_cache()
        self.session = session or SessionState()
        self.manifest_loader = ManifestLoader(DataEvaluator(), self.host)
        self.path_resolver = PathResolver(
            search_paths if search_paths is not None else module_search_paths(),
            identity_reader=self.manifest_loader.read_identity,
            cwd=cwd,
        )
        self.binder = ExportBinder()
        self.resolver = ModuleResolver(
            self.path_resolver,
            self.manifest_loader,
            cache=self.cache,
            host=self.host,
            binder=self.binder,
        )
        self.lifecycle = LifecycleManager(self.resolver, self.cache, [self.session])
        self.writer = ManifestWriter()

    # ------------------------------------------------------------------
    # Import-Module
    # ------------------------------------------------------------------

    def import_module(self,
                      name: Union[str, ModuleReference],
                      session: Optional[SessionState] = None,
                      prefix: Optional[str] = None,
                      options: Optional[ImportOptions] = None,
                      strict: bool = False,
                      required_version: Optional[str] = None,
                      minimum_version: Optional[str] = None,
                      maximum_version: Optional[str] = None,
                      guid: Optional[str] = None,
                      flags: Optional[ProcessingFlags] = None) -> ImportResult:
        """
        Resolve name and bind its exports into session.

        Validation errors accumulate in the result; strict stops at the
        first one. Fatal errors (cycles, load failures) end the call.
        flags overrides the strict switch; with write_errors off the
        errors are still returned but not reported, and write_warnings
        controls the naming-convention warning.
        """
        if isinstance(name, ModuleReference):
            ref = name
        else:
            ref = ModuleReference.create(name, required_version, minimum_version, maximum_version, guid)
        if PathResolver.is_path_reference(ref.name):
            ref = dataclasses.replace(ref, name=self.path_resolver.absolute(ref.name))
        session = session or self.session
        self.lifecycle.add_session(session)
        options = options or ImportOptions()
        if flags is not None:
            flags = dataclasses.replace(flags)
        else:
            flags = ProcessingFlags.strict() if strict else ProcessingFlags()
        if options.force_reload:
            flags.force = True
        reporter = ErrorReporter()
        self.binder.reporter = reporter
        ctx = ResolutionContext.for_import(session, flags, options)

        logger.debug(f"Import-Module {ref.describe()} into session '{session.name}'")
        try:
            module = self._resolve_for_import(ref, ctx)
        except ModuleError as e:
            logger.debug(f"Import of {ref.name} failed: {e}")
            ctx.errors.append(e)
            module = None

        report = None
        if module is not None:
            module.session = session
            session.register_module(module)
            effective_prefix = prefix if prefix is not None else module.prefix
            report = self.binder.import_members(module, session, effective_prefix or "", options,
                                                write_warnings=flags.write_warnings)
            if self._uses_name_cache(ref, options):
                self.cache.remember_path(ref.name, module.path, self.path_resolver.search_paths)

        if flags.write_errors:
            for error in ctx.errors:
                reporter.report_exception(error)
        return ImportResult(module=module, report=report, errors=list(ctx.errors), reporter=reporter,
                            success=module is not None)

    def _resolve_for_import(self, ref: ModuleReference, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        existing = self._reusable(ref, ctx)
        if existing is not None:
            return existing

        if self._uses_name_cache(ref, ctx.options):
            cached = self.cache.lookup_path(ref.name, self.path_resolver.search_paths)
            if cached is not None:
                logger.debug(f"Name cache hit: {ref.name} -> {cached}")
                module = self.resolver.load_module_file(cached, ctx)
                if module is not None:
                    return module
                if ctx.flags.bail_on_first_error and ctx.errors:
                    return None

        return self.resolver.resolve_reference(ref, ctx)

    def _reusable(self, ref: ModuleReference, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        """
        Already-loaded module to reuse instead of reloading.

        For a rooted path the loaded instance is reused when no version
        constraint applies, when it satisfies the constraint, or when it is
        not a manifest module. Forced imports evict it instead.
        """
        if PathResolver.is_rooted(ref.name):
            path = self.path_resolver.absolute(ref.name)
            loaded = [m for m in ctx.session.modules.values()
                      if m.path and (m.path == path or m.root_module_path == path)]
            existing = loaded[0] if loaded else None
            if existing is not None:
                reuse = (not ref.has_version_constraint
                         or existing.module_type != ModuleType.MANIFEST
                         or ref.matches(existing.version, existing.guid))
                if not reuse:
                    existing = None
        else:
            existing = self.lifecycle.is_already_loaded(ref, ctx.session)

        if existing is None:
            return None
        if ctx.options.force_reload:
            logger.debug(f"Force reload of {existing.name}")
            self.lifecycle.force_reload(existing)
            return None
        logger.debug(f"Reusing loaded module {existing.name}")
        return existing

    @staticmethod
    def _uses_name_cache(ref: ModuleReference, options: ImportOptions) -> bool:
        return (not PathResolver.is_path_reference(ref.name) and not ref.has_version_constraint
                and ref.guid is None and not options.force_reload)

    # ------------------------------------------------------------------
    # Get-Module
    # ------------------------------------------------------------------

    def get_module(self,
                   name: Optional[Union[str, Sequence[str]]] = None,
                   list_available: bool = False,
                   session: Optional[SessionState] = None) -> List[ResolvedModule]:
        """Loaded modules of session, or with list_available every module on the search path."""
        names = [name] if isinstance(name, str) else name
        patterns = compile_patterns(names)
        if not list_available:
            session = session or self.session
            return [m for m in session.modules.values() if matches_any(m.name, patterns)]

        found: List[ResolvedModule] = []
        seen: set = set()
        for path in self._available_paths():
            if path in seen or not matches_any(module_base_name(path), patterns):
                continue
            seen.add(path)
            found.append(self.lifecycle.analyze_for_discovery(path))
        return found

    def _available_paths(self) -> List[str]:
        paths: List[str] = []
        for root in self.path_resolver.search_paths:
            try:
                entries = sorted(os.listdir(root))
            except OSError as e:
                logger.debug(f"Skipping search path {root}: {e}")
                continue
            for entry in entries:
                full = os.path.join(root, entry)
                if os.path.isdir(full):
                    paths.extend(self.path_resolver.candidate_paths(full))
                elif module_extension(entry) in MODULE_EXTENSION_PRIORITY:
                    paths.append(os.path.abspath(full))
        return paths

    # ------------------------------------------------------------------
    # Remove-Module
    # ------------------------------------------------------------------

    def remove_module(self, name: Union[str, ResolvedModule],
                      session: Optional[SessionState] = None) -> List[ResolvedModule]:
        session = session or self.session
        if isinstance(name, ResolvedModule):
            targets = [name]
        else:
            patterns = compile_patterns([name])
            targets = [m for m in session.modules.values() if matches_any(m.name, patterns)]
        if not targets:
            raise MissingModuleError(f"No modules were removed. Verify that the specification of modules to"
                                     f" remove is correct and those modules exist in the runspace.",
                                     path=str(name))
        for module in targets:
            self.lifecycle.remove(module)
        return targets

    # ------------------------------------------------------------------
    # Test-ModuleManifest / New-ModuleManifest
    # ------------------------------------------------------------------

    def test_manifest(self, path: str) -> ImportResult:
        """Strict validation plus existence checks for every file-valued member."""
        path = os.path.abspath(path)
        reporter = ErrorReporter()
        flags = ProcessingFlags(load_elements=False)
        result = self.manifest_loader.load(path, MANIFEST_SCHEMA, flags)
        errors: List[ModuleError] = list(result.errors)
        module = None
        if result.table is not None:
            errors.extend(check_file_fields(result.table, os.path.dirname(path)))
            ctx = ResolutionContext(flags=flags)
            module = self.resolver.resolve_graph(result.table, ctx, path)
            errors.extend(ctx.errors)
        for error in errors:
            reporter.report_exception(error)
        return ImportResult(module=module, errors=errors, reporter=reporter,
                            success=module is not None and not errors)

    def new_manifest(self, path: str, **fields: Any) -> Dict[str, Any]:
        table = default_manifest(**fields)
        self.writer.write(path, table)
        return table

    # ------------------------------------------------------------------
    # New-Module
    # ------------------------------------------------------------------

    def new_dynamic_module(self,
                           name: Optional[str] = None,
                           functions: Optional[Dict[str, str]] = None,
                           variables: Optional[Dict[str, Any]] = None,
                           aliases: Optional[Dict[str, str]] = None,
                           export_functions: Optional[Sequence[str]] = None,
                           session: Optional[SessionState] = None,
                           import_into_session: bool = True) -> ResolvedModule:
        """
        In-memory module with no path, registered under its bare name.

        Every function is exported unless export_functions narrows the set;
        variables and aliases are exported only when given.
        """
        functions = dict(functions or {})
        module = ResolvedModule(
            path=None,
            name=name or f"{DYNAMIC_MODULE_PREFIX}{uuid.uuid4()}",
            module_type=ModuleType.DYNAMIC,
        )
        patterns = compile_patterns(export_functions)
        module.exported_functions = {n: body for n, body in functions.items() if matches_any(n, patterns)}
        module.detected_functions = dict(functions)
        module.exported_variables = dict(variables or {})
        module.exported_aliases = dict(aliases or {})
        if import_into_session:
            session = session or self.session
            self.lifecycle.add_session(session)
            module.session = session
            session.register_module(module)
            self.binder.import_members(module, session)
        logger.debug(f"New dynamic module {module.name}: {list(module.exported_functions)}")
        return module
