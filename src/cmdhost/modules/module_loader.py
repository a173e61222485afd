"""
Module Loader

Builds resolved module graphs: resolves references to files, classifies
and loads each file, and walks a manifest's root / nested / required
modules.

This class handles:
- Reference resolution with version / GUID filtering
- Dispatch by file class (manifest, script, binary, CIM, workflow)
- The manifest graph walk with its state machine
- Required-module cycle detection with a scoped visited map
- Export merging and root-module canonicalization
- Rollback of type/format bindings when a manifest fails mid-graph
"""

import copy
import functools
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..runtime.environment import HostEnvironment
from ..runtime.session import SessionState
from ..shared import (
    CyclicDependencyError,
    ErrorId,
    ManifestInvalidError,
    MissingModuleError,
    ModuleError,
    ModuleLoadError,
    NotSupportedError,
)
from ..shared.wildcard import MATCH_ALL, compile_patterns, contains_wildcard, literal_names, matches_any
from ..utils.config import (
    BINARY_EXTENSION,
    CIM_EXTENSION,
    MANIFEST_EXTENSION,
    MAX_MODULE_NESTING_DEPTH,
    PRECOMPILED_BINARY_EXTENSION,
    SCRIPT_EXTENSION,
    SCRIPT_MODULE_EXTENSION,
    WORKFLOW_EXTENSION,
)
from ..utils.io_utils import module_base_name, module_extension
from .binary_analyzer import CimModuleAnalyzer, StaticBinaryAnalyzer
from .cache import ModuleCache
from .export_binder import ExportBinder
from .manifest import MANIFEST_SCHEMA, ManifestLoader, to_module_specs
from .module_info import ImportOptions, ModuleReference, ModuleType, ProcessingFlags, ResolvedModule, table_get
from .path_resolver import PathResolver
from .script_host import StaticScriptHost

logger = logging.getLogger(__name__)

_EXTENSION_TYPES = {
    MANIFEST_EXTENSION: ModuleType.MANIFEST,
    PRECOMPILED_BINARY_EXTENSION: ModuleType.BINARY,
    BINARY_EXTENSION: ModuleType.BINARY,
    SCRIPT_MODULE_EXTENSION: ModuleType.SCRIPT,
    SCRIPT_EXTENSION: ModuleType.SCRIPT,
    CIM_EXTENSION: ModuleType.CIM,
    WORKFLOW_EXTENSION: ModuleType.WORKFLOW,
}

_NOT_FOUND_LEAD = {
    ErrorId.MODULE_NOT_FOUND: "The specified module",
    ErrorId.MODULE_WITH_VERSION_NOT_FOUND: "The specified module",
    ErrorId.REQUIRED_MODULE_NOT_FOUND: "The required module",
    ErrorId.NESTED_MODULE_NOT_FOUND: "The nested module",
    ErrorId.ROOT_MODULE_NOT_FOUND: "The root module",
}

# Export kinds: (ResolvedModule attribute suffix, manifest field)
_EXPORT_KINDS = (
    ("functions", "FunctionsToExport"),
    ("cmdlets", "CmdletsToExport"),
    ("aliases", "AliasesToExport"),
    ("variables", "VariablesToExport"),
)

_METADATA_FIELDS = (
    ("description", "Description", ""),
    ("author", "Author", ""),
    ("company_name", "CompanyName", ""),
    ("copyright", "Copyright", ""),
    ("private_data", "PrivateData", None),
    ("help_info_uri", "HelpInfoURI", ""),
    ("prefix", "DefaultCommandPrefix", ""),
)

_LIST_FIELDS = (
    ("file_list", "FileList"),
    ("module_list", "ModuleList"),
    ("compatible_editions", "CompatiblePSEditions"),
    ("required_assemblies", "RequiredAssemblies"),
    ("scripts_to_process", "ScriptsToProcess"),
    ("type_files", "TypesToProcess"),
    ("format_files", "FormatsToProcess"),
)


class GraphBuildState(Enum):
    START = "Start"
    VALIDATING_FIELDS = "ValidatingFields"
    RESOLVING_ROOT = "ResolvingRoot"
    RESOLVING_NESTED = "ResolvingNested"
    RESOLVING_REQUIRED = "ResolvingRequired"
    MERGING_EXPORTS = "MergingExports"
    BOUND = "Bound"
    FAILED = "Failed"


class _GraphFailed(Exception):
    """Internal: bail_on_first_error stopped the walk; surfaces as a None result."""


@dataclass
class ResolutionContext:
    """
    State of one top-level resolution call.

    visited maps the identity of every manifest currently being resolved to
    its declared required modules; resolution_path holds the same modules'
    display names in order. Both are popped when a subtree finishes, so
    they describe exactly the current path from the top-level module.
    """
    flags: ProcessingFlags = field(default_factory=ProcessingFlags)
    session: Optional[SessionState] = None
    options: ImportOptions = field(default_factory=ImportOptions)
    use_schema: bool = True
    visited: Dict[str, List[ModuleReference]] = field(default_factory=dict)
    resolution_path: List[str] = field(default_factory=list)
    loading_stack: List[str] = field(default_factory=list)
    errors: List[ModuleError] = field(default_factory=list)
    state_log: List[Tuple[str, GraphBuildState]] = field(default_factory=list)
    depth: int = 0
    # Resolver entry points currently on the stack; only the outermost ends a bail-out
    active_calls: int = 0

    @classmethod
    def for_import(cls, session: SessionState, flags: Optional[ProcessingFlags] = None,
                   options: Optional[ImportOptions] = None) -> "ResolutionContext":
        return cls(flags=flags or ProcessingFlags(), session=session, options=options or ImportOptions())

    @classmethod
    def for_discovery(cls) -> "ResolutionContext":
        return cls(flags=ProcessingFlags.discovery(), use_schema=False)

    @property
    def discovery(self) -> bool:
        """No session: metadata only, exports by declared literal names."""
        return self.session is None


def _top_level(method):
    """The outermost resolver call turns a bail-out into None; nested calls propagate it."""
    @functools.wraps(method)
    def wrapper(self, subject, ctx: ResolutionContext, *args, **kwargs):
        ctx.active_calls += 1
        try:
            return method(self, subject, ctx, *args, **kwargs)
        except _GraphFailed:
            if ctx.active_calls > 1:
                raise
            return None
        finally:
            ctx.active_calls -= 1
    return wrapper


class ModuleResolver:
    """
    Single resolver object with mutually recursive resolve_reference,
    load_module_file, resolve_manifest and resolve_graph. The visited map
    travels in the ResolutionContext, never in resolver state.
    """

    def __init__(self,
                 path_resolver: PathResolver,
                 manifest_loader: ManifestLoader,
                 script_host: Optional[StaticScriptHost] = None,
                 binary_analyzer: Optional[StaticBinaryAnalyzer] = None,
                 cim_analyzer: Optional[CimModuleAnalyzer] = None,
                 cache: Optional[ModuleCache] = None,
                 host: Optional[HostEnvironment] = None,
                 binder: Optional[ExportBinder] = None):
        self.path_resolver = path_resolver
        self.manifest_loader = manifest_loader
        self.script_host = script_host or StaticScriptHost()
        self.binary_analyzer = binary_analyzer or StaticBinaryAnalyzer()
        self.cim_analyzer = cim_analyzer or CimModuleAnalyzer()
        self.cache = cache if cache is not None else ModuleCache()
        self.host = host or manifest_loader.host
        self.binder = binder or ExportBinder()
        # Set by LifecycleManager; used for eviction, reuse and discovery memoization
        self.lifecycle: Optional[Any] = None

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    @_top_level
    def resolve_reference(self, ref: ModuleReference, ctx: ResolutionContext,
                          base_dir: Optional[str] = None,
                          error_id: str = ErrorId.MODULE_NOT_FOUND) -> Optional[ResolvedModule]:
        """Resolve ref to a loaded (or, without a session, analyzed) module; None when not resolvable."""
        candidates = self._candidates(ref, base_dir)
        if not candidates:
            self._record(self._not_found(ref, error_id), ctx)
            return None

        mismatch: Optional[Tuple[str, Any, Optional[str]]] = None
        for path in candidates:
            if module_extension(path) == MANIFEST_EXTENSION and (ref.has_version_constraint or ref.guid):
                version, guid = self.manifest_loader.read_identity(path)
                if not ref.matches(version, guid):
                    mismatch = (path, version, guid)
                    continue
            module = self._load_candidate(path, ctx)
            if module is None:
                continue
            if ref.matches(module.version, module.guid):
                return module
            mismatch = (path, module.version, module.guid)

        if mismatch is not None:
            self._record(self._mismatch(ref, *mismatch), ctx)
        return None

    def _candidates(self, ref: ModuleReference, base_dir: Optional[str]) -> List[str]:
        name = ref.name
        if base_dir and not PathResolver.is_rooted(name):
            local = self.path_resolver.path_candidates(os.path.join(base_dir, name), ref)
            if local or PathResolver.is_path_reference(name):
                return local
        return self.path_resolver.candidate_paths(name, ref)

    def _load_candidate(self, path: str, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        if ctx.discovery and self.lifecycle is not None:
            return self.lifecycle.analyze_for_discovery(path)
        return self.load_module_file(path, ctx)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    @_top_level
    def load_module_file(self, path: str, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        """Classify path by extension and build its module instance."""
        path = os.path.abspath(path)
        ctx.depth += 1
        try:
            if ctx.depth > MAX_MODULE_NESTING_DEPTH:
                raise ModuleLoadError(
                    f"Cannot load '{path}': modules are nested more than {MAX_MODULE_NESTING_DEPTH} levels deep.",
                    ErrorId.NESTING_TOO_DEEP, path=path,
                )
            key = os.path.normcase(path)
            if key in ctx.loading_stack:
                raise ModuleLoadError(f"The module '{path}' loads itself through its nested modules.",
                                      ErrorId.NESTING_TOO_DEEP, path=path)
            ctx.loading_stack.append(key)
            try:
                return self._dispatch(path, ctx)
            except ModuleError as e:
                if not ctx.discovery:
                    raise
                logger.debug(f"Discovery of {path} failed, returning placeholder: {e}")
                ctx.errors.append(e)
                return self.placeholder(path)
            finally:
                ctx.loading_stack.pop()
        finally:
            ctx.depth -= 1

    def _dispatch(self, path: str, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        ext = module_extension(path)
        logger.debug(f"Loading {path} as {ext or 'unknown'} (depth {ctx.depth})")
        if ext == MANIFEST_EXTENSION:
            return self.resolve_manifest(path, ctx)
        if ext == WORKFLOW_EXTENSION:
            return self._load_workflow(path)
        if ext in (SCRIPT_MODULE_EXTENSION, SCRIPT_EXTENSION):
            return self._load_script(path)
        if ext in (PRECOMPILED_BINARY_EXTENSION, BINARY_EXTENSION):
            return self._load_binary(path)
        if ext == CIM_EXTENSION:
            return self._load_cim(path)
        raise ModuleLoadError(f"'{path}' is not a recognized module file.", ErrorId.LOAD_FAILURE, path=path)

    def _load_script(self, path: str) -> ResolvedModule:
        analysis = self.script_host.analyze(path)
        module = ResolvedModule(path=path, name=module_base_name(path), module_type=ModuleType.SCRIPT)
        module.detected_functions = dict(analysis.functions)
        module.detected_aliases = dict(analysis.aliases)
        exports = analysis.exports
        if exports is None:
            # No Export-ModuleMember: every function is exported, nothing else
            module.exported_functions = dict(analysis.functions)
            return module
        module.exported_functions = _filter(analysis.functions, compile_patterns(exports.functions or []))
        module.exported_aliases = _filter(analysis.aliases, compile_patterns(exports.aliases or []))
        module.exported_variables = _filter(analysis.variables, compile_patterns(exports.variables or []))
        return module

    def _load_binary(self, path: str) -> ResolvedModule:
        analysis = self.cache.binary_analysis(path, self.binary_analyzer.analyze)
        module = ResolvedModule(path=path, name=module_base_name(path), module_type=ModuleType.BINARY,
                                version=analysis.version)
        module.exported_cmdlets = {name: path for name in analysis.command_names}
        module.detected_cmdlets = dict(module.exported_cmdlets)
        module.providers = list(analysis.providers)
        return module

    def _load_cim(self, path: str) -> ResolvedModule:
        analysis = self.cache.binary_analysis(path, self.cim_analyzer.analyze)
        module = ResolvedModule(path=path, name=module_base_name(path), module_type=ModuleType.CIM,
                                version=analysis.version)
        module.exported_functions = {name: "" for name in analysis.command_names}
        module.detected_functions = dict(module.exported_functions)
        return module

    def _load_workflow(self, path: str) -> ResolvedModule:
        if not self.host.supports_workflows:
            raise NotSupportedError(
                f"Cannot load the workflow '{path}': workflows are not supported by this host.", path=path)
        if not os.path.isfile(path):
            raise MissingModuleError(f"The workflow file '{path}' was not found.", ErrorId.FILE_NOT_FOUND, path=path)
        module = ResolvedModule(path=path, name=module_base_name(path), module_type=ModuleType.WORKFLOW)
        module.exported_functions = {module.name: path}
        module.detected_functions = dict(module.exported_functions)
        return module

    @staticmethod
    def placeholder(path: str, null_exports: bool = False) -> ResolvedModule:
        """Discovery stand-in for a module that could not be analyzed."""
        module = ResolvedModule(
            path=os.path.abspath(path),
            name=module_base_name(path),
            module_type=_EXTENSION_TYPES.get(module_extension(path), ModuleType.MANIFEST),
            had_errors_loading=not null_exports,
        )
        if null_exports:
            module.detected_functions = None
            module.detected_cmdlets = None
            module.detected_aliases = None
        return module

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    @_top_level
    def resolve_manifest(self, path: str, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        """Load and validate a manifest, then build its graph."""
        schema = MANIFEST_SCHEMA if ctx.use_schema else None
        result = self.manifest_loader.load(path, schema, ctx.flags)
        for error in result.errors:
            self._record(error, ctx)
        if result.table is None:
            return self.placeholder(path) if ctx.discovery else None
        return self.resolve_graph(result.table, ctx, path, had_errors=bool(result.errors))

    @_top_level
    def resolve_graph(self, table: Dict[str, Any], ctx: ResolutionContext, path: str,
                      had_errors: bool = False) -> Optional[ResolvedModule]:
        """
        Build the module graph of a validated manifest table.

        START -> VALIDATING_FIELDS -> RESOLVING_ROOT -> RESOLVING_NESTED
        -> RESOLVING_REQUIRED -> MERGING_EXPORTS -> BOUND, or FAILED.
        """
        path = os.path.abspath(path)
        name = module_base_name(path)
        base_dir = os.path.dirname(path)
        errors_before = len(ctx.errors)
        self._transition(ctx, name, GraphBuildState.START)

        existing = self._registered_instance(path, table, ctx)
        if existing is not None:
            self._transition(ctx, name, GraphBuildState.BOUND)
            return existing

        manifest_module = ResolvedModule(
            path=path,
            name=name,
            module_type=ModuleType.MANIFEST,
            version=table.get("ModuleVersion"),
            guid=table.get("GUID"),
        )
        self._copy_metadata(table, manifest_module, base_dir)
        required_refs: List[ModuleReference] = list(table.get("RequiredModules", []))
        manifest_module.required_references = required_refs

        bound_files: List[str] = []
        identity = name.lower()
        pushed = identity not in ctx.visited
        if pushed:
            ctx.visited[identity] = required_refs
            ctx.resolution_path.append(name)
        try:
            self._transition(ctx, name, GraphBuildState.VALIDATING_FIELDS)
            self._validate_fields(table, path, base_dir, ctx)
            self._process_scripts(manifest_module, ctx)

            self._transition(ctx, name, GraphBuildState.RESOLVING_ROOT)
            root = self._resolve_root(table.get("RootModule"), path, base_dir, ctx)

            self._transition(ctx, name, GraphBuildState.RESOLVING_NESTED)
            workflow_functions: Dict[str, str] = {}
            for ref in table.get("NestedModules", []):
                if module_extension(ref.name) == WORKFLOW_EXTENSION:
                    workflow = self._load_workflow(os.path.join(base_dir, ref.name))
                    workflow_functions.update(workflow.exported_functions)
                    continue
                nested = self.resolve_reference(ref, ctx, base_dir, ErrorId.NESTED_MODULE_NOT_FOUND)
                if nested is not None:
                    manifest_module.nested_modules.append(nested)

            self._transition(ctx, name, GraphBuildState.RESOLVING_REQUIRED)
            if not ctx.discovery:
                for ref in required_refs:
                    self._check_required_cycle(ref, ctx, path)
                    required = self._resolve_required(ref, ctx)
                    if required is not None:
                        manifest_module.required_modules.append(required)

            self._transition(ctx, name, GraphBuildState.MERGING_EXPORTS)
            self._bind_type_and_format_files(manifest_module, ctx, bound_files)
            canonical = self._merge_exports(manifest_module, root, table, ctx, workflow_functions)
        except (_GraphFailed, ModuleError):
            if ctx.session is not None and bound_files:
                logger.debug(f"Rolling back {len(bound_files)} type/format file(s) of {name}")
                ctx.session.remove_type_and_format_files(bound_files)
            self._transition(ctx, name, GraphBuildState.FAILED)
            raise
        finally:
            if pushed:
                ctx.visited.pop(identity, None)
                ctx.resolution_path.pop()

        if had_errors or len(ctx.errors) > errors_before or any(m.had_errors_loading for m in canonical.nested_modules):
            canonical.had_errors_loading = True
        self._transition(ctx, name, GraphBuildState.BOUND)
        return canonical

    def _transition(self, ctx: ResolutionContext, name: str, state: GraphBuildState) -> None:
        logger.debug(f"Graph {name}: -> {state.value}")
        ctx.state_log.append((name, state))

    def _registered_instance(self, path: str, table: Dict[str, Any],
                             ctx: ResolutionContext) -> Optional[ResolvedModule]:
        """
        Reuse a module already registered under this manifest path.

        An instance whose module type differs from the type the root module
        resolves to is evicted and rebuilt, never reused.
        """
        if ctx.session is None:
            return None
        existing = ctx.session.modules.get(path)
        if existing is None:
            return None
        expected = expected_module_type(table)
        if expected is not None and existing.module_type != expected:
            logger.debug(f"{path}: registered as {existing.module_type.value}, root resolves to {expected.value}; rebuilding")
            self._evict(existing, ctx)
            return None
        if ctx.options.force_reload or ctx.flags.force:
            self._evict(existing, ctx)
            return None
        logger.debug(f"{path}: reusing registered instance")
        return existing

    def _evict(self, module: ResolvedModule, ctx: ResolutionContext) -> None:
        if self.lifecycle is not None:
            self.lifecycle.remove(module)
            return
        ctx.session.remove_by_module(module)
        ctx.session.unregister_module(module)

    def _validate_fields(self, table: Dict[str, Any], path: str, base_dir: str, ctx: ResolutionContext) -> None:
        root_name = table.get("RootModule")
        if root_name and module_extension(root_name) == MANIFEST_EXTENSION:
            self._record(ManifestInvalidError(
                f"The 'RootModule' member of '{path}' cannot be another module manifest.",
                ErrorId.INVALID_MANIFEST_FIELD_VALUE, path=path,
            ), ctx)
        if not ctx.flags.load_elements:
            return
        for assembly in table.get("RequiredAssemblies", []):
            if assembly.lower().endswith(BINARY_EXTENSION) and not os.path.isfile(os.path.join(base_dir, assembly)):
                self._record(MissingModuleError(
                    f"Could not load the required assembly '{assembly}' listed in '{path}'.",
                    ErrorId.REQUIRED_ASSEMBLY_NOT_FOUND, path=os.path.join(base_dir, assembly),
                ), ctx)

    def _process_scripts(self, module: ResolvedModule, ctx: ResolutionContext) -> None:
        """ScriptsToProcess run in the caller's session, outside the module."""
        if ctx.session is None or not ctx.flags.load_elements:
            return
        for script in module.scripts_to_process:
            if not os.path.isfile(script):
                self._record(MissingModuleError(f"The script '{script}' listed in ScriptsToProcess was not found.",
                                                ErrorId.FILE_NOT_FOUND, path=script), ctx)
                continue
            analysis = self.script_host.analyze(script)
            for fn_name, body in analysis.functions.items():
                ctx.session.set_function(fn_name, body)
            for var_name, value in analysis.variables.items():
                ctx.session.set_variable(var_name, value)

    def _resolve_root(self, root_name: Optional[str], path: str, base_dir: str,
                      ctx: ResolutionContext) -> Optional[ResolvedModule]:
        if not root_name or module_extension(root_name) == MANIFEST_EXTENSION:
            return None
        if module_extension(root_name) == WORKFLOW_EXTENSION:
            return self._load_workflow(os.path.join(base_dir, root_name))
        try:
            ref = ModuleReference.create(root_name)
        except ValueError as e:
            self._record(ManifestInvalidError(f"Invalid 'RootModule' in '{path}': {e}",
                                              ErrorId.INVALID_MANIFEST_FIELD_VALUE, path=path), ctx)
            return None
        return self.resolve_reference(ref, ctx, base_dir, ErrorId.ROOT_MODULE_NOT_FOUND)

    def _resolve_required(self, ref: ModuleReference, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        """Reuse a loaded match, otherwise resolve and import into the session's global scope."""
        existing = self._loaded_match(ref, ctx)
        if existing is not None:
            return existing
        module = self.resolve_reference(ref, ctx, None, ErrorId.REQUIRED_MODULE_NOT_FOUND)
        if module is not None and ctx.session is not None and ctx.flags.load_elements:
            module.session = ctx.session
            ctx.session.register_module(module)
            self.binder.import_members(module, ctx.session, module.prefix, ImportOptions(),
                                       write_warnings=ctx.flags.write_warnings)
        return module

    def _loaded_match(self, ref: ModuleReference, ctx: ResolutionContext) -> Optional[ResolvedModule]:
        if self.lifecycle is not None:
            return self.lifecycle.is_already_loaded(ref, ctx.session)
        for module in ctx.session.find_modules(ref.name):
            if ref.matches(module.version, module.guid):
                return module
        return None

    # ------------------------------------------------------------------
    # Cycle detection
    # ------------------------------------------------------------------

    def _check_required_cycle(self, ref: ModuleReference, ctx: ResolutionContext, path: str) -> None:
        """Walk ref's declared requirements ahead of importing it."""
        self._walk_required(ref, ctx, [], path, 0)

    def _walk_required(self, ref: ModuleReference, ctx: ResolutionContext, trail: List[str],
                       path: str, depth: int) -> None:
        identity = ref.identity
        owner = trail[-1] if trail else ctx.resolution_path[-1]
        if identity in ctx.visited:
            ancestors = [n.lower() for n in ctx.resolution_path]
            chain = ctx.resolution_path[ancestors.index(identity):] + trail + [ref.name]
            raise self._cycle(owner, ref.name, chain, path)
        lowered = [t.lower() for t in trail]
        if identity in lowered:
            chain = trail[lowered.index(identity):] + [ref.name]
            raise self._cycle(owner, ref.name, chain, path)
        if depth >= MAX_MODULE_NESTING_DEPTH:
            return
        for child in self._declared_requirements(ref, ctx):
            self._walk_required(child, ctx, trail + [ref.name], path, depth + 1)

    @staticmethod
    def _cycle(owner: str, target: str, chain: List[str], path: str) -> CyclicDependencyError:
        return CyclicDependencyError(
            f"The module '{owner}' cannot be loaded because its required module '{target}' closes a"
            f" cyclic dependency: {' -> '.join(chain)}.",
            edge=(owner, target), chain=chain, path=path,
        )

    def _declared_requirements(self, ref: ModuleReference, ctx: ResolutionContext) -> List[ModuleReference]:
        if ctx.session is not None:
            for module in ctx.session.find_modules(ref.name):
                if ref.matches(module.version, module.guid):
                    return list(module.required_references)
        result = self.path_resolver.resolve(ref.name, ref)
        if not result.found or module_extension(result.path) != MANIFEST_EXTENSION:
            return []
        try:
            raw = self.manifest_loader.read_raw(result.path)
            return to_module_specs(table_get(raw, "RequiredModules"))
        except (ModuleError, ValueError) as e:
            logger.debug(f"Cannot read requirements of {result.path}: {e}")
            return []

    # ------------------------------------------------------------------
    # Export merge
    # ------------------------------------------------------------------

    def _bind_type_and_format_files(self, module: ResolvedModule, ctx: ResolutionContext,
                                    bound_files: List[str]) -> None:
        if ctx.session is None or not ctx.flags.load_elements:
            return
        for type_file in module.type_files:
            if type_file not in ctx.session.type_files:
                ctx.session.add_type_file(type_file)
                bound_files.append(type_file)
        for format_file in module.format_files:
            if format_file not in ctx.session.format_files:
                ctx.session.add_format_file(format_file)
                bound_files.append(format_file)

    def _merge_exports(self, manifest_module: ResolvedModule, root: Optional[ResolvedModule],
                       table: Dict[str, Any], ctx: ResolutionContext,
                       workflow_functions: Dict[str, str]) -> ResolvedModule:
        sources = ([root] if root is not None else []) + manifest_module.nested_modules
        combined: Dict[str, Dict[str, Any]] = {}
        detected: Dict[str, Dict[str, Any]] = {}
        for kind, _ in _EXPORT_KINDS:
            combined[kind] = {}
            detected[kind] = {}
            for source in sources:
                for export_name, value in getattr(source, f"exported_{kind}").items():
                    combined[kind].setdefault(export_name, value)
                if kind != "variables":
                    for export_name, value in (getattr(source, f"detected_{kind}") or {}).items():
                        detected[kind].setdefault(export_name, value)
        for export_name, value in workflow_functions.items():
            combined["functions"].setdefault(export_name, value)
            detected["functions"].setdefault(export_name, value)

        exported: Dict[str, Dict[str, Any]] = {}
        for kind, field_name in _EXPORT_KINDS:
            declared: Optional[List[str]] = table.get(field_name)
            setattr(manifest_module, f"declared_{kind}", declared)
            if ctx.discovery:
                exported[kind] = _discovery_exports(declared, combined[kind])
            else:
                patterns = compile_patterns(declared) if declared is not None else list(MATCH_ALL)
                exported[kind] = _filter(combined[kind], patterns)
        manifest_module.declared_dsc_resources = table.get("DscResourcesToExport")

        canonical = manifest_module if root is None else self._canonicalize_root(copy.copy(root), manifest_module)
        for kind, _ in _EXPORT_KINDS:
            setattr(canonical, f"exported_{kind}", exported[kind])
        canonical.detected_functions = detected["functions"]
        canonical.detected_cmdlets = detected["cmdlets"]
        canonical.detected_aliases = detected["aliases"]
        return canonical

    @staticmethod
    def _canonicalize_root(root: ResolvedModule, manifest_module: ResolvedModule) -> ResolvedModule:
        """The root module instance becomes the module; unset fields come from the manifest."""
        root.root_module_path = root.path
        root.path = manifest_module.path
        root.name = manifest_module.name
        if manifest_module.version is not None:
            root.version = manifest_module.version
        if root.guid is None:
            root.guid = manifest_module.guid
        for attr, _, _ in _METADATA_FIELDS:
            if not getattr(root, attr):
                setattr(root, attr, getattr(manifest_module, attr))
        for attr, _ in _LIST_FIELDS:
            if not getattr(root, attr):
                setattr(root, attr, list(getattr(manifest_module, attr)))
        root.nested_modules = manifest_module.nested_modules
        root.required_modules = manifest_module.required_modules
        root.required_references = manifest_module.required_references
        for kind, _ in _EXPORT_KINDS:
            setattr(root, f"declared_{kind}", getattr(manifest_module, f"declared_{kind}"))
        root.declared_dsc_resources = manifest_module.declared_dsc_resources
        root.providers = root.providers + [p for m in manifest_module.nested_modules for p in m.providers]
        return root

    @staticmethod
    def _copy_metadata(table: Dict[str, Any], module: ResolvedModule, base_dir: str) -> None:
        for attr, field_name, default in _METADATA_FIELDS:
            setattr(module, attr, table.get(field_name, default))
        for attr, field_name in _LIST_FIELDS:
            setattr(module, attr, list(table.get(field_name, [])))
        module.scripts_to_process = [os.path.join(base_dir, p) for p in module.scripts_to_process]
        module.type_files = [os.path.join(base_dir, p) for p in module.type_files]
        module.format_files = [os.path.join(base_dir, p) for p in module.format_files]
        if module.prefix is None:
            module.prefix = ""

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _record(self, error: ModuleError, ctx: ResolutionContext) -> None:
        """Accumulate a validation-style error; stop the walk when bailing."""
        logger.debug(f"Recorded {error.error_id}: {error.message}")
        ctx.errors.append(error)
        if ctx.flags.bail_on_first_error and not ctx.discovery:
            raise _GraphFailed()

    @staticmethod
    def _not_found(ref: ModuleReference, error_id: str) -> MissingModuleError:
        if ref.has_version_constraint and error_id == ErrorId.MODULE_NOT_FOUND:
            error_id = ErrorId.MODULE_WITH_VERSION_NOT_FOUND
        lead = _NOT_FOUND_LEAD.get(error_id, "The module")
        return MissingModuleError(
            f"{lead} '{ref.name}'{version_detail(ref)} was not loaded because no valid module file was found"
            f" in any module directory.",
            error_id, path=ref.name,
        )

    @staticmethod
    def _mismatch(ref: ModuleReference, path: str, version: Any, guid: Optional[str]) -> MissingModuleError:
        if ref.guid is not None and guid is not None and guid.lower() != ref.guid:
            return MissingModuleError(
                f"The module '{ref.name}' at '{path}' has GUID {guid}, which does not match the requested {ref.guid}.",
                ErrorId.GUID_MISMATCH, path=path,
            )
        return MissingModuleError(
            f"The module '{ref.name}' at '{path}' has version {version or 'unknown'},"
            f" which does not satisfy {ref.describe()}.",
            ErrorId.VERSION_MISMATCH, path=path,
        )


def version_detail(ref: ModuleReference) -> str:
    if ref.required_version is not None:
        return f" with version '{ref.required_version}'"
    if ref.minimum_version is not None and ref.maximum_version is not None:
        return f" with version range '{ref.minimum_version}' - '{ref.maximum_version}'"
    if ref.minimum_version is not None:
        return f" with minimum version '{ref.minimum_version}'"
    if ref.maximum_version is not None:
        return f" with maximum version '{ref.maximum_version}'"
    return ""


def expected_module_type(table: Dict[str, Any]) -> Optional[ModuleType]:
    """Type a manifest's module will have once its root module is resolved (None if not knowable)."""
    root = table.get("RootModule")
    if not root:
        return ModuleType.MANIFEST
    return _EXTENSION_TYPES.get(module_extension(root))


def _filter(table: Dict[str, Any], patterns) -> Dict[str, Any]:
    return {name: value for name, value in table.items() if matches_any(name, patterns)}


def _discovery_exports(declared: Optional[List[str]], analyzed: Dict[str, Any]) -> Dict[str, Any]:
    """
    Without a session, declared literal names are taken as written; wildcard
    entries (or no list at all) are matched against the analyzed names.
    """
    result: Dict[str, Any] = {}
    if declared is not None:
        for name in literal_names(declared):
            result[name] = analyzed.get(name, "")
    wildcards = [p for p in declared if contains_wildcard(p)] if declared is not None else ["*"]
    if wildcards:
        for name, value in _filter(analyzed, compile_patterns(wildcards)).items():
            result.setdefault(name, value)
    return result
