"""
Discovery cache and module lifecycle.

Memoized discovery analysis, already-loaded checks, removal and forced
reload. Removal reverses everything an import bound, in every session the
manager knows about.
"""

import logging
from typing import List, Optional

from ..runtime.session import SessionState
from .cache import ModuleCache
from .module_info import ModuleReference, ResolvedModule
from .module_loader import ModuleResolver, ResolutionContext
from .path_resolver import PathResolver

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Owns the discovery cache view and the remove / reload operations."""

    def __init__(self, resolver: ModuleResolver,
                 cache: Optional[ModuleCache] = None,
                 sessions: Optional[List[SessionState]] = None):
        self.resolver = resolver
        self.cache = cache if cache is not None else resolver.cache
        self.sessions: List[SessionState] = list(sessions or [])
        resolver.lifecycle = self

    def add_session(self, session: SessionState) -> None:
        if session not in self.sessions:
            self.sessions.append(session)

    def analyze_for_discovery(self, path: str) -> ResolvedModule:
        """
        Lightweight descriptor of the module at path, memoized.

        A path that is already being analyzed further up the stack yields a
        placeholder with no exports instead of recursing.
        """
        cached = self.cache.get_analysis(path)
        if cached is not None:
            return cached
        if not self.cache.begin_analysis(path):
            logger.debug(f"Re-entrant discovery of {path}; returning empty placeholder")
            return ModuleResolver.placeholder(path, null_exports=True)
        try:
            ctx = ResolutionContext.for_discovery()
            module = self.resolver.load_module_file(path, ctx)
            if module is None:
                module = ModuleResolver.placeholder(path)
            if ctx.errors:
                module.had_errors_loading = True
            self.cache.put_analysis(path, module)
            return module
        finally:
            self.cache.end_analysis(path)

    def is_already_loaded(self, ref: ModuleReference,
                          session: Optional[SessionState] = None) -> Optional[ResolvedModule]:
        """A loaded module satisfying ref, searched in session (or every known session)."""
        sessions = [session] if session is not None else self.sessions
        rooted = PathResolver.is_rooted(ref.name)
        for candidate_session in sessions:
            if rooted:
                candidates = [m for m in candidate_session.modules.values()
                              if m.path and (m.path == ref.name or m.root_module_path == ref.name)]
            else:
                candidates = candidate_session.find_modules(ref.name)
            for module in candidates:
                if ref.matches(module.version, module.guid):
                    return module
        return None

    def remove(self, module: ResolvedModule) -> List[str]:
        """
        Reverse an import: commands, aliases, variables, providers and
        type/format files go from every session, the on_remove hook runs,
        nested modules are dropped and cache entries are evicted.
        """
        sessions = list(self.sessions)
        if module.session is not None and module.session not in sessions:
            sessions.append(module.session)

        removed: List[str] = []
        for session in sessions:
            if session.modules.get(module.key) is not module and not session.commands(module):
                continue
            removed.extend(session.remove_by_module(module))
            session.remove_type_and_format_files(module.type_files + module.format_files)
            session.unregister_module(module)

        if module.on_remove is not None:
            module.on_remove(module)

        for nested in module.nested_modules:
            self.cache.evict(nested.path)
        self.cache.evict(module.path, module.name)
        if module.root_module_path:
            self.cache.evict(module.root_module_path)
        module.nested_modules = []
        module.session = None
        logger.debug(f"Removed {module.name}: {len(removed)} binding(s)")
        return removed

    def force_reload(self, module: ResolvedModule) -> Optional[str]:
        """Drop module so the next import re-reads it from disk; returns the path to re-import."""
        path = module.path
        self.remove(module)
        return path
