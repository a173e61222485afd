"""
Module caches.

Discovery-analysis results, binary-analysis results and the name -> path
cache, owned by one explicit cache object. `shared_cache()` is the
process-wide instance used by default; tests build their own.

Entries are only dropped by explicit eviction (remove / force reload) or
`clear()`.
"""

import logging
import os
import threading
from typing import Callable, Dict, Optional, Sequence, Set, Tuple, TypeVar

from .module_info import ResolvedModule

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _path_key(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


def _name_key(name: str, search_paths: Sequence[str]) -> Tuple[str, Tuple[str, ...]]:
    # Managers with different search roots must not see each other's hits
    return name.lower(), tuple(_path_key(p) for p in search_paths)


class ModuleCache:
    """Shared mutable caches guarded by one lock around read-modify-write sequences."""

    def __init__(self):
        self._lock = threading.RLock()
        self._analysis: Dict[str, ResolvedModule] = {}
        self._binary: Dict[Tuple[str, float], object] = {}
        self._name_to_path: Dict[Tuple[str, Tuple[str, ...]], str] = {}
        self._in_progress: Set[str] = set()

    # ------------------------------------------------------------------
    # Discovery analysis
    # ------------------------------------------------------------------

    def get_analysis(self, path: str) -> Optional[ResolvedModule]:
        with self._lock:
            return self._analysis.get(_path_key(path))

    def put_analysis(self, path: str, module: ResolvedModule) -> None:
        with self._lock:
            self._analysis[_path_key(path)] = module

    def begin_analysis(self, path: str) -> bool:
        """Mark path as being analyzed; False when it already is (re-entrant call)."""
        key = _path_key(path)
        with self._lock:
            if key in self._in_progress:
                return False
            self._in_progress.add(key)
            return True

    def end_analysis(self, path: str) -> None:
        with self._lock:
            self._in_progress.discard(_path_key(path))

    # ------------------------------------------------------------------
    # Binary analysis (keyed by path and modification time)
    # ------------------------------------------------------------------

    def binary_analysis(self, path: str, analyze: Callable[[str], T]) -> T:
        try:
            mtime = os.path.getmtime(path)
        except OSError:
            mtime = 0.0
        key = (_path_key(path), mtime)
        with self._lock:
            if key in self._binary:
                return self._binary[key]  # type: ignore[return-value]
            result = analyze(path)
            self._binary[key] = result
            return result

    # ------------------------------------------------------------------
    # Name -> path
    # ------------------------------------------------------------------

    def lookup_path(self, name: str, search_paths: Sequence[str] = ()) -> Optional[str]:
        """
        Cached path for a bare module name under the given search roots;
        stale entries (file gone) are evicted.
        """
        key = _name_key(name, search_paths)
        with self._lock:
            path = self._name_to_path.get(key)
            if path is not None and not os.path.exists(path):
                logger.debug(f"ModuleCache: evicting stale path {path} for '{name}'")
                del self._name_to_path[key]
                return None
            return path

    def remember_path(self, name: str, path: str, search_paths: Sequence[str] = ()) -> None:
        with self._lock:
            self._name_to_path[_name_key(name, search_paths)] = path

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def evict(self, path: Optional[str], name: Optional[str] = None) -> None:
        with self._lock:
            if path:
                key = _path_key(path)
                self._analysis.pop(key, None)
                for binary_key in [k for k in self._binary if k[0] == key]:
                    del self._binary[binary_key]
                for cached in [k for k, p in self._name_to_path.items() if _path_key(p) == key]:
                    del self._name_to_path[cached]
            if name:
                for cached in [k for k in self._name_to_path if k[0] == name.lower()]:
                    del self._name_to_path[cached]

    def clear(self) -> None:
        with self._lock:
            self._analysis.clear()
            self._binary.clear()
            self._name_to_path.clear()
            self._in_progress.clear()


_shared: Optional[ModuleCache] = None
_shared_lock = threading.Lock()


def shared_cache() -> ModuleCache:
    """Process-wide default cache."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = ModuleCache()
        return _shared
