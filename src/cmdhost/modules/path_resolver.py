"""
Module Path Resolution

Pure path probing for module references: search-path iteration,
multi-version module directories and extension-priority search.

- Foo        -> <root>/Foo/<version>/Foo.psd1, <root>/Foo/Foo.<ext>, <root>/Foo.<ext>
- Foo.psm1   -> <root>/Foo/Foo.psm1, <root>/Foo.psm1
- ./x/Foo    -> resolved against the current directory (file or module directory)

This class never loads anything and can be shared/reused.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from packaging.version import Version

from ..shared.version import parse_version
from ..utils.config import MANIFEST_EXTENSION, MODULE_EXTENSION_PRIORITY, WORKFLOW_EXTENSION
from ..utils.io_utils import module_base_name, module_extension
from .module_info import ModuleReference

logger = logging.getLogger(__name__)

# (declared ModuleVersion, GUID) read from a manifest without loading it
ManifestIdentity = Tuple[Optional[Version], Optional[str]]
IdentityReader = Callable[[str], ManifestIdentity]

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")
_RECOGNIZED_EXTENSIONS = MODULE_EXTENSION_PRIORITY + (WORKFLOW_EXTENSION,)


@dataclass
class ResolveResult:
    path: Optional[str]
    found: bool
    candidates: List[str] = field(default_factory=list)


class PathResolver:
    """
    Resolves module references to file paths.

    identity_reader is consulted for multi-version directories: a version
    subdirectory only counts when its manifest declares the same version.
    """

    def __init__(self,
                 search_paths: Optional[Sequence[str]] = None,
                 identity_reader: Optional[IdentityReader] = None,
                 cwd: Optional[str] = None):
        self.search_paths: List[str] = list(search_paths or [])
        self.identity_reader = identity_reader
        self.cwd = cwd

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def resolve(self, base: str, constraints: Optional[ModuleReference] = None) -> ResolveResult:
        """First accepted candidate (enumeration order); found=False when nothing matches."""
        candidates = self.candidate_paths(base, constraints)
        if not candidates:
            logger.debug(f"PathResolver: no candidate for '{base}'")
            return ResolveResult(path=None, found=False)
        logger.debug(f"PathResolver: '{base}' -> {candidates[0]} ({len(candidates)} candidates)")
        return ResolveResult(path=candidates[0], found=True, candidates=candidates)

    def candidate_paths(self, base: str, constraints: Optional[ModuleReference] = None) -> List[str]:
        """Every accepted candidate path for base, in search order."""
        if self.is_path_reference(base):
            return self.path_candidates(base, constraints)
        candidates: List[str] = []
        for root in self.search_paths:
            for path in self._candidates_in_root(root, base, constraints):
                if path not in candidates:
                    candidates.append(path)
        return candidates

    def pick_latest(self, candidates: Sequence[str]) -> Optional[str]:
        """Post-filter for callers that want the highest declared version."""
        best: Optional[str] = None
        best_version: Optional[Version] = None
        for path in candidates:
            version = self._declared_version(path)
            if best is None or (version is not None and (best_version is None or version > best_version)):
                best, best_version = path, version
        return best

    # ------------------------------------------------------------------
    # Path classification
    # ------------------------------------------------------------------

    @staticmethod
    def is_rooted(text: str) -> bool:
        return os.path.isabs(text) or bool(_DRIVE_RE.match(text)) or text.startswith("\\\\")

    @classmethod
    def is_path_reference(cls, text: str) -> bool:
        """Rooted or relative path (as opposed to a bare module name)."""
        if cls.is_rooted(text):
            return True
        return text.startswith(("./", "../", ".\\", "..\\")) or "/" in text or "\\" in text

    def absolute(self, text: str) -> str:
        text = text.replace("\\", os.sep) if os.sep != "\\" else text
        if os.path.isabs(text):
            return os.path.normpath(text)
        return os.path.normpath(os.path.join(self.cwd or os.getcwd(), text))

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    def _candidates_in_root(self, root: str, base: str,
                            constraints: Optional[ModuleReference]) -> List[str]:
        ext = module_extension(base)
        if ext in _RECOGNIZED_EXTENSIONS:
            # Explicit file name: <root>/<stem>/<file> then <root>/<file>
            stem = module_base_name(base)
            found = []
            for path in (os.path.join(root, stem, base), os.path.join(root, base)):
                if os.path.isfile(path):
                    found.append(os.path.abspath(path))
            return found

        module_dir = os.path.join(root, base)
        if os.path.isdir(module_dir):
            versioned = self.versioned_candidates(module_dir, base, constraints)
            if versioned:
                return versioned
            in_dir = self.find_with_extensions(os.path.join(module_dir, base))
            if in_dir:
                return [in_dir]
        direct = self.find_with_extensions(os.path.join(root, base))
        return [direct] if direct else []

    def path_candidates(self, text: str, constraints: Optional[ModuleReference] = None) -> List[str]:
        path = self.absolute(text)
        if os.path.isdir(path):
            leaf = os.path.basename(path.rstrip(os.sep))
            versioned = self.versioned_candidates(path, leaf, constraints)
            if versioned:
                return versioned
            in_dir = self.find_with_extensions(os.path.join(path, leaf))
            return [in_dir] if in_dir else []
        if os.path.isfile(path):
            return [path]
        if not module_extension(path):
            found = self.find_with_extensions(path)
            return [found] if found else []
        return []

    def versioned_candidates(self, module_dir: str, name: str,
                             constraints: Optional[ModuleReference] = None) -> List[str]:
        """
        Manifests of a multi-version directory that satisfy constraints.

        Subdirectories are visited in directory-enumeration order; no sorting
        is applied.
        """
        accepted: List[str] = []
        try:
            entries = list(os.scandir(module_dir))
        except OSError as e:
            logger.debug(f"PathResolver: cannot list {module_dir}: {e}")
            return accepted
        for entry in entries:
            if not entry.is_dir():
                continue
            dir_version = parse_version(entry.name)
            if dir_version is None:
                continue
            manifest = os.path.join(entry.path, name + MANIFEST_EXTENSION)
            if not os.path.isfile(manifest):
                continue
            declared, guid = self._read_identity(manifest)
            if declared != dir_version:
                logger.debug(f"PathResolver: {manifest} declares {declared}, directory says {dir_version}; skipped")
                continue
            if constraints is not None and not constraints.matches(dir_version, guid):
                continue
            accepted.append(os.path.abspath(manifest))
        return accepted

    @staticmethod
    def find_with_extensions(base_path: str) -> Optional[str]:
        """base_path + first extension in priority order that exists as a file."""
        for ext in MODULE_EXTENSION_PRIORITY:
            candidate = base_path + ext
            if os.path.isfile(candidate):
                return os.path.abspath(candidate)
        return None

    def _read_identity(self, manifest_path: str) -> "ManifestIdentity":
        if self.identity_reader is None:
            return (None, None)
        return self.identity_reader(manifest_path)

    def _declared_version(self, path: str) -> Optional[Version]:
        if module_extension(path) != MANIFEST_EXTENSION:
            return None
        return self._read_identity(path)[0]
