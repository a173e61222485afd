"""
Restricted data-language evaluator.

Evaluates manifest text to plain Python data. Only the helper commands and
variables named by the caller are reachable; anything else is a
ManifestInvalidError carrying the source location.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

from lark.exceptions import VisitError

from ..shared import ErrorId, ManifestInvalidError, ModuleError
from .parser import Parser, shared_parser
from .transformers import ManifestTransformer
from .transformers.base import HelperFunction

logger = logging.getLogger(__name__)


def _join_path(positional: List[Any], named: Dict[str, Any]) -> str:
    parts = list(positional)
    path = named['path'] if 'path' in named else (parts.pop(0) if parts else None)
    child = named['childpath'] if 'childpath' in named else (parts.pop(0) if parts else None)
    if path is None or child is None:
        raise ValueError("Join-Path requires -Path and -ChildPath")
    extra = named.get('additionalchildpath', parts)
    if not isinstance(extra, list):
        extra = [extra]
    segments = [str(path), str(child)] + [str(e) for e in extra]
    return os.path.join(*segments)


def _convert_from_string_data(positional: List[Any], named: Dict[str, Any]) -> Dict[str, str]:
    text = named.get('stringdata', positional[0] if positional else None)
    if not isinstance(text, str):
        raise ValueError("ConvertFrom-StringData requires a string")
    table: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        if '=' not in line:
            raise ValueError(f"Data line '{line}' is not in 'name=value' format.")
        key, value = line.split('=', 1)
        table[key.strip()] = value.strip()
    return table


DEFAULT_HELPERS: Dict[str, HelperFunction] = {
    'Join-Path': _join_path,
    'ConvertFrom-StringData': _convert_from_string_data,
}


class DataEvaluator:
    """Evaluates manifest text under the restricted-language allow-lists."""

    def __init__(self, parser: Optional[Parser] = None,
                 helpers: Optional[Dict[str, HelperFunction]] = None):
        self._parser = parser
        self.helpers = dict(helpers or DEFAULT_HELPERS)

    @property
    def parser(self) -> Parser:
        if self._parser is None:
            self._parser = shared_parser()
        return self._parser

    def evaluate(self,
                 text: str,
                 allowed_helpers: Iterable[str],
                 allowed_variables: Iterable[str],
                 variables: Optional[Dict[str, Any]] = None,
                 source_file: str = "<manifest>") -> Any:
        allowed = {h.lower() for h in allowed_helpers}
        helpers = {name: fn for name, fn in self.helpers.items() if name.lower() in allowed}
        tree = self.parser.parse(text, source_file)
        transformer = ManifestTransformer(
            source_file=source_file,
            allowed_variables=allowed_variables,
            allowed_helpers=helpers,
            variables=variables,
        )
        try:
            return transformer.transform(tree)
        except VisitError as e:
            if isinstance(e.orig_exc, ModuleError):
                raise e.orig_exc from None
            logger.debug(f"Manifest evaluation failed in rule {e.rule}: {e.orig_exc}")
            raise ManifestInvalidError(
                f"Cannot evaluate manifest: {e.orig_exc}",
                ErrorId.INVALID_MANIFEST,
                path=source_file,
            ) from e.orig_exc
