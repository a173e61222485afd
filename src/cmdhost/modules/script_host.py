"""
Static script host.

Reads a script module (.psm1 / .ps1) without executing it and reports what
loading it would define at the top level: functions and filters, aliases
created with Set-Alias / New-Alias, variables assigned at script scope and
Export-ModuleMember declarations. Dot-sourced sibling scripts are folded in.
A top-level `throw` is reported as a load failure.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..shared import ErrorId, ModuleLoadError
from ..utils.io_utils import read_source_file

logger = logging.getLogger(__name__)

_BLOCK_COMMENT_RE = re.compile(r"<#.*?#>", re.DOTALL)
_FUNCTION_RE = re.compile(r"^\s*(?:function|filter|workflow)\s+(?:(?:global|script|local|private):)?([\w-]+)", re.IGNORECASE)
_ALIAS_RE = re.compile(r"^\s*(?:Set-Alias|New-Alias)\b(.*)$", re.IGNORECASE)
_VARIABLE_RE = re.compile(r"^\s*\$(?:(?:script|global):)?([A-Za-z_]\w*)\s*=(?!=)\s*(.*)$", re.IGNORECASE)
_EXPORT_RE = re.compile(r"^\s*Export-ModuleMember\b(.*)$", re.IGNORECASE)
_THROW_RE = re.compile(r"^\s*throw\b\s*(.*)$", re.IGNORECASE)
_DOT_SOURCE_RE = re.compile(r"^\s*\.\s+(['\"]?)(.+?\.ps1)\1\s*$", re.IGNORECASE)
_TOKEN_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"`]|`.)*\"|[^\s,]+|,")

_EXPORT_PARAMETERS = {
    "-function": "functions",
    "-cmdlet": "cmdlets",
    "-variable": "variables",
    "-alias": "aliases",
}


@dataclass
class ExportDeclaration:
    """Accumulated Export-ModuleMember lists; None means 'not mentioned'."""
    functions: Optional[List[str]] = None
    cmdlets: Optional[List[str]] = None
    variables: Optional[List[str]] = None
    aliases: Optional[List[str]] = None

    def add(self, kind: str, names: List[str]) -> None:
        current = getattr(self, kind)
        setattr(self, kind, (current or []) + names)


@dataclass
class ScriptAnalysis:
    path: str
    functions: Dict[str, str] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)
    variables: Dict[str, object] = field(default_factory=dict)
    exports: Optional[ExportDeclaration] = None
    dot_sourced: List[str] = field(default_factory=list)


class StaticScriptHost:
    """Default script host: static reading of top-level script statements."""

    def analyze(self, path: str) -> ScriptAnalysis:
        analysis = ScriptAnalysis(path=path)
        self._analyze_into(path, analysis, visited=set())
        logger.debug(f"Script {path}: functions={list(analysis.functions)} aliases={list(analysis.aliases)}"
                     f" variables={list(analysis.variables)} exports={analysis.exports}")
        return analysis

    def _analyze_into(self, path: str, analysis: ScriptAnalysis, visited: Set[str]) -> None:
        key = os.path.normcase(os.path.abspath(path))
        if key in visited:
            return
        visited.add(key)
        try:
            source = read_source_file(path)
        except OSError as e:
            raise ModuleLoadError(f"Could not read script '{path}': {e}", ErrorId.LOAD_FAILURE, path=path)

        script_root = os.path.dirname(os.path.abspath(path))
        for line, body in _top_level_statements(source):
            match = _FUNCTION_RE.match(line)
            if match:
                analysis.functions[match.group(1)] = body
                continue
            match = _THROW_RE.match(line)
            if match:
                message = _unquote(match.group(1).strip()) or "ScriptHalted"
                raise ModuleLoadError(f"Loading script module '{path}' failed: {message}", ErrorId.LOAD_FAILURE, path=path)
            match = _EXPORT_RE.match(line)
            if match:
                if analysis.exports is None:
                    analysis.exports = ExportDeclaration()
                for kind, names in _parse_export_arguments(match.group(1)):
                    analysis.exports.add(kind, names)
                continue
            match = _ALIAS_RE.match(line)
            if match:
                alias = _parse_alias_arguments(match.group(1))
                if alias is not None:
                    analysis.aliases[alias[0]] = alias[1]
                continue
            match = _DOT_SOURCE_RE.match(line)
            if match:
                target = _expand_script_root(match.group(2), script_root)
                if os.path.isfile(target):
                    analysis.dot_sourced.append(target)
                    self._analyze_into(target, analysis, visited)
                else:
                    logger.warning(f"Dot-sourced script not found: {target}")
                continue
            match = _VARIABLE_RE.match(line)
            if match:
                analysis.variables[match.group(1)] = _literal_value(match.group(2).strip())


def _strip_comments(source: str) -> str:
    source = _BLOCK_COMMENT_RE.sub("", source)
    lines = []
    for raw in source.splitlines():
        lines.append(_strip_line_comment(raw))
    return "\n".join(lines)


def _strip_line_comment(line: str) -> str:
    quote = None
    for i, ch in enumerate(line):
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "#" and (i == 0 or line[i - 1].isspace()):
            return line[:i].rstrip()
    return line


def _brace_delta(line: str) -> int:
    depth = 0
    quote = None
    for ch in line:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
    return depth


def _top_level_statements(source: str) -> List[Tuple[str, str]]:
    """(first line, full text) of every statement that starts at brace depth 0."""
    statements: List[Tuple[str, str]] = []
    depth = 0
    current: List[str] = []
    for line in _strip_comments(source).splitlines():
        if depth == 0:
            if not line.strip():
                continue
            current = [line]
        else:
            current.append(line)
        depth += _brace_delta(line)
        if depth <= 0:
            depth = 0
            statements.append((current[0], "\n".join(current)))
            current = []
    if current:
        statements.append((current[0], "\n".join(current)))
    return statements


def _tokens(text: str) -> List[str]:
    return _TOKEN_RE.findall(text)


def _unquote(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        inner = text[1:-1]
        return inner.replace("''", "'") if text[0] == "'" else inner
    return text


def _parse_export_arguments(text: str) -> List[Tuple[str, List[str]]]:
    """-Function a, b -Variable x  ->  [('functions', [a, b]), ('variables', [x])]"""
    result: List[Tuple[str, List[str]]] = []
    kind = "functions"
    names: List[str] = []
    for token in _tokens(text):
        lowered = token.lower()
        if lowered in _EXPORT_PARAMETERS:
            if names:
                result.append((kind, names))
            kind, names = _EXPORT_PARAMETERS[lowered], []
            continue
        if token == "," or token.startswith("@(") or token == ")":
            continue
        value = _unquote(token.strip("@()"))
        if value:
            names.append(value)
    if names:
        result.append((kind, names))
    return result


def _parse_alias_arguments(text: str) -> Optional[Tuple[str, str]]:
    """Set-Alias [-Name] x [-Value] y"""
    named: Dict[str, str] = {}
    positional: List[str] = []
    pending: Optional[str] = None
    for token in _tokens(text):
        if token.startswith("-") and len(token) > 1 and token[1].isalpha():
            pending = token[1:].lower()
            continue
        value = _unquote(token)
        if pending is not None:
            named[pending] = value
            pending = None
        else:
            positional.append(value)
    name = named.get("name") or (positional.pop(0) if positional else None)
    target = named.get("value") or (positional.pop(0) if positional else None)
    if not name or not target:
        return None
    return name, target


def _literal_value(text: str) -> object:
    text = text.rstrip(";").strip()
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    lowered = text.lower()
    if lowered in ("$true", "$false"):
        return lowered == "$true"
    if lowered == "$null":
        return None
    return _unquote(text)


def _expand_script_root(text: str, script_root: str) -> str:
    expanded = re.sub(r"\$PSScriptRoot", lambda _: script_root, text, flags=re.IGNORECASE)
    expanded = expanded.replace("\\", os.sep) if os.sep != "\\" else expanded
    if not os.path.isabs(expanded):
        expanded = os.path.join(script_root, expanded)
    return os.path.normpath(expanded)
