"""
Manifest Transformer
Converts the Lark parse tree of a manifest into plain Python values
(dict / list / str / int / float / bool / None) under the restricted
language rules: only allow-listed variables and helper commands.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from lark import Transformer, v_args
from lark.lexer import Token
from typing_extensions import TypeAlias

from ...shared import ErrorId, ManifestInvalidError, SourceLocation
from ...shared.version import is_version_text
from .literals import LiteralParser

# Lark Meta object contains location information
LarkMeta: TypeAlias = Union[None, object]
DataValue: TypeAlias = Union[None, bool, int, float, str, list, dict]
# Helper commands receive (positional arguments, named parameters)
HelperFunction: TypeAlias = Callable[[List[Any], Dict[str, Any]], Any]

logger: logging.Logger = logging.getLogger(__name__)

_CONSTANT_VARIABLES = {'true': True, 'false': False, 'null': None}


@dataclass
class _Parameter:
    """A -Name switch inside a helper command invocation"""
    name: str


@dataclass
class _Entry:
    key: str
    value: DataValue
    location: SourceLocation


@v_args(inline=True, meta=True)
class ManifestTransformer(Transformer):
    """
    Manifest data transformer.

    Variables and helper commands outside the allow-lists are rejected with
    ManifestInvalidError; Lark wraps those in VisitError and the evaluator
    unwraps them again.
    """

    def __init__(self,
                 source_file: str,
                 allowed_variables: Iterable[str] = (),
                 allowed_helpers: Optional[Dict[str, HelperFunction]] = None,
                 variables: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.current_file = source_file
        self.allowed_variables = {v.lower() for v in allowed_variables}
        self.helpers = {k.lower(): fn for k, fn in (allowed_helpers or {}).items()}
        self.variables = {k.lower(): v for k, v in (variables or {}).items()}

    def _extract_location(self, meta: LarkMeta) -> SourceLocation:
        """Extract location from Lark meta object"""
        if meta is None or getattr(meta, 'empty', True):
            return SourceLocation(file=self.current_file, line=0, column=0)
        return SourceLocation(
            file=self.current_file,
            line=meta.line,
            column=meta.column,
            end_line=getattr(meta, 'end_line', 0) or 0,
            end_column=getattr(meta, 'end_column', 0) or 0,
        )

    def _fail(self, message: str, meta: LarkMeta) -> ManifestInvalidError:
        return ManifestInvalidError(
            message,
            ErrorId.INVALID_MANIFEST,
            path=self.current_file,
            location=self._extract_location(meta),
        )

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def start(self, meta, value):
        return value

    def expr(self, meta, *items):
        if len(items) == 1:
            return items[0]
        return list(items)

    def hashtable(self, meta, *entries: _Entry) -> Dict[str, DataValue]:
        table: Dict[str, DataValue] = {}
        seen: Dict[str, str] = {}
        for entry in entries:
            folded = entry.key.lower()
            if folded in seen:
                raise ManifestInvalidError(
                    f"Duplicate keys '{entry.key}' are not allowed in hash literals.",
                    ErrorId.INVALID_MANIFEST,
                    path=self.current_file,
                    location=entry.location,
                )
            seen[folded] = entry.key
            table[entry.key] = entry.value
        return table

    def entry(self, meta, key, value) -> _Entry:
        return _Entry(key=str(key), value=value, location=self._extract_location(meta))

    def bare_key(self, meta, token: Token) -> str:
        return str(token)

    def array(self, meta, *items) -> list:
        # @( ... ) flattens one level: @(@(1,2)) is a two-element array
        result: list = []
        for item in items:
            if isinstance(item, list):
                result.extend(item)
            else:
                result.append(item)
        return result

    def subexpression(self, meta, value):
        return value

    # ------------------------------------------------------------------
    # Helper commands
    # ------------------------------------------------------------------

    def parameter(self, meta, token: Token) -> _Parameter:
        return _Parameter(name=str(token)[1:])

    def command(self, meta, name: Token, *arguments):
        command_name = str(name)
        helper = self.helpers.get(command_name.lower())
        if helper is None:
            raise self._fail(
                f"The command '{command_name}' is not allowed in restricted language mode or a Data section.",
                meta,
            )
        positional, named = self._bind_arguments(arguments, meta)
        logger.debug(f"Invoking manifest helper {command_name} positional={positional} named={named}")
        try:
            return helper(positional, named)
        except (TypeError, ValueError) as e:
            raise self._fail(f"{command_name}: {e}", meta) from e

    def _bind_arguments(self, arguments: Tuple[Any, ...], meta) -> Tuple[List[Any], Dict[str, Any]]:
        positional: List[Any] = []
        named: Dict[str, Any] = {}
        pending: Optional[_Parameter] = None
        for arg in arguments:
            if isinstance(arg, _Parameter):
                if pending is not None:
                    named[pending.name.lower()] = True
                pending = arg
                continue
            if pending is not None:
                named[pending.name.lower()] = arg
                pending = None
            else:
                positional.append(arg)
        if pending is not None:
            named[pending.name.lower()] = True
        return positional, named

    # ------------------------------------------------------------------
    # Casts
    # ------------------------------------------------------------------

    def cast(self, meta, type_token: Token, value):
        type_name = str(type_token)[1:-1].lower()
        if type_name.startswith('system.'):
            type_name = type_name[len('system.'):]
        if type_name.endswith('[]') or type_name in ('array', 'object[]'):
            return value if isinstance(value, list) else [value]
        if type_name == 'string':
            return '' if value is None else str(value)
        if type_name in ('int', 'int32', 'int64', 'long'):
            try:
                return int(value)
            except (TypeError, ValueError):
                raise self._fail(f"Cannot convert value '{value}' to type [{type_name}].", meta)
        if type_name == 'bool':
            return bool(value)
        if type_name == 'version':
            if not isinstance(value, str) or not is_version_text(value):
                raise self._fail(f"Cannot convert value '{value}' to type [version].", meta)
            return value.strip()
        if type_name == 'guid':
            try:
                return str(uuid.UUID(str(value)))
            except ValueError:
                raise self._fail(f"Cannot convert value '{value}' to type [guid].", meta)
        if type_name == 'hashtable':
            if not isinstance(value, dict):
                raise self._fail(f"Cannot convert value '{value}' to type [hashtable].", meta)
            return value
        raise self._fail(f"The type [{type_name}] is not allowed in restricted language mode.", meta)

    # ------------------------------------------------------------------
    # Literals and variables
    # ------------------------------------------------------------------

    def sq_string(self, meta, token: Token) -> str:
        return LiteralParser.parse_single_quoted(str(token))

    def sq_herestring(self, meta, token: Token) -> str:
        return LiteralParser.parse_single_herestring(str(token))

    def dq_string(self, meta, token: Token) -> str:
        return LiteralParser.parse_double_quoted(str(token), self._lookup, self._extract_location(meta))

    def dq_herestring(self, meta, token: Token) -> str:
        return LiteralParser.parse_double_herestring(str(token), self._lookup, self._extract_location(meta))

    def number(self, meta, token: Token):
        return LiteralParser.parse_number(str(token))

    def variable(self, meta, token: Token):
        return self._lookup(str(token)[1:], self._extract_location(meta))

    def _lookup(self, name: str, location: SourceLocation):
        folded = name.lower()
        if folded in _CONSTANT_VARIABLES:
            return _CONSTANT_VARIABLES[folded]
        if folded not in self.allowed_variables:
            raise ManifestInvalidError(
                f"The variable '${name}' cannot be retrieved because it has not been set"
                f" or is not allowed in restricted language mode.",
                ErrorId.INVALID_MANIFEST,
                path=self.current_file,
                location=location,
            )
        return self.variables.get(folded)
