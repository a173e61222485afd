"""
Literal Parser
Decodes quoted strings, here-strings and numbers of the manifest data language
"""

import re
from typing import Callable, Optional, Union

from ...shared import SourceLocation

# Backtick escapes inside double-quoted strings
_BACKTICK_ESCAPES = {
    '0': '\0',
    'a': '\a',
    'b': '\b',
    'e': '\x1b',
    'f': '\f',
    'n': '\n',
    'r': '\r',
    't': '\t',
    'v': '\v',
}

_VARIABLE_RE = re.compile(r"\$(?:\{(?P<braced>[^}]+)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))")

# Called with (variable name, location) when a double-quoted string expands a variable
VariableLookup = Callable[[str, SourceLocation], object]


class LiteralParser:
    """Dedicated parser for literal tokens"""

    @staticmethod
    def parse_single_quoted(token: str) -> str:
        """'it''s' -> it's"""
        return token[1:-1].replace("''", "'")

    @staticmethod
    def parse_single_herestring(token: str) -> str:
        return LiteralParser._herestring_body(token)

    @staticmethod
    def parse_double_quoted(token: str, lookup: VariableLookup, location: SourceLocation) -> str:
        body = token[1:-1]
        return StringExpander(lookup, location).expand(body, doubled_quotes=True)

    @staticmethod
    def parse_double_herestring(token: str, lookup: VariableLookup, location: SourceLocation) -> str:
        body = LiteralParser._herestring_body(token)
        return StringExpander(lookup, location).expand(body, doubled_quotes=False)

    @staticmethod
    def parse_number(token: str) -> Union[int, float]:
        if '.' in token or 'e' in token.lower():
            return float(token)
        return int(token)

    @staticmethod
    def _herestring_body(token: str) -> str:
        # @'<ws>\n ... \n'@ : the text between the opening and closing lines
        start = token.index('\n') + 1
        end = token.rindex('\n')
        if end > 0 and token[end - 1] == '\r':
            end -= 1
        if start >= end:
            return ''
        return token[start:end]


class StringExpander:
    """Expands backtick escapes and $variable references in double-quoted text"""

    def __init__(self, lookup: VariableLookup, location: SourceLocation):
        self.lookup = lookup
        self.location = location

    def expand(self, body: str, doubled_quotes: bool) -> str:
        out = []
        i = 0
        n = len(body)
        while i < n:
            ch = body[i]
            if ch == '`' and i + 1 < n:
                nxt = body[i + 1]
                out.append(_BACKTICK_ESCAPES.get(nxt, nxt))
                i += 2
                continue
            if doubled_quotes and ch == '"' and i + 1 < n and body[i + 1] == '"':
                out.append('"')
                i += 2
                continue
            if ch == '$':
                match = _VARIABLE_RE.match(body, i)
                if match:
                    name = match.group('braced') or match.group('bare')
                    out.append(self._render(self.lookup(name, self.location)))
                    i = match.end()
                    continue
            out.append(ch)
            i += 1
        return ''.join(out)

    @staticmethod
    def _render(value: Optional[object]) -> str:
        if value is None:
            return ''
        if isinstance(value, bool):
            return 'True' if value else 'False'
        if isinstance(value, (list, tuple)):
            return ' '.join(StringExpander._render(v) for v in value)
        return str(value)
