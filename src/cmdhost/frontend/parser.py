"""
Parser

Lark front end for the manifest data language. Produces a parse tree; the
tree is turned into Python values by ManifestTransformer (see
transformers/base.py) under the restrictions chosen by the evaluator.
"""

import logging
from functools import lru_cache
from pathlib import Path

from lark import Lark, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from ..shared.errors import ManifestParseError
from ..shared.source_location import SourceLocation
from ..utils.config import DEFAULT_PARSER_CACHE_FILE

logger = logging.getLogger("cmdhost.frontend.parser")


class Parser:
    """
    Manifest parser.

    - Takes manifest text, returns a Lark tree
    - Preserves source locations (propagate_positions)
    - Converts Lark errors into ManifestParseError
    - Uses Lark's on-disk grammar cache
    """

    def __init__(self, cache_file: str = DEFAULT_PARSER_CACHE_FILE):
        grammar_path = Path(__file__).parent / "grammar.lark"
        self.parser = Lark.open(
            str(grammar_path),
            start='start',
            parser='lalr',              # Required for caching
            cache=cache_file,           # Built-in caching
            propagate_positions=True,   # Enable position tracking for error reporting
            maybe_placeholders=False,
        )

    def parse(self, source: str, source_file: str = "<manifest>") -> Tree:
        """Parse manifest text to a tree."""
        try:
            return self.parser.parse(source)
        except (UnexpectedToken, UnexpectedCharacters, UnexpectedEOF) as e:
            location = None
            line = getattr(e, 'line', None)
            column = getattr(e, 'column', None)
            if isinstance(line, int) and line > 0:
                location = SourceLocation(file=source_file, line=line, column=column if isinstance(column, int) else 1)
            raise ManifestParseError(
                f"Parse error: {_describe(e)}",
                path=source_file,
                location=location,
                source_code=source,
            ) from e


def _describe(error: UnexpectedInput) -> str:
    if isinstance(error, UnexpectedCharacters):
        return f"unexpected character {error.char!r}"
    if isinstance(error, UnexpectedToken):
        if error.token.type == '$END':
            return "unexpected end of input"
        return f"unexpected token {str(error.token)!r}"
    return "unexpected end of input"


@lru_cache(maxsize=1)
def shared_parser() -> Parser:
    """Process-wide parser instance (grammar loading is the expensive part)."""
    logger.debug("Building manifest parser")
    return Parser()
