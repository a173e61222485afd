"""
Source Location (Span)

Position inside a manifest or module file, attached to parse and
validation diagnostics.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SourceLocation:
    """
    Source location in a module file.

    - File, line, column (+ optional end line/column for multi-line spans)
    - Code snippets extracted from source files when needed (not stored here)
    - Immutable (frozen) for hashability
    """
    file: str
    line: int
    column: int
    end_line: int = 0
    end_column: int = 0

    def __str__(self) -> str:
        """Format as file:line:column"""
        return f"{self.file}:{self.line}:{self.column}"
