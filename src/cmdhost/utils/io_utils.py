"""
Centralized file I/O utilities.

- Single place for encoding and extension handling
- Use Path.read_text() consistently (no raw open/read)
"""

from pathlib import Path
from typing import Union

from .config import DEFAULT_FILE_ENCODING, PRECOMPILED_BINARY_EXTENSION


def read_source_file(path: Union[Path, str]) -> str:
    """Read source file with standard encoding (a leading BOM is dropped)."""
    p = Path(path) if not isinstance(path, Path) else path
    text = p.read_text(encoding=DEFAULT_FILE_ENCODING)
    if text.startswith("\ufeff"):
        text = text[1:]
    return text


def read_source_lines(path: Union[Path, str]) -> list:
    """Read source file as lines (for error context)."""
    return read_source_file(path).splitlines()


def module_extension(path: Union[Path, str]) -> str:
    """Lower-cased module extension; '.ni.dll' is treated as one extension."""
    name = Path(path).name.lower()
    if name.endswith(PRECOMPILED_BINARY_EXTENSION):
        return PRECOMPILED_BINARY_EXTENSION
    return Path(name).suffix


def module_base_name(path: Union[Path, str]) -> str:
    """File name without its module extension (Foo.ni.dll -> Foo)."""
    name = Path(path).name
    ext = module_extension(path)
    return name[: len(name) - len(ext)] if ext else name
