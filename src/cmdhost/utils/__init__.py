"""
cmdhost utilities package
"""

from .io_utils import read_source_file, read_source_lines, module_extension, module_base_name

__all__ = ["read_source_file", "read_source_lines", "module_extension", "module_base_name"]
