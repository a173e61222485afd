"""
Manifest Transformers
=====================

Turn manifest parse trees into plain Python data.
"""

from .base import ManifestTransformer
from .literals import LiteralParser, StringExpander

__all__ = [
    'ManifestTransformer',
    'LiteralParser',
    'StringExpander',
]
