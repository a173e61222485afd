"""Manifest data-language front end (lark parser + transformer + evaluator)."""

from .evaluator import DataEvaluator, DEFAULT_HELPERS
from .parser import Parser, shared_parser

__all__ = ["DataEvaluator", "DEFAULT_HELPERS", "Parser", "shared_parser"]
