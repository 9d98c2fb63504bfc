"""
Statement parsers.

A small ordered registry of dialects; each exposes detect(sample) and
parse(text), and the first dialect that detects the statement wins.
"""

from .base import BaseDialect, ParsedStatement, ParseError
from .flat_csv import FlatCSVDialect
from .marker_header import MarkerHeaderDialect
from .router import StatementParser, decode_statement

__all__ = [
    "BaseDialect",
    "ParsedStatement",
    "ParseError",
    "FlatCSVDialect",
    "MarkerHeaderDialect",
    "StatementParser",
    "decode_statement",
]
