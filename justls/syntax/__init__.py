"""
justls.syntax - Justfile parsing and symbol indexing

- parser: line-oriented parser producing definition nodes with byte spans
- index: name -> definitions lookup built from a parse result
"""

from justls.syntax.index import SymbolIndex, build_index
from justls.syntax.parser import (
    Definition,
    ParseError,
    ParseResult,
    Recipe,
    Span,
    Variable,
    parse_justfile,
)

__all__ = [
    "Definition",
    "ParseError",
    "ParseResult",
    "Recipe",
    "Span",
    "SymbolIndex",
    "Variable",
    "build_index",
    "parse_justfile",
]
