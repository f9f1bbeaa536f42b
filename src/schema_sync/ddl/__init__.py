"""DDL generation: identifier rewriting, quoting and statement synthesis."""

from .quoting import quote_identifier, quote_literal, quote_qualified
from .rewriter import IdentifierRewriter, replace_identifiers, rewrite_identifier
from .synthesizer import DdlStatement, synthesize

__all__ = [
    "DdlStatement",
    "IdentifierRewriter",
    "quote_identifier",
    "quote_literal",
    "quote_qualified",
    "replace_identifiers",
    "rewrite_identifier",
    "synthesize",
]
