"""Identifier and literal quoting for generated PostgreSQL statements."""

from sqlglot import exp

_DIALECT = "postgres"


def quote_identifier(name: str) -> str:
    """Return ``name`` as a double-quoted postgres identifier with embedded quotes escaped."""
    return exp.to_identifier(name, quoted=True).sql(dialect=_DIALECT)


def quote_literal(value: str) -> str:
    """Return ``value`` as a single-quoted postgres string literal."""
    return exp.Literal.string(value).sql(dialect=_DIALECT)


def quote_qualified(*parts: str) -> str:
    """Return a dotted name such as ``"schema"."table"."column"`` with each part quoted."""
    return ".".join(quote_identifier(part) for part in parts)
