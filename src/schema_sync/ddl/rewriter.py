"""Tenant-prefix rewriting of identifiers and of the DDL text that references them.

Free-text substitution is anchored to whole identifiers: a name only matches when the
characters on either side of it cannot be part of a PostgreSQL identifier. Renaming
``fp_orders`` therefore leaves ``fp_orders_archive``, ``xfp_orders`` and
``fp_orders_id_seq`` alone, while still matching ``public.fp_orders``, ``"fp_orders"`` and
``'fp_orders'::regclass``.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

_IDENTIFIER_CHARS = "A-Za-z0-9_$"


def rewrite_identifier(identifier: str, source_prefix: str, target_prefix: str) -> str:
    """Replace a leading ``source_prefix`` with ``target_prefix``; otherwise return unchanged."""
    if source_prefix and identifier.startswith(source_prefix):
        return target_prefix + identifier[len(source_prefix) :]
    return identifier


def replace_identifiers(text: str, renames: Mapping[str, str]) -> str:
    """Substitute whole-identifier occurrences of every key in ``renames`` in one pass.

    A single pass means a replacement is never itself rewritten by a later rename.
    """
    effective = {old: new for old, new in renames.items() if old and old != new}
    if not text or not effective:
        return text
    alternatives = "|".join(re.escape(old) for old in sorted(effective, key=len, reverse=True))
    pattern = re.compile(
        rf"(?<![{_IDENTIFIER_CHARS}])(?:{alternatives})(?![{_IDENTIFIER_CHARS}])"
    )
    return pattern.sub(lambda match: effective[match.group(0)], text)


class IdentifierRewriter:
    """Rewrites source-tenant object names into one target tenant's namespace."""

    def __init__(self, source_prefix: str, target_prefix: str) -> None:
        """Bind the source and target prefixes, e.g. ``fp_`` and ``sb_``."""
        self.source_prefix = source_prefix
        self.target_prefix = target_prefix

    def __repr__(self) -> str:
        return f"IdentifierRewriter({self.source_prefix!r} -> {self.target_prefix!r})"

    def rewrite(self, identifier: str) -> str:
        return rewrite_identifier(identifier, self.source_prefix, self.target_prefix)

    table_name = rewrite
    sequence_name = rewrite
    index_name = rewrite

    def index_definition(self, definition: str, table: str, index: str) -> str:
        """Rewrite the table name and the index name inside a catalog index definition."""
        return replace_identifiers(
            definition,
            {table: self.table_name(table), index: self.index_name(index)},
        )

    def default_expression(
        self, expression: Optional[str], sequence_renames: Mapping[str, str]
    ) -> Optional[str]:
        """Rewrite references to the table's own sequences inside a column default."""
        if expression is None:
            return None
        return replace_identifiers(expression, sequence_renames)
