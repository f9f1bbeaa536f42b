"""Turn an introspected table into ordered DDL for a target tenant."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal

from schema_sync.ddl.quoting import quote_identifier, quote_qualified
from schema_sync.ddl.rewriter import IdentifierRewriter
from schema_sync.models import ColumnDescriptor, SequenceDescriptor, TableDescriptor

StatementKind = Literal["schema", "sequence", "table", "ownership", "index"]

DEFAULT_SCHEMA = "public"


@dataclass(frozen=True)
class DdlStatement:
    """One statement to apply against a tenant, with the object it creates."""

    kind: StatementKind
    object_name: str
    sql: str


def render_column(
    column: ColumnDescriptor, sequence_renames: Dict[str, str], rewriter: IdentifierRewriter
) -> str:
    parts = [quote_identifier(column.name), column.column_type.to_sql()]
    if not column.nullable:
        parts.append("NOT NULL")
    default = rewriter.default_expression(column.default_expression, sequence_renames)
    if default:
        parts.append(f"DEFAULT {default}")
    if column.identity:
        parts.append(f"GENERATED {column.identity} AS IDENTITY")
    return " ".join(parts)


def render_sequence(
    sequence: SequenceDescriptor, name: str, schema: str = DEFAULT_SCHEMA
) -> str:
    parts = [f"CREATE SEQUENCE IF NOT EXISTS {quote_qualified(schema, name)}"]
    if sequence.data_type:
        parts.append(f"AS {sequence.data_type}")
    if sequence.increment is not None:
        parts.append(f"INCREMENT BY {sequence.increment}")
    if sequence.min_value is not None:
        parts.append(f"MINVALUE {sequence.min_value}")
    if sequence.max_value is not None:
        parts.append(f"MAXVALUE {sequence.max_value}")
    if sequence.start is not None:
        parts.append(f"START WITH {sequence.start}")
    if sequence.cache is not None:
        parts.append(f"CACHE {sequence.cache}")
    parts.append("CYCLE" if sequence.cycle else "NO CYCLE")
    return " ".join(parts)


def synthesize(
    table: TableDescriptor, rewriter: IdentifierRewriter, schema: str = DEFAULT_SCHEMA
) -> List[DdlStatement]:
    """Return the schema, sequences, the table, sequence ownership, then indexes.

    The order is fixed: defaults reference the sequences, ``OWNED BY`` and indexes reference
    the table. Sequences and the table are qualified with ``schema``; index definitions from
    the catalog already name the table's schema.
    """
    statements: List[DdlStatement] = []
    sequence_renames: Dict[str, str] = {}

    if schema != DEFAULT_SCHEMA:
        statements.append(
            DdlStatement(
                kind="schema",
                object_name=schema,
                sql=f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(schema)}",
            )
        )

    for sequence in table.sequences:
        new_name = rewriter.sequence_name(sequence.name)
        sequence_renames[sequence.name] = new_name
        statements.append(
            DdlStatement(
                kind="sequence",
                object_name=new_name,
                sql=render_sequence(sequence, new_name, schema),
            )
        )

    table_name = rewriter.table_name(table.name)
    clauses = [render_column(column, sequence_renames, rewriter) for column in table.columns]
    if table.primary_key:
        key_columns = ", ".join(quote_identifier(name) for name in table.primary_key)
        clauses.append(f"PRIMARY KEY ({key_columns})")
    body = ",\n  ".join(clauses)
    statements.append(
        DdlStatement(
            kind="table",
            object_name=table_name,
            sql=f"CREATE TABLE {quote_qualified(schema, table_name)} (\n  {body}\n)",
        )
    )

    for sequence in table.sequences:
        if not sequence.owned_by_column:
            continue
        new_name = sequence_renames[sequence.name]
        statements.append(
            DdlStatement(
                kind="ownership",
                object_name=new_name,
                sql=(
                    f"ALTER SEQUENCE {quote_qualified(schema, new_name)} OWNED BY "
                    f"{quote_qualified(schema, table_name, sequence.owned_by_column)}"
                ),
            )
        )

    for index in table.indexes:
        statements.append(
            DdlStatement(
                kind="index",
                object_name=rewriter.index_name(index.name),
                sql=rewriter.index_definition(index.definition, table.name, index.name),
            )
        )

    return statements
