import logging
from typing import List

from schema_sync.dal.connection_registry import ConnectionRegistry
from schema_sync.errors import IntrospectionFailure, TableNotFound
from schema_sync.models import (
    ColumnDescriptor,
    IndexDescriptor,
    SequenceDescriptor,
    TableDescriptor,
    column_type_from_catalog,
)

logger = logging.getLogger(__name__)

LIST_TABLES_SQL = """
    SELECT tablename
    FROM pg_tables
    WHERE schemaname = $1
    ORDER BY tablename
"""

TABLE_EXISTS_SQL = """
    SELECT 1
    FROM information_schema.tables
    WHERE table_schema = $1 AND table_name = $2
"""

COLUMNS_SQL = """
    SELECT
        column_name,
        data_type,
        character_maximum_length,
        numeric_precision,
        numeric_scale,
        is_nullable,
        column_default,
        udt_name,
        is_identity,
        identity_generation
    FROM information_schema.columns
    WHERE table_schema = $1 AND table_name = $2
    ORDER BY ordinal_position
"""

# Identity sequences (deptype 'i') are recreated by the column's GENERATED clause. A serial
# sequence depends on its column (refobjsubid > 0); that column is its OWNED BY target.
SEQUENCES_SQL = """
    SELECT DISTINCT
        c.relname AS sequence_name,
        format_type(s.seqtypid, NULL) AS data_type,
        s.seqstart,
        s.seqincrement,
        s.seqmin,
        s.seqmax,
        s.seqcache,
        s.seqcycle,
        a.attname AS owned_by_column
    FROM pg_class c
    JOIN pg_sequence s ON s.seqrelid = c.oid
    JOIN pg_depend d
        ON d.objid = c.oid
        AND d.classid = 'pg_class'::regclass
        AND d.refclassid = 'pg_class'::regclass
    JOIN pg_class t ON d.refobjid = t.oid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    LEFT JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = d.refobjsubid
    WHERE c.relkind = 'S'
      AND d.deptype <> 'i'
      AND n.nspname = $1
      AND t.relname = $2
    ORDER BY sequence_name
"""

INDEXES_SQL = """
    SELECT
        i.relname AS index_name,
        pg_get_indexdef(i.oid) AS index_def
    FROM pg_index x
    JOIN pg_class t ON t.oid = x.indrelid
    JOIN pg_class i ON i.oid = x.indexrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    WHERE n.nspname = $1
      AND t.relname = $2
      AND NOT x.indisprimary
    ORDER BY i.relname
"""

PRIMARY_KEY_SQL = """
    SELECT a.attname AS column_name
    FROM pg_index x
    JOIN pg_class t ON t.oid = x.indrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN LATERAL unnest(x.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord) ON true
    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
    WHERE n.nspname = $1
      AND t.relname = $2
      AND x.indisprimary
    ORDER BY k.ord
"""


class CatalogIntrospector:
    """Reads table structure from a tenant's system catalogs.

    Columns, sequences, indexes and the primary key come from separate catalog
    queries; they are independent sources and need not agree (a table may own no
    sequences at all).
    """

    def __init__(self, connections: ConnectionRegistry, schema: str = "public") -> None:
        """Bind the registry used to reach tenant databases and the schema to read."""
        self._connections = connections
        self._schema = schema

    async def list_tables(self, code: str) -> List[str]:
        """List user tables of a tenant in alphabetical order."""
        try:
            async with self._connections.connection(code) as conn:
                rows = await conn.fetch(LIST_TABLES_SQL, self._schema)
        except Exception as exc:
            raise IntrospectionFailure(
                "*", code, f"Could not list tables of tenant {code}: {exc}"
            ) from exc
        return [row["tablename"] for row in rows]

    async def table_exists(self, code: str, table_name: str) -> bool:
        """Return True when ``table_name`` exists in the tenant's schema."""
        async with self._connections.connection(code) as conn:
            rows = await conn.fetch(TABLE_EXISTS_SQL, self._schema, table_name)
        return len(rows) > 0

    async def describe_table(self, code: str, table_name: str) -> TableDescriptor:
        """Build a fresh descriptor for one table of a tenant."""
        try:
            async with self._connections.connection(code) as conn:
                column_rows = await conn.fetch(COLUMNS_SQL, self._schema, table_name)
                if not column_rows:
                    raise TableNotFound(table_name, code)
                sequence_rows = await conn.fetch(SEQUENCES_SQL, self._schema, table_name)
                index_rows = await conn.fetch(INDEXES_SQL, self._schema, table_name)
                key_rows = await conn.fetch(PRIMARY_KEY_SQL, self._schema, table_name)
        except IntrospectionFailure:
            raise
        except Exception as exc:
            raise IntrospectionFailure(
                table_name, code, f"Catalog query failed for {table_name}: {exc}"
            ) from exc

        table = TableDescriptor(
            name=table_name,
            columns=[_column_from_row(row) for row in column_rows],
            sequences=[_sequence_from_row(row, table_name) for row in sequence_rows],
            indexes=[
                IndexDescriptor(name=row["index_name"], definition=row["index_def"])
                for row in index_rows
            ],
            primary_key=[row["column_name"] for row in key_rows],
        )
        logger.debug(
            "Described %s: %d columns, %d sequences, %d indexes",
            table_name,
            len(table.columns),
            len(table.sequences),
            len(table.indexes),
            extra={"event": "table_described", "tenant": code, "table": table_name},
        )
        return table


def _column_from_row(row) -> ColumnDescriptor:
    identity = None
    if row.get("is_identity") == "YES":
        identity = row.get("identity_generation") or "BY DEFAULT"
    return ColumnDescriptor(
        name=row["column_name"],
        column_type=column_type_from_catalog(
            row["data_type"],
            udt_name=row.get("udt_name"),
            character_maximum_length=row.get("character_maximum_length"),
            numeric_precision=row.get("numeric_precision"),
            numeric_scale=row.get("numeric_scale"),
        ),
        nullable=row["is_nullable"] != "NO",
        default_expression=row.get("column_default"),
        identity=identity,
    )


def _sequence_from_row(row, table_name: str) -> SequenceDescriptor:
    return SequenceDescriptor(
        name=row["sequence_name"],
        owner_table=table_name,
        data_type=row.get("data_type"),
        start=row.get("seqstart"),
        increment=row.get("seqincrement"),
        min_value=row.get("seqmin"),
        max_value=row.get("seqmax"),
        cache=row.get("seqcache"),
        cycle=bool(row.get("seqcycle")),
        owned_by_column=row.get("owned_by_column"),
    )
