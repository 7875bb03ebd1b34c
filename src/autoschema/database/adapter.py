"""
PostgreSQL database layer for autoschema.

Exposes the listing and DDL primitives the prober and the plan executor
rely on. Every DDL primitive issues exactly one statement.
"""

import logging
from typing import Any, Dict, List, Optional

from .connection import ConnectionPool
from .dialect import PostgresDialect
from .introspection import ColumnInfo, IndexInfo
from ..schema.spec import FieldSpec, IndexSpec, TableSpec


logger = logging.getLogger(__name__)


LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = $1
    AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

LIST_COLUMNS_SQL = """
    SELECT
        c.column_name,
        format_type(a.atttypid, a.atttypmod) AS sql_type,
        c.is_nullable = 'NO' AS not_null,
        c.column_default,
        c.character_maximum_length,
        c.numeric_precision,
        c.numeric_scale,
        EXISTS (
            SELECT 1 FROM pg_index ix
            WHERE ix.indrelid = a.attrelid
            AND ix.indisprimary
            AND a.attnum = ANY(ix.indkey)
        ) AS is_primary_key
    FROM information_schema.columns c
    JOIN pg_namespace n ON n.nspname = c.table_schema
    JOIN pg_class cl ON cl.relname = c.table_name AND cl.relnamespace = n.oid
    JOIN pg_attribute a ON a.attrelid = cl.oid AND a.attname = c.column_name
    WHERE c.table_schema = $1 AND c.table_name = $2
    ORDER BY c.ordinal_position
"""

LIST_INDEXES_SQL = """
    SELECT
        ic.relname AS index_name,
        ix.indisunique AS is_unique,
        ix.indisprimary AS is_primary,
        ARRAY(
            SELECT a.attname
            FROM unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = ix.indrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ) AS columns
    FROM pg_index ix
    JOIN pg_class ic ON ic.oid = ix.indexrelid
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    WHERE n.nspname = $1 AND t.relname = $2
    ORDER BY ic.relname
"""


class PostgresAdapter:
    """Listing and DDL primitives against one PostgreSQL schema."""

    def __init__(
        self,
        pool: ConnectionPool,
        dialect: Optional[PostgresDialect] = None,
        statement_timeout: Optional[int] = None,
    ):
        self.pool = pool
        self.dialect = dialect or PostgresDialect()
        self.statement_timeout = statement_timeout

    @property
    def schema(self) -> str:
        return self.dialect.schema

    # Listing

    async def list_tables(self) -> List[str]:
        rows = await self.pool.fetch(LIST_TABLES_SQL, self.schema)
        return [row["table_name"] for row in rows]

    async def list_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = await self.pool.fetch(LIST_COLUMNS_SQL, self.schema, table_name)
        return [
            self.dialect.column_from_catalog(
                name=row["column_name"],
                sql_type=row["sql_type"],
                not_null=row["not_null"],
                default_expression=row["column_default"],
                character_maximum_length=row["character_maximum_length"],
                numeric_precision=row["numeric_precision"],
                numeric_scale=row["numeric_scale"],
                primary_key=row["is_primary_key"],
            )
            for row in rows
        ]

    async def list_indexes(self, table_name: str) -> List[IndexInfo]:
        rows = await self.pool.fetch(LIST_INDEXES_SQL, self.schema, table_name)
        return [
            IndexInfo(
                name=row["index_name"],
                columns=tuple(row["columns"]),
                unique=row["is_unique"],
                primary=row["is_primary"],
            )
            for row in rows
        ]

    # DDL

    async def create_table(self, spec: TableSpec) -> str:
        return await self.execute(self.dialect.create_table_sql(spec))

    async def drop_table(self, table_name: str) -> str:
        return await self.execute(self.dialect.drop_table_sql(table_name))

    async def add_column(self, table_name: str, field: FieldSpec) -> str:
        return await self.execute(self.dialect.add_column_sql(table_name, field))

    async def remove_column(self, table_name: str, column_name: str) -> str:
        return await self.execute(self.dialect.remove_column_sql(table_name, column_name))

    async def change_column(
        self,
        table_name: str,
        field: FieldSpec,
        attributes: Dict[str, Any],
    ) -> str:
        return await self.execute(
            self.dialect.change_column_sql(table_name, field, attributes)
        )

    async def add_index(self, table_name: str, index: IndexSpec) -> str:
        return await self.execute(self.dialect.add_index_sql(table_name, index))

    async def remove_index(self, table_name: str, index_name: str) -> str:
        return await self.execute(self.dialect.remove_index_sql(index_name))

    async def execute(self, sql: str) -> str:
        """Run one statement outside of any explicit transaction."""
        logger.debug(f"SQL: {sql}")
        async with self.pool.acquire() as conn:
            if self.statement_timeout:
                await conn.execute(f"SET statement_timeout = '{self.statement_timeout}s'")
            await conn.execute(sql)
        return sql
