"""
Database integration package for autoschema.

This package provides:
- Async PostgreSQL connection pooling
- Live schema introspection
- PostgreSQL type mapping and DDL rendering
- The listing and DDL primitives used by reconciliation
"""

from .connection import ConnectionConfig, ConnectionPool
from .introspection import ColumnInfo, IndexInfo, SchemaIntrospector, SchemaSnapshot, TableSnapshot
from .dialect import PostgresDialect
from .adapter import PostgresAdapter

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "ColumnInfo",
    "IndexInfo",
    "SchemaIntrospector",
    "SchemaSnapshot",
    "TableSnapshot",
    "PostgresDialect",
    "PostgresAdapter",
]
