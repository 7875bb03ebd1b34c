"""
Live schema introspection for autoschema.

The introspector turns the database layer's column and index listings
into immutable snapshots. Nothing is cached: every probe reflects the
database at call time.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, Optional, Set, Tuple, Union

from ..exceptions import ConnectionUnavailableError, SchemaError

if TYPE_CHECKING:
    from ..schema.spec import FieldType


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnInfo:
    """Information about a live database column."""

    name: str
    type: Union["FieldType", str]
    sql_type: Optional[str] = None
    limit: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    null: bool = True
    default: Any = None
    primary_key: bool = False

    def __str__(self) -> str:
        result = f"{self.name} {self.sql_type or self.type}"
        if not self.null:
            result += " NOT NULL"
        if self.default is not None:
            result += f" DEFAULT {self.default!r}"
        return result


@dataclass(frozen=True)
class IndexInfo:
    """Information about a live database index."""

    name: str
    columns: Tuple[str, ...]
    unique: bool = False
    primary: bool = False


@dataclass(frozen=True)
class TableSnapshot:
    """Columns and indexes of one table at probe time."""

    name: str
    columns: Dict[str, ColumnInfo] = field(default_factory=dict)
    indexes: Dict[str, IndexInfo] = field(default_factory=dict)

    def has_column(self, column_name: str) -> bool:
        """Check if table has a specific column."""
        return column_name in self.columns

    def get_column(self, column_name: str) -> Optional[ColumnInfo]:
        """Get column information by name."""
        return self.columns.get(column_name)

    def has_index(self, index_name: str) -> bool:
        return index_name in self.indexes

    @property
    def primary_key(self) -> Optional[str]:
        for column in self.columns.values():
            if column.primary_key:
                return column.name
        return None


@dataclass(frozen=True)
class SchemaSnapshot:
    """Every table present in the database at probe time."""

    tables: FrozenSet[str] = frozenset()
    details: Dict[str, TableSnapshot] = field(default_factory=dict)

    def has_table(self, table_name: str) -> bool:
        return table_name in self.tables

    def table(self, table_name: str) -> Optional[TableSnapshot]:
        """Get the snapshot of one table, or None when absent."""
        return self.details.get(table_name)


class SchemaIntrospector:
    """Builds snapshots from the database layer."""

    def __init__(self, adapter):
        self.adapter = adapter

    async def list_tables(self) -> Set[str]:
        """List every base table in the managed schema."""
        try:
            return set(await self.adapter.list_tables())
        except ConnectionUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Error listing tables: {e}")
            raise SchemaError(f"Failed to list tables: {e}") from e

    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        return table_name in await self.list_tables()

    async def probe(self, table_name: str) -> Optional[TableSnapshot]:
        """Get the current columns and indexes of a table.

        Returns None when the table does not exist. Connection failures
        propagate as ConnectionUnavailableError so callers can skip the
        table without aborting a whole pass.
        """
        if not await self.table_exists(table_name):
            return None

        try:
            columns = await self.adapter.list_columns(table_name)
            indexes = await self.adapter.list_indexes(table_name)
        except ConnectionUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Error probing table {table_name}: {e}")
            raise SchemaError(f"Failed to probe table {table_name}: {e}") from e

        snapshot = TableSnapshot(
            name=table_name,
            columns={column.name: column for column in columns},
            indexes={index.name: index for index in indexes},
        )
        logger.debug(
            f"Probed {table_name}: {len(snapshot.columns)} columns, "
            f"{len(snapshot.indexes)} indexes"
        )
        return snapshot

    async def snapshot(self, tables: Optional[Iterable[str]] = None) -> SchemaSnapshot:
        """Probe several tables (all of them by default) into one snapshot."""
        present = await self.list_tables()
        wanted = present if tables is None else present & set(tables)

        details = {}
        for table_name in sorted(wanted):
            table = await self.probe(table_name)
            if table is not None:
                details[table_name] = table

        return SchemaSnapshot(tables=frozenset(present), details=details)
