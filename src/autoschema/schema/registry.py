"""
Managed-table registry for autoschema.

Remembers which tables autoschema created or has seen declared, so the
orphan sweep only ever drops tables it owns. The in-memory registry
forgets everything on restart; DatabaseTableRegistry keeps the set in a
metadata table next to the managed tables.
"""

import logging
from typing import TYPE_CHECKING, Iterable, Optional, Set

from ..exceptions import ConnectionUnavailableError, SchemaError

if TYPE_CHECKING:
    from ..database.connection import ConnectionPool
    from ..database.dialect import PostgresDialect


logger = logging.getLogger(__name__)


DEFAULT_REGISTRY_TABLE = "autoschema_managed_tables"


class ManagedTableRegistry:
    """In-memory set of managed table names."""

    def __init__(
        self,
        tables: Optional[Iterable[str]] = None,
        reserved_tables: Optional[Iterable[str]] = None,
    ):
        self._tables: Set[str] = set(tables or ())
        self._reserved: Set[str] = set(reserved_tables or ())

    def __contains__(self, table_name: str) -> bool:
        return table_name in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    @property
    def reserved_tables(self) -> Set[str]:
        """Tables the orphan sweep must never drop."""
        return set(self._reserved)

    def tables(self) -> Set[str]:
        return set(self._tables)

    async def load(self) -> Set[str]:
        return self.tables()

    async def add(self, table_name: str) -> None:
        if table_name not in self._tables:
            logger.debug(f"Registering managed table {table_name}")
        self._tables.add(table_name)

    async def remove(self, table_name: str) -> None:
        self._tables.discard(table_name)


class DatabaseTableRegistry(ManagedTableRegistry):
    """Managed-table registry persisted in a metadata table."""

    def __init__(
        self,
        pool: "ConnectionPool",
        dialect: "PostgresDialect",
        table_name: str = DEFAULT_REGISTRY_TABLE,
    ):
        super().__init__(reserved_tables=[table_name])
        self.pool = pool
        self.dialect = dialect
        self.table_name = table_name
        self._ready = False

    @property
    def qualified_name(self) -> str:
        return self.dialect.qualified(self.table_name)

    async def setup(self) -> None:
        """Create the metadata table if it doesn't exist."""
        sql = f"""
        CREATE TABLE IF NOT EXISTS {self.qualified_name} (
            table_name VARCHAR(255) PRIMARY KEY,
            registered_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
        """
        await self._run("set up", self.pool.execute, sql)
        self._ready = True

    async def load(self) -> Set[str]:
        """Read the managed tables from the metadata table.

        Loading never creates the metadata table; it is created on the
        first registration.
        """
        exists = await self._run(
            "load",
            self.pool.fetchval,
            "SELECT to_regclass($1) IS NOT NULL",
            self.qualified_name,
        )
        if not exists:
            self._tables = set()
            return self.tables()
        self._ready = True

        rows = await self._run(
            "load",
            self.pool.fetch,
            f"SELECT table_name FROM {self.qualified_name} ORDER BY table_name",
        )
        self._tables = {row["table_name"] for row in rows}
        logger.debug(f"Loaded {len(self._tables)} managed tables from {self.table_name}")
        return self.tables()

    async def add(self, table_name: str) -> None:
        if table_name in self._tables:
            return
        if not self._ready:
            await self.setup()
        await self._run(
            "register",
            self.pool.execute,
            f"INSERT INTO {self.qualified_name} (table_name) VALUES ($1) "
            f"ON CONFLICT (table_name) DO NOTHING",
            table_name,
        )
        await super().add(table_name)

    async def remove(self, table_name: str) -> None:
        if not self._ready:
            return
        await self._run(
            "unregister",
            self.pool.execute,
            f"DELETE FROM {self.qualified_name} WHERE table_name = $1",
            table_name,
        )
        await super().remove(table_name)

    async def _run(self, action: str, method, *args):
        try:
            return await method(*args)
        except ConnectionUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Failed to {action} managed-table registry {self.table_name}: {e}")
            raise SchemaError(
                f"Failed to {action} managed-table registry", {"table": self.table_name}, e
            ) from e
