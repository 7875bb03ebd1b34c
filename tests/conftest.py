"""
Pytest configuration and shared fixtures for autoschema tests.

The FakeAdapter stands in for the PostgreSQL database layer: it keeps
tables in memory and reports columns the way the catalog does, so specs
applied through it read back exactly like they would from a server.
"""

import dataclasses
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from autoschema.database.dialect import PostgresDialect
from autoschema.database.introspection import ColumnInfo, IndexInfo, SchemaIntrospector
from autoschema.declarations import EntityRegistry
from autoschema.exceptions import ConnectionUnavailableError
from autoschema.schema.registry import ManagedTableRegistry
from autoschema.schema.spec import FieldConstraintSet, FieldSpec, FieldType, IndexSpec, TableSpec


class FakeDatabaseError(Exception):
    """Stands in for an error reported by the server."""


class FakeAdapter:
    """In-memory implementation of the database layer."""

    def __init__(self, dialect: Optional[PostgresDialect] = None):
        self.dialect = dialect or PostgresDialect()
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.failures: Dict[Tuple[str, Optional[str]], Exception] = {}
        self.connection_lost = False

    # Test helpers

    def fail(self, method: str, target: Optional[str] = None, error: Exception = None) -> None:
        """Make ``method`` raise for ``target`` (``table.column``, index or table name)."""
        self.failures[(method, target)] = error or FakeDatabaseError(f"{method} rejected")

    def seed_table(
        self,
        name: str,
        *fields: FieldSpec,
        indexes: Iterable[IndexSpec] = (),
        primary_key: Optional[str] = "id",
    ) -> None:
        """Create a table directly, without recording a call."""
        spec = TableSpec(table_name=name, primary_key_name=primary_key)
        if primary_key:
            spec.add_field(
                FieldSpec(primary_key, FieldType.PRIMARY_KEY, FieldConstraintSet(null=False))
            )
        for field_spec in fields:
            spec.add_field(field_spec)
        self._store(spec)
        for index in indexes:
            self.tables[name]["indexes"][index.name] = IndexInfo(
                index.name, tuple(index.columns), index.unique
            )

    def column(self, table: str, column: str) -> ColumnInfo:
        return self.tables[table]["columns"][column]

    def index_names(self, table: str) -> List[str]:
        return sorted(self.tables[table]["indexes"])

    def ddl_calls(self) -> List[Tuple[str, Optional[str]]]:
        return [call for call in self.calls if not call[0].startswith("list_")]

    def _check(self, method: str, target: Optional[str] = None) -> None:
        self.calls.append((method, target))
        if self.connection_lost:
            raise ConnectionUnavailableError("Database connection lost")
        error = self.failures.get((method, target))
        if error is not None:
            raise error

    def _store(self, spec: TableSpec) -> None:
        columns = {f.name: self._catalog_column(f) for f in spec.fields.values()}
        indexes = {}
        if spec.primary_key is not None:
            name = f"{spec.table_name}_pkey"
            indexes[name] = IndexInfo(name, (spec.primary_key_name,), unique=True, primary=True)
        self.tables[spec.table_name] = {"columns": columns, "indexes": indexes}

    def _catalog_column(self, field: FieldSpec) -> ColumnInfo:
        """Read a column back through the catalog parser, as the real adapter does."""
        described = self.dialect.describe(field)
        default_expression = None
        if described.default is not None:
            default_expression = self.dialect.quote_default(field.constraints.default)
        return self.dialect.column_from_catalog(
            name=field.name,
            sql_type=described.sql_type,
            not_null=not described.null,
            default_expression=default_expression,
            character_maximum_length=described.limit,
            numeric_precision=described.precision,
            numeric_scale=described.scale,
            primary_key=described.primary_key,
        )

    def _table(self, name: str) -> Dict[str, Dict[str, Any]]:
        if name not in self.tables:
            raise FakeDatabaseError(f'relation "{name}" does not exist')
        return self.tables[name]

    # Listing

    async def list_tables(self) -> List[str]:
        self._check("list_tables")
        return sorted(self.tables)

    async def list_columns(self, table_name: str) -> List[ColumnInfo]:
        self._check("list_columns", table_name)
        return list(self._table(table_name)["columns"].values())

    async def list_indexes(self, table_name: str) -> List[IndexInfo]:
        self._check("list_indexes", table_name)
        return list(self._table(table_name)["indexes"].values())

    # DDL

    async def create_table(self, spec: TableSpec) -> str:
        self._check("create_table", spec.table_name)
        if spec.table_name in self.tables:
            raise FakeDatabaseError(f'relation "{spec.table_name}" already exists')
        self._store(spec)
        return self.dialect.create_table_sql(spec)

    async def drop_table(self, table_name: str) -> str:
        self._check("drop_table", table_name)
        self._table(table_name)
        del self.tables[table_name]
        return self.dialect.drop_table_sql(table_name)

    async def add_column(self, table_name: str, field: FieldSpec) -> str:
        self._check("add_column", f"{table_name}.{field.name}")
        columns = self._table(table_name)["columns"]
        if field.name in columns:
            raise FakeDatabaseError(f'column "{field.name}" already exists')
        columns[field.name] = self._catalog_column(field)
        return self.dialect.add_column_sql(table_name, field)

    async def remove_column(self, table_name: str, column_name: str) -> str:
        self._check("remove_column", f"{table_name}.{column_name}")
        table = self._table(table_name)
        if column_name not in table["columns"]:
            raise FakeDatabaseError(f'column "{column_name}" does not exist')
        del table["columns"][column_name]
        # Indexes on the column go with it
        for name, index in list(table["indexes"].items()):
            if column_name in index.columns:
                del table["indexes"][name]
        return self.dialect.remove_column_sql(table_name, column_name)

    async def change_column(
        self, table_name: str, field: FieldSpec, attributes: Dict[str, Any]
    ) -> str:
        self._check("change_column", f"{table_name}.{field.name}")
        columns = self._table(table_name)["columns"]
        current = columns[field.name]
        changed = self._catalog_column(field)
        if "null" not in attributes:
            changed = dataclasses.replace(changed, null=current.null)
        if "default" not in attributes:
            changed = dataclasses.replace(changed, default=current.default)
        columns[field.name] = changed
        return self.dialect.change_column_sql(table_name, field, attributes)

    async def add_index(self, table_name: str, index: IndexSpec) -> str:
        self._check("add_index", index.name)
        table = self._table(table_name)
        if index.name in table["indexes"]:
            raise FakeDatabaseError(f'relation "{index.name}" already exists')
        missing = [c for c in index.columns if c not in table["columns"]]
        if missing:
            raise FakeDatabaseError(f'column "{missing[0]}" does not exist')
        table["indexes"][index.name] = IndexInfo(index.name, tuple(index.columns), index.unique)
        return self.dialect.add_index_sql(table_name, index)

    async def remove_index(self, table_name: str, index_name: str) -> str:
        self._check("remove_index", index_name)
        for table in self.tables.values():
            table["indexes"].pop(index_name, None)
        return self.dialect.remove_index_sql(index_name)


@pytest.fixture
def dialect() -> PostgresDialect:
    return PostgresDialect()


@pytest.fixture
def adapter(dialect) -> FakeAdapter:
    return FakeAdapter(dialect)


@pytest.fixture
def introspector(adapter) -> SchemaIntrospector:
    return SchemaIntrospector(adapter)


@pytest.fixture
def entities() -> EntityRegistry:
    return EntityRegistry()


@pytest.fixture
def registry() -> ManagedTableRegistry:
    return ManagedTableRegistry()


@pytest.fixture
def sample_config_dict() -> Dict[str, Any]:
    """Sample configuration for testing."""
    return {
        "database": {
            "host": "localhost",
            "port": 5432,
            "database": "app",
            "user": "app",
            "password": "secret",
        },
        "reconciliation": {"mode": "apply", "drop_orphans": True},
        "logging": {"level": "INFO"},
        "entities": [
            {
                "name": "Author",
                "fields": [{"name": "name", "null": False}],
            },
            {
                "name": "Article",
                "timestamps": True,
                "fields": [
                    {"name": "title", "limit": 200, "index": True},
                    {"name": "body", "type": "text"},
                    {"names": ["views", "likes"], "type": "integer", "default": 0},
                ],
                "indexes": [{"columns": ["author_id", "created_at"]}],
                "associations": [
                    {"kind": "belongs_to", "name": "author"},
                    {"kind": "has_and_belongs_to_many", "name": "tags"},
                ],
            },
            {"name": "FeaturedArticle", "parent": "Article"},
            {"name": "Tag", "fields": [{"name": "name", "index": {"unique": True}}]},
        ],
    }
