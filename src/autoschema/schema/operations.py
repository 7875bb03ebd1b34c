"""
Schema operations for autoschema.

Operations are plain data: each describes one DDL step and can render
itself for a dialect. The PlanExecutor is what actually applies them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Union

from .spec import FieldSpec, FieldType, IndexSpec, TableSpec

if TYPE_CHECKING:
    from ..database.dialect import PostgresDialect


class OperationKind(str, Enum):
    """Kinds of schema operations."""

    CREATE_TABLE = "create_table"
    CREATE_JOIN_TABLE = "create_join_table"
    DROP_TABLE = "drop_table"
    REMOVE_COLUMN = "remove_column"
    ADD_COLUMN = "add_column"
    CHANGE_COLUMN = "change_column"
    REMOVE_INDEX = "remove_index"
    ADD_INDEX = "add_index"

    @property
    def is_index_operation(self) -> bool:
        return self in (OperationKind.REMOVE_INDEX, OperationKind.ADD_INDEX)


@dataclass(frozen=True)
class CreateTable:
    """Create a table with every desired field."""

    table_name: str
    spec: TableSpec

    kind = OperationKind.CREATE_TABLE

    @property
    def target(self) -> Optional[str]:
        return None

    def describe(self) -> str:
        return f"create table {self.table_name} ({len(self.spec.fields)} columns)"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        return dialect.create_table_sql(self.spec)


@dataclass(frozen=True)
class CreateJoinTable:
    """Create the join table of a many-to-many relationship."""

    table_name: str
    spec: TableSpec

    kind = OperationKind.CREATE_JOIN_TABLE

    @property
    def target(self) -> Optional[str]:
        return None

    def describe(self) -> str:
        columns = ", ".join(self.spec.fields)
        return f"create join table {self.table_name} ({columns})"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        statements = [dialect.create_table_sql(self.spec)]
        for index in self.spec.indexes.values():
            statements.append(dialect.add_index_sql(self.table_name, index))
        return ";\n".join(statements)


@dataclass(frozen=True)
class DropTable:
    """Drop a managed table no longer declared."""

    table_name: str

    kind = OperationKind.DROP_TABLE

    @property
    def target(self) -> Optional[str]:
        return None

    def describe(self) -> str:
        return f"drop table {self.table_name}"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        return dialect.drop_table_sql(self.table_name)


@dataclass(frozen=True)
class RemoveColumn:
    table_name: str
    column_name: str

    kind = OperationKind.REMOVE_COLUMN

    @property
    def target(self) -> Optional[str]:
        return self.column_name

    def describe(self) -> str:
        return f"remove column {self.table_name}.{self.column_name}"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        return dialect.remove_column_sql(self.table_name, self.column_name)


@dataclass(frozen=True)
class AddColumn:
    """Add a column.

    ``options`` always holds ``limit``, ``precision`` and ``scale``;
    ``default`` and ``null`` only when they were declared.
    """

    table_name: str
    field: FieldSpec
    options: Dict[str, Any] = field(default_factory=dict)

    kind = OperationKind.ADD_COLUMN

    @property
    def target(self) -> Optional[str]:
        return self.field.name

    def describe(self) -> str:
        return f"add column {self.table_name}.{self.field.name} {self.field.type_name}"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        return dialect.add_column_sql(self.table_name, self.field)


@dataclass(frozen=True)
class ChangeColumn:
    """Alter the type, nullability or default of a column.

    ``attributes`` holds the constraint attributes that changed, plus
    ``precision`` and ``scale``.
    """

    table_name: str
    column_name: str
    new_type: Union[FieldType, str]
    attributes: Dict[str, Any]
    field: FieldSpec

    kind = OperationKind.CHANGE_COLUMN

    @property
    def target(self) -> Optional[str]:
        return self.column_name

    def describe(self) -> str:
        changed = ", ".join(
            name for name in self.attributes if name not in ("precision", "scale")
        )
        suffix = f" [{changed}]" if changed else ""
        new_type = getattr(self.new_type, "value", self.new_type)
        return f"change column {self.table_name}.{self.column_name} to {new_type}{suffix}"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        return dialect.change_column_sql(self.table_name, self.field, self.attributes)


@dataclass(frozen=True)
class RemoveIndex:
    table_name: str
    index_name: str

    kind = OperationKind.REMOVE_INDEX

    @property
    def target(self) -> Optional[str]:
        return self.index_name

    def describe(self) -> str:
        return f"remove index {self.index_name} from {self.table_name}"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        return dialect.remove_index_sql(self.index_name)


@dataclass(frozen=True)
class AddIndex:
    table_name: str
    index: IndexSpec

    kind = OperationKind.ADD_INDEX

    @property
    def target(self) -> Optional[str]:
        return self.index.name

    def describe(self) -> str:
        unique = "unique " if self.index.unique else ""
        columns = ", ".join(self.index.columns)
        return f"add {unique}index {self.index.name} on {self.table_name} ({columns})"

    def to_sql(self, dialect: "PostgresDialect") -> str:
        return dialect.add_index_sql(self.table_name, self.index)


Operation = Union[
    CreateTable,
    CreateJoinTable,
    DropTable,
    RemoveColumn,
    AddColumn,
    ChangeColumn,
    RemoveIndex,
    AddIndex,
]


@dataclass
class ReconciliationPlan:
    """Ordered operations bringing one table to its desired shape."""

    table_name: str
    operations: List[Operation] = field(default_factory=list)

    def add(self, operation: Operation) -> None:
        self.operations.append(operation)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def kinds(self) -> List[OperationKind]:
        return [operation.kind for operation in self.operations]

    def of_kind(self, kind: OperationKind) -> List[Operation]:
        return [operation for operation in self.operations if operation.kind == kind]

    def to_sql(self, dialect: "PostgresDialect") -> List[str]:
        """Render every operation, in order, as one SQL statement each."""
        return [operation.to_sql(dialect) for operation in self.operations]
