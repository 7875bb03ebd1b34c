"""
Desired-state data model for autoschema.

A TableSpec describes what one table should look like: its fields, each
with a FieldConstraintSet, and its indexes. Specs are rebuilt from the
entity declarations on every reconciliation pass.
"""

from dataclasses import dataclass, field, fields as dataclass_fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class FieldType(str, Enum):
    """Logical column types understood by the builder."""

    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    BIGINT = "bigint"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    BINARY = "binary"
    PRIMARY_KEY = "primary_key"


@dataclass
class FieldConstraintSet:
    """Constraints compared attribute by attribute during diffing.

    ``null`` is tri-state: ``None`` means unset and reads as nullable.
    """

    limit: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    null: Optional[bool] = None
    default: Any = None

    def __post_init__(self):
        if self.limit is None and self.precision is not None:
            self.limit = self.precision

    @classmethod
    def attribute_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in dataclass_fields(cls))

    @property
    def nullable(self) -> bool:
        return True if self.null is None else self.null

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.attribute_names()}


@dataclass
class FieldSpec:
    """A single desired column."""

    name: str
    type: Union[FieldType, str]
    constraints: FieldConstraintSet = field(default_factory=FieldConstraintSet)

    @property
    def is_raw(self) -> bool:
        """True when the type is a native SQL type string."""
        return not isinstance(self.type, FieldType)

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, FieldType) else self.type

    @property
    def is_primary_key(self) -> bool:
        return self.type == FieldType.PRIMARY_KEY


@dataclass
class IndexSpec:
    """A desired index; the name is derived from table and columns."""

    name: str
    columns: Tuple[str, ...]
    unique: bool = False
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TableSpec:
    """Desired shape of one table."""

    table_name: str
    primary_key_name: Optional[str] = "id"
    fields: Dict[str, FieldSpec] = field(default_factory=dict)
    indexes: Dict[str, IndexSpec] = field(default_factory=dict)

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def add_field(self, spec: FieldSpec) -> bool:
        """Add a field unless one with the same name exists.

        Returns True when the field was added.
        """
        if spec.name in self.fields:
            return False
        self.fields[spec.name] = spec
        return True

    def add_index(self, spec: IndexSpec) -> bool:
        """Add an index unless one with the same name exists."""
        if spec.name in self.indexes:
            return False
        self.indexes[spec.name] = spec
        return True

    @property
    def primary_key(self) -> Optional[FieldSpec]:
        if self.primary_key_name is None:
            return None
        return self.fields.get(self.primary_key_name)


class AssociationKind(str, Enum):
    """Relationship kinds that imply schema."""

    BELONGS_TO = "belongs_to"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True)
class AssociationSpec:
    """A relationship with every implied name resolved."""

    name: str
    kind: AssociationKind
    target_entity_name: str
    foreign_key_name: str
    polymorphic: bool = False
    join_table_name: Optional[str] = None
    association_foreign_key: Optional[str] = None

    @property
    def type_key_name(self) -> str:
        return f"{self.name}_type"

    @property
    def join_columns(self) -> Tuple[str, ...]:
        """Join-table foreign keys in sorted order."""
        return tuple(sorted((self.foreign_key_name, self.association_foreign_key)))
