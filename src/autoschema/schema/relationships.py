"""
Relationship expansion for autoschema.

Adds the fields and indexes that relationships and single-table
inheritance imply to an entity's TableSpec, and synthesizes the join
tables of many-to-many relationships. Explicit declarations always win:
an existing field is never replaced.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List

from ..exceptions import DeclarationError
from .spec import AssociationKind, AssociationSpec, FieldSpec, FieldType, TableSpec

if TYPE_CHECKING:
    from ..database.dialect import PostgresDialect
    from ..declarations import EntityDeclaration, EntityRegistry


logger = logging.getLogger(__name__)


@dataclass
class ExpansionResult:
    """Join tables implied by an entity's relationships."""

    join_tables: List[TableSpec] = field(default_factory=list)
    join_table_names: List[str] = field(default_factory=list)


class RelationshipExpander:
    """Derives schema from relationship declarations."""

    def __init__(self, dialect: "PostgresDialect"):
        self.dialect = dialect

    def expand(
        self,
        spec: TableSpec,
        entity: "EntityDeclaration",
        registry: "EntityRegistry",
        live_tables: Iterable[str],
    ) -> ExpansionResult:
        """Mutate ``spec`` in place and return the join tables to create.

        Relationships of every entity in the hierarchy are expanded, since
        they all live in the same table. A join table is only synthesized
        when it is missing from ``live_tables``.
        """
        live_tables = set(live_tables)
        root = entity.root
        result = ExpansionResult()

        for declaration in registry.hierarchy(root.name):
            for association in registry.associations_of(declaration):
                if association.kind is AssociationKind.BELONGS_TO:
                    self._expand_belongs_to(spec, association)
                elif association.kind is AssociationKind.MANY_TO_MANY:
                    join_name = association.join_table_name
                    if join_name in result.join_table_names:
                        continue
                    result.join_table_names.append(join_name)
                    if join_name not in live_tables:
                        result.join_tables.append(self.join_table_spec(association))
                else:
                    raise DeclarationError(
                        f"{declaration.name}: unhandled association kind {association.kind!r}"
                    )

        if registry.has_specializations(root.name):
            self._expand_inheritance(spec, root.inheritance_column)

        return result

    def _expand_belongs_to(self, spec: TableSpec, association: AssociationSpec) -> None:
        foreign_key = association.foreign_key_name
        self._ensure_field(spec, FieldSpec(foreign_key, FieldType.INTEGER))

        if association.polymorphic:
            type_key = association.type_key_name
            self._ensure_field(spec, FieldSpec(type_key, FieldType.STRING))
            spec.add_index(self.dialect.build_index(spec.table_name, [foreign_key, type_key]))
        else:
            spec.add_index(self.dialect.build_index(spec.table_name, foreign_key))

    def _expand_inheritance(self, spec: TableSpec, column: str) -> None:
        self._ensure_field(spec, FieldSpec(column, FieldType.STRING))
        spec.add_index(self.dialect.build_index(spec.table_name, column))

    def _ensure_field(self, spec: TableSpec, field_spec: FieldSpec) -> None:
        if not spec.add_field(field_spec):
            logger.debug(
                f"{spec.table_name}.{field_spec.name} is declared explicitly, "
                f"keeping the declared definition"
            )

    def join_table_spec(self, association: AssociationSpec) -> TableSpec:
        """A join table: no primary key, two integer keys, one unique index."""
        join_name = association.join_table_name
        columns = list(association.join_columns)

        spec = TableSpec(table_name=join_name, primary_key_name=None)
        for column in columns:
            spec.add_field(FieldSpec(column, FieldType.INTEGER))
        spec.add_index(self.dialect.build_index(join_name, columns, unique=True))
        return spec
