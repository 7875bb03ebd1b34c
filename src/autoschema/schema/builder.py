"""
Desired schema builder for autoschema.

Turns the ordered field and index statements of an entity hierarchy into
a fresh TableSpec. Nothing is carried over between builds.
"""

import logging
from typing import TYPE_CHECKING, Any, Union

from ..exceptions import DeclarationError, UnsupportedTypeError
from ..declarations import FieldStatement, IndexStatement
from .spec import FieldConstraintSet, FieldSpec, FieldType, TableSpec

if TYPE_CHECKING:
    from ..database.dialect import PostgresDialect
    from ..declarations import EntityDeclaration, EntityRegistry


logger = logging.getLogger(__name__)


REFERENCE_TYPES = ("references", "belongs_to")


class TableSpecBuilder:
    """Builds the TableSpec of an entity's table."""

    def __init__(self, dialect: "PostgresDialect"):
        self.dialect = dialect

    def build(self, registry: "EntityRegistry", entity: "EntityDeclaration") -> TableSpec:
        """Build the spec of the table owned by ``entity``'s hierarchy.

        Statements of every specialization are applied after those of the
        entity they specialize, so they share one table definition.
        """
        root = entity.root
        spec = TableSpec(table_name=root.table_name, primary_key_name=root.primary_key)
        spec.add_field(
            FieldSpec(
                name=root.primary_key,
                type=FieldType.PRIMARY_KEY,
                constraints=FieldConstraintSet(null=False),
            )
        )

        for declaration in registry.hierarchy(root.name):
            for statement in declaration.statements:
                if isinstance(statement, FieldStatement):
                    self._apply_field(spec, declaration, statement)
                else:
                    self._apply_index(spec, statement)

        logger.debug(
            f"Built spec for {spec.table_name}: {len(spec.fields)} fields, "
            f"{len(spec.indexes)} indexes"
        )
        return spec

    def resolve_type(self, entity: str, column: str, type_name: Any) -> Union[FieldType, str]:
        """Map a declared type keyword to a FieldType or a raw native type."""
        if isinstance(type_name, FieldType):
            return type_name
        if not isinstance(type_name, str) or not type_name.strip():
            raise UnsupportedTypeError(entity, column, repr(type_name))
        try:
            return FieldType(type_name.lower())
        except ValueError:
            pass
        if self.dialect.is_native_type(type_name):
            return type_name
        raise UnsupportedTypeError(entity, column, type_name)

    def _apply_field(
        self,
        spec: TableSpec,
        declaration: "EntityDeclaration",
        statement: FieldStatement,
    ) -> None:
        options = dict(statement.options)
        polymorphic = options.pop("polymorphic", False)

        for name in statement.names:
            if name == spec.primary_key_name:
                raise DeclarationError(
                    f"{declaration.name}: '{name}' is the primary key and is always present"
                )

            if isinstance(statement.type, str) and statement.type in REFERENCE_TYPES:
                column_name = f"{name}_id"
                fields = [FieldSpec(column_name, FieldType.INTEGER, FieldConstraintSet(**options))]
                if polymorphic:
                    fields.append(FieldSpec(f"{name}_type", FieldType.STRING))
            else:
                if polymorphic:
                    raise DeclarationError(
                        f"{declaration.name}: polymorphic only applies to reference fields, "
                        f"not '{name}' of type {statement.type!r}"
                    )
                column_name = name
                field_type = self.resolve_type(declaration.name, name, statement.type)
                fields = [FieldSpec(name, field_type, FieldConstraintSet(**options))]

            for field_spec in fields:
                # Renders the native type so bad limits fail at build time
                self.dialect.sql_type(field_spec)
                if spec.has_field(field_spec.name):
                    logger.debug(f"{spec.table_name}.{field_spec.name} redeclared, last one wins")
                spec.fields[field_spec.name] = field_spec

            self._apply_inline_index(spec, column_name, statement.index)

    def _apply_inline_index(self, spec: TableSpec, column_name: str, index: Any) -> None:
        if index is None or index is False:
            return
        if index is True:
            spec.add_index(self.dialect.build_index(spec.table_name, column_name))
        elif isinstance(index, dict):
            options = dict(index)
            columns = options.pop("column", column_name)
            spec.add_index(self.dialect.build_index(spec.table_name, columns, **options))
        elif isinstance(index, (str, list, tuple)):
            spec.add_index(self.dialect.build_index(spec.table_name, index))
        else:
            raise DeclarationError(
                f"{spec.table_name}.{column_name}: unsupported index option {index!r}"
            )

    def _apply_index(self, spec: TableSpec, statement: IndexStatement) -> None:
        spec.add_index(
            self.dialect.build_index(spec.table_name, statement.columns, **statement.options)
        )
