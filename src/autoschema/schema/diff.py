"""
Diff engine for autoschema.

Compares a desired TableSpec with a live TableSnapshot and produces the
ReconciliationPlan that converges the table. Operations always come out
in the same kind order: join tables, column removals, column additions,
column changes, index removals, index additions.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from .operations import (
    AddColumn,
    AddIndex,
    ChangeColumn,
    CreateJoinTable,
    CreateTable,
    ReconciliationPlan,
    RemoveColumn,
    RemoveIndex,
)
from .spec import FieldConstraintSet, FieldSpec, TableSpec

if TYPE_CHECKING:
    from ..database.dialect import PostgresDialect
    from ..database.introspection import ColumnInfo, TableSnapshot


logger = logging.getLogger(__name__)


COMPARED_ATTRIBUTES = FieldConstraintSet.attribute_names()
RAW_COMPARED_ATTRIBUTES = ("null", "default")


class DiffEngine:
    """Computes the operations converging a table to its spec."""

    def __init__(self, dialect: "PostgresDialect"):
        self.dialect = dialect

    def diff(
        self,
        spec: TableSpec,
        live: Optional["TableSnapshot"],
        join_tables: Iterable[TableSpec] = (),
    ) -> ReconciliationPlan:
        plan = ReconciliationPlan(table_name=spec.table_name)

        if live is None:
            plan.add(CreateTable(spec.table_name, spec))
            for join_spec in join_tables:
                plan.add(CreateJoinTable(join_spec.table_name, join_spec))
            for index in spec.indexes.values():
                plan.add(AddIndex(spec.table_name, index))
            return plan

        for join_spec in join_tables:
            plan.add(CreateJoinTable(join_spec.table_name, join_spec))

        protected = {spec.primary_key_name, live.primary_key} - {None}

        for column_name in live.columns:
            if column_name not in spec.fields and column_name not in protected:
                logger.debug(f"{spec.table_name}.{column_name} is no longer declared")
                plan.add(RemoveColumn(spec.table_name, column_name))

        for field_spec in spec.fields.values():
            if not live.has_column(field_spec.name):
                logger.debug(f"{spec.table_name}.{field_spec.name} is not in the database")
                plan.add(
                    AddColumn(spec.table_name, field_spec, self._add_column_options(field_spec))
                )

        for field_spec in spec.fields.values():
            if field_spec.name in protected:
                continue
            column = live.get_column(field_spec.name)
            if column is None:
                continue
            change = self._column_change(spec.table_name, field_spec, column)
            if change is not None:
                plan.add(change)

        self._diff_indexes(spec, live, plan)
        return plan

    def _add_column_options(self, field_spec: FieldSpec) -> Dict[str, Any]:
        constraints = field_spec.constraints
        options = {
            "limit": constraints.limit,
            "precision": constraints.precision,
            "scale": constraints.scale,
        }
        if constraints.default is not None:
            options["default"] = constraints.default
        if constraints.null is not None:
            options["null"] = constraints.null
        return options

    def _column_change(
        self,
        table_name: str,
        field_spec: FieldSpec,
        column: "ColumnInfo",
    ) -> Optional[ChangeColumn]:
        """Return a ChangeColumn when the live column differs from the field."""
        changed = False
        desired_sql = self.dialect.sql_type(field_spec)

        if column.sql_type:
            if desired_sql.lower() != column.sql_type.lower():
                logger.debug(
                    f"Detected schema change for {table_name}.{field_spec.name}#type "
                    f"from {column.sql_type.lower()!r} to {desired_sql.lower()!r}"
                )
                changed = True
        elif self.dialect.logical_type(desired_sql) != column.type:
            logger.debug(
                f"Detected schema change for {table_name}.{field_spec.name}#type "
                f"from {column.type!r} to {self.dialect.logical_type(desired_sql)!r}"
            )
            changed = True

        effective = self.dialect.effective_constraints(field_spec)
        attributes = {"precision": effective.precision, "scale": effective.scale}

        compared = RAW_COMPARED_ATTRIBUTES if field_spec.is_raw else COMPARED_ATTRIBUTES
        for attribute in compared:
            desired = getattr(effective, attribute)
            current = getattr(column, attribute)
            if desired != current:
                logger.debug(
                    f"Detected schema change for {table_name}.{field_spec.name}#{attribute} "
                    f"from {current!r} to {desired!r}"
                )
                attributes[attribute] = desired
                changed = True

        if not changed:
            return None
        return ChangeColumn(
            table_name=table_name,
            column_name=field_spec.name,
            new_type=field_spec.type,
            attributes=attributes,
            field=field_spec,
        )

    def _diff_indexes(
        self,
        spec: TableSpec,
        live: "TableSnapshot",
        plan: ReconciliationPlan,
    ) -> None:
        stale = set()
        for name, index in live.indexes.items():
            if index.primary:
                continue
            desired = spec.indexes.get(name)
            if desired is None:
                logger.debug(f"Index {name} on {spec.table_name} is no longer declared")
                stale.add(name)
            elif desired.unique != index.unique or tuple(desired.columns) != index.columns:
                logger.debug(
                    f"Index {name} on {spec.table_name} changed definition, recreating it"
                )
                stale.add(name)

        for name in live.indexes:
            if name in stale:
                plan.add(RemoveIndex(spec.table_name, name))

        for name, index in spec.indexes.items():
            if name in stale or not live.has_index(name):
                plan.add(AddIndex(spec.table_name, index))
