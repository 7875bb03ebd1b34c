"""
Schema management package for autoschema.

This package provides:
- The desired-state model (TableSpec, FieldSpec, IndexSpec)
- Schema operations and reconciliation plans
- Spec building, relationship expansion, diffing and plan execution
  (imported from their own modules)
"""

from .spec import (
    AssociationKind,
    AssociationSpec,
    FieldConstraintSet,
    FieldSpec,
    FieldType,
    IndexSpec,
    TableSpec,
)
from .operations import (
    AddColumn,
    AddIndex,
    ChangeColumn,
    CreateJoinTable,
    CreateTable,
    DropTable,
    OperationKind,
    ReconciliationPlan,
    RemoveColumn,
    RemoveIndex,
)

__all__ = [
    "AssociationKind",
    "AssociationSpec",
    "FieldConstraintSet",
    "FieldSpec",
    "FieldType",
    "IndexSpec",
    "TableSpec",
    "AddColumn",
    "AddIndex",
    "ChangeColumn",
    "CreateJoinTable",
    "CreateTable",
    "DropTable",
    "OperationKind",
    "ReconciliationPlan",
    "RemoveColumn",
    "RemoveIndex",
]
