"""
autoschema: keep a PostgreSQL schema in line with entity declarations.

Entity types declare their fields, indexes and relationships; every
reconciliation pass compares those declarations with the live database
and applies the DDL that makes the two match.
"""

__version__ = "0.1.0"
__author__ = "autoschema Contributors"

from .exceptions import (
    AutoSchemaError,
    ConfigurationError,
    ConnectionUnavailableError,
    DatabaseError,
    DdlOperationFailed,
    DeclarationError,
    SchemaError,
    UnsupportedTypeError,
)
from .config import AutoSchemaConfig
from .declarations import EntityRegistry
from .schema.reconciler import PassResult, SchemaReconciler

__all__ = [
    "__version__",
    "AutoSchemaConfig",
    "EntityRegistry",
    "SchemaReconciler",
    "PassResult",
    "AutoSchemaError",
    "ConfigurationError",
    "ConnectionUnavailableError",
    "DatabaseError",
    "DdlOperationFailed",
    "DeclarationError",
    "SchemaError",
    "UnsupportedTypeError",
]
