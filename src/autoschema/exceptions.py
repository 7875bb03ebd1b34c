"""
Exception classes for autoschema.
"""

from typing import Any, Dict, Optional


class AutoSchemaError(Exception):
    """Base exception for all autoschema errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(AutoSchemaError):
    """Raised when there's an error in configuration."""

    pass


class DeclarationError(AutoSchemaError):
    """Raised when an entity declaration is inconsistent."""

    pass


class DatabaseError(AutoSchemaError):
    """Raised when there's an error with database operations."""

    pass


class ConnectionUnavailableError(DatabaseError):
    """Raised when the database connection cannot be used."""

    pass


class SchemaError(DatabaseError):
    """Raised when there's an error with database schema operations."""

    pass


class UnsupportedTypeError(SchemaError):
    """Raised when a field is declared with an unknown type keyword."""

    def __init__(
        self,
        entity: str,
        column: str,
        type_name: str,
    ) -> None:
        super().__init__(
            f"Unsupported type '{type_name}' for column '{column}' of entity '{entity}'",
            {"entity": entity, "column": column},
        )
        self.entity = entity
        self.column = column
        self.type_name = type_name


class IdentifierTooLong(SchemaError):
    """Raised when an explicitly supplied identifier exceeds the database limit."""

    def __init__(self, identifier: str, max_length: int) -> None:
        super().__init__(
            f"Identifier '{identifier}' is {len(identifier)} characters long, "
            f"maximum is {max_length}"
        )
        self.identifier = identifier
        self.max_length = max_length


class DdlOperationFailed(SchemaError):
    """Raised when a single DDL operation is rejected by the database."""

    def __init__(
        self,
        operation: str,
        table: str,
        target: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {"table": table}
        if target:
            details["target"] = target
        super().__init__(f"DDL operation {operation} failed", details, cause)
        self.operation = operation
        self.table = table
        self.target = target


class ReconciliationInProgress(SchemaError):
    """Raised when a second reconciliation pass is started concurrently."""

    pass
