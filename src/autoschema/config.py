"""
Configuration system for autoschema using Pydantic.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .database.dialect import PostgresDialect
from .declarations import EntityRegistry
from .exceptions import ConfigurationError, DeclarationError, SchemaError
from .schema.builder import TableSpecBuilder


class DatabaseConnection(BaseModel):
    """Database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")
    ssl_mode: Optional[str] = Field(None, description="SSL mode")
    connect_timeout: int = Field(30, description="Connection timeout in seconds")
    command_timeout: int = Field(60, description="Command timeout in seconds")
    schema_name: str = Field("public", description="Schema holding the managed tables")

    def to_dsn(self) -> str:
        """Convert to PostgreSQL DSN string."""
        dsn = (
            f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/"
            f"{self.database}"
        )
        if self.ssl_mode:
            dsn += f"?sslmode={self.ssl_mode}"
        return dsn

    def to_connection_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            command_timeout=float(self.command_timeout),
            ssl_mode=self.ssl_mode,
        )


class FieldConfig(BaseModel):
    """A field statement: one or more columns sharing a type and options."""

    name: Optional[str] = Field(None, description="Column name")
    names: Optional[List[str]] = Field(None, description="Several columns of the same type")
    type: str = Field("string", description="Logical type or native SQL type")
    index: Union[bool, str, List[str], Dict[str, Any], None] = Field(
        None, description="Inline index declaration"
    )
    limit: Optional[int] = Field(None, description="Length or byte size")
    precision: Optional[int] = Field(None, description="Numeric precision")
    scale: Optional[int] = Field(None, description="Numeric scale")
    null: Optional[bool] = Field(None, description="Allow NULL values (unset means nullable)")
    default: Any = Field(None, description="Column default")
    polymorphic: bool = Field(False, description="Add a <name>_type column to a reference")

    @model_validator(mode="after")
    def check_names(self) -> "FieldConfig":
        if not self.name and not self.names:
            raise ValueError("A field needs 'name' or 'names'")
        return self

    @property
    def column_names(self) -> List[str]:
        names = [self.name] if self.name else []
        return names + list(self.names or [])


class IndexConfig(BaseModel):
    """An explicit index declaration."""

    columns: Union[str, List[str]] = Field(..., description="Indexed column(s), in order")
    unique: bool = Field(False, description="Unique index")
    name: Optional[str] = Field(None, description="Explicit index name")
    using: Optional[str] = Field(None, description="Index method (btree, gin, ...)")
    where: Optional[str] = Field(None, description="Partial index predicate")

    def index_options(self) -> Dict[str, Any]:
        options = self.model_dump(exclude={"columns"}, exclude_none=True)
        if not options.get("unique"):
            options.pop("unique", None)
        return options


class AssociationConfig(BaseModel):
    """A relationship implying schema."""

    kind: Literal["belongs_to", "has_and_belongs_to_many", "many_to_many"] = Field(
        ..., description="Relationship kind"
    )
    name: str = Field(..., description="Relationship name")
    target: Optional[str] = Field(None, description="Target entity name")
    foreign_key: Optional[str] = Field(None, description="Foreign key column")
    polymorphic: bool = Field(False, description="Polymorphic belongs_to")
    join_table: Optional[str] = Field(None, description="Join table name")
    association_foreign_key: Optional[str] = Field(
        None, description="Join table column referencing the target"
    )

    @field_validator("kind")
    @classmethod
    def normalize_kind(cls, v: str) -> str:
        return "many_to_many" if v == "has_and_belongs_to_many" else v


class EntityConfig(BaseModel):
    """Declaration of one entity type."""

    name: str = Field(..., description="Entity name (CamelCase)")
    table: Optional[str] = Field(None, description="Table name (defaults to the plural)")
    parent: Optional[str] = Field(None, description="Entity this one specializes")
    primary_key: str = Field("id", description="Primary key column")
    inheritance_column: str = Field("type", description="Discriminator column")
    timestamps: bool = Field(False, description="Add created_at and updated_at")
    fields: List[FieldConfig] = Field(default_factory=list, description="Field statements")
    indexes: List[IndexConfig] = Field(default_factory=list, description="Explicit indexes")
    associations: List[AssociationConfig] = Field(
        default_factory=list, description="Relationships"
    )


class ReconciliationConfig(BaseModel):
    """Reconciliation pass configuration."""

    mode: Literal["apply", "dry_run"] = Field("apply", description="Reconciliation mode")
    drop_orphans: bool = Field(
        True, description="Drop managed tables that are no longer declared"
    )
    statement_timeout: Optional[int] = Field(
        None, description="Per-statement timeout in seconds"
    )


class RegistryConfig(BaseModel):
    """Managed-table registry configuration."""

    persist: bool = Field(
        False, description="Keep the managed-table registry in the database"
    )
    table: str = Field("autoschema_managed_tables", description="Registry table name")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class AutoSchemaConfig(BaseSettings):
    """Main autoschema configuration."""

    service_name: str = Field("autoschema", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")

    database: DatabaseConnection = Field(..., description="Database connection")
    reconciliation: ReconciliationConfig = Field(
        default_factory=ReconciliationConfig,
        description="Reconciliation configuration",
    )
    registry: RegistryConfig = Field(
        default_factory=RegistryConfig, description="Managed-table registry"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    entities: List[EntityConfig] = Field(
        default_factory=list, description="Entity declarations"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="AUTOSCHEMA_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AutoSchemaConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def get_entity(self, name: str) -> EntityConfig:
        """Get entity configuration by name."""
        for entity in self.entities:
            if entity.name == name:
                return entity
        raise ConfigurationError(f"Entity configuration '{name}' not found")

    def validate_config(self) -> None:
        """Validate the entity declarations for consistency."""
        names = [entity.name for entity in self.entities]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate entity declarations: {', '.join(duplicates)}")

        for entity in self.entities:
            if entity.parent and entity.parent not in names:
                raise ConfigurationError(
                    f"Entity {entity.name} specializes unknown entity '{entity.parent}'"
                )
            if entity.parent and entity.table:
                raise ConfigurationError(
                    f"Entity {entity.name} specializes {entity.parent} and cannot set a table"
                )
            for association in entity.associations:
                if association.target and association.target not in names:
                    raise ConfigurationError(
                        f"Entity {entity.name} association '{association.name}' "
                        f"references unknown entity '{association.target}'"
                    )

        # Building every table catches unknown types and bad options
        try:
            entities = self.build_entities()
            builder = TableSpecBuilder(PostgresDialect(self.database.schema_name))
            for entity in entities.roots():
                builder.build(entities, entity)
        except (DeclarationError, SchemaError) as e:
            raise ConfigurationError(f"Invalid entity declarations: {e}") from e

    def build_entities(self) -> EntityRegistry:
        """Build an EntityRegistry from the entity declarations."""
        return EntityRegistry.from_config(self.entities)

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(mode="json", exclude_none=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )


def configure_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Apply a LoggingConfig to the root logger."""
    level = logging.DEBUG if debug else getattr(logging, config.level)
    formatter = logging.Formatter(config.format)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.file:
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.file,
                maxBytes=config.max_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)
