"""
PostgreSQL dialect for autoschema.

Maps logical field types to native SQL types, derives index names,
normalizes column defaults and renders the DDL statements issued by the
database layer. Column attributes are reported here exactly the way the
catalog reports them, so a desired field and the live column it produced
compare equal.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..exceptions import IdentifierTooLong, SchemaError
from ..schema.spec import FieldConstraintSet, FieldSpec, FieldType, IndexSpec, TableSpec
from .introspection import ColumnInfo


NATIVE_TYPES: Dict[FieldType, str] = {
    FieldType.STRING: "character varying",
    FieldType.TEXT: "text",
    FieldType.INTEGER: "integer",
    FieldType.BIGINT: "bigint",
    FieldType.FLOAT: "double precision",
    FieldType.DECIMAL: "numeric",
    FieldType.BOOLEAN: "boolean",
    FieldType.DATE: "date",
    FieldType.DATETIME: "timestamp without time zone",
    FieldType.BINARY: "bytea",
    FieldType.PRIMARY_KEY: "integer",
}

# Canonical names as printed by format_type(), keyed by common spellings.
TYPE_ALIASES: Dict[str, str] = {
    "varchar": "character varying",
    "char": "character",
    "int": "integer",
    "int4": "integer",
    "int2": "smallint",
    "int8": "bigint",
    "bool": "boolean",
    "float8": "double precision",
    "float4": "real",
    "decimal": "numeric",
    "timestamp": "timestamp without time zone",
    "timestamptz": "timestamp with time zone",
    "time": "time without time zone",
    "timetz": "time with time zone",
}

KNOWN_NATIVE_TYPES = frozenset(
    set(NATIVE_TYPES.values())
    | set(TYPE_ALIASES)
    | set(TYPE_ALIASES.values())
    | {
        "json", "jsonb", "uuid", "inet", "cidr", "macaddr", "money",
        "interval", "xml", "tsvector", "tsquery", "citext", "point",
        "smallint", "real", "character",
    }
)

LOGICAL_TYPES: Dict[str, FieldType] = {
    "character varying": FieldType.STRING,
    "text": FieldType.TEXT,
    "smallint": FieldType.INTEGER,
    "integer": FieldType.INTEGER,
    "bigint": FieldType.BIGINT,
    "double precision": FieldType.FLOAT,
    "real": FieldType.FLOAT,
    "numeric": FieldType.DECIMAL,
    "boolean": FieldType.BOOLEAN,
    "date": FieldType.DATE,
    "timestamp without time zone": FieldType.DATETIME,
    "bytea": FieldType.BINARY,
}

INTEGER_LIMITS = {"smallint": 2, "integer": 4, "bigint": 8}

_CAST_RE = re.compile(r"^(.*?)::[a-z_ \"]+(\(\d+(,\s*\d+)?\))?(\[\])?$", re.IGNORECASE | re.DOTALL)
_TYPE_RE = re.compile(
    r"^([a-z_ ]+?)\s*(\([^)]*\))?\s*((?:with|without) time zone)?\s*(\[\])?$", re.IGNORECASE
)
_ZONED_RE = re.compile(r"^(timestamp|time) (with(?:out)? time zone)$")
_PARAMS_RE = re.compile(r"\([^)]*\)")


class PostgresDialect:
    """SQL generation and catalog normalization for PostgreSQL."""

    max_identifier_length = 63

    def __init__(self, schema: str = "public"):
        self.schema = schema

    # Identifiers

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def qualified(self, name: str) -> str:
        return f"{self.quote(self.schema)}.{self.quote(name)}"

    def truncate(self, identifier: str) -> str:
        """Cut an identifier to the database limit, the way the server does."""
        return identifier[: self.max_identifier_length]

    def index_name(self, table_name: str, columns: Union[str, Sequence[str]]) -> str:
        """Derive the deterministic name of an index on ``columns``."""
        if isinstance(columns, str):
            columns = [columns]
        return self.truncate(f"index_{table_name}_on_{'_and_'.join(columns)}")

    def build_index(
        self,
        table_name: str,
        columns: Union[str, Sequence[str]],
        unique: bool = False,
        **options: Any,
    ) -> IndexSpec:
        if isinstance(columns, str):
            columns = [columns]
        name = options.pop("name", None)
        if name is None:
            name = self.index_name(table_name, columns)
        elif len(name) > self.max_identifier_length:
            raise IdentifierTooLong(name, self.max_identifier_length)
        return IndexSpec(
            name=name,
            columns=tuple(columns),
            unique=bool(unique),
            options=dict(options),
        )

    # Types

    def is_native_type(self, type_name: str) -> bool:
        """Check whether a string is usable as a raw native type."""
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", type_name):
            return True
        return type_name.lower() in KNOWN_NATIVE_TYPES

    def normalize_sql_type(self, sql_type: str) -> str:
        """Lower-case a type and spell its base name as format_type() does."""
        text = " ".join(sql_type.strip().lower().split())
        match = _TYPE_RE.match(text)
        if not match:
            return text
        base, params, zone, array = match.groups()
        base = base.strip()
        if zone:
            base = f"{base} {zone}"
        else:
            base = TYPE_ALIASES.get(base, base)
        if base == "character" and not params:
            params = "(1)"
        if params:
            values = [p.strip() for p in params[1:-1].split(",")]
            if base == "numeric" and len(values) == 1:
                values.append("0")
            params = "(" + ",".join(values) + ")"
            zoned = _ZONED_RE.match(base)
            if zoned:
                # format_type() prints the precision before the time zone
                return f"{zoned.group(1)}{params} {zoned.group(2)}{array or ''}"
        return f"{base}{params or ''}{array or ''}"

    def base_type(self, sql_type: str) -> str:
        """A normalized native type without its parameters."""
        return _PARAMS_RE.sub("", sql_type)

    def sql_type(self, field: FieldSpec) -> str:
        """Render the native type of a desired field."""
        if field.is_raw:
            return self.normalize_sql_type(field.type)

        constraints = field.constraints
        if field.type == FieldType.STRING:
            if constraints.limit:
                return f"character varying({constraints.limit})"
            return "character varying"
        if field.type == FieldType.INTEGER:
            return self._integer_type(field.name, constraints.limit)
        if field.type == FieldType.DECIMAL:
            if constraints.precision:
                return f"numeric({constraints.precision},{constraints.scale or 0})"
            return "numeric"
        return NATIVE_TYPES[field.type]

    def _integer_type(self, column: str, limit: Optional[int]) -> str:
        if limit is None:
            return "integer"
        if limit in (1, 2):
            return "smallint"
        if limit in (3, 4):
            return "integer"
        if 5 <= limit <= 8:
            return "bigint"
        raise SchemaError(
            f"No integer type with byte size {limit} for column '{column}'; use a limit of 1 to 8"
        )

    def logical_type(self, sql_type: str) -> Union[FieldType, str]:
        """Map a native type back to a logical type, or keep it raw."""
        normalized = self.normalize_sql_type(sql_type)
        return LOGICAL_TYPES.get(self.base_type(normalized), normalized)

    def effective_constraints(self, field: FieldSpec) -> FieldConstraintSet:
        """Constraints of a desired field as the catalog would report them."""
        sql_type = self.sql_type(field)
        declared = field.constraints
        limit = precision = scale = None

        base = self.base_type(sql_type)
        if base in INTEGER_LIMITS:
            limit = INTEGER_LIMITS[base]
        elif base == "character varying":
            limit = declared.limit or None
        elif base == "numeric" and declared.precision:
            precision = declared.precision
            scale = declared.scale or 0
            limit = precision

        null = False if field.is_primary_key else declared.nullable
        return FieldConstraintSet(
            limit=limit,
            precision=precision,
            scale=scale,
            null=null,
            default=self.normalize_default(declared.default, field.type),
        )

    def describe(self, field: FieldSpec) -> ColumnInfo:
        """Describe the column the database will hold for a desired field."""
        sql_type = self.sql_type(field)
        constraints = self.effective_constraints(field)
        return ColumnInfo(
            name=field.name,
            type=self.logical_type(sql_type),
            sql_type=sql_type,
            limit=constraints.limit,
            precision=constraints.precision,
            scale=constraints.scale,
            null=constraints.null,
            default=None if field.is_primary_key else constraints.default,
            primary_key=field.is_primary_key,
        )

    def column_from_catalog(
        self,
        name: str,
        sql_type: str,
        not_null: bool,
        default_expression: Optional[str] = None,
        character_maximum_length: Optional[int] = None,
        numeric_precision: Optional[int] = None,
        numeric_scale: Optional[int] = None,
        primary_key: bool = False,
    ) -> ColumnInfo:
        """Build a ColumnInfo from catalog values."""
        normalized = self.normalize_sql_type(sql_type)
        base = self.base_type(normalized)
        logical = self.logical_type(normalized)
        limit = precision = scale = None

        if base in INTEGER_LIMITS:
            limit = INTEGER_LIMITS[base]
        elif base == "character varying":
            limit = character_maximum_length
        elif base == "numeric" and "(" in normalized:
            precision = numeric_precision
            scale = numeric_scale
            limit = precision

        default = None
        if not primary_key:
            default = self.parse_default(default_expression, logical)

        return ColumnInfo(
            name=name,
            type=logical,
            sql_type=normalized,
            limit=limit,
            precision=precision,
            scale=scale,
            null=not not_null,
            default=default,
            primary_key=primary_key,
        )

    # Defaults

    def parse_default(self, expression: Optional[str], field_type: Union[FieldType, str]) -> Any:
        """Turn a catalog default expression into a Python value.

        Literal defaults become values of the column's logical type; any
        other expression (``now()``, ``nextval(...)``) is kept verbatim.
        """
        if expression is None:
            return None

        value = expression.strip()
        while True:
            match = _CAST_RE.match(value)
            if not match:
                break
            value = match.group(1).strip()

        if value.startswith("(") and value.endswith(")"):
            value = value[1:-1].strip()
        if value.upper() == "NULL":
            return None

        quoted = len(value) >= 2 and value.startswith("'") and value.endswith("'")
        if quoted:
            value = value[1:-1].replace("''", "'")

        if field_type in (FieldType.STRING, FieldType.TEXT) and not quoted:
            return expression
        coerced = self._coerce(value, field_type)
        if coerced is None and not quoted:
            return expression
        return coerced

    def normalize_default(self, value: Any, field_type: Union[FieldType, str]) -> Any:
        """Normalize a declared default so it compares with a parsed one."""
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, date):
            return value.isoformat()
        if field_type == FieldType.DECIMAL and isinstance(value, (int, float)):
            return Decimal(str(value))
        if isinstance(value, str) and field_type not in (FieldType.STRING, FieldType.TEXT):
            coerced = self._coerce(value, field_type)
            return value if coerced is None else coerced
        return value

    def _coerce(self, value: str, field_type: Union[FieldType, str]) -> Any:
        try:
            if field_type in (FieldType.INTEGER, FieldType.BIGINT):
                return int(value)
            if field_type == FieldType.FLOAT:
                return float(value)
            if field_type == FieldType.DECIMAL:
                return Decimal(value)
        except (ValueError, InvalidOperation):
            return None
        if field_type == FieldType.BOOLEAN:
            lowered = value.lower()
            if lowered in ("true", "t", "yes", "on", "1"):
                return True
            if lowered in ("false", "f", "no", "off", "0"):
                return False
            return None
        return value

    def quote_default(self, value: Any) -> str:
        """Render a Python value as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, datetime):
            value = value.isoformat(sep=" ")
        elif isinstance(value, date):
            value = value.isoformat()
        return "'" + str(value).replace("'", "''") + "'"

    # DDL

    def column_definition(self, field: FieldSpec) -> str:
        if field.is_primary_key:
            return f"{self.quote(field.name)} serial PRIMARY KEY"

        parts = [self.quote(field.name), self.sql_type(field)]
        constraints = field.constraints
        if constraints.default is not None:
            parts.append(f"DEFAULT {self.quote_default(constraints.default)}")
        if not constraints.nullable:
            parts.append("NOT NULL")
        return " ".join(parts)

    def create_table_sql(self, spec: TableSpec) -> str:
        definitions = ",\n    ".join(
            self.column_definition(field) for field in spec.fields.values()
        )
        return f"CREATE TABLE {self.qualified(spec.table_name)} (\n    {definitions}\n)"

    def drop_table_sql(self, table_name: str) -> str:
        return f"DROP TABLE {self.qualified(table_name)}"

    def add_column_sql(self, table_name: str, field: FieldSpec) -> str:
        return (
            f"ALTER TABLE {self.qualified(table_name)} "
            f"ADD COLUMN {self.column_definition(field)}"
        )

    def remove_column_sql(self, table_name: str, column_name: str) -> str:
        return f"ALTER TABLE {self.qualified(table_name)} DROP COLUMN {self.quote(column_name)}"

    def change_column_sql(
        self,
        table_name: str,
        field: FieldSpec,
        attributes: Dict[str, Any],
    ) -> str:
        """Render one ALTER TABLE statement changing type, default and nullability."""
        column = self.quote(field.name)
        sql_type = self.sql_type(field)
        actions = [f"ALTER COLUMN {column} TYPE {sql_type} USING {column}::{sql_type}"]

        if "default" in attributes:
            if attributes["default"] is None:
                actions.append(f"ALTER COLUMN {column} DROP DEFAULT")
            else:
                actions.append(
                    f"ALTER COLUMN {column} SET DEFAULT {self.quote_default(field.constraints.default)}"
                )
        if "null" in attributes:
            if attributes["null"] is False:
                actions.append(f"ALTER COLUMN {column} SET NOT NULL")
            else:
                actions.append(f"ALTER COLUMN {column} DROP NOT NULL")

        return f"ALTER TABLE {self.qualified(table_name)} " + ", ".join(actions)

    def add_index_sql(self, table_name: str, index: IndexSpec) -> str:
        unique = "UNIQUE " if index.unique else ""
        columns = ", ".join(self.quote(column) for column in index.columns)
        sql = f"CREATE {unique}INDEX {self.quote(index.name)} ON {self.qualified(table_name)}"
        if index.options.get("using"):
            sql += f" USING {index.options['using']}"
        sql += f" ({columns})"
        if index.options.get("where"):
            sql += f" WHERE {index.options['where']}"
        return sql

    def remove_index_sql(self, index_name: str) -> str:
        return f"DROP INDEX IF EXISTS {self.qualified(index_name)}"
