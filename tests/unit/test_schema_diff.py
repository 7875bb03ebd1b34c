"""
Tests for autoschema.schema.diff module.
"""

import dataclasses

import pytest

from autoschema.database.introspection import IndexInfo, TableSnapshot
from autoschema.schema.diff import DiffEngine
from autoschema.schema.operations import (
    AddColumn,
    AddIndex,
    ChangeColumn,
    CreateJoinTable,
    CreateTable,
    OperationKind,
    RemoveColumn,
    RemoveIndex,
)
from autoschema.schema.spec import FieldConstraintSet, FieldSpec, FieldType, IndexSpec, TableSpec


def make_field(name, field_type, **constraints):
    return FieldSpec(name, field_type, FieldConstraintSet(**constraints))


def make_spec(name, *fields, indexes=(), primary_key="id"):
    spec = TableSpec(table_name=name, primary_key_name=primary_key)
    if primary_key:
        spec.add_field(make_field(primary_key, FieldType.PRIMARY_KEY, null=False))
    for field_spec in fields:
        spec.add_field(field_spec)
    for index in indexes:
        spec.add_index(index)
    return spec


def live_snapshot(dialect, spec, indexes=()):
    """Snapshot of a table created exactly from ``spec``."""
    columns = {f.name: dialect.describe(f) for f in spec.fields.values()}
    live_indexes = {
        f"{spec.table_name}_pkey": IndexInfo(
            f"{spec.table_name}_pkey", (spec.primary_key_name,), unique=True, primary=True
        )
    }
    for index in indexes:
        live_indexes[index.name] = IndexInfo(index.name, tuple(index.columns), index.unique)
    return TableSnapshot(name=spec.table_name, columns=columns, indexes=live_indexes)


@pytest.fixture
def engine(dialect):
    return DiffEngine(dialect)


class TestMissingTable:
    """Test plans for tables that do not exist yet."""

    def test_create_table_then_indexes(self, dialect, engine):
        title_index = dialect.build_index("articles", "title")
        spec = make_spec(
            "articles", make_field("title", FieldType.STRING), indexes=[title_index]
        )

        plan = engine.diff(spec, None)

        assert plan.kinds == [OperationKind.CREATE_TABLE, OperationKind.ADD_INDEX]
        assert plan.operations[0] == CreateTable("articles", spec)
        assert plan.operations[1] == AddIndex("articles", title_index)

    def test_join_tables_come_after_create_table(self, dialect, engine):
        spec = make_spec("articles", indexes=[dialect.build_index("articles", "id")])
        join_spec = make_spec("articles_tags", primary_key=None)

        plan = engine.diff(spec, None, join_tables=[join_spec])

        assert plan.kinds == [
            OperationKind.CREATE_TABLE,
            OperationKind.CREATE_JOIN_TABLE,
            OperationKind.ADD_INDEX,
        ]
        assert plan.operations[1] == CreateJoinTable("articles_tags", join_spec)


class TestColumns:
    """Test column additions, removals and changes."""

    def test_up_to_date_table_has_empty_plan(self, dialect, engine):
        spec = make_spec(
            "articles",
            make_field("title", FieldType.STRING, limit=200, null=False),
            make_field("views", FieldType.INTEGER, default=0),
            make_field("price", FieldType.DECIMAL, precision=10, scale=2),
            make_field("published", FieldType.BOOLEAN, default=False),
            FieldSpec("payload", "jsonb"),
        )
        plan = engine.diff(spec, live_snapshot(dialect, spec))
        assert plan.is_empty

    def test_remove_undeclared_column(self, dialect, engine):
        live = live_snapshot(
            dialect, make_spec("articles", make_field("legacy", FieldType.STRING))
        )
        plan = engine.diff(make_spec("articles"), live)
        assert plan.operations == [RemoveColumn("articles", "legacy")]

    def test_primary_key_is_never_removed(self, dialect, engine):
        live = live_snapshot(dialect, make_spec("articles"))
        spec = make_spec("articles", primary_key="article_key")
        plan = engine.diff(spec, live)

        assert RemoveColumn("articles", "id") not in plan.operations
        assert not plan.of_kind(OperationKind.CHANGE_COLUMN)

    def test_add_column_options(self, dialect, engine):
        live = live_snapshot(dialect, make_spec("articles"))
        spec = make_spec(
            "articles",
            make_field("title", FieldType.STRING),
            make_field("views", FieldType.INTEGER, default=0, null=False),
            make_field("price", FieldType.DECIMAL, precision=8, scale=2),
        )
        plan = engine.diff(spec, live)

        title, views, price = plan.of_kind(OperationKind.ADD_COLUMN)
        assert title.options == {"limit": None, "precision": None, "scale": None}
        assert views.options == {
            "limit": None, "precision": None, "scale": None, "default": 0, "null": False,
        }
        assert price.options == {"limit": 8, "precision": 8, "scale": 2}

    def test_type_change(self, dialect, engine):
        live = live_snapshot(dialect, make_spec("articles", make_field("body", FieldType.STRING)))
        spec = make_spec("articles", make_field("body", FieldType.TEXT))

        (change,) = engine.diff(spec, live).operations
        assert isinstance(change, ChangeColumn)
        assert change.column_name == "body"
        assert change.new_type == FieldType.TEXT
        assert change.attributes == {"precision": None, "scale": None}

    def test_limit_change(self, dialect, engine):
        live = live_snapshot(
            dialect, make_spec("articles", make_field("title", FieldType.STRING, limit=100))
        )
        spec = make_spec("articles", make_field("title", FieldType.STRING, limit=200))

        (change,) = engine.diff(spec, live).operations
        assert change.new_type == FieldType.STRING
        assert change.attributes == {"precision": None, "scale": None, "limit": 200}

    def test_null_and_default_change(self, dialect, engine):
        live = live_snapshot(
            dialect, make_spec("articles", make_field("views", FieldType.INTEGER))
        )
        spec = make_spec(
            "articles", make_field("views", FieldType.INTEGER, null=False, default=0)
        )

        (change,) = engine.diff(spec, live).operations
        assert change.attributes == {
            "precision": None, "scale": None, "null": False, "default": 0,
        }

    def test_unset_null_reads_as_nullable(self, dialect, engine):
        live = live_snapshot(
            dialect, make_spec("articles", make_field("title", FieldType.STRING, null=True))
        )
        spec = make_spec("articles", make_field("title", FieldType.STRING))
        assert engine.diff(spec, live).is_empty

    def test_raw_type_compares_only_null_and_default(self, dialect, engine):
        live = live_snapshot(dialect, make_spec("docs", FieldSpec("payload", "jsonb")))
        live = dataclasses.replace(
            live,
            columns={
                **live.columns,
                "payload": dataclasses.replace(live.columns["payload"], limit=99),
            },
        )
        spec = make_spec("docs", FieldSpec("payload", "JSONB"))
        assert engine.diff(spec, live).is_empty

        spec = make_spec("docs", FieldSpec("payload", "jsonb", FieldConstraintSet(null=False)))
        (change,) = engine.diff(spec, live).operations
        assert change.attributes == {"precision": None, "scale": None, "null": False}

    def test_missing_sql_type_compares_logical_type(self, dialect, engine):
        live = live_snapshot(dialect, make_spec("articles", make_field("n", FieldType.INTEGER)))
        live = dataclasses.replace(
            live,
            columns={**live.columns, "n": dataclasses.replace(live.columns["n"], sql_type=None)},
        )
        assert engine.diff(make_spec("articles", make_field("n", FieldType.INTEGER)), live).is_empty

        (change,) = engine.diff(
            make_spec("articles", make_field("n", FieldType.TEXT)), live
        ).operations
        assert change.new_type == FieldType.TEXT


class TestIndexes:
    """Test index removals, additions and recreation."""

    def test_primary_index_is_ignored(self, dialect, engine):
        spec = make_spec("articles")
        plan = engine.diff(spec, live_snapshot(dialect, spec))
        assert not plan.of_kind(OperationKind.REMOVE_INDEX)

    def test_stale_index_removed(self, dialect, engine):
        title_index = dialect.build_index("articles", "title")
        spec = make_spec("articles", make_field("title", FieldType.STRING))
        live = live_snapshot(dialect, spec, indexes=[title_index])

        assert engine.diff(spec, live).operations == [
            RemoveIndex("articles", "index_articles_on_title")
        ]

    def test_missing_index_added(self, dialect, engine):
        title_index = dialect.build_index("articles", "title")
        spec = make_spec(
            "articles", make_field("title", FieldType.STRING), indexes=[title_index]
        )
        live = live_snapshot(dialect, make_spec("articles", make_field("title", FieldType.STRING)))

        assert engine.diff(spec, live).operations == [AddIndex("articles", title_index)]

    def test_changed_index_recreated(self, dialect, engine):
        plain = dialect.build_index("tags", "name")
        unique = dialect.build_index("tags", "name", unique=True)
        spec = make_spec("tags", make_field("name", FieldType.STRING), indexes=[unique])
        live = live_snapshot(dialect, spec, indexes=[plain])

        assert engine.diff(spec, live).operations == [
            RemoveIndex("tags", "index_tags_on_name"),
            AddIndex("tags", unique),
        ]

    def test_index_with_other_columns_recreated(self, dialect, engine):
        spec = make_spec(
            "articles",
            make_field("slug", FieldType.STRING),
            make_field("locale", FieldType.STRING),
            indexes=[IndexSpec("articles_slug", ("slug", "locale"))],
        )
        live = live_snapshot(dialect, spec, indexes=[IndexSpec("articles_slug", ("slug",))])

        assert engine.diff(spec, live).kinds == [
            OperationKind.REMOVE_INDEX, OperationKind.ADD_INDEX,
        ]


class TestOrdering:
    """Test the fixed kind order of a plan."""

    def test_kind_order(self, dialect, engine):
        old_index = dialect.build_index("articles", "legacy")
        new_index = dialect.build_index("articles", "title")
        live = live_snapshot(
            dialect,
            make_spec(
                "articles",
                make_field("legacy", FieldType.STRING),
                make_field("body", FieldType.STRING),
            ),
            indexes=[old_index],
        )
        spec = make_spec(
            "articles",
            make_field("title", FieldType.STRING),
            make_field("body", FieldType.TEXT),
            indexes=[new_index],
        )
        join_spec = make_spec("articles_tags", primary_key=None)

        plan = engine.diff(spec, live, join_tables=[join_spec])

        assert plan.kinds == [
            OperationKind.CREATE_JOIN_TABLE,
            OperationKind.REMOVE_COLUMN,
            OperationKind.ADD_COLUMN,
            OperationKind.CHANGE_COLUMN,
            OperationKind.REMOVE_INDEX,
            OperationKind.ADD_INDEX,
        ]
        assert [op.target for op in plan] == [
            None, "legacy", "title", "body", "index_articles_on_legacy", "index_articles_on_title",
        ]
        assert isinstance(plan.operations[2], AddColumn)


def catalog_snapshot(dialect, table_name, *rows):
    """Snapshot built from values as information_schema and format_type() report them."""
    columns = {
        "id": dialect.column_from_catalog(
            "id", "integer", True, f"nextval('{table_name}_id_seq'::regclass)",
            numeric_precision=32, numeric_scale=0, primary_key=True,
        )
    }
    for row in rows:
        columns[row["name"]] = dialect.column_from_catalog(**row)
    return TableSnapshot(name=table_name, columns=columns)


def catalog_row(name, sql_type, not_null=False, default_expression=None, length=None,
                precision=None, scale=None):
    return {
        "name": name,
        "sql_type": sql_type,
        "not_null": not_null,
        "default_expression": default_expression,
        "character_maximum_length": length,
        "numeric_precision": precision,
        "numeric_scale": scale,
    }


class TestCatalogRoundTrip:
    """Test that a column created from a field reads back as no change."""

    @pytest.mark.parametrize(
        "field_spec, row",
        [
            (make_field("v", FieldType.STRING), catalog_row("v", "character varying")),
            (
                make_field("v", FieldType.STRING, limit=255),
                catalog_row("v", "character varying(255)", length=255),
            ),
            (make_field("v", FieldType.STRING, limit=0), catalog_row("v", "character varying")),
            (
                make_field("v", FieldType.STRING, default="draft", null=False),
                catalog_row("v", "character varying", True, "'draft'::character varying"),
            ),
            (make_field("v", FieldType.TEXT), catalog_row("v", "text")),
            (
                make_field("v", FieldType.INTEGER, default=0),
                catalog_row("v", "integer", default_expression="0", precision=32, scale=0),
            ),
            (
                make_field("v", FieldType.INTEGER, limit=2),
                catalog_row("v", "smallint", precision=16, scale=0),
            ),
            (make_field("v", FieldType.BIGINT), catalog_row("v", "bigint", precision=64, scale=0)),
            (make_field("v", FieldType.FLOAT), catalog_row("v", "double precision", precision=53)),
            (make_field("v", FieldType.DECIMAL), catalog_row("v", "numeric")),
            (
                make_field("v", FieldType.DECIMAL, precision=10),
                catalog_row("v", "numeric(10,0)", precision=10, scale=0),
            ),
            (
                make_field("v", FieldType.DECIMAL, precision=10, scale=2, default=0),
                catalog_row("v", "numeric(10,2)", default_expression="0", precision=10, scale=2),
            ),
            (
                make_field("v", FieldType.BOOLEAN, default=False, null=False),
                catalog_row("v", "boolean", True, "false"),
            ),
            (make_field("v", FieldType.DATE), catalog_row("v", "date")),
            (make_field("v", FieldType.DATETIME), catalog_row("v", "timestamp without time zone")),
            (make_field("v", FieldType.BINARY), catalog_row("v", "bytea")),
            (FieldSpec("v", "timestamp(6)"), catalog_row("v", "timestamp(6) without time zone")),
            (FieldSpec("v", "timestamptz"), catalog_row("v", "timestamp with time zone")),
            (FieldSpec("v", "numeric(12)"), catalog_row("v", "numeric(12,0)", precision=12, scale=0)),
            (FieldSpec("v", "varchar(20)"), catalog_row("v", "character varying(20)", length=20)),
            (FieldSpec("v", "char"), catalog_row("v", "character(1)", length=1)),
            (FieldSpec("v", "jsonb"), catalog_row("v", "jsonb")),
        ],
    )
    def test_created_column_needs_no_change(self, dialect, engine, field_spec, row):
        spec = make_spec("things", field_spec)
        live = catalog_snapshot(dialect, "things", row)

        assert engine.diff(spec, live).is_empty

    def test_change_to_decimal_without_scale_converges(self, dialect, engine):
        live = catalog_snapshot(dialect, "things", catalog_row("v", "integer", precision=32, scale=0))
        spec = make_spec("things", make_field("v", FieldType.DECIMAL, precision=10))

        (change,) = engine.diff(spec, live).operations
        assert change.new_type == FieldType.DECIMAL
        assert change.attributes == {"precision": 10, "scale": 0, "limit": 10}
        assert change.to_sql(dialect).endswith('TYPE numeric(10,0) USING "v"::numeric(10,0)')

        live = catalog_snapshot(
            dialect, "things", catalog_row("v", "numeric(10,0)", precision=10, scale=0)
        )
        assert engine.diff(spec, live).is_empty
