"""
Tests for autoschema.schema.executor module.
"""

import pytest

from autoschema.exceptions import ConnectionUnavailableError, DdlOperationFailed
from autoschema.schema.executor import ExecutionMode, OperationStatus, PlanExecutor
from autoschema.schema.operations import (
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
from autoschema.schema.spec import FieldConstraintSet, FieldSpec, FieldType, TableSpec


def make_field(name, field_type, **constraints):
    return FieldSpec(name, field_type, FieldConstraintSet(**constraints))


def make_plan(table_name, *operations):
    return ReconciliationPlan(table_name=table_name, operations=list(operations))


@pytest.fixture
def executor(adapter, introspector):
    return PlanExecutor(adapter, introspector)


@pytest.fixture
def dry_run_executor(adapter, introspector):
    return PlanExecutor(adapter, introspector, mode=ExecutionMode.DRY_RUN)


class TestApply:
    """Test applying plans through the database layer."""

    @pytest.mark.asyncio
    async def test_create_table(self, adapter, executor):
        spec = TableSpec("articles")
        spec.add_field(make_field("id", FieldType.PRIMARY_KEY, null=False))
        spec.add_field(make_field("title", FieldType.STRING))

        report = await executor.execute(make_plan("articles", CreateTable("articles", spec)))

        assert [r.status for r in report.results] == [OperationStatus.APPLIED]
        assert report.results[0].sql.startswith('CREATE TABLE "public"."articles"')
        assert report.succeeded(OperationKind.CREATE_TABLE, "articles")
        assert report.snapshot is not None
        assert report.snapshot.has_column("title")

    @pytest.mark.asyncio
    async def test_one_call_per_operation(self, adapter, executor, dialect):
        adapter.seed_table("articles", make_field("legacy", FieldType.STRING),
                           make_field("body", FieldType.STRING))
        title = make_field("title", FieldType.STRING)
        body = make_field("body", FieldType.TEXT)
        plan = make_plan(
            "articles",
            RemoveColumn("articles", "legacy"),
            AddColumn("articles", title),
            ChangeColumn("articles", "body", FieldType.TEXT, {"precision": None, "scale": None}, body),
            AddIndex("articles", dialect.build_index("articles", "title")),
        )

        report = await executor.execute(plan)

        assert len(report.applied) == 4
        assert adapter.ddl_calls() == [
            ("remove_column", "articles.legacy"),
            ("add_column", "articles.title"),
            ("change_column", "articles.body"),
            ("add_index", "index_articles_on_title"),
        ]
        assert adapter.column("articles", "body").sql_type == "text"

    @pytest.mark.asyncio
    async def test_join_table_created_with_its_index(self, adapter, executor, dialect):
        join_spec = TableSpec("articles_tags", primary_key_name=None)
        join_spec.add_field(make_field("article_id", FieldType.INTEGER))
        join_spec.add_field(make_field("tag_id", FieldType.INTEGER))
        join_spec.add_index(
            dialect.build_index("articles_tags", ["article_id", "tag_id"], unique=True)
        )
        adapter.seed_table("articles")

        report = await executor.execute(
            make_plan("articles", CreateJoinTable("articles_tags", join_spec))
        )

        assert report.succeeded(OperationKind.CREATE_JOIN_TABLE, "articles_tags")
        assert adapter.ddl_calls() == [
            ("create_table", "articles_tags"),
            ("add_index", "index_articles_tags_on_article_id_and_tag_id"),
        ]
        assert adapter.index_names("articles_tags") == [
            "index_articles_tags_on_article_id_and_tag_id"
        ]

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_execution_continues(self, adapter, executor):
        adapter.seed_table("articles")
        adapter.fail("add_column", "articles.title")
        plan = make_plan(
            "articles",
            AddColumn("articles", make_field("title", FieldType.STRING)),
            AddColumn("articles", make_field("body", FieldType.TEXT)),
        )

        report = await executor.execute(plan)

        assert [r.status for r in report.results] == [
            OperationStatus.FAILED, OperationStatus.APPLIED,
        ]
        error = report.results[0].error
        assert isinstance(error, DdlOperationFailed)
        assert error.operation == "add_column"
        assert error.table == "articles"
        assert error.target == "title"
        assert report.errors == [error]
        assert report.has_failures
        assert adapter.tables["articles"]["columns"].keys() == {"id", "body"}

    @pytest.mark.asyncio
    async def test_connection_loss_propagates(self, adapter, executor):
        adapter.seed_table("articles")
        adapter.fail("add_column", "articles.title", ConnectionUnavailableError("gone"))
        plan = make_plan("articles", AddColumn("articles", make_field("title", FieldType.STRING)))

        with pytest.raises(ConnectionUnavailableError):
            await executor.execute(plan)

    @pytest.mark.asyncio
    async def test_drop_table(self, adapter, executor):
        adapter.seed_table("tags")
        result = await executor.apply(DropTable("tags"))

        assert result.applied
        assert result.sql == 'DROP TABLE "public"."tags"'
        assert "tags" not in adapter.tables


class TestIndexChecks:
    """Test the probe before the first index operation."""

    @pytest.mark.asyncio
    async def test_existing_index_is_skipped(self, adapter, executor, dialect):
        index = dialect.build_index("articles", "title")
        adapter.seed_table("articles", make_field("title", FieldType.STRING), indexes=[index])

        report = await executor.execute(make_plan("articles", AddIndex("articles", index)))

        assert report.results[0].status == OperationStatus.SKIPPED
        assert report.results[0].reason == "index already exists"
        assert adapter.ddl_calls() == []

    @pytest.mark.asyncio
    async def test_index_dropped_with_its_column_is_skipped(self, adapter, executor, dialect):
        index = dialect.build_index("articles", "legacy")
        adapter.seed_table("articles", make_field("legacy", FieldType.STRING), indexes=[index])
        plan = make_plan(
            "articles",
            RemoveColumn("articles", "legacy"),
            RemoveIndex("articles", index.name),
        )

        report = await executor.execute(plan)

        assert [r.status for r in report.results] == [
            OperationStatus.APPLIED, OperationStatus.SKIPPED,
        ]
        assert adapter.ddl_calls() == [("remove_column", "articles.legacy")]

    @pytest.mark.asyncio
    async def test_recreated_index_is_not_skipped(self, adapter, executor, dialect):
        plain = dialect.build_index("tags", "name")
        unique = dialect.build_index("tags", "name", unique=True)
        adapter.seed_table("tags", make_field("name", FieldType.STRING), indexes=[plain])
        plan = make_plan("tags", RemoveIndex("tags", plain.name), AddIndex("tags", unique))

        report = await executor.execute(plan)

        assert len(report.applied) == 2
        assert adapter.tables["tags"]["indexes"]["index_tags_on_name"].unique

    @pytest.mark.asyncio
    async def test_missing_table_fails_index_operations(self, adapter, executor, dialect):
        index = dialect.build_index("articles", "title")

        report = await executor.execute(make_plan("articles", AddIndex("articles", index)))

        (result,) = report.results
        assert result.status == OperationStatus.FAILED
        assert result.error.target == "index_articles_on_title"
        assert adapter.ddl_calls() == []
        assert report.snapshot is None


class TestDryRun:
    """Test that dry runs only log SQL."""

    @pytest.mark.asyncio
    async def test_no_statements_executed(self, adapter, dry_run_executor, dialect, caplog):
        adapter.seed_table("articles")
        plan = make_plan(
            "articles",
            AddColumn("articles", make_field("title", FieldType.STRING)),
            AddIndex("articles", dialect.build_index("articles", "title")),
        )

        with caplog.at_level("INFO", logger="autoschema.schema.executor"):
            report = await dry_run_executor.execute(plan)

        assert [r.status for r in report.results] == [OperationStatus.PLANNED] * 2
        assert report.results[0].sql == (
            'ALTER TABLE "public"."articles" ADD COLUMN "title" character varying'
        )
        assert adapter.calls == []
        assert "DRY RUN: would add column articles.title string" in caplog.text
        assert report.snapshot is None

    @pytest.mark.asyncio
    async def test_apply_in_dry_run(self, adapter, dry_run_executor):
        adapter.seed_table("tags")
        result = await dry_run_executor.apply(DropTable("tags"))

        assert result.status == OperationStatus.PLANNED
        assert "tags" in adapter.tables
