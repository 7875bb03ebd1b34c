"""
Command-line interface for autoschema.
"""

import asyncio
import sys
import time
from functools import wraps
from pathlib import Path
from typing import Dict

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import (
    AssociationConfig,
    AutoSchemaConfig,
    DatabaseConnection,
    EntityConfig,
    FieldConfig,
    IndexConfig,
    configure_logging,
)
from .database.adapter import PostgresAdapter
from .database.connection import ConnectionPool
from .database.dialect import PostgresDialect
from .exceptions import AutoSchemaError, ConfigurationError
from .schema.executor import ExecutionMode
from .schema.operations import ReconciliationPlan
from .schema.reconciler import PassResult, ReconciliationStatus, SchemaReconciler
from .schema.registry import DatabaseTableRegistry, ManagedTableRegistry


console = Console()


STATUS_STYLES = {
    ReconciliationStatus.SUCCESS: "green",
    ReconciliationStatus.PARTIAL: "yellow",
    ReconciliationStatus.FAILED: "red",
    ReconciliationStatus.SKIPPED: "dim",
}


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except AutoSchemaError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """autoschema: keep a PostgreSQL schema in line with entity declarations."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="autoschema.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new autoschema configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config()
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your database details and entities")
    console.print(f"2. Run: autoschema validate-config -c {output}")
    console.print(f"3. Run: autoschema plan -c {output}")
    console.print(f"4. Run: autoschema reconcile -c {output}")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        autoschema_config = AutoSchemaConfig.from_yaml(config)
        autoschema_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")

        _display_config_summary(autoschema_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.pass_context
@handle_errors
def plan(ctx, config: str):
    """Show the operations a reconciliation pass would apply."""
    autoschema_config = _load_config(config, ctx.obj.get("debug", False))

    plans = asyncio.run(_run_plan(autoschema_config))
    dialect = PostgresDialect(autoschema_config.database.schema_name)

    pending = {name: p for name, p in plans.items() if not p.is_empty}
    if not pending:
        console.print("[green]✓[/green] Schema is up to date")
        return

    _display_plans(pending)
    console.print("\n[bold cyan]SQL[/bold cyan]")
    for table_plan in pending.values():
        for sql in table_plan.to_sql(dialect):
            console.print(f"{sql};", markup=False, highlight=False)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.pass_context
@handle_errors
def reconcile(ctx, config: str, dry_run: bool):
    """Reconcile the database schema with the entity declarations."""
    console.print("[blue]Schema reconciliation[/blue]")

    autoschema_config = _load_config(config, ctx.obj.get("debug", False))
    if dry_run:
        autoschema_config.reconciliation.mode = "dry_run"
    if autoschema_config.reconciliation.mode == "dry_run":
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    result = asyncio.run(_run_reconcile(autoschema_config))
    _display_pass_result(result)

    summary = result.summary()
    if summary["failed"] or summary["partial"] or result.errors:
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def test_connection(config: str):
    """Test the database connection."""
    console.print("[blue]Testing connection...[/blue]")

    autoschema_config = AutoSchemaConfig.from_yaml(config)
    database = autoschema_config.database

    async def run_connection_test():
        start_time = time.time()
        async with ConnectionPool(database.to_connection_config()) as pool:
            version = await pool.fetchval("SELECT version()")
            tables = await PostgresAdapter(
                pool, PostgresDialect(database.schema_name)
            ).list_tables()
        return version, len(tables), (time.time() - start_time) * 1000

    console.print(f"\nTesting database: [yellow]{database.host}/{database.database}[/yellow]")
    try:
        version, table_count, response_time = asyncio.run(run_connection_test())
    except AutoSchemaError as e:
        console.print(f"  ✗ [red]Connection failed: {e}[/red]")
        sys.exit(1)

    console.print(f"  ✓ [green]Connected successfully[/green] ({response_time:.1f}ms)")
    console.print(f"     PostgreSQL version: {version.split(',')[0]}")
    console.print(f"     Tables in schema {database.schema_name}: {table_count}")


def _load_config(path: str, debug: bool) -> AutoSchemaConfig:
    autoschema_config = AutoSchemaConfig.from_yaml(path)
    autoschema_config.validate_config()
    configure_logging(autoschema_config.logging, debug=debug or autoschema_config.debug)
    return autoschema_config


def _build_reconciler(config: AutoSchemaConfig, pool: ConnectionPool) -> SchemaReconciler:
    dialect = PostgresDialect(config.database.schema_name)
    adapter = PostgresAdapter(
        pool, dialect, statement_timeout=config.reconciliation.statement_timeout
    )
    if config.registry.persist:
        registry = DatabaseTableRegistry(pool, dialect, config.registry.table)
    else:
        registry = ManagedTableRegistry()

    return SchemaReconciler(
        adapter,
        config.build_entities(),
        registry=registry,
        mode=ExecutionMode(config.reconciliation.mode),
        drop_orphans=config.reconciliation.drop_orphans,
    )


async def _run_reconcile(config: AutoSchemaConfig) -> PassResult:
    async with ConnectionPool(config.database.to_connection_config()) as pool:
        reconciler = _build_reconciler(config, pool)
        return await reconciler.reconcile_all()


async def _run_plan(config: AutoSchemaConfig) -> Dict[str, ReconciliationPlan]:
    async with ConnectionPool(config.database.to_connection_config()) as pool:
        reconciler = _build_reconciler(config, pool)
        return await reconciler.plan_all()


def _create_default_config() -> AutoSchemaConfig:
    """Create a default configuration with examples."""
    entities = [
        EntityConfig(
            name="Author",
            fields=[
                FieldConfig(name="name", null=False),
                FieldConfig(name="email", limit=255, index={"unique": True}),
            ],
            timestamps=True,
        ),
        EntityConfig(
            name="Article",
            fields=[
                FieldConfig(name="title", index=True),
                FieldConfig(name="body", type="text"),
                FieldConfig(name="published", type="boolean", default=False),
            ],
            indexes=[IndexConfig(columns=["author_id", "published"])],
            associations=[
                AssociationConfig(kind="belongs_to", name="author"),
                AssociationConfig(kind="many_to_many", name="tags"),
            ],
            timestamps=True,
        ),
        EntityConfig(name="FeaturedArticle", parent="Article"),
        EntityConfig(
            name="Tag",
            fields=[FieldConfig(name="name", limit=64, index={"unique": True})],
        ),
    ]

    return AutoSchemaConfig(
        database=DatabaseConnection(
            host="${POSTGRES_HOST}",
            port=5432,
            database="${POSTGRES_DB}",
            user="${POSTGRES_USER}",
            password="${POSTGRES_PASSWORD}",
        ),
        entities=entities,
    )


def _display_config_summary(config: AutoSchemaConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    db_table = Table(title="Database")
    db_table.add_column("Host", style="cyan")
    db_table.add_column("Database", style="magenta")
    db_table.add_column("Schema", style="green")
    db_table.add_column("Mode", style="yellow")
    db_table.add_row(
        config.database.host,
        config.database.database,
        config.database.schema_name,
        config.reconciliation.mode,
    )
    console.print(db_table)

    entities = config.build_entities()
    entity_table = Table(title="Entities")
    entity_table.add_column("Entity", style="cyan")
    entity_table.add_column("Table", style="magenta")
    entity_table.add_column("Parent", style="green")
    entity_table.add_column("Fields", style="yellow")
    entity_table.add_column("Associations", style="yellow")

    for entity_config in config.entities:
        entity_table.add_row(
            entity_config.name,
            entities.get(entity_config.name).table_name,
            entity_config.parent or "-",
            str(sum(len(f.column_names) for f in entity_config.fields)),
            str(len(entity_config.associations)),
        )

    console.print(entity_table)


def _display_plans(plans: Dict[str, ReconciliationPlan]):
    plan_table = Table(title="Planned Operations")
    plan_table.add_column("Table", style="cyan")
    plan_table.add_column("Operation", style="magenta")
    plan_table.add_column("Details", style="green")

    for table_name, table_plan in plans.items():
        for operation in table_plan:
            plan_table.add_row(table_name, operation.kind.value, operation.describe())

    console.print(plan_table)


def _display_pass_result(result: PassResult):
    results_table = Table(title="Reconciliation Results")
    results_table.add_column("Table", style="cyan")
    results_table.add_column("Entity", style="magenta")
    results_table.add_column("Status")
    results_table.add_column("Applied", style="green")
    results_table.add_column("Failed", style="red")

    for table_name, table_result in result.results.items():
        style = STATUS_STYLES[table_result.status]
        results_table.add_row(
            table_name,
            table_result.entity,
            f"[{style}]{table_result.status.value}[/{style}]",
            str(table_result.successful_operations),
            str(table_result.failed_operations),
        )

    console.print(results_table)

    for table_name, table_result in result.results.items():
        for error in table_result.errors:
            console.print(f"  [red]✗[/red] {table_name}: {error}")

    for table_name in result.dropped_tables:
        console.print(f"  [yellow]Dropped orphaned table {table_name}[/yellow]")
    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}")

    summary = result.summary()
    console.print("\n[bold]Summary[/bold]")
    console.print(f"  Tables: {summary['total_tables']}")
    console.print(f"  Successful: [green]{summary['successful']}[/green]")
    console.print(f"  Partial: [yellow]{summary['partial']}[/yellow]")
    console.print(f"  Failed: [red]{summary['failed']}[/red]")
    console.print(f"  Skipped: {summary['skipped']}")
    console.print(f"  Operations applied: {summary['operations_applied']}")


if __name__ == "__main__":
    main()
