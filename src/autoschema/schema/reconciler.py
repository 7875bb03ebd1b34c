"""
Schema reconciliation core logic for autoschema.

Coordinates the builder, relationship expander, prober, diff engine and
plan executor to bring every declared table in line with its entity
declarations, then drops managed tables that are no longer declared.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Set

from ..database.introspection import SchemaIntrospector
from ..exceptions import AutoSchemaError, ConnectionUnavailableError, ReconciliationInProgress
from .builder import TableSpecBuilder
from .diff import DiffEngine
from .executor import ExecutionMode, OperationResult, PlanExecutor
from .operations import CreateJoinTable, CreateTable, DropTable, ReconciliationPlan
from .registry import ManagedTableRegistry
from .relationships import RelationshipExpander

if TYPE_CHECKING:
    from ..database.adapter import PostgresAdapter
    from ..declarations import EntityDeclaration, EntityRegistry


logger = logging.getLogger(__name__)


class ReconciliationStatus(str, Enum):
    """Status of reconciliation operations."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReconciliationResult:
    """Result of reconciling one table."""

    status: ReconciliationStatus
    entity: str
    table: str
    plan: Optional[ReconciliationPlan] = None
    operations: List[OperationResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def successful_operations(self) -> int:
        return sum(1 for r in self.operations if r.applied)

    @property
    def failed_operations(self) -> int:
        return sum(1 for r in self.operations if r.failed)


@dataclass
class PassResult:
    """Result of a full reconciliation pass."""

    results: Dict[str, ReconciliationResult] = field(default_factory=dict)
    orphans: List[OperationResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def dropped_tables(self) -> List[str]:
        return [r.operation.table_name for r in self.orphans if r.applied]

    @property
    def succeeded(self) -> bool:
        return not self.errors and all(
            r.status == ReconciliationStatus.SUCCESS for r in self.results.values()
        )

    def with_status(self, status: ReconciliationStatus) -> List[str]:
        return [table for table, r in self.results.items() if r.status == status]

    def summary(self) -> Dict[str, Any]:
        """Aggregate counts over the pass."""
        total = len(self.results)
        successful = len(self.with_status(ReconciliationStatus.SUCCESS))

        return {
            "total_tables": total,
            "successful": successful,
            "partial": len(self.with_status(ReconciliationStatus.PARTIAL)),
            "failed": len(self.with_status(ReconciliationStatus.FAILED)),
            "skipped": len(self.with_status(ReconciliationStatus.SKIPPED)),
            "success_rate": successful / total if total > 0 else 0,
            "operations_applied": sum(r.successful_operations for r in self.results.values()),
            "operations_failed": sum(r.failed_operations for r in self.results.values()),
            "dropped_tables": self.dropped_tables,
            "failed_tables": self.with_status(ReconciliationStatus.FAILED),
            "execution_time_ms": self.execution_time_ms,
        }


class SchemaReconciler:
    """
    Core schema reconciliation engine for autoschema.

    One pass:
    - builds each declared table's desired spec from scratch
    - probes the live table and expands relationships
    - diffs and applies the resulting plan, one statement at a time
    - drops managed tables that are no longer declared
    """

    def __init__(
        self,
        adapter: "PostgresAdapter",
        entities: "EntityRegistry",
        registry: Optional[ManagedTableRegistry] = None,
        mode: ExecutionMode = ExecutionMode.APPLY,
        drop_orphans: bool = True,
    ):
        self.adapter = adapter
        self.entities = entities
        self.registry = registry if registry is not None else ManagedTableRegistry()
        self.mode = mode
        self.drop_orphans = drop_orphans

        self.dialect = adapter.dialect
        self.introspector = SchemaIntrospector(adapter)
        self.builder = TableSpecBuilder(self.dialect)
        self.expander = RelationshipExpander(self.dialect)
        self.diff_engine = DiffEngine(self.dialect)
        self.executor = PlanExecutor(adapter, self.introspector, mode)

        self._pass_lock = asyncio.Lock()

    @property
    def dry_run(self) -> bool:
        return self.mode == ExecutionMode.DRY_RUN

    async def reconcile_all(self) -> PassResult:
        """
        Run one reconciliation pass over every declared entity.

        Safe to call repeatedly: a pass over an unchanged declaration set
        and database applies nothing. Raises ReconciliationInProgress if
        a pass is already running, and ConnectionUnavailableError if the
        database cannot be reached at all.
        """
        if self._pass_lock.locked():
            raise ReconciliationInProgress("A reconciliation pass is already running")

        async with self._pass_lock:
            return await self._run_pass()

    async def _run_pass(self) -> PassResult:
        start_time = time.time()
        result = PassResult()

        await self.registry.load()
        live_tables = await self.introspector.list_tables()
        declared = self.entities.declared_tables()

        logger.info(
            f"Starting reconciliation pass: {len(self.entities)} entities, "
            f"{len(live_tables)} live tables"
            + (" (dry run)" if self.dry_run else "")
        )

        for entity in self._walk_all():
            if entity.table_name in result.results:
                continue
            result.results[entity.table_name] = await self.reconcile_entity(entity)

        if self.drop_orphans:
            try:
                result.orphans = await self._sweep_orphans(declared)
            except ConnectionUnavailableError as e:
                logger.warning(f"Skipping orphan sweep: {e}")
                result.errors.append(str(e))

        result.execution_time_ms = (time.time() - start_time) * 1000
        summary = result.summary()
        logger.info(
            f"Reconciliation pass completed: {summary['successful']}/{summary['total_tables']} "
            f"tables reconciled, {summary['operations_applied']} operations applied, "
            f"{len(result.dropped_tables)} orphans dropped ({result.execution_time_ms:.1f}ms)"
        )
        return result

    async def plan_all(self) -> Dict[str, ReconciliationPlan]:
        """Compute every plan of a pass without executing anything."""
        await self.registry.load()
        await self.introspector.list_tables()
        declared = self.entities.declared_tables()
        plans: Dict[str, ReconciliationPlan] = {}

        for entity in self._walk_all():
            if entity.table_name in plans:
                continue
            try:
                plan = await self._plan_entity(entity)
            except AutoSchemaError as e:
                logger.error(f"Cannot plan {entity.name} ({entity.table_name}): {e}")
                continue
            plans[entity.table_name] = plan

        if self.drop_orphans:
            for table_name in await self._orphans(declared):
                plans[table_name] = ReconciliationPlan(table_name, [DropTable(table_name)])
        return plans

    def _walk_all(self) -> Iterator["EntityDeclaration"]:
        for root in self.entities.roots():
            yield from self._walk(root)

    def _walk(self, entity: "EntityDeclaration") -> Iterator["EntityDeclaration"]:
        """Depth-first, specializations before the entity they specialize."""
        for child in self.entities.specializations_of(entity.name):
            yield from self._walk(child)
        yield entity

    async def _plan_entity(self, entity: "EntityDeclaration"):
        spec = self.builder.build(self.entities, entity)
        live_tables = await self.introspector.list_tables()
        snapshot = await self.introspector.probe(spec.table_name)
        expansion = self.expander.expand(spec, entity, self.entities, live_tables)
        return self.diff_engine.diff(spec, snapshot, expansion.join_tables)

    async def reconcile_entity(self, entity: "EntityDeclaration") -> ReconciliationResult:
        """Reconcile the table of one entity.

        Failures are confined to the returned result: an entity that fails
        never stops the pass.
        """
        start_time = time.time()
        table_name = entity.table_name
        result = ReconciliationResult(
            status=ReconciliationStatus.SKIPPED,
            entity=entity.root.name,
            table=table_name,
        )

        try:
            plan = await self._plan_entity(entity)
            result.plan = plan

            if plan.is_empty:
                logger.debug(f"No changes needed for {table_name}")
                result.status = ReconciliationStatus.SUCCESS
                return result

            report = await self.executor.execute(plan)
            result.operations = report.results
            result.errors.extend(str(error) for error in report.errors)

            if not self.dry_run:
                await self._register_created(report.results, table_name)

            if not report.has_failures:
                result.status = ReconciliationStatus.SUCCESS
            elif report.applied:
                result.status = ReconciliationStatus.PARTIAL
            else:
                result.status = ReconciliationStatus.FAILED

        except ConnectionUnavailableError as e:
            logger.warning(f"Skipping {entity.name} ({table_name}): {e}")
            result.errors.append(str(e))
            result.status = ReconciliationStatus.SKIPPED

        except AutoSchemaError as e:
            logger.error(f"Reconciliation failed for {entity.name} ({table_name}): {e}")
            result.errors.append(str(e))
            result.status = ReconciliationStatus.FAILED

        finally:
            result.execution_time_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Reconciliation completed for {table_name}: "
            f"{result.status.value} ({result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _register_created(self, results: List[OperationResult], table_name: str) -> None:
        for operation_result in results:
            if not operation_result.applied:
                continue
            operation = operation_result.operation
            if isinstance(operation, CreateTable):
                await self.registry.add(table_name)
            elif isinstance(operation, CreateJoinTable):
                await self.registry.add(operation.table_name)

    async def _orphans(self, declared: Set[str]) -> List[str]:
        """Managed, live tables that no declaration implies any more."""
        live_tables = await self.introspector.list_tables()
        managed = self.registry.tables()
        orphans = (live_tables & managed) - declared - self.registry.reserved_tables
        return sorted(orphans)

    async def _sweep_orphans(self, declared: Set[str]) -> List[OperationResult]:
        results = []
        for table_name in await self._orphans(declared):
            logger.info(f"Dropping orphaned table {table_name}")
            operation_result = await self.executor.apply(DropTable(table_name))
            results.append(operation_result)
            if operation_result.applied:
                await self.registry.remove(table_name)

        if not self.dry_run:
            live_tables = await self.introspector.list_tables()
            for table_name in sorted(self.registry.tables() - live_tables - declared):
                logger.debug(f"Forgetting managed table {table_name}, it no longer exists")
                await self.registry.remove(table_name)
        return results
