"""
Plan execution for autoschema.

Applies a ReconciliationPlan operation by operation. Each operation is
its own statement, so a failure leaves earlier operations applied; the
failure is recorded and execution moves on to the next operation.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Set

from ..exceptions import ConnectionUnavailableError, DdlOperationFailed, SchemaError
from .operations import (
    AddColumn,
    AddIndex,
    ChangeColumn,
    CreateJoinTable,
    CreateTable,
    DropTable,
    Operation,
    OperationKind,
    ReconciliationPlan,
    RemoveColumn,
    RemoveIndex,
)

if TYPE_CHECKING:
    from ..database.adapter import PostgresAdapter
    from ..database.introspection import SchemaIntrospector, TableSnapshot


logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    """How a plan is executed."""

    APPLY = "apply"
    DRY_RUN = "dry_run"


class OperationStatus(str, Enum):
    APPLIED = "applied"
    PLANNED = "planned"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class OperationResult:
    """Outcome of a single operation."""

    operation: Operation
    status: OperationStatus
    sql: Optional[str] = None
    error: Optional[DdlOperationFailed] = None
    reason: Optional[str] = None
    execution_time_ms: float = 0.0

    @property
    def applied(self) -> bool:
        return self.status == OperationStatus.APPLIED

    @property
    def failed(self) -> bool:
        return self.status == OperationStatus.FAILED


@dataclass
class ExecutionReport:
    """Results of a plan, plus the table as probed afterwards."""

    table_name: str
    mode: ExecutionMode
    results: List[OperationResult] = field(default_factory=list)
    snapshot: Optional["TableSnapshot"] = None

    @property
    def applied(self) -> List[OperationResult]:
        return [r for r in self.results if r.applied]

    @property
    def failed(self) -> List[OperationResult]:
        return [r for r in self.results if r.failed]

    @property
    def skipped(self) -> List[OperationResult]:
        return [r for r in self.results if r.status == OperationStatus.SKIPPED]

    @property
    def errors(self) -> List[DdlOperationFailed]:
        return [r.error for r in self.results if r.error is not None]

    @property
    def has_failures(self) -> bool:
        return any(r.failed for r in self.results)

    def succeeded(self, kind: OperationKind, table_name: Optional[str] = None) -> bool:
        """Check whether an operation of ``kind`` was applied."""
        return any(
            r.applied
            and r.operation.kind == kind
            and (table_name is None or r.operation.table_name == table_name)
            for r in self.results
        )


class PlanExecutor:
    """Applies reconciliation plans through the database layer."""

    def __init__(
        self,
        adapter: "PostgresAdapter",
        introspector: "SchemaIntrospector",
        mode: ExecutionMode = ExecutionMode.APPLY,
    ):
        self.adapter = adapter
        self.introspector = introspector
        self.mode = mode

    @property
    def dialect(self):
        return self.adapter.dialect

    async def execute(self, plan: ReconciliationPlan) -> ExecutionReport:
        """Apply every operation of ``plan`` in order.

        Index operations are checked against a fresh probe of the table
        first: an index that already exists is not added again, and one
        that is already gone (dropped together with its column) is not
        removed again.
        """
        report = ExecutionReport(table_name=plan.table_name, mode=self.mode)

        if self.mode == ExecutionMode.DRY_RUN:
            for operation in plan:
                report.results.append(self._plan_only(operation))
            return report

        index_snapshot = None
        index_phase = False
        removed_indexes: Set[str] = set()

        for operation in plan:
            if operation.kind.is_index_operation and not index_phase:
                index_phase = True
                index_snapshot = await self.introspector.probe(plan.table_name)

            if operation.kind.is_index_operation:
                skipped = self._check_index_operation(operation, index_snapshot, removed_indexes)
                if skipped is not None:
                    report.results.append(skipped)
                    continue

            result = await self.apply(operation)
            report.results.append(result)
            if result.applied and isinstance(operation, RemoveIndex):
                removed_indexes.add(operation.index_name)

        report.snapshot = await self.introspector.probe(plan.table_name)

        if report.has_failures:
            logger.warning(
                f"{plan.table_name}: {len(report.failed)} of {len(plan)} operations failed"
            )
        return report

    def _check_index_operation(
        self,
        operation: Operation,
        snapshot: Optional["TableSnapshot"],
        removed_indexes: Set[str],
    ) -> Optional[OperationResult]:
        if snapshot is None:
            error = DdlOperationFailed(
                operation.kind.value,
                operation.table_name,
                operation.target,
                cause=SchemaError(f"Table {operation.table_name} does not exist"),
            )
            logger.error(f"Cannot {operation.describe()}: table is missing")
            return OperationResult(operation, OperationStatus.FAILED, error=error)

        if isinstance(operation, AddIndex):
            name = operation.index.name
            if snapshot.has_index(name) and name not in removed_indexes:
                logger.debug(f"Index {name} already exists, skipping")
                return OperationResult(
                    operation, OperationStatus.SKIPPED, reason="index already exists"
                )
        elif isinstance(operation, RemoveIndex):
            if not snapshot.has_index(operation.index_name):
                logger.debug(f"Index {operation.index_name} is already gone, skipping")
                return OperationResult(
                    operation, OperationStatus.SKIPPED, reason="index already removed"
                )
        return None

    def _plan_only(self, operation: Operation) -> OperationResult:
        sql = operation.to_sql(self.dialect)
        logger.info(f"DRY RUN: would {operation.describe()}")
        logger.info(f"SQL: {sql}")
        return OperationResult(operation, OperationStatus.PLANNED, sql=sql)

    async def apply(self, operation: Operation) -> OperationResult:
        """Apply one operation, recording a failure instead of raising it.

        ConnectionUnavailableError is not recorded: it propagates so the
        caller can stop working on the table.
        """
        if self.mode == ExecutionMode.DRY_RUN:
            return self._plan_only(operation)

        start_time = time.time()
        try:
            sql = await self._dispatch(operation)
        except ConnectionUnavailableError:
            raise
        except Exception as e:
            error = DdlOperationFailed(
                operation.kind.value, operation.table_name, operation.target, cause=e
            )
            logger.error(f"Failed to {operation.describe()}: {error}")
            return OperationResult(
                operation,
                OperationStatus.FAILED,
                error=error,
                execution_time_ms=(time.time() - start_time) * 1000,
            )

        logger.info(f"Applied: {operation.describe()}")
        return OperationResult(
            operation,
            OperationStatus.APPLIED,
            sql=sql,
            execution_time_ms=(time.time() - start_time) * 1000,
        )

    async def _dispatch(self, operation: Operation) -> str:
        if isinstance(operation, CreateTable):
            return await self.adapter.create_table(operation.spec)
        elif isinstance(operation, CreateJoinTable):
            statements = [await self.adapter.create_table(operation.spec)]
            for index in operation.spec.indexes.values():
                statements.append(await self.adapter.add_index(operation.table_name, index))
            return ";\n".join(statements)
        elif isinstance(operation, DropTable):
            return await self.adapter.drop_table(operation.table_name)
        elif isinstance(operation, RemoveColumn):
            return await self.adapter.remove_column(operation.table_name, operation.column_name)
        elif isinstance(operation, AddColumn):
            return await self.adapter.add_column(operation.table_name, operation.field)
        elif isinstance(operation, ChangeColumn):
            return await self.adapter.change_column(
                operation.table_name, operation.field, operation.attributes
            )
        elif isinstance(operation, RemoveIndex):
            return await self.adapter.remove_index(operation.table_name, operation.index_name)
        elif isinstance(operation, AddIndex):
            return await self.adapter.add_index(operation.table_name, operation.index)
        else:
            raise SchemaError(f"Unhandled operation {operation!r}")
