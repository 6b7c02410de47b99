"""Workflow engine: owns the registries and drives workflow runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .config import EngineConfig, TaxflowConfig, load_config
from .contracts import WorkflowDefinition
from .db import InMemoryDefinitionStore, WorkflowDefinitionStore, get_definition_store
from .errors import (
    DefinitionStoreError,
    ExecutionNotFound,
    FunctionNotFound,
    TaxflowError,
    WorkflowExecutionError,
)
from .execute import RunContext, StepExecutor
from .persistence import (
    ErrorDetail,
    Execution,
    ExecutionRepository,
    ExecutionStatus,
    InMemoryExecutionRepository,
    get_repository,
)
from .persistence.models import utcnow
from .registry import FunctionRegistry, Invocable, WorkflowRegistry
from .resolve import resolve_parameters
from .tracker import ExecutionTracker

logger = logging.getLogger(__name__)


def _error_detail(error: BaseException) -> ErrorDetail:
    if isinstance(error, TaxflowError):
        return ErrorDetail(
            code=error.code,
            message=error.message,
            step=getattr(error, "step", None),
            details=error.details,
        )
    return ErrorDetail(code="INTERNAL_ERROR", message=str(error) or type(error).__name__)


class WorkflowEngine:
    """Registers functions and workflows and executes workflow runs.

    One engine is built at startup and handed to whatever serves requests;
    it holds no module-level state, so several engines can coexist (tests
    rely on this).
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        repository: Optional[ExecutionRepository] = None,
        definition_store: Optional[WorkflowDefinitionStore] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.functions = FunctionRegistry()
        self.workflows = WorkflowRegistry(
            on_duplicate=self.config.on_duplicate_workflow,
            allow_output_overwrite=self.config.allow_output_overwrite,
        )
        self.tracker = ExecutionTracker(
            repository
            or InMemoryExecutionRepository(max_executions=self.config.max_executions)
        )
        self.definition_store = definition_store or InMemoryDefinitionStore()
        self._materialize_locks: Dict[str, asyncio.Lock] = {}
        self._materialized: Dict[str, Tuple[WorkflowDefinition, Any]] = {}
        self._executor = StepExecutor(self.functions, self.tracker, self.config)

    # ------------------------------------------------------------------
    # Registration
    def register_function(
        self, name: str, handler: Invocable, description: Optional[str] = None
    ) -> None:
        self.functions.register(name, handler, description=description)

    def function(self, name: Optional[str] = None, description: Optional[str] = None):
        """Decorator registering the wrapped callable as a function."""
        return self.functions.function(name, description=description)

    def register_workflow(
        self, definition: Union[WorkflowDefinition, Mapping[str, Any]]
    ) -> WorkflowDefinition:
        return self.workflows.register(definition)

    def list_functions(self) -> List[str]:
        return self.functions.names()

    def list_workflows(self) -> List[WorkflowDefinition]:
        return self.workflows.definitions()

    # ------------------------------------------------------------------
    # Invocation
    async def invoke_function(self, name: str, parameters: Dict[str, Any]) -> Any:
        """Call a single registered function outside any workflow."""
        return await self.functions.invoke(name, parameters)

    async def get_execution(self, execution_id: str) -> Execution:
        execution = await self.tracker.get(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)
        return execution

    async def list_executions(
        self, status: Optional[ExecutionStatus] = None
    ) -> List[Execution]:
        return await self.tracker.list(status)

    async def execute_workflow(
        self, name: str, input: Optional[Dict[str, Any]] = None
    ) -> Execution:
        """Run workflow ``name`` with ``input`` and return its execution record.

        Failures never propagate: the returned record has ``status`` failed
        and an ``error``. Failures detected before the run starts (unknown
        workflow, missing first function, unavailable stores) return a
        detached record with ``id=None`` that is not tracked.
        """
        input = dict(input or {})
        try:
            definition = self.workflows.get(name)
            self._preflight(definition, input)
            stored = await self._materialize(definition)
        except TaxflowError as e:
            logger.warning(f"Workflow '{name}' failed before start: {e.message}")
            return self._detached_failure(name, input, e)

        try:
            execution = await self.tracker.create(
                stored.id,
                input,
                workflow_name=definition.name,
                current_step=definition.steps[0].name,
            )
        except Exception as e:
            logger.exception(f"Could not create execution record for workflow '{name}'")
            return self._detached_failure(name, input, e)
        logger.info(f"Starting workflow execution: {definition.name} ({execution.id})")
        return await self._run(definition, execution)

    # ------------------------------------------------------------------
    # Internals
    def _preflight(self, definition: WorkflowDefinition, input: Dict[str, Any]) -> None:
        first = definition.steps[0]
        if first.function not in self.functions:
            raise FunctionNotFound(first.function)
        if self.config.strict_references:
            resolve_parameters(first.parameters, input, {}, strict=True)

    async def _materialize(self, definition: WorkflowDefinition):
        """Return the stored record for ``definition``, writing it if needed.

        Runs of one workflow share a lock so that only the first run writes
        the record. A record whose document differs from the registered
        definition is overwritten.
        """
        cached = self._materialized.get(definition.name)
        if cached is not None and cached[0] is definition:
            return cached[1]
        lock = self._materialize_locks.setdefault(definition.name, asyncio.Lock())
        async with lock:
            cached = self._materialized.get(definition.name)
            if cached is not None and cached[0] is definition:
                return cached[1]
            try:
                stored = await self.definition_store.get_by_name(definition.name)
                if stored is None:
                    stored = await self.definition_store.create(definition)
                elif stored.document != definition.to_document():
                    logger.info(f"Stored definition of '{definition.name}' is outdated")
                    stored = await self.definition_store.update(definition)
            except Exception as e:
                logger.exception(f"Definition store failed for workflow '{definition.name}'")
                raise DefinitionStoreError(
                    f"Could not store workflow definition '{definition.name}': {e}",
                    details={"workflow": definition.name, "type": type(e).__name__},
                ) from e
            self._materialized[definition.name] = (definition, stored)
        return stored

    def _detached_failure(
        self, name: str, input: Dict[str, Any], error: BaseException
    ) -> Execution:
        now = utcnow()
        return Execution(
            id=None,
            workflow_name=name,
            status=ExecutionStatus.FAILED,
            input=input,
            error=_error_detail(error),
            started_at=now,
            completed_at=now,
            current_step=None,
        )

    async def _run(
        self, definition: WorkflowDefinition, execution: Execution
    ) -> Execution:
        timeout = definition.timeout or self.config.default_timeout
        ctx = RunContext(
            definition=definition,
            execution_id=execution.id,
            input=execution.input,
            timeout=timeout,
            deadline=asyncio.get_running_loop().time() + timeout if timeout else None,
        )
        index = 0
        transitions = 0
        try:
            while index < len(definition.steps):
                step = definition.steps[index]
                transitions += 1
                if transitions > self.config.max_step_transitions:
                    raise WorkflowExecutionError(
                        f"Workflow '{definition.name}' exceeded "
                        f"{self.config.max_step_transitions} step transitions",
                        details={"step": step.name},
                    )
                outcome = await self._executor.run(step, ctx)
                if outcome.redirect is not None:
                    index = definition.index_of(outcome.redirect)
                else:
                    index += 1
        except asyncio.CancelledError:
            logger.warning(f"Workflow execution cancelled: {definition.name} ({execution.id})")
            await self._finish(
                execution,
                ctx,
                ExecutionStatus.FAILED,
                ErrorDetail(code="CANCELLED", message="Workflow execution cancelled"),
            )
            raise
        except TaxflowError as e:
            logger.error(
                f"Workflow execution failed: {definition.name} ({execution.id}) - {e.message}",
                exc_info=True,
            )
            return await self._finish(execution, ctx, ExecutionStatus.FAILED, _error_detail(e))
        except Exception as e:
            logger.exception(
                f"Unexpected error in workflow {definition.name} ({execution.id})"
            )
            return await self._finish(execution, ctx, ExecutionStatus.FAILED, _error_detail(e))

        logger.info(f"Workflow execution completed: {definition.name} ({execution.id})")
        return await self._finish(execution, ctx, ExecutionStatus.COMPLETED)

    async def _finish(
        self,
        execution: Execution,
        ctx: RunContext,
        status: ExecutionStatus,
        error: Optional[ErrorDetail] = None,
    ) -> Execution:
        fields: Dict[str, Any] = {
            "status": status,
            "output": dict(ctx.output),
            "error": error,
            "completed_at": utcnow(),
            "current_step": None,
        }
        try:
            updated = await self.tracker.update(execution.id, **fields)
        except Exception:
            logger.exception(f"Could not store final state of execution {execution.id}")
            updated = None
        if updated is not None:
            return updated
        # Store lost or refused the record; rebuild from what this run knows.
        return execution.merged(
            {
                **fields,
                "step_results": dict(ctx.step_results),
                "attempts": dict(ctx.attempts),
            }
        )


def create_engine(
    config: Optional[TaxflowConfig] = None,
    property_source=None,
    standard_library: bool = True,
) -> WorkflowEngine:
    """Build an engine from configuration.

    With ``standard_library`` set, the built-in functions and the property
    workflows are registered. ``property_source`` backs the property
    functions; an empty in-memory source is used when omitted.
    """
    config = config or load_config()
    engine = WorkflowEngine(
        config=config.engine,
        repository=get_repository(config.database_url, config=config),
        definition_store=get_definition_store(config.definitions_url),
    )
    if standard_library:
        from .functions import register_standard_functions
        from .workflows import register_standard_workflows

        register_standard_functions(engine.functions, property_source)
        register_standard_workflows(engine)
    return engine
