"""Step execution for taxflow workflows."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Optional, TypeVar

from pydantic_core import PydanticSerializationError, to_jsonable_python

from .config import EngineConfig
from .contracts import (
    FallbackHandler,
    NextHandler,
    RetryHandler,
    StepSpec,
    WorkflowDefinition,
)
from .errors import ResultNotSerializable, StepFailed, WorkflowTimeout
from .registry import FunctionRegistry
from .resolve import get_by_path, resolve_parameters
from .tracker import ExecutionTracker
from .utils import retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _jsonable(function: str, result: Any) -> Any:
    """Return ``result`` in its JSON-compatible form.

    Step results are stored with the execution record, so anything that
    cannot be represented as JSON fails the step.
    """
    try:
        return to_jsonable_python(result)
    except PydanticSerializationError as e:
        raise ResultNotSerializable(function, e) from e


@dataclass
class RunContext:
    """Mutable state of one workflow run, shared across its steps."""

    definition: WorkflowDefinition
    execution_id: str
    input: Dict[str, Any]
    step_results: Dict[str, Any] = field(default_factory=dict)
    output: Dict[str, Any] = field(default_factory=dict)
    attempts: Dict[str, int] = field(default_factory=dict)
    deadline: Optional[float] = None
    timeout: Optional[float] = None


@dataclass
class StepOutcome:
    """Result of running one step.

    ``redirect`` names the step to run next when an error handler moved
    control; ``recovered`` is set when a handler absorbed a failure.
    """

    step: str
    result: Any = None
    redirect: Optional[str] = None
    recovered: bool = False
    error: Optional[str] = None


class StepExecutor:
    """Runs single workflow steps and applies their error handlers."""

    def __init__(
        self,
        registry: FunctionRegistry,
        tracker: ExecutionTracker,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._config = config or EngineConfig()

    async def run(self, step: StepSpec, ctx: RunContext) -> StepOutcome:
        """Execute ``step`` within ``ctx``.

        Raises:
            StepFailed: If the step fails and no handler recovers it.
            WorkflowTimeout: If the run's deadline expires during the step.
        """
        await self._tracker.update(ctx.execution_id, current_step=step.name)
        handler = ctx.definition.handler_for(step.name)

        attempt = 0
        while True:
            attempt += 1
            ctx.attempts[step.name] = attempt
            try:
                parameters = resolve_parameters(
                    step.parameters,
                    ctx.input,
                    ctx.step_results,
                    strict=self._config.strict_references,
                )
                logger.info(f"Executing step: {step.name} (attempt {attempt})")
                result = await self._within_deadline(
                    self._registry.invoke(
                        step.function, parameters, offload=ctx.deadline is not None
                    ),
                    ctx,
                    step,
                )
                result = _jsonable(step.function, result)
            except WorkflowTimeout:
                raise
            except Exception as e:
                logger.warning(f"Step '{step.name}' failed on attempt {attempt}: {e}")
                if isinstance(handler, RetryHandler) and attempt <= handler.max_attempts:
                    await self._backoff(handler, attempt, ctx, step)
                    continue
                if isinstance(handler, NextHandler):
                    logger.info(
                        f"Step '{step.name}' failed; continuing at '{handler.target}'"
                    )
                    await self._tracker.update(
                        ctx.execution_id, attempts=dict(ctx.attempts)
                    )
                    return StepOutcome(
                        step=step.name,
                        redirect=handler.target,
                        recovered=True,
                        error=str(e),
                    )
                if isinstance(handler, FallbackHandler):
                    logger.info(f"Step '{step.name}' failed; using fallback result")
                    await self._record(step, handler.result, ctx)
                    return StepOutcome(
                        step=step.name,
                        result=handler.result,
                        recovered=True,
                        error=str(e),
                    )
                raise StepFailed(step.name, e, attempts=attempt) from e

            await self._record(step, result, ctx)
            return StepOutcome(step=step.name, result=result)

    async def _record(self, step: StepSpec, result: Any, ctx: RunContext) -> None:
        ctx.step_results[step.name] = result
        for output_name, path in step.output.items():
            ctx.output[output_name] = get_by_path(result, path)
        await self._tracker.update(
            ctx.execution_id,
            step_results=dict(ctx.step_results),
            output=dict(ctx.output),
            attempts=dict(ctx.attempts),
        )

    async def _backoff(
        self, handler: RetryHandler, attempt: int, ctx: RunContext, step: StepSpec
    ) -> None:
        defaults = self._config.retry
        base = handler.backoff_base if handler.backoff_base is not None else defaults.backoff_base
        factor = (
            handler.backoff_factor
            if handler.backoff_factor is not None
            else defaults.backoff_factor
        )
        jitter = handler.jitter if handler.jitter is not None else defaults.jitter
        logger.info(
            f"Retrying step '{step.name}' ({attempt}/{handler.max_attempts})"
        )
        await self._within_deadline(
            retry.schedule_retry(attempt, base=base, factor=factor, jitter=jitter),
            ctx,
            step,
        )

    async def _within_deadline(
        self, awaitable: Awaitable[T], ctx: RunContext, step: StepSpec
    ) -> T:
        if ctx.deadline is None:
            return await awaitable
        remaining = ctx.deadline - asyncio.get_running_loop().time()
        try:
            if remaining <= 0:
                raise asyncio.TimeoutError
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise WorkflowTimeout(
                ctx.definition.name, ctx.timeout or 0.0, step=step.name
            ) from None
