import asyncio
import time

import pytest

from taxflow.config import EngineConfig, RetryDefaults
from taxflow.engine import WorkflowEngine
from taxflow.errors import ExecutionNotFound
from taxflow.functions import standard
from taxflow.persistence import ExecutionStatus, InMemoryExecutionRepository


def _engine(**config) -> WorkflowEngine:
    config.setdefault("retry", RetryDefaults(backoff_base=0))
    engine = WorkflowEngine(EngineConfig(**config))
    standard.register(engine.functions)
    return engine


class CallLog:
    def __init__(self):
        self.calls = []

    def handler(self, name, result=None, error=None):
        def call(parameters):
            self.calls.append(name)
            if error is not None:
                raise error
            return result

        return call


@pytest.mark.asyncio
async def test_single_step_with_literal_parameters():
    engine = _engine()
    engine.register_workflow(
        {
            "name": "sum",
            "steps": [
                {
                    "name": "add",
                    "function": "calculate",
                    "parameters": {"operation": "add", "values": [2, 3]},
                    "output": {"sum": ""},
                }
            ],
        }
    )

    execution = await engine.execute_workflow("sum", {})

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.output == {"sum": 5}
    assert execution.current_step is None
    assert execution.completed_at is not None
    assert execution.error is None


@pytest.mark.asyncio
async def test_input_reference_feeds_function():
    engine = _engine()
    engine.register_workflow(
        {
            "name": "sum",
            "steps": [
                {
                    "name": "add",
                    "function": "calculate",
                    "parameters": {"operation": "add", "values": "$input.values"},
                    "output": {"sum": ""},
                }
            ],
        }
    )

    execution = await engine.execute_workflow("sum", {"values": [2, 3]})

    assert execution.output == {"sum": 5}
    stored = await engine.get_execution(execution.id)
    assert stored == execution
    assert stored.step_results == {"add": 5}
    assert stored.input == {"values": [2, 3]}


@pytest.mark.asyncio
async def test_step_results_flow_between_steps():
    engine = _engine()
    engine.register_function("lookup", lambda p: {"price": {"amount": p["qty"] * 10}})
    engine.register_workflow(
        {
            "name": "quote",
            "steps": [
                {
                    "name": "price",
                    "function": "lookup",
                    "parameters": {"qty": "$input.qty"},
                },
                {
                    "name": "total",
                    "function": "calculate",
                    "parameters": {
                        "operation": "multiply",
                        "values": "$steps.price.price.amount",
                    },
                },
                {
                    "name": "label",
                    "function": "echo",
                    "parameters": {
                        "amount": "$steps.price.price.amount",
                        "currency": "$$USD",
                    },
                    "output": {"quote": ""},
                },
            ],
            "errorHandlers": {"total": {"action": "fallback", "result": None}},
        }
    )

    execution = await engine.execute_workflow("quote", {"qty": 3})

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.output == {"quote": {"amount": 30, "currency": "$USD"}}


@pytest.mark.asyncio
async def test_unhandled_failure_stops_the_workflow():
    engine = _engine()
    log = CallLog()
    engine.register_function("one", log.handler("one", {"v": 1}))
    engine.register_function("two", log.handler("two", error=RuntimeError("boom")))
    engine.register_function("three", log.handler("three"))
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {"name": "s1", "function": "one", "output": {"first": "v"}},
                {"name": "s2", "function": "two"},
                {"name": "s3", "function": "three"},
            ],
        }
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.status == ExecutionStatus.FAILED
    assert execution.current_step is None
    assert execution.completed_at is not None
    assert execution.error.code == "WORKFLOW_EXECUTION_ERROR"
    assert execution.error.step == "s2"
    assert "boom" in execution.error.message
    assert execution.output == {"first": 1}
    assert log.calls == ["one", "two"]


@pytest.mark.asyncio
async def test_next_handler_skips_to_target():
    engine = _engine()
    log = CallLog()
    engine.register_function("a", log.handler("a", error=ValueError("bad")))
    engine.register_function("b", log.handler("b"))
    engine.register_function("c", log.handler("c", "done"))
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {"name": "stepA", "function": "a"},
                {"name": "stepB", "function": "b"},
                {"name": "stepC", "function": "c", "output": {"result": ""}},
            ],
            "errorHandlers": {"stepA": {"action": "next", "target": "stepC"}},
        }
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.status == ExecutionStatus.COMPLETED
    assert log.calls == ["a", "c"]
    assert execution.output == {"result": "done"}
    assert "stepA" not in execution.step_results


@pytest.mark.asyncio
async def test_terminate_handler_fails_the_workflow():
    engine = _engine()
    engine.register_function("a", CallLog().handler("a", error=ValueError("bad")))
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [{"name": "s1", "function": "a"}],
            "errorHandlers": {"s1": {"action": "terminate"}},
        }
    )

    execution = await engine.execute_workflow("wf", {})
    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.details["cause"] == "FUNCTION_EXECUTION_ERROR"


@pytest.mark.asyncio
async def test_concurrent_executions_are_isolated():
    engine = _engine()

    async def slow_echo(parameters):
        await asyncio.sleep(0.01)
        return parameters["n"]

    engine.register_function("slow", slow_echo)
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {"name": "s1", "function": "slow", "parameters": {"n": "$input.n"}, "output": {"n": ""}}
            ],
        }
    )

    executions = await asyncio.gather(
        *(engine.execute_workflow("wf", {"n": n}) for n in range(10))
    )

    assert len({e.id for e in executions}) == 10
    assert [e.output["n"] for e in executions] == list(range(10))
    assert all(e.status == ExecutionStatus.COMPLETED for e in executions)


@pytest.mark.asyncio
async def test_unknown_workflow_returns_detached_failure():
    engine = _engine()

    execution = await engine.execute_workflow("missing", {"a": 1})

    assert execution.id is None
    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.code == "WORKFLOW_NOT_FOUND"
    assert execution.input == {"a": 1}
    assert await engine.list_executions() == []


@pytest.mark.asyncio
async def test_missing_first_function_fails_before_start():
    engine = _engine()
    engine.register_workflow(
        {"name": "wf", "steps": [{"name": "s1", "function": "notRegistered"}]}
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.id is None
    assert execution.error.code == "FUNCTION_NOT_FOUND"
    assert await engine.list_executions() == []


@pytest.mark.asyncio
async def test_functions_bind_at_run_time():
    engine = _engine()
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {"name": "s1", "function": "echo", "parameters": {"x": 1}},
                {"name": "s2", "function": "later", "output": {"value": ""}},
            ],
        }
    )

    failed = await engine.execute_workflow("wf", {})
    assert failed.id is not None
    assert failed.status == ExecutionStatus.FAILED
    assert failed.error.step == "s2"
    assert failed.error.details["cause"] == "FUNCTION_NOT_FOUND"
    assert failed.step_results == {"s1": {"x": 1}}

    engine.register_function("later", lambda p: "bound")
    succeeded = await engine.execute_workflow("wf", {})
    assert succeeded.status == ExecutionStatus.COMPLETED
    assert succeeded.output == {"value": "bound"}


@pytest.mark.asyncio
async def test_retry_until_success():
    engine = _engine()
    calls = []

    def flaky(parameters):
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("flaky")
        return "ok"

    engine.register_function("flaky", flaky)
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [{"name": "s1", "function": "flaky", "output": {"r": ""}}],
            "errorHandlers": {"s1": {"action": "retry", "maxAttempts": 3}},
        }
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.output == {"r": "ok"}
    assert execution.attempts == {"s1": 3}


@pytest.mark.asyncio
async def test_retry_exhausted():
    engine = _engine()
    log = CallLog()
    engine.register_function("f", log.handler("f", error=ConnectionError("down")))
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [{"name": "s1", "function": "f"}],
            "errorHandlers": {"s1": {"action": "retry", "maxAttempts": 2}},
        }
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.status == ExecutionStatus.FAILED
    assert len(log.calls) == 3
    assert execution.error.details["attempts"] == 3


@pytest.mark.asyncio
async def test_retry_handler_without_attempts_does_not_retry():
    engine = _engine()
    log = CallLog()
    engine.register_function("f", log.handler("f", error=ConnectionError("down")))
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [{"name": "s1", "function": "f"}],
            "errorHandlers": {"s1": {"action": "retry"}},
        }
    )

    execution = await engine.execute_workflow("wf", {})
    assert execution.status == ExecutionStatus.FAILED
    assert log.calls == ["f"]


@pytest.mark.asyncio
async def test_fallback_result_feeds_outputs():
    engine = _engine()
    engine.register_function("f", CallLog().handler("f", error=KeyError("x")))
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {"name": "s1", "function": "f", "output": {"status": "state"}},
                {
                    "name": "s2",
                    "function": "echo",
                    "parameters": {"seen": "$steps.s1.state"},
                    "output": {"echoed": "seen"},
                },
            ],
            "errorHandlers": {"s1": {"action": "fallback", "result": {"state": "unknown"}}},
        }
    )

    execution = await engine.execute_workflow("wf", {})
    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.output == {"status": "unknown", "echoed": "unknown"}


@pytest.mark.asyncio
async def test_workflow_timeout_bypasses_handlers():
    engine = _engine()

    async def hang(parameters):
        await asyncio.sleep(5)

    engine.register_function("hang", hang)
    engine.register_workflow(
        {
            "name": "wf",
            "timeout": 0.05,
            "steps": [{"name": "s1", "function": "hang"}],
            "errorHandlers": {"s1": {"action": "fallback", "result": "late"}},
        }
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.code == "WORKFLOW_TIMEOUT"
    assert execution.error.step == "s1"
    assert execution.step_results == {}


@pytest.mark.asyncio
async def test_default_timeout_from_config():
    engine = _engine(default_timeout=0.05)

    async def hang(parameters):
        await asyncio.sleep(5)

    engine.register_function("hang", hang)
    engine.register_workflow({"name": "wf", "steps": [{"name": "s1", "function": "hang"}]})

    execution = await engine.execute_workflow("wf", {})
    assert execution.error.code == "WORKFLOW_TIMEOUT"


@pytest.mark.asyncio
async def test_redirect_loop_is_bounded():
    engine = _engine(max_step_transitions=5)
    log = CallLog()
    engine.register_function("f", log.handler("f", error=RuntimeError("again")))
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [{"name": "s1", "function": "f"}],
            "errorHandlers": {"s1": {"action": "next", "target": "s1"}},
        }
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.status == ExecutionStatus.FAILED
    assert "step transitions" in execution.error.message
    assert len(log.calls) == 5


@pytest.mark.asyncio
async def test_missing_references_resolve_to_none_by_default():
    engine = _engine()
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {
                    "name": "s1",
                    "function": "echo",
                    "parameters": {"a": "$input.missing", "b": "$steps.nope.x"},
                    "output": {"out": ""},
                }
            ],
        }
    )

    execution = await engine.execute_workflow("wf", {})
    assert execution.output == {"out": {"a": None, "b": None}}


@pytest.mark.asyncio
async def test_strict_references():
    engine = _engine(strict_references=True)
    engine.register_workflow(
        {
            "name": "first",
            "steps": [
                {"name": "s1", "function": "echo", "parameters": {"a": "$input.missing"}}
            ],
        }
    )
    engine.register_workflow(
        {
            "name": "second",
            "steps": [
                {"name": "s1", "function": "echo", "parameters": {"a": 1}},
                {"name": "s2", "function": "echo", "parameters": {"b": "$steps.s1.zzz"}},
            ],
        }
    )

    detached = await engine.execute_workflow("first", {})
    assert detached.id is None
    assert detached.error.code == "PARAMETER_RESOLUTION_ERROR"

    failed = await engine.execute_workflow("second", {})
    assert failed.id is not None
    assert failed.error.step == "s2"
    assert failed.error.details["cause"] == "PARAMETER_RESOLUTION_ERROR"


class LossyRepository(InMemoryExecutionRepository):
    async def update(self, execution_id, fields):
        return None


@pytest.mark.asyncio
async def test_result_survives_lost_updates():
    engine = WorkflowEngine(repository=LossyRepository())
    standard.register(engine.functions)
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {"name": "s1", "function": "echo", "parameters": {"x": 1}, "output": {"x": "x"}}
            ],
        }
    )

    execution = await engine.execute_workflow("wf", {})

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.output == {"x": 1}
    assert execution.step_results == {"s1": {"x": 1}}
    assert execution.current_step is None


@pytest.mark.asyncio
async def test_current_step_is_visible_while_running():
    engine = _engine()
    seen = []

    async def observe(parameters):
        running = await engine.list_executions(ExecutionStatus.RUNNING)
        seen.append(running[0].current_step)

    engine.register_function("observe", observe)
    engine.register_workflow(
        {
            "name": "wf",
            "steps": [
                {"name": "first", "function": "observe"},
                {"name": "second", "function": "observe"},
            ],
        }
    )

    await engine.execute_workflow("wf", {})
    assert seen == ["first", "second"]


@pytest.mark.asyncio
async def test_cancellation_marks_execution_failed():
    engine = _engine()
    started = asyncio.Event()

    async def block(parameters):
        started.set()
        await asyncio.Event().wait()

    engine.register_function("block", block)
    engine.register_workflow({"name": "wf", "steps": [{"name": "s1", "function": "block"}]})

    task = asyncio.create_task(engine.execute_workflow("wf", {}))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    [execution] = await engine.list_executions()
    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.code == "CANCELLED"
    assert execution.completed_at is not None


@pytest.mark.asyncio
async def test_definitions_materialized_once():
    engine = _engine()
    engine.register_workflow(
        {"name": "wf", "steps": [{"name": "s1", "function": "echo"}]}
    )

    first = await engine.execute_workflow("wf", {})
    second = await engine.execute_workflow("wf", {})

    stored = await engine.definition_store.get_by_name("wf")
    assert stored is not None
    assert first.workflow_id == second.workflow_id == stored.id
    assert first.id != second.id


@pytest.mark.asyncio
async def test_invoke_function_and_lookups():
    engine = _engine()
    assert await engine.invoke_function("calculate", {"operation": "add", "values": [1, 2]}) == 3
    assert "calculate" in engine.list_functions()
    with pytest.raises(ExecutionNotFound):
        await engine.get_execution("missing")


@pytest.mark.asyncio
async def test_timeout_covers_blocking_sync_handlers():
    engine = _engine()

    def block(parameters):
        time.sleep(0.5)
        return "late"

    engine.register_function("block", block)
    engine.register_workflow(
        {
            "name": "wf",
            "timeout": 0.05,
            "steps": [{"name": "s1", "function": "block", "output": {"r": ""}}],
        }
    )

    started = time.monotonic()
    execution = await engine.execute_workflow("wf", {})

    assert time.monotonic() - started < 0.4
    assert execution.error.code == "WORKFLOW_TIMEOUT"
    assert execution.output == {}


@pytest.mark.asyncio
async def test_replaced_definition_updates_stored_record():
    engine = _engine(on_duplicate_workflow="replace")
    engine.register_workflow({"name": "wf", "steps": [{"name": "s1", "function": "echo"}]})
    first = await engine.execute_workflow("wf", {})

    engine.register_workflow(
        {
            "name": "wf",
            "version": "2.0.0",
            "steps": [{"name": "renamed", "function": "echo"}],
        }
    )
    second = await engine.execute_workflow("wf", {})

    stored = await engine.definition_store.get_by_name("wf")
    assert second.workflow_id == first.workflow_id == stored.id
    assert stored.version == "2.0.0"
    assert stored.document["steps"][0]["name"] == "renamed"


class BrokenDefinitionStore:
    async def get_by_name(self, name):
        raise ConnectionError("definition database unreachable")

    async def create(self, definition):
        raise AssertionError("not reached")

    async def update(self, definition):
        raise AssertionError("not reached")


@pytest.mark.asyncio
async def test_definition_store_failure_returns_failed_execution():
    engine = WorkflowEngine(definition_store=BrokenDefinitionStore())
    standard.register(engine.functions)
    engine.register_workflow({"name": "wf", "steps": [{"name": "s1", "function": "echo"}]})

    execution = await engine.execute_workflow("wf", {})

    assert execution.id is None
    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.code == "DEFINITION_STORE_ERROR"
    assert execution.error.details["type"] == "ConnectionError"


class FailingUpdateRepository(InMemoryExecutionRepository):
    async def update(self, execution_id, fields):
        raise ConnectionError("execution store unreachable")


@pytest.mark.asyncio
async def test_failing_store_updates_still_return_a_record():
    engine = WorkflowEngine(repository=FailingUpdateRepository())
    standard.register(engine.functions)
    engine.register_workflow({"name": "wf", "steps": [{"name": "s1", "function": "echo"}]})

    execution = await engine.execute_workflow("wf", {})

    assert execution.id is not None
    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.code == "INTERNAL_ERROR"
    assert execution.current_step is None
    assert execution.completed_at is not None
