"""Command line interface for the taxflow engine."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml

from taxflow.config import load_config
from taxflow.engine import WorkflowEngine, create_engine
from taxflow.errors import TaxflowError
from taxflow.persistence import ExecutionStatus
from taxflow.service import EngineService
from taxflow.workflows import register_definitions_file

app = typer.Typer(help="CLI for taxflow functions and workflows")

# Command groups
function_app = typer.Typer(help="Commands for registered functions")
workflow_app = typer.Typer(help="Commands for workflows")
execution_app = typer.Typer(help="Commands for execution records")

app.add_typer(function_app, name="function")
app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")

_engine: Optional[WorkflowEngine] = None
_config_path: Optional[str] = None


def get_engine() -> WorkflowEngine:
    global _engine
    if _engine is None:
        _engine = create_engine(load_config(_config_path))
    return _engine


def _parse_json(value: Optional[str], option: str) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON for {option}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    if not isinstance(data, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    return data


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, help="Path to a taxflow YAML config"),
) -> None:
    """taxflow CLI entry point."""
    global _config_path
    _config_path = str(config) if config else None
    logging.basicConfig(
        level=load_config(_config_path).log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@function_app.command("list")
def function_list() -> None:
    """List registered functions with their descriptions."""
    engine = get_engine()
    entries = engine.functions.entries()
    if not entries:
        typer.echo("No functions registered")
        return
    for entry in entries:
        typer.echo(f"{entry.name}\t{entry.description or ''}")


@function_app.command("invoke")
def function_invoke(
    name: str,
    params: Optional[str] = typer.Option(None, help="JSON object of parameters"),
) -> None:
    """
    Invoke a single function outside any workflow.

    Example:
        taxflow function invoke calculate --params '{"operation": "add", "values": [2, 3]}'
    """
    service = EngineService(get_engine())
    response = asyncio.run(
        service.invoke_function(
            {"functionName": name, "parameters": _parse_json(params, "--params")}
        )
    )
    _echo_json(response.to_dict())
    if response.status != "success":
        raise typer.Exit(code=1)


@workflow_app.command("list")
def workflow_list() -> None:
    """List registered workflows."""
    definitions = get_engine().list_workflows()
    if not definitions:
        typer.echo("No workflows registered")
        return
    for definition in definitions:
        typer.echo(f"{definition.name}\t{len(definition.steps)} steps\t{definition.description}")


@workflow_app.command("show")
def workflow_show(name: str) -> None:
    """Print a workflow definition as YAML."""
    try:
        definition = get_engine().workflows.get(name)
    except TaxflowError as exc:
        typer.echo(exc.message)
        raise typer.Exit(code=1)
    typer.echo(yaml.safe_dump(definition.to_document(), sort_keys=False))


@workflow_app.command("run")
def workflow_run(
    name: str,
    input: Optional[str] = typer.Option(None, "--input", help="JSON object of workflow input"),
    definitions: Optional[Path] = typer.Option(
        None, help="YAML file with extra workflow definitions to register first"
    ),
) -> None:
    """
    Execute a workflow and print its execution id, status and output.

    Example:
        taxflow workflow run propertyValuation --input '{"propertyId": 1, "method": "cost"}'
        taxflow workflow run sum --definitions ./workflows.yaml --input '{"values": [2, 3]}'
    """
    engine = get_engine()
    if definitions:
        try:
            register_definitions_file(engine, definitions)
        except (OSError, TaxflowError) as exc:
            typer.secho(f"Could not load definitions: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
    payload = _parse_json(input, "--input")
    response = asyncio.run(
        EngineService(engine).run_workflow({"workflowName": name, "input": payload})
    )
    _echo_json(response.to_dict())
    if response.status == ExecutionStatus.FAILED:
        raise typer.Exit(code=1)


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """Show the full record of one execution."""
    service = EngineService(get_engine())
    try:
        record = asyncio.run(service.get_execution(execution_id))
    except TaxflowError as exc:
        typer.echo(exc.message)
        raise typer.Exit(code=1)
    _echo_json(record)


@execution_app.command("list")
def execution_list(
    status: Optional[ExecutionStatus] = typer.Option(None, help="Filter by status"),
) -> None:
    """List execution ids with their workflow and status."""
    executions = asyncio.run(get_engine().list_executions(status))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{execution.workflow_name}\t{execution.status.value}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
