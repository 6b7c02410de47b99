"""Standard workflow definitions and definition-file loading."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Union

import yaml

from .contracts import WorkflowDefinition
from .errors import InvalidWorkflowDefinition
from .registry import load_definition

if TYPE_CHECKING:
    from .engine import WorkflowEngine

logger = logging.getLogger(__name__)


PROPERTY_VALUATION = WorkflowDefinition.model_validate(
    {
        "name": "propertyValuation",
        "description": "Calculate property valuation using specified method",
        "inputs": {
            "propertyId": "number",
            "method": "string",
            "assessmentDate": "string?",
        },
        "outputs": {
            "property": "object",
            "valuation": "object",
        },
        "steps": [
            {
                "name": "getPropertyDetails",
                "function": "getProperty",
                "parameters": {"propertyId": "$input.propertyId"},
                "output": {"property": ""},
            },
            {
                "name": "calculateValuation",
                "function": "propertyValuation",
                "parameters": {
                    "propertyId": "$input.propertyId",
                    "method": "$input.method",
                    "assessmentDate": "$input.assessmentDate",
                },
                "output": {"valuation": ""},
            },
        ],
    }
)

PROPERTY_COMPARISON = WorkflowDefinition.model_validate(
    {
        "name": "propertyComparison",
        "description": "Compare multiple properties by specified factors",
        "inputs": {
            "propertyIds": "number[]",
            "comparisonFactors": "string[]?",
        },
        "outputs": {
            "validationResults": "object",
            "visualization": "object",
        },
        "steps": [
            {
                "name": "validateProperties",
                "function": "compareProperties",
                "parameters": {
                    "propertyIds": "$input.propertyIds",
                    "comparisonFactor": "assessedValue",
                },
                "output": {"validationResults": ""},
            },
            {
                "name": "generateVisualization",
                "function": "generateComparisonVisualization",
                "parameters": {
                    "propertyIds": "$input.propertyIds",
                    "comparisonFactors": "$input.comparisonFactors",
                },
                "output": {"visualization": ""},
            },
        ],
        "errorHandlers": {
            "validateProperties": {
                "action": "fallback",
                "result": {"error": "Could not validate properties for comparison"},
            }
        },
    }
)

STANDARD_WORKFLOWS = [PROPERTY_VALUATION, PROPERTY_COMPARISON]


def register_standard_workflows(engine: "WorkflowEngine") -> None:
    for definition in STANDARD_WORKFLOWS:
        if definition.name not in engine.workflows:
            engine.register_workflow(definition)


def load_definitions(path: Union[str, Path]) -> List[WorkflowDefinition]:
    """Load workflow definitions from a YAML or JSON file.

    The document is either a single definition or a mapping with a
    ``workflows`` list.
    """
    with open(path) as f:
        data: Any = yaml.safe_load(f) or {}
    if isinstance(data, dict) and "workflows" in data:
        documents = data["workflows"] or []
    elif isinstance(data, list):
        documents = data
    else:
        documents = [data]
    if not all(isinstance(doc, dict) for doc in documents):
        raise InvalidWorkflowDefinition(f"Malformed workflow definition file: {path}")
    definitions = [load_definition(doc) for doc in documents]
    logger.info(f"Loaded {len(definitions)} workflow definitions from {path}")
    return definitions


def register_definitions_file(
    engine: "WorkflowEngine", path: Union[str, Path]
) -> List[WorkflowDefinition]:
    return [engine.register_workflow(d) for d in load_definitions(path)]
