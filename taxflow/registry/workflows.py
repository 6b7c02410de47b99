"""Registry of workflow definitions."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Literal, Mapping, Union

from pydantic import ValidationError

from ..contracts import WorkflowDefinition
from ..errors import InvalidWorkflowDefinition, WorkflowAlreadyExists, WorkflowNotFound

logger = logging.getLogger(__name__)


def load_definition(data: Union[WorkflowDefinition, Mapping[str, Any]]) -> WorkflowDefinition:
    """Validate a raw definition document."""
    if isinstance(data, WorkflowDefinition):
        return data
    try:
        return WorkflowDefinition.model_validate(dict(data))
    except ValidationError as e:
        name = data.get("name", "<unnamed>") if isinstance(data, Mapping) else "<unnamed>"
        raise InvalidWorkflowDefinition(
            f"Invalid workflow definition '{name}'",
            details=e.errors(
                include_url=False, include_context=False, include_input=False
            ),
        ) from e


class WorkflowRegistry:
    """In-process workflow definitions keyed by name."""

    def __init__(
        self,
        on_duplicate: Literal["reject", "replace"] = "reject",
        allow_output_overwrite: bool = False,
    ) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()
        self.on_duplicate = on_duplicate
        self.allow_output_overwrite = allow_output_overwrite

    def register(
        self, data: Union[WorkflowDefinition, Mapping[str, Any]]
    ) -> WorkflowDefinition:
        definition = load_definition(data)
        collisions = definition.output_collisions()
        if collisions:
            if not self.allow_output_overwrite:
                raise InvalidWorkflowDefinition(
                    f"Workflow '{definition.name}' declares colliding output keys",
                    details=collisions,
                )
            logger.warning(
                f"Workflow '{definition.name}' has colliding output keys {sorted(collisions)}; "
                "the last step to run wins"
            )
        with self._lock:
            if definition.name in self._definitions and self.on_duplicate == "reject":
                raise WorkflowAlreadyExists(definition.name)
            self._definitions[definition.name] = definition
        logger.info(f"Registered workflow: {definition.name}")
        return definition

    def get(self, name: str) -> WorkflowDefinition:
        definition = self._definitions.get(name)
        if definition is None:
            raise WorkflowNotFound(name)
        return definition

    def names(self) -> List[str]:
        return sorted(self._definitions)

    def definitions(self) -> List[WorkflowDefinition]:
        return [self._definitions[name] for name in self.names()]

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
