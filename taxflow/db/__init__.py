from .models import StoredWorkflow
from .store import (
    InMemoryDefinitionStore,
    WorkflowDefinitionDB,
    WorkflowDefinitionStore,
    get_definition_store,
)

__all__ = [
    "StoredWorkflow",
    "WorkflowDefinitionStore",
    "InMemoryDefinitionStore",
    "WorkflowDefinitionDB",
    "get_definition_store",
]
