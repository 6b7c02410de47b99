"""taxflow: function and workflow execution engine for property-tax services."""

from .config import EngineConfig, TaxflowConfig, load_config
from .contracts import StepSpec, WorkflowDefinition
from .engine import WorkflowEngine, create_engine
from .parameters import InputRef, LiteralParam, StepRef
from .persistence import Execution, ExecutionStatus, get_repository
from .registry import FunctionRegistry, WorkflowRegistry
from .service import EngineService

__version__ = "0.1.0"
__all__ = [
    "EngineConfig",
    "TaxflowConfig",
    "load_config",
    "StepSpec",
    "WorkflowDefinition",
    "WorkflowEngine",
    "create_engine",
    "InputRef",
    "LiteralParam",
    "StepRef",
    "Execution",
    "ExecutionStatus",
    "get_repository",
    "FunctionRegistry",
    "WorkflowRegistry",
    "EngineService",
]
