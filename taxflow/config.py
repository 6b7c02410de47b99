from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_MAX_EXECUTIONS, DEFAULT_MAX_STEP_TRANSITIONS


class RetryDefaults(BaseModel):
    """Backoff parameters applied when a retry handler leaves them unset."""

    backoff_base: float = 1.0
    backoff_factor: float = 2.0
    jitter: float = 0.0


class EngineConfig(BaseModel):
    """Execution semantics of the workflow engine."""

    strict_references: bool = False
    on_duplicate_workflow: Literal["reject", "replace"] = "reject"
    allow_output_overwrite: bool = False
    default_timeout: Optional[float] = None
    max_step_transitions: int = DEFAULT_MAX_STEP_TRANSITIONS
    max_executions: int = DEFAULT_MAX_EXECUTIONS
    retry: RetryDefaults = RetryDefaults()


class TaxflowConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None
    definitions_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> TaxflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TAXFLOW_CONFIG env
            variable or 'taxflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("TAXFLOW_CONFIG", "taxflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TaxflowConfig(**data)
    else:
        config = TaxflowConfig()

    env_db_url = os.getenv("TAXFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_definitions_url = os.getenv("TAXFLOW_DEFINITIONS_URL")
    if env_definitions_url:
        config.definitions_url = env_definitions_url
    env_log_level = os.getenv("TAXFLOW_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
