"""Shared constants for taxflow."""

REFERENCE_MARKER = "$"
INPUT_ROOT = "input"
STEPS_ROOT = "steps"

DEFAULT_MAX_EXECUTIONS = 10_000
DEFAULT_MAX_STEP_TRANSITIONS = 1_000
DEFAULT_WORKFLOW_VERSION = "1.0.0"
