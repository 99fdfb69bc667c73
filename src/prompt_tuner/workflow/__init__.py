"""Declarative prompt refinement workflows.

This package holds:
- the YAML workflow definition models and loader
- the per-run execution context and deadline
- guard condition evaluation
- the action handlers and their registry
- the engine that walks a definition's steps
"""

from prompt_tuner.workflow.context import Deadline, ExecutionContext
from prompt_tuner.workflow.definition import (
    DEFAULT_DEFINITION_PATH,
    WorkflowDefinition,
    load_workflow,
)
from prompt_tuner.workflow.engine import ResultRecord, RunState, WorkflowEngine
from prompt_tuner.workflow.handlers import HandlerRegistry, build_handlers

__all__ = [
    "DEFAULT_DEFINITION_PATH",
    "Deadline",
    "ExecutionContext",
    "HandlerRegistry",
    "ResultRecord",
    "RunState",
    "WorkflowDefinition",
    "WorkflowEngine",
    "build_handlers",
    "load_workflow",
]
