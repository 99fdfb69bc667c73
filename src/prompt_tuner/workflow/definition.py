"""Declarative workflow definitions.

A definition is loaded from YAML, validated once, and never mutated afterwards:

    config:   {max_iterations, target_score, ...}
    actions:  {name: {type, handler?, endpoint?, method?}}
    steps:    [{name, condition?, action, inputs, outputs, loop_to?}]
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from prompt_tuner.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DEFINITION_PATH = Path(__file__).parent / "definitions" / "tuner.yaml"


class ActionType(str, Enum):
    FUNCTION = "function"
    API = "api"
    CONDITION = "condition"
    STORAGE = "storage"


HANDLER_ACTION_TYPES = frozenset({ActionType.FUNCTION, ActionType.CONDITION, ActionType.STORAGE})


class WorkflowConfig(BaseModel):
    """Run bounds plus any extra values steps can read via ``${config.path}``."""

    model_config = ConfigDict(frozen=True, extra="allow")

    max_iterations: int = Field(gt=0)
    target_score: float
    result_variable: str = "WORKFLOW_RESULT"

    def lookup(self, path: str) -> Any:
        """Dotted lookup into the config; missing segments yield None."""
        value: Any = self.model_dump()
        for part in path.split("."):
            if not isinstance(value, Mapping) or part not in value:
                return None
            value = value[part]
        return value


class ActionSpec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ActionType
    handler: str | None = None
    endpoint: str | None = None
    method: str = "POST"

    @model_validator(mode="after")
    def _check_target(self) -> ActionSpec:
        if self.type in HANDLER_ACTION_TYPES and not self.handler:
            raise ValueError(f"{self.type.value} actions require a handler")
        if self.type is ActionType.API and not self.endpoint:
            raise ValueError("api actions require an endpoint")
        return self


class Step(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    action: str
    condition: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, str] = Field(default_factory=dict)
    loop_to: str | None = None


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    config: WorkflowConfig
    actions: dict[str, ActionSpec]
    steps: tuple[Step, ...]

    @model_validator(mode="after")
    def _check_references(self) -> WorkflowDefinition:
        if not self.steps:
            raise ValueError("workflow must declare at least one step")

        seen: dict[str, int] = {}
        for index, step in enumerate(self.steps):
            if step.name in seen:
                raise ValueError(f"duplicate step name: {step.name}")
            if step.action not in self.actions:
                raise ValueError(f"step {step.name!r} references unknown action {step.action!r}")
            if step.loop_to is not None and step.loop_to not in seen:
                raise ValueError(
                    f"step {step.name!r} loops to {step.loop_to!r}, which is not an earlier step"
                )
            seen[step.name] = index
        return self

    def step_index(self, name: str) -> int:
        for index, step in enumerate(self.steps):
            if step.name == name:
                return index
        raise KeyError(name)

    def handler_names(self) -> set[str]:
        return {
            action.handler
            for action in self.actions.values()
            if action.type in HANDLER_ACTION_TYPES and action.handler
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> WorkflowDefinition:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid workflow definition: {e}") from e


def load_workflow(path: Path | None = None) -> WorkflowDefinition:
    """Load and validate a workflow definition from YAML."""
    path = path or DEFAULT_DEFINITION_PATH
    try:
        with open(path, encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as e:
        raise ConfigurationError(f"Cannot read workflow definition {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"Workflow definition must be a YAML mapping: {path}")

    definition = WorkflowDefinition.from_mapping(payload)
    logger.info(
        "Workflow definition loaded",
        extra={
            "path": str(path),
            "steps": len(definition.steps),
            "actions": len(definition.actions),
        },
    )
    return definition
