"""Workflow engine: walks a definition's steps against a fresh context per run."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from prompt_tuner.cache.prompt_cache import CacheEntry, PromptCache
from prompt_tuner.errors import ConditionEvaluationError, HandlerError, TunerError
from prompt_tuner.workflow.conditions import evaluate_condition
from prompt_tuner.workflow.context import Deadline, ExecutionContext
from prompt_tuner.workflow.definition import ActionType, Step, WorkflowDefinition
from prompt_tuner.workflow.handlers import HandlerRegistry
from prompt_tuner.workflow.http import HttpTransport

logger = logging.getLogger(__name__)

_REFERENCE = re.compile(r"^\$\{\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}$")


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PASSED = "passed"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CACHED = "cached"


ALLOWED_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.RUNNING, RunState.CACHED, RunState.FAILED},
    RunState.RUNNING: {RunState.PASSED, RunState.EXHAUSTED, RunState.FAILED},
    RunState.PASSED: {RunState.FAILED},
    RunState.EXHAUSTED: {RunState.FAILED},
    RunState.FAILED: set(),
    RunState.CACHED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def transition(current: RunState, to: RunState) -> RunState:
    if to not in ALLOWED_TRANSITIONS[current]:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


class ResultRecord(BaseModel):
    """Outcome of one workflow run."""

    success: bool
    status: Literal["passed", "exhausted", "failed", "cached"]
    image_url: str | None = None
    final_prompt: str | None = None
    score: float | None = None
    iterations: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    error: str | None = None
    cached: bool = False

    @classmethod
    def failed(cls, error: str, *, iterations: int = 0) -> ResultRecord:
        return cls(success=False, status="failed", error=error, iterations=iterations)

    @classmethod
    def from_cache(cls, entry: CacheEntry) -> ResultRecord:
        return cls(
            success=True,
            status="cached",
            image_url=entry.image_url,
            final_prompt=entry.final_prompt or entry.prompt,
            score=entry.score,
            iterations=0,
            cached=True,
        )


def _strip_reference(name: str) -> str:
    match = _REFERENCE.match(name)
    return match.group(1) if match else name.strip()


class WorkflowEngine:
    """Execute a validated workflow definition.

    Every handler the definition names must be registered; this is checked at
    construction so a misconfigured engine never starts a run.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        handlers: HandlerRegistry,
        *,
        transport: HttpTransport | None = None,
        cache: PromptCache | None = None,
        http_timeout: float | None = None,
    ) -> None:
        handlers.require(definition.handler_names())

        self._definition = definition
        self._handlers = handlers
        self._cache = cache
        self._http_timeout = http_timeout

        self._owns_transport = False
        needs_transport = any(a.type is ActionType.API for a in definition.actions.values())
        if transport is None and needs_transport:
            transport = HttpTransport()
            self._owns_transport = True
        self._transport = transport

    @property
    def definition(self) -> WorkflowDefinition:
        return self._definition

    def close(self) -> None:
        if self._owns_transport and self._transport is not None:
            self._transport.close()

    def execute(
        self,
        user_prompt: str,
        style: str,
        *,
        deadline: Deadline | None = None,
        consult_cache: bool = True,
    ) -> ResultRecord:
        config = self._definition.config
        context = ExecutionContext(
            max_iterations=config.max_iterations,
            target_score=config.target_score,
            deadline=deadline or Deadline.unbounded(),
            variables={
                "USER_PROMPT": user_prompt,
                "STYLE": style,
                "ITERATIONS": 0,
                "PASSED": False,
            },
        )
        state = RunState.IDLE
        logger.info(
            "Starting workflow",
            extra={"run_id": context.run_id, "prompt": user_prompt, "style": style},
        )

        try:
            if consult_cache and self._cache is not None:
                hit = self._lookup_cache(user_prompt, style, context)
                if hit is not None:
                    state = self._enter(state, RunState.CACHED, context)
                    return hit

            state = self._enter(state, RunState.RUNNING, context)
            self._run_steps(context)

            final = RunState.PASSED if context.get("PASSED") else RunState.EXHAUSTED
            state = self._enter(state, final, context)
            return self._collect_result(context)
        except TunerError as e:
            self._enter(state, RunState.FAILED, context)
            logger.error(
                "Workflow failed",
                extra={"run_id": context.run_id, "error": str(e), "iterations": context.iteration},
            )
            return ResultRecord.failed(str(e), iterations=context.iteration)

    def _enter(self, current: RunState, to: RunState, context: ExecutionContext) -> RunState:
        state = transition(current, to)
        logger.info(
            "Run state changed",
            extra={"run_id": context.run_id, "from": current.value, "to": state.value},
        )
        return state

    def _lookup_cache(
        self, user_prompt: str, style: str, context: ExecutionContext
    ) -> ResultRecord | None:
        assert self._cache is not None
        context.deadline.check("cache lookup")
        entry = self._cache.get(user_prompt)
        if entry is None:
            return None
        if entry.style != style:
            logger.info(
                "Cached entry has a different style; ignoring",
                extra={"cached_style": entry.style, "style": style},
            )
            return None
        return ResultRecord.from_cache(entry)

    def _loop_exits(self) -> dict[int, int]:
        """Map each step inside a loop body to the index just past its loop step."""
        exits: dict[int, int] = {}
        for index, step in enumerate(self._definition.steps):
            if step.loop_to is None:
                continue
            for inner in range(self._definition.step_index(step.loop_to), index):
                exits.setdefault(inner, index + 1)
        return exits

    @staticmethod
    def _refinement_settled(context: ExecutionContext) -> bool:
        if context.get("PASSED"):
            return True
        try:
            iterations = int(context.get("ITERATIONS") or 0)
        except (TypeError, ValueError):
            iterations = context.iteration
        return iterations >= context.max_iterations

    def _run_steps(self, context: ExecutionContext) -> None:
        steps = self._definition.steps
        loop_exits = self._loop_exits()
        loop_cap = context.max_iterations - 1
        pc = 0

        while pc < len(steps):
            step = steps[pc]
            context.deadline.check(f"step {step.name}")

            if step.condition and not self._guard(step, context):
                logger.info(
                    "Skipping step",
                    extra={
                        "run_id": context.run_id,
                        "step": step.name,
                        "condition": step.condition,
                    },
                )
                pc += 1
                continue

            inputs = {k: self._resolve(v, context) for k, v in step.inputs.items()}
            outputs = self._dispatch(step, inputs, context)
            self._bind_outputs(step, outputs, context)

            action = self._definition.actions[step.action]
            # A passing or final evaluation leaves the loop before any mutation runs.
            if (
                action.type is ActionType.CONDITION
                and pc in loop_exits
                and self._refinement_settled(context)
            ):
                logger.debug(
                    "Refinement settled; leaving loop",
                    extra={"run_id": context.run_id, "step": step.name},
                )
                pc = loop_exits[pc]
                continue

            if step.loop_to is not None:
                if self._refinement_settled(context):
                    logger.debug(
                        "Refinement settled; not looping",
                        extra={"run_id": context.run_id, "step": step.name},
                    )
                elif context.loop_backs < loop_cap:
                    context.loop_backs += 1
                    logger.debug(
                        "Looping back",
                        extra={
                            "run_id": context.run_id,
                            "step": step.name,
                            "to": step.loop_to,
                            "loop_backs": context.loop_backs,
                        },
                    )
                    pc = self._definition.step_index(step.loop_to)
                    continue
                else:
                    logger.warning(
                        "Loop cap reached; continuing forward",
                        extra={
                            "run_id": context.run_id,
                            "step": step.name,
                            "loop_backs": context.loop_backs,
                        },
                    )
            pc += 1

    def _guard(self, step: Step, context: ExecutionContext) -> bool:
        assert step.condition is not None
        try:
            return evaluate_condition(step.condition, context.variables, self._definition.config)
        except ConditionEvaluationError as e:
            logger.warning(
                "Condition evaluation failed; skipping step",
                extra={"step": step.name, "condition": step.condition, "error": str(e)},
            )
            return False

    def _resolve(self, value: Any, context: ExecutionContext) -> Any:
        if not isinstance(value, str):
            return value
        match = _REFERENCE.match(value)
        if match is None:
            return value
        name = match.group(1)
        if name.startswith("config."):
            return self._definition.config.lookup(name[len("config.") :])
        return context.get(name)

    def _dispatch(
        self, step: Step, inputs: dict[str, Any], context: ExecutionContext
    ) -> Mapping[str, Any]:
        action = self._definition.actions[step.action]
        logger.info(
            "Executing step",
            extra={"run_id": context.run_id, "step": step.name, "action": step.action},
        )

        if action.type is ActionType.API:
            assert action.endpoint is not None and self._transport is not None
            context.deadline.check(f"api call {step.name}")
            return self._transport.request_json(
                action.method,
                action.endpoint,
                inputs,
                timeout=context.deadline.timeout(self._http_timeout),
            )

        assert action.handler is not None
        handler = self._handlers.get(action.handler)
        context.deadline.check(f"handler {action.handler}")
        try:
            return handler(inputs, context) or {}
        except TunerError:
            raise
        except Exception as e:
            raise HandlerError(action.handler, e) from e

    def _bind_outputs(
        self, step: Step, outputs: Mapping[str, Any], context: ExecutionContext
    ) -> None:
        for field_name, target in step.outputs.items():
            if field_name not in outputs:
                logger.debug(
                    "Step output missing", extra={"step": step.name, "field": field_name}
                )
            context.set(_strip_reference(target), outputs.get(field_name))

    def _collect_result(self, context: ExecutionContext) -> ResultRecord:
        name = self._definition.config.result_variable
        raw = context.get(name)
        if raw is None:
            raise TunerError(f"Workflow produced no {name}")
        try:
            return ResultRecord.model_validate(raw)
        except ValidationError as e:
            raise TunerError(f"Malformed workflow result: {e}") from e
