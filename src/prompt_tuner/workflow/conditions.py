"""Guard conditions for workflow steps.

Conditions are small boolean expressions over context variables, for example
``not ${PASSED} and ${ITERATIONS} < ${config.max_iterations}``. They are parsed
with `ast` and walked against a whitelist: literals, variable references,
comparisons and boolean operators. Nothing is ever passed to `eval`.

JavaScript-style operators (``&&``, ``||``, ``!``, ``===``, ``!==``) are accepted
and rewritten before parsing.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable, Mapping
from typing import Any

from prompt_tuner.errors import ConditionEvaluationError
from prompt_tuner.workflow.definition import WorkflowConfig

_VARIABLE = re.compile(r"\$\{\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}")

_JS_OPERATORS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
)

_LITERAL_NAMES: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
    "undefined": None,
}

_COMPARE_OPS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def _bind_variables(
    expression: str, variables: Mapping[str, Any], config: WorkflowConfig | None
) -> tuple[str, dict[str, Any]]:
    bindings: dict[str, Any] = {}

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name.startswith("config."):
            if config is None:
                raise ConditionEvaluationError(f"No config available for {name}")
            value = config.lookup(name[len("config.") :])
        elif name in variables:
            value = variables[name]
        else:
            raise ConditionEvaluationError(f"Unknown variable: {name}")
        placeholder = f"_v{len(bindings)}"
        bindings[placeholder] = value
        return f" {placeholder} "

    return _VARIABLE.sub(_substitute, expression), bindings


def _translate(source: str) -> str:
    for pattern, replacement in _JS_OPERATORS:
        source = pattern.sub(replacement, source)
    return source.strip()


def _evaluate(node: ast.AST, bindings: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body, bindings)

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        if node.id in bindings:
            return bindings[node.id]
        if node.id.lower() in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id.lower()]
        raise ConditionEvaluationError(f"Unknown name: {node.id}")

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = _evaluate(value, bindings)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = _evaluate(value, bindings)
            if result:
                return result
        return result

    if isinstance(node, ast.UnaryOp):
        operand = _evaluate(node.operand, bindings)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise ConditionEvaluationError(f"Unsupported operator: {type(node.op).__name__}")

    if isinstance(node, ast.Compare):
        left = _evaluate(node.left, bindings)
        for op, comparator in zip(node.ops, node.comparators):
            compare = _COMPARE_OPS.get(type(op))
            if compare is None:
                raise ConditionEvaluationError(f"Unsupported comparison: {type(op).__name__}")
            right = _evaluate(comparator, bindings)
            if not compare(left, right):
                return False
            left = right
        return True

    if isinstance(node, (ast.Tuple, ast.List)):
        return tuple(_evaluate(element, bindings) for element in node.elts)

    raise ConditionEvaluationError(f"Unsupported expression: {type(node).__name__}")


def evaluate_condition(
    expression: str,
    variables: Mapping[str, Any],
    config: WorkflowConfig | None = None,
) -> bool:
    """Evaluate a guard expression.

    Raises:
        ConditionEvaluationError: If the expression references unknown variables,
            uses unsupported syntax, or compares incompatible values.
    """
    source, bindings = _bind_variables(expression, variables, config)
    source = _translate(source)
    if not source:
        raise ConditionEvaluationError("Empty condition")

    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ConditionEvaluationError(f"Invalid condition {expression!r}: {e.msg}") from e

    try:
        return bool(_evaluate(tree, bindings))
    except TypeError as e:
        raise ConditionEvaluationError(f"Cannot evaluate {expression!r}: {e}") from e
