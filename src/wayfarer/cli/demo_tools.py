"""Built-in tools for trying the agent from the command line."""

from __future__ import annotations

import ast
import operator
from datetime import datetime, timezone
from typing import Any

from wayfarer.core.types import ToolContext, ToolDefinition, ToolParameterSchema

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def evaluate(expression: str) -> float | int:
    """Evaluate a plain arithmetic expression without eval().

    Raises:
        ValueError: Anything other than numbers and arithmetic operators.
    """

    def walk(node: ast.AST) -> float | int:
        match node:
            case ast.Expression(body=body):
                return walk(body)
            case ast.Constant(value=value) if isinstance(value, int | float) and not isinstance(value, bool):
                return value
            case ast.BinOp(left=left, op=op, right=right) if type(op) in _BIN_OPS:
                return _BIN_OPS[type(op)](walk(left), walk(right))
            case ast.UnaryOp(op=op, operand=operand) if type(op) in _UNARY_OPS:
                return _UNARY_OPS[type(op)](walk(operand))
        raise ValueError(f"Unsupported expression: {expression!r}")

    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid expression: {expression!r}") from e
    return walk(tree)


async def _calculate(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    expression = str(params["expression"])
    return {"expression": expression, "result": evaluate(expression)}


async def _current_time(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    return {"utc": datetime.now(timezone.utc).isoformat(timespec="seconds")}


async def _echo(params: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    return {"text": params.get("text", ""), "session_id": ctx.session_id}


CALCULATE_TOOL = ToolDefinition(
    name="calculate",
    description="Evaluate an arithmetic expression such as '(2 + 3) * 4'.",
    execute=_calculate,
    parameters=ToolParameterSchema(
        properties={"expression": {"type": "string", "description": "Arithmetic expression"}},
        required=("expression",),
    ),
    category="demo",
    is_write=False,
)

CURRENT_TIME_TOOL = ToolDefinition(
    name="get_current_time",
    description="Return the current UTC date and time.",
    execute=_current_time,
    category="demo",
)

ECHO_TOOL = ToolDefinition(
    name="echo",
    description="Echo text back. Useful for testing.",
    execute=_echo,
    parameters=ToolParameterSchema(
        properties={"text": {"type": "string", "description": "Text to echo"}},
        required=("text",),
    ),
    category="demo",
    is_write=False,
)


def demo_tools() -> list[ToolDefinition]:
    return [CALCULATE_TOOL, CURRENT_TIME_TOOL, ECHO_TOOL]
