"""
calculator.py — safe arithmetic evaluation for the calculator tool.

Expressions are parsed with ast and walked against an allow-list; nothing is
ever passed to eval(). All arithmetic is done in floats so huge powers overflow
instead of building enormous integers.

Supported: + - * / % ^ ** and parentheses, unary +/-, the functions
sqrt sin cos tan log (base 10) ln abs round floor ceil min max pow,
the constants PI and E, and caller-supplied numeric variables.
"""
import ast
import math
import operator
from typing import Callable, Optional, Union

Number = Union[int, float]


class CalculationError(ValueError):
    pass


def _round_half_up(x: float) -> float:
    return float(math.floor(x + 0.5))


FUNCTIONS: dict[str, Callable[..., float]] = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log10,
    "ln": math.log,
    "abs": abs,
    "round": _round_half_up,
    "floor": lambda x: float(math.floor(x)),
    "ceil": lambda x: float(math.ceil(x)),
    "min": min,
    "max": max,
    "pow": math.pow,
}

CONSTANTS: dict[str, float] = {"PI": math.pi, "E": math.e}

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: math.fmod,   # sign follows the dividend
    ast.Pow: math.pow,
}

_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def _eval(node: ast.AST, names: dict[str, float]) -> float:
    if isinstance(node, ast.Expression):
        return _eval(node.body, names)
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise CalculationError("Invalid characters in expression")
        return float(node.value)
    if isinstance(node, ast.Name):
        if node.id not in names:
            raise CalculationError(f"Unknown identifier '{node.id}'")
        return names[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return _BINARY_OPS[type(node.op)](_eval(node.left, names), _eval(node.right, names))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand, names))
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS or node.keywords:
            raise CalculationError("Unsupported function in expression")
        args = [_eval(arg, names) for arg in node.args]
        return float(FUNCTIONS[node.func.id](*args))
    raise CalculationError("Invalid mathematical expression")


def evaluate(expression: str, variables: Optional[dict[str, float]] = None) -> Number:
    """
    Evaluate an arithmetic expression. Returns an int when the result is whole.

    Raises CalculationError for anything malformed, disallowed or non-finite.
    """
    if not expression or not expression.strip():
        raise CalculationError("Expression cannot be empty")
    names = {**CONSTANTS, **{k: float(v) for k, v in (variables or {}).items()}}
    try:
        tree = ast.parse(expression.replace("^", "**"), mode="eval")
    except SyntaxError:
        raise CalculationError("Invalid mathematical expression") from None
    try:
        result = _eval(tree, names)
    except (ZeroDivisionError, OverflowError, ValueError) as exc:
        if isinstance(exc, CalculationError):
            raise
        raise CalculationError("Result is not a finite number") from None
    except TypeError:
        raise CalculationError("Invalid mathematical expression") from None
    if not math.isfinite(result):
        raise CalculationError("Result is not a finite number")
    return int(result) if result.is_integer() else result


def group_indian(digits: str) -> str:
    """'1234567' -> '12,34,567' (last three digits, then pairs)."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def format_number(value: Number) -> str:
    """Indian digit grouping; decimals to at most 6 places, trailing zeros dropped."""
    sign = "-" if value < 0 else ""
    if isinstance(value, int):
        return sign + group_indian(str(abs(value)))
    text = f"{abs(value):.6f}".rstrip("0").rstrip(".")
    whole, _, frac = text.partition(".")
    formatted = group_indian(whole) + (f".{frac}" if frac else "")
    if formatted == "0":
        sign = ""
    return sign + formatted
