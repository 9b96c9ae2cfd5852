"""Evaluation of condition expressions, function block code and prompt templates.

Condition expressions and function code are Python, evaluated with the block
input bound to ``input``. Mappings in the input support both item and attribute
access, so ``input.counter < input.limit`` and ``input["counter"] < input["limit"]``
are equivalent. Missing attributes evaluate to ``None``.

Code runs against a whitelist of builtins. Imports, ``global``/``nonlocal``,
double-underscore names and frame-walking attributes are rejected before
compilation.
"""

import ast
import contextlib
import datetime
import io
import json
import math
import re
import textwrap
from types import SimpleNamespace
from typing import Any

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

_FUNCTION_NAME = "__block_function__"

SAFE_BUILTINS: dict[str, Any] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "divmod": divmod,
    "enumerate": enumerate,
    "filter": filter,
    "float": float,
    "int": int,
    "isinstance": isinstance,
    "len": len,
    "list": list,
    "map": map,
    "max": max,
    "min": min,
    "pow": pow,
    "print": print,
    "range": range,
    "reversed": reversed,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
    "Exception": Exception,
    "KeyError": KeyError,
    "IndexError": IndexError,
    "TypeError": TypeError,
    "ValueError": ValueError,
    "ZeroDivisionError": ZeroDivisionError,
}

# Attributes that reach interpreter frames and through them unrestricted globals
_BLOCKED_ATTRIBUTES = frozenset(
    {
        "ag_code",
        "ag_frame",
        "cr_code",
        "cr_frame",
        "f_back",
        "f_builtins",
        "f_globals",
        "f_locals",
        "gi_code",
        "gi_frame",
        "tb_frame",
        "tb_next",
    }
)


class ExpressionError(Exception):
    """A condition expression or function body failed to compile or run."""

    pass


class _SandboxValidator(ast.NodeVisitor):
    """Rejects syntax that could escape the restricted namespace."""

    def visit_Import(self, node: ast.Import) -> None:
        raise ExpressionError("Imports are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        raise ExpressionError("Imports are not allowed")

    def visit_Global(self, node: ast.Global) -> None:
        raise ExpressionError("'global' is not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        raise ExpressionError("'nonlocal' is not allowed")

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            raise ExpressionError(f"Name '{node.id}' is not allowed")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("__") or node.attr in _BLOCKED_ATTRIBUTES:
            raise ExpressionError(f"Attribute '{node.attr}' is not allowed")
        self.generic_visit(node)


def _parse(source: str, filename: str, mode: str) -> ast.AST:
    tree = ast.parse(source, filename, mode)
    _SandboxValidator().visit(tree)
    return tree


class InputView(dict):
    """A dict that also exposes its keys as attributes."""

    def __getattr__(self, key: str) -> Any:
        if key.startswith("__"):
            raise AttributeError(key)
        return self.get(key)

    def __setattr__(self, key: str, value: Any) -> None:
        self[key] = value


def to_view(value: Any) -> Any:
    """Recursively wrap mappings in InputView."""
    if isinstance(value, dict):
        return InputView({k: to_view(v) for k, v in value.items()})
    if isinstance(value, list):
        return [to_view(v) for v in value]
    return value


def to_plain(value: Any) -> Any:
    """Recursively convert InputView (and tuples) back into plain containers."""
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


# Module stand-ins exposing only what block code needs; real modules leak
# their own imports as attributes
_DATETIME = SimpleNamespace(
    date=datetime.date,
    datetime=datetime.datetime,
    time=datetime.time,
    timedelta=datetime.timedelta,
    timezone=datetime.timezone,
)
_JSON = SimpleNamespace(dumps=json.dumps, loads=json.loads)


def _globals() -> dict[str, Any]:
    return {
        "__builtins__": SAFE_BUILTINS,
        "datetime": _DATETIME,
        "json": _JSON,
        "math": math,
        "true": True,
        "false": False,
        "null": None,
    }


def evaluate_condition(expression: str, input_data: Any) -> bool:
    """Evaluate a boolean condition expression against block input."""
    try:
        code = compile(_parse(expression.strip(), "<condition>", "eval"), "<condition>", "eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid condition expression '{expression}': {e.msg}") from e
    try:
        return bool(eval(code, _globals(), {"input": to_view(input_data)}))
    except Exception as e:
        raise ExpressionError(f"Error evaluating condition '{expression}': {e}") from e


def run_function_code(code: str, input_data: Any) -> tuple[Any, str]:
    """Run a function block body and return ``(result, captured stdout)``.

    The code is wrapped as the body of ``def f(input): ...``, so it should end
    with a ``return`` statement.
    """
    body = textwrap.dedent(code).strip("\n") or "pass"
    source = f"def {_FUNCTION_NAME}(input):\n" + textwrap.indent(body, "    ") + "\n"
    namespace = _globals()
    try:
        exec(compile(_parse(source, "<function>", "exec"), "<function>", "exec"), namespace)
    except SyntaxError as e:
        raise ExpressionError(f"Invalid function code: {e.msg} (line {e.lineno})") from e

    stdout = io.StringIO()
    try:
        with contextlib.redirect_stdout(stdout):
            result = namespace[_FUNCTION_NAME](to_view(input_data))
    except Exception as e:
        raise ExpressionError(f"{type(e).__name__}: {e}") from e
    return to_plain(result), stdout.getvalue()


def resolve_path(data: Any, path: str) -> Any:
    """Resolve a dotted path such as ``input.user.name`` against block input."""
    parts = path.split(".")
    if parts[0] != "input":
        return None
    current = data
    for part in parts[1:]:
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def render_template(template: str, input_data: Any) -> str:
    """Replace ``{{input.path}}`` placeholders with values from the input."""

    def _replace(match: re.Match) -> str:
        value = resolve_path(input_data, match.group(1))
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    return TEMPLATE_PATTERN.sub(_replace, template)


def render_value(value: Any, input_data: Any) -> Any:
    """Render templates inside strings nested in dicts and lists."""
    if isinstance(value, str):
        return render_template(value, input_data)
    if isinstance(value, dict):
        return {k: render_value(v, input_data) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, input_data) for v in value]
    return value
