"""
Expression and template resolution against an execution context.

Three input shapes are recognised by resolve_value():

  ``$.Name#id.field``       direct path, returns the raw value (lists and
                            dicts are preserved)
  ``{{ expr }}``            a single template spanning the whole string,
                            returns the raw value of expr
  ``Hello {{ expr }}!``     mixed text, every template is stringified and
                            interpolated; the result is always a str

Paths address the context as follows:

  ``$.Name#id``             results[id]  (display name is decorative)
  ``$.key``                 variables[key], else the node last recorded
                            under display name ``key``, else results[key]

Expressions are parsed with ``ast`` and evaluated by a whitelist walker.
Nothing is ever passed to eval(); attribute access resolves against data
only, calls are limited to a fixed set of pure helpers, and the walker
never writes to the context it reads.
"""

from __future__ import annotations

import ast
import json
import logging
import math
import re
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Optional

from canvasflow.exceptions import ExpressionError

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)


class _Undefined:
    """Marker for a path that does not exist. Distinct from an explicit None."""

    _instance: Optional["_Undefined"] = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "undefined"

    def __deepcopy__(self, memo: dict) -> "_Undefined":
        return self


UNDEFINED = _Undefined()

ROOT_SENTINEL = "$."

_TEMPLATE_RE = re.compile(r"\{\{([^}]+)\}\}")
_WHOLE_TEMPLATE_RE = re.compile(r"^\{\{\s*([^}]+?)\s*\}\}$")

# One path segment: [0], ['key'] / ["key"], or a dotted name
_SEGMENT_RE = re.compile(r"""\[\s*(-?\d+)\s*\]|\[\s*(['"])(.*?)\2\s*\]|\.?([^.\[\]]+)""")

# $.path tokens embedded in a larger expression (no spaces allowed in names here)
_PATH_TOKEN_RE = re.compile(
    r"\$\.(?:[A-Za-z_]\w*(?:#[\w\-]+)?|#[\w\-]+)"
    r"(?:\.[A-Za-z_]\w*|\.\d+|\[\s*-?\d+\s*\]|\[\s*'[^']*'\s*\]|\[\s*\"[^\"]*\"\s*\])*"
)
_STRING_LITERAL_RE = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')""")

_LITERAL_NAMES = {
    "true": True, "True": True,
    "false": False, "False": False,
    "null": None, "None": None,
    "undefined": UNDEFINED,
}


# ── Public API ────────────────────────────────────────────────────────────────


def resolve_value(raw: Any, context: "ExecutionContext") -> Any:
    """Resolve a configuration value to its runtime value.

    Non-string input is returned unchanged.  Unresolvable paths and invalid
    expressions resolve to UNDEFINED rather than raising.
    """
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if text.startswith(ROOT_SENTINEL):
        return _evaluate_lenient(text, context)
    whole = _WHOLE_TEMPLATE_RE.match(text)
    if whole:
        return _evaluate_lenient(whole.group(1), context)
    return resolve_template(raw, context)


def resolve_template(raw: str, context: "ExecutionContext") -> str:
    """Interpolate every ``{{ expr }}`` in raw; the result is always a string."""
    if not isinstance(raw, str):
        return stringify(raw)
    return _TEMPLATE_RE.sub(
        lambda m: stringify(_evaluate_lenient(m.group(1), context)), raw
    )


def evaluate_expression(expression: str, context: "ExecutionContext") -> Any:
    """Evaluate expression against context.

    A bare ``$.path`` is looked up directly (names may contain spaces there).
    Anything else is parsed as an expression in which ``$.path`` tokens, bare
    variable names and literals may be combined with arithmetic, comparison
    and boolean operators.  JavaScript spellings (``&&``, ``||``, ``!``,
    ``===``) are accepted as aliases.

    Raises:
        ExpressionError: on syntax errors or disallowed constructs.
    """
    text = (expression or "").strip()
    if not text:
        return UNDEFINED

    if text.startswith(ROOT_SENTINEL):
        value = lookup_path(text, context)
        if value is not UNDEFINED:
            return value

    bindings: dict[str, Any] = {}
    source = _prepare_source(text, context, bindings)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(
            f"Invalid expression syntax: {expression!r}", expression=expression
        ) from exc
    return _Evaluator(bindings, context, expression).visit(tree.body)


def lookup_path(path: str, context: "ExecutionContext") -> Any:
    """Walk a ``$.`` path through context; UNDEFINED when any segment is missing."""
    parts = split_path(path)
    if not parts:
        return UNDEFINED
    value = _resolve_root(parts[0], context)
    for part in parts[1:]:
        if value is UNDEFINED:
            break
        value = step_into(value, part)
    return value


def split_path(path: str) -> Optional[list[Any]]:
    """Split ``$.a.b[0]['c d']`` into ``['a', 'b', 0, 'c d']``; None if malformed."""
    text = path.strip()
    if not text.startswith(ROOT_SENTINEL):
        return None
    body = text[len(ROOT_SENTINEL):]
    parts: list[Any] = []
    pos = 0
    while pos < len(body):
        m = _SEGMENT_RE.match(body, pos)
        if not m or m.end() == pos:
            return None
        if m.group(1) is not None:
            parts.append(int(m.group(1)))
        elif m.group(2) is not None:
            parts.append(m.group(3))
        else:
            segment = m.group(4).strip()
            if not segment:
                return None
            parts.append(segment)
        pos = m.end()
    return parts or None


def step_into(value: Any, key: Any) -> Any:
    """One property/index access, data only. Never touches Python attributes."""
    if isinstance(value, dict):
        if key in value:
            return value[key]
        if isinstance(key, int) and str(key) in value:
            return value[str(key)]
        return UNDEFINED
    if isinstance(value, (list, tuple, str)):
        if key == "length":
            return len(value)
        index = _as_index(key)
        if index is not None and 0 <= index < len(value):
            return value[index]
        return UNDEFINED
    return UNDEFINED


def stringify(value: Any) -> str:
    """Render a runtime value for text interpolation."""
    if value is None or value is UNDEFINED:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=_json_default)
    return str(value)


# ── Path roots ────────────────────────────────────────────────────────────────


def _resolve_root(head: Any, context: "ExecutionContext") -> Any:
    if not isinstance(head, str):
        return UNDEFINED
    if "#" in head:
        _, _, node_id = head.partition("#")
        node_id = node_id.strip()
        return context.results.get(node_id, UNDEFINED)
    if head in context.variables:
        return context.variables[head]
    node_id = context.node_id_for(head)
    if node_id is not None:
        return context.results.get(node_id, UNDEFINED)
    return context.results.get(head, UNDEFINED)


def _as_index(key: Any) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, float) and key.is_integer():
        return int(key)
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is UNDEFINED:
        return None
    return str(value)


def _evaluate_lenient(expression: str, context: "ExecutionContext") -> Any:
    try:
        return evaluate_expression(expression, context)
    except ExpressionError as exc:
        logger.debug(f"[Expressions] {exc} - resolving to undefined")
        return UNDEFINED


# ── Source preparation ────────────────────────────────────────────────────────


def _prepare_source(text: str, context: "ExecutionContext", bindings: dict[str, Any]) -> str:
    """Bind $.path tokens to placeholder names and map JS operators, outside string literals."""

    def _bind(match: re.Match) -> str:  # type: ignore[type-arg]
        name = f"__ref{len(bindings)}"
        bindings[name] = lookup_path(match.group(0), context)
        return name

    pieces = []
    for i, chunk in enumerate(_STRING_LITERAL_RE.split(text)):
        if i % 2 == 1:
            pieces.append(chunk)
            continue
        chunk = _PATH_TOKEN_RE.sub(_bind, chunk)
        chunk = chunk.replace("===", "==").replace("!==", "!=")
        chunk = chunk.replace("&&", " and ").replace("||", " or ")
        chunk = re.sub(r"!(?!=)", " not ", chunk)
        pieces.append(chunk)
    return "".join(pieces)


# ── Safe evaluator ────────────────────────────────────────────────────────────


def _lower(value: Any) -> str:
    return stringify(value).lower()


def _upper(value: Any) -> str:
    return stringify(value).upper()


def _trim(value: Any) -> str:
    return stringify(value).strip()


def _split(value: Any, separator: str = ",") -> list[str]:
    """Split text into trimmed, non-empty parts; lists pass through."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return [part.strip() for part in stringify(value).split(separator) if part.strip()]


def _length(value: Any) -> int:
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    raise TypeError(f"object of type {type(value).__name__} has no length")


_FUNCTIONS = {
    "len": _length,
    "str": stringify,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "lower": _lower,
    "upper": _upper,
    "trim": _trim,
    "split": _split,
}


class _Evaluator:
    """Walks a whitelisted subset of the Python expression AST."""

    def __init__(self, bindings: dict[str, Any], context: "ExecutionContext", source: str) -> None:
        self._bindings = bindings
        self._context = context
        self._source = source

    def _reject(self, node: ast.AST) -> ExpressionError:
        return ExpressionError(
            f"Unsupported expression element '{type(node).__name__}' in {self._source!r}",
            expression=self._source,
        )

    def visit(self, node: ast.expr) -> Any:
        try:
            return self._visit(node)
        except ExpressionError:
            raise
        except (TypeError, ValueError, ZeroDivisionError, OverflowError) as exc:
            raise ExpressionError(
                f"Expression {self._source!r} failed: {exc}", expression=self._source
            ) from exc

    def _visit(self, node: ast.expr) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            return self._name(node.id)

        if isinstance(node, (ast.List, ast.Tuple)):
            return [self._visit(el) for el in node.elts]

        if isinstance(node, ast.Dict):
            if any(k is None for k in node.keys):
                raise self._reject(node)
            return {self._visit(k): self._visit(v) for k, v in zip(node.keys, node.values)}

        if isinstance(node, ast.Attribute):
            return step_into(self._visit(node.value), node.attr)

        if isinstance(node, ast.Subscript):
            if isinstance(node.slice, ast.Slice):
                raise self._reject(node.slice)
            return step_into(self._visit(node.value), self._visit(node.slice))

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for v in node.values:
                    result = self._visit(v)
                    if not result:
                        return result
                return result
            result = False
            for v in node.values:
                result = self._visit(v)
                if result:
                    return result
            return result

        if isinstance(node, ast.UnaryOp):
            operand = self._visit(node.operand)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.UAdd):
                return +operand
            raise self._reject(node.op)

        if isinstance(node, ast.BinOp):
            return self._binop(node)

        if isinstance(node, ast.Compare):
            left = self._visit(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._visit(comparator)
                if not _apply_compare_op(op, left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            return self._visit(node.body) if self._visit(node.test) else self._visit(node.orelse)

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS or node.keywords:
                raise self._reject(node)
            args = [self._visit(a) for a in node.args]
            return _FUNCTIONS[node.func.id](*args)

        raise self._reject(node)

    def _name(self, name: str) -> Any:
        if name in self._bindings:
            return self._bindings[name]
        if name in _LITERAL_NAMES:
            return _LITERAL_NAMES[name]
        if name in self._context.variables:
            return self._context.variables[name]
        node_id = self._context.node_id_for(name)
        if node_id is not None:
            return self._context.results.get(node_id, UNDEFINED)
        return UNDEFINED

    def _binop(self, node: ast.BinOp) -> Any:
        left = self._visit(node.left)
        right = self._visit(node.right)
        if isinstance(node.op, ast.Add):
            if isinstance(left, str) or isinstance(right, str):
                return stringify(left) + stringify(right)
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            return left * right
        if isinstance(node.op, ast.Div):
            return left / right
        if isinstance(node.op, ast.FloorDiv):
            return left // right
        if isinstance(node.op, ast.Mod):
            return left % right
        raise self._reject(node.op)


def _apply_compare_op(op: ast.cmpop, left: Any, right: Any) -> bool:
    """Apply a single comparison operator. Mismatched types compare as False."""
    if isinstance(op, ast.Eq):
        return left == right
    if isinstance(op, ast.NotEq):
        return left != right
    if isinstance(op, (ast.Is, ast.IsNot)):
        same = left is right
        return same if isinstance(op, ast.Is) else not same
    try:
        if isinstance(op, ast.Lt):
            return left < right
        if isinstance(op, ast.LtE):
            return left <= right
        if isinstance(op, ast.Gt):
            return left > right
        if isinstance(op, ast.GtE):
            return left >= right
        if isinstance(op, ast.In):
            return left in right
        if isinstance(op, ast.NotIn):
            return left not in right
    except TypeError:
        return False
    raise ExpressionError(f"Unsupported comparison operator: {type(op).__name__}")
