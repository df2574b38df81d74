"""
Type-aware comparison engine for condition rows.

Shared by If Condition, Switch Case and Filter.  Values arriving from the
canvas are loosely typed (mostly text), so every comparison first infers
the semantic kind of the left operand, coerces both sides to that kind and
only then applies the comparator.  Coercion never raises: a value that
cannot be converted is compared as-is and the comparator degrades to False.
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from pydantic import ValidationError

from canvasflow.exceptions import NodeConfigurationError
from canvasflow.expressions import UNDEFINED, resolve_value, stringify
from canvasflow.types import (
    Comparator,
    ConditionRow,
    Joiner,
    ValueKind,
    DATE_TIME_COMPARATORS,
    KEY_PROP_COMPARATORS,
    NUMERIC_RIGHT_COMPARATORS,
    PAIR_COMPARATORS,
    REGEX_COMPARATORS,
    UNARY_COMPARATORS,
)

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)

NAN = float("nan")

_TIME_ONLY_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_YMD_RE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$")
_DMY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$")
_INTEGER_RE = re.compile(r"^-?\d+$")
_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")

# Epoch values below this magnitude are seconds, above it milliseconds
_EPOCH_SECONDS_LIMIT = 1e11


# ── Date / time parsing ───────────────────────────────────────────────────────


def parse_datetime(value: Any) -> Optional[datetime]:
    """Permissive date/time parsing; None when value is not a date.

    Accepts datetime/date objects, epoch seconds or milliseconds (numbers or
    integer strings), ISO-8601 text, ``YYYY-MM-DD [HH:mm[:ss]]``,
    ``DD-MM-YYYY [HH:mm[:ss]]`` (``/`` also accepted) and bare ``HH:mm[:ss]``
    anchored to today.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if not isinstance(value, str):
        return None

    text = re.sub(r":{2,}", ":", value.strip())
    if not text:
        return None

    m = _TIME_ONLY_RE.match(text)
    if m:
        return _today_at(int(m.group(1)), int(m.group(2)), int(m.group(3) or 0))

    if _INTEGER_RE.match(text):
        return _from_epoch(int(text))

    try:
        iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
        return datetime.fromisoformat(iso)
    except ValueError:
        pass

    m = _YMD_RE.match(text)
    if m:
        return _build(int(m.group(1)), int(m.group(2)), int(m.group(3)), m.group(4), m.group(5), m.group(6))

    m = _DMY_RE.match(text)
    if m:
        return _build(int(m.group(3)), int(m.group(2)), int(m.group(1)), m.group(4), m.group(5), m.group(6))

    return None


def _from_epoch(number: Union[int, float]) -> Optional[datetime]:
    if not math.isfinite(number):
        return None
    seconds = number if abs(number) < _EPOCH_SECONDS_LIMIT else number / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _today_at(hour: int, minute: int, second: int) -> Optional[datetime]:
    if hour > 23 or minute > 59 or second > 59:
        return None
    return datetime.now().replace(hour=hour, minute=minute, second=second, microsecond=0)


def _build(year, month, day, hour, minute, second) -> Optional[datetime]:
    try:
        return datetime(year, month, day, int(hour or 0), int(minute or 0), int(second or 0))
    except ValueError:
        return None


def looks_time_only(value: Any) -> bool:
    """True for a bare ``HH:mm[:ss]`` string."""
    if not isinstance(value, str):
        return False
    return bool(_TIME_ONLY_RE.match(re.sub(r":{2,}", ":", value.strip())))


def to_timestamp(value: Any) -> float:
    """Milliseconds since the epoch, NaN when value is not a date."""
    parsed = parse_datetime(value)
    if parsed is None:
        return NAN
    return parsed.timestamp() * 1000.0


def to_time_of_day_ms(value: Any) -> float:
    """Milliseconds since local midnight, NaN when value is not a date/time."""
    parsed = parse_datetime(value)
    if parsed is None:
        return NAN
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return float(((parsed.hour * 60 + parsed.minute) * 60 + parsed.second) * 1000 + parsed.microsecond // 1000)


# ── Kinds and coercion ────────────────────────────────────────────────────────


def _is_numeric_text(text: str) -> bool:
    return bool(_NUMERIC_RE.match(text.strip()))


def to_number(value: Any) -> float:
    """Numeric view of value; NaN when there is none."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        return float(text) if _is_numeric_text(text) else NAN
    if isinstance(value, (datetime, date)):
        return to_timestamp(value)
    return NAN


def infer_value_kind(value: Any) -> ValueKind:
    """Infer the semantic kind of value.

    Structures are detected structurally; scalars prefer boolean, number,
    time-of-day, date and finally string.
    """
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    if isinstance(value, (datetime, date)):
        return ValueKind.DATE
    if isinstance(value, dict):
        return ValueKind.OBJECT
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        text = value.strip()
        if text.lower() in ("true", "false"):
            return ValueKind.BOOLEAN
        if _is_numeric_text(text):
            return ValueKind.NUMBER
        if looks_time_only(text):
            return ValueKind.TIME
        if parse_datetime(text) is not None:
            return ValueKind.DATE
    return ValueKind.STRING


def truthy(value: Any) -> bool:
    if value is None or value is UNDEFINED:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return not math.isnan(value) and value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "false"):
            return text == "true"
        return len(value) > 0
    return True


def coerce_to_kind(value: Any, kind: ValueKind) -> Any:
    """Convert value to kind, returning value unchanged when conversion fails."""
    if value is None or value is UNDEFINED:
        return value
    try:
        if kind is ValueKind.NUMBER:
            number = to_number(value)
            return value if math.isnan(number) else number
        if kind is ValueKind.BOOLEAN:
            return truthy(value)
        if kind in (ValueKind.DATE, ValueKind.TIME):
            parsed = parse_datetime(value)
            return value if parsed is None else parsed
        if kind is ValueKind.ARRAY:
            if isinstance(value, (list, tuple)):
                return list(value)
            if isinstance(value, str):
                return json.loads(value)
            return [value]
        if kind is ValueKind.OBJECT:
            if isinstance(value, dict):
                return value
            if isinstance(value, str):
                return json.loads(value)
            return {"value": value}
        return value if isinstance(value, str) else stringify(value)
    except (ValueError, TypeError):
        return value


def is_value_empty(value: Any) -> bool:
    if value is None or value is UNDEFINED:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def _canonical(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality via canonical JSON serialization."""
    if a is UNDEFINED or b is UNDEFINED:
        return a is b
    try:
        return json.dumps(_canonical(a), sort_keys=True, default=str) == json.dumps(
            _canonical(b), sort_keys=True, default=str
        )
    except (TypeError, ValueError):
        return a == b


def parse_pair_values(value: Any) -> tuple[Any, Any]:
    """Split a range operand into (first, second).

    Lists contribute their first two items, text is split on commas (a JSON
    array literal is also accepted); anything else is used for both bounds.
    """
    if isinstance(value, (list, tuple)):
        if len(value) >= 2:
            return value[0], value[1]
        return (value[0], None) if value else (None, None)
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return parse_pair_values(parsed)
        parts = [p.strip() for p in text.split(",")]
        return parts[0], (parts[1] if len(parts) > 1 else None)
    return value, value


# ── Comparators ───────────────────────────────────────────────────────────────


def _text(value: Any) -> str:
    return value if isinstance(value, str) else stringify(value)


def _ordinal(value: Any, kind: ValueKind) -> float:
    """Project value onto a number for ordering under kind."""
    if kind is ValueKind.TIME:
        return to_time_of_day_ms(value)
    if kind is ValueKind.DATE:
        return to_timestamp(value)
    number = to_number(value)
    return number if not math.isnan(number) else to_timestamp(value)


def _in_range(left: Any, right: Any, kind: ValueKind) -> Optional[bool]:
    first, second = parse_pair_values(right)
    x, a, b = (_ordinal(v, kind) for v in (left, first, second))
    if any(math.isnan(n) for n in (x, a, b)):
        return None
    return min(a, b) <= x <= max(a, b)


def _between(left: Any, right: Any, kind: ValueKind) -> bool:
    return bool(_in_range(left, right, kind))


def _not_between(left: Any, right: Any, kind: ValueKind) -> bool:
    inside = _in_range(left, right, kind)
    return inside is not None and not inside


def _date_order(check: Callable[[float, float], bool]) -> Callable[[Any, Any, ValueKind], bool]:
    def _compare(left: Any, right: Any, kind: ValueKind) -> bool:
        if kind is not ValueKind.TIME:
            kind = ValueKind.DATE
        return check(_ordinal(left, kind), _ordinal(right, kind))
    return _compare


def _contains_value(left: Any, right: Any, kind: ValueKind) -> bool:
    if isinstance(left, (list, tuple)):
        return any(deep_equal(item, right) for item in left)
    return _text(right) in _text(left)


def _length_check(check: Callable[[float, float], bool]) -> Callable[[Any, Any, ValueKind], bool]:
    def _compare(left: Any, right: Any, kind: ValueKind) -> bool:
        if not isinstance(left, (list, tuple, str)):
            return False
        return check(float(len(left)), to_number(right))
    return _compare


def _has_key(left: Any, right: Any, kind: ValueKind) -> bool:
    key = _text(right).strip()
    if isinstance(left, dict):
        return key in left
    if isinstance(left, (list, tuple)):
        return key.isdigit() and int(key) < len(left)
    return False


def _matches(left: Any, right: Any, kind: ValueKind) -> bool:
    try:
        return re.search(_text(right), _text(left)) is not None
    except re.error:
        return False


_UNARY: dict[Comparator, Callable[[Any], bool]] = {
    Comparator.EXISTS: lambda v: v is not UNDEFINED,
    Comparator.NOT_EXISTS: lambda v: v is UNDEFINED,
    Comparator.IS_EMPTY: is_value_empty,
    Comparator.IS_NOT_EMPTY: lambda v: not is_value_empty(v),
    Comparator.IS_TRUE: lambda v: truthy(coerce_to_kind(v, ValueKind.BOOLEAN)),
    Comparator.IS_FALSE: lambda v: not truthy(coerce_to_kind(v, ValueKind.BOOLEAN)),
}

_BINARY: dict[Comparator, Callable[[Any, Any, ValueKind], bool]] = {
    Comparator.EQUALS: lambda l, r, k: deep_equal(l, r),
    Comparator.NOT_EQUALS: lambda l, r, k: not deep_equal(l, r),
    Comparator.CONTAINS: lambda l, r, k: _text(r) in _text(l),
    Comparator.NOT_CONTAINS: lambda l, r, k: _text(r) not in _text(l),
    Comparator.STARTS_WITH: lambda l, r, k: _text(l).startswith(_text(r)),
    Comparator.ENDS_WITH: lambda l, r, k: _text(l).endswith(_text(r)),
    Comparator.MATCHES_REGEX: _matches,
    Comparator.GREATER_THAN: lambda l, r, k: to_number(l) > to_number(r),
    Comparator.GREATER_OR_EQUAL: lambda l, r, k: to_number(l) >= to_number(r),
    Comparator.LESS_THAN: lambda l, r, k: to_number(l) < to_number(r),
    Comparator.LESS_OR_EQUAL: lambda l, r, k: to_number(l) <= to_number(r),
    Comparator.BETWEEN: _between,
    Comparator.NOT_BETWEEN: _not_between,
    Comparator.BEFORE: _date_order(lambda a, b: a < b),
    Comparator.AFTER: _date_order(lambda a, b: a > b),
    Comparator.ON_OR_BEFORE: _date_order(lambda a, b: a <= b),
    Comparator.ON_OR_AFTER: _date_order(lambda a, b: a >= b),
    Comparator.CONTAINS_VALUE: _contains_value,
    Comparator.LENGTH_GREATER_THAN: _length_check(lambda a, b: a > b),
    Comparator.LENGTH_LESS_THAN: _length_check(lambda a, b: a < b),
    Comparator.HAS_KEY: _has_key,
    Comparator.HAS_PROPERTY: _has_key,
}

_unhandled = set(Comparator) - set(_UNARY) - set(_BINARY)
if _unhandled:
    raise RuntimeError(f"Comparators without a handler: {sorted(c.value for c in _unhandled)}")


def compare_values(left: Any, comparator: Union[Comparator, str], right: Any = None) -> bool:
    """Decide whether (left, right) satisfies comparator.

    Unary comparators never look at right.  A comparator string outside the
    closed set evaluates to False.
    """
    try:
        op = Comparator(comparator)
    except ValueError:
        logger.warning(f"[Conditions] Unknown comparator {comparator!r} - evaluating to False")
        return False

    if op in UNARY_COMPARATORS:
        return _UNARY[op](left)

    kind = infer_value_kind(left)
    if op in DATE_TIME_COMPARATORS:
        if op in PAIR_COMPARATORS:
            first, second = parse_pair_values(right)
            time_like = looks_time_only(left) or looks_time_only(first) or looks_time_only(second)
        else:
            time_like = looks_time_only(left) or looks_time_only(right)
        if time_like:
            kind = ValueKind.TIME

    lhs = coerce_to_kind(left, kind)
    rhs = right if op in PAIR_COMPARATORS else coerce_to_kind(right, kind)
    try:
        return bool(_BINARY[op](lhs, rhs, kind))
    except (TypeError, ValueError, OverflowError):
        return False


# ── Condition rows ────────────────────────────────────────────────────────────


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def parse_rows(raw_rows: list, title: str) -> list[ConditionRow]:
    """Validate the shape of configured rows into ConditionRow models."""
    rows = []
    for index, raw in enumerate(raw_rows or []):
        row_number = index + 1
        if isinstance(raw, ConditionRow):
            rows.append(raw)
            continue
        if not isinstance(raw, dict):
            raise NodeConfigurationError(
                f"Row {row_number}: condition must be an object.",
                title=f"{title}: Invalid Condition",
            )
        try:
            rows.append(ConditionRow.model_validate(raw))
        except ValidationError as exc:
            comparator = raw.get("comparator")
            if any(err["loc"] and err["loc"][0] == "comparator" for err in exc.errors()):
                message = f'Row {row_number}: Unsupported comparator "{comparator}".'
            else:
                message = f"Row {row_number}: Invalid condition row."
            raise NodeConfigurationError(message, title=f"{title}: Invalid Condition") from exc
    return rows


def validate_rows(raw_rows: list, context: "ExecutionContext", title: str) -> list[ConditionRow]:
    """Parse and check rows before evaluation; first problem wins.

    Raises:
        NodeConfigurationError: carrying a user-facing ``Row N: ...`` message
            and a toast title.
    """
    rows = parse_rows(raw_rows, title)
    for index, row in enumerate(rows):
        row_number = index + 1
        op = row.comparator

        if _is_blank(row.left):
            raise NodeConfigurationError(
                f'Row {row_number}: "Value 1" is required.', title=f"{title}: Missing Input"
            )

        if op in UNARY_COMPARATORS:
            continue

        if _is_blank(row.right):
            raise NodeConfigurationError(
                f'Row {row_number}: "Value 2" is required for "{op.value}".',
                title=f"{title}: Missing Input",
            )

        right = resolve_value(row.right, context)

        if op in REGEX_COMPARATORS:
            try:
                re.compile(_text(right))
            except re.error as exc:
                raise NodeConfigurationError(
                    f'Row {row_number}: Invalid regular expression in "Value 2" - {exc}.',
                    title=f"{title}: Invalid Regex",
                ) from exc

        if op in PAIR_COMPARATORS:
            first, second = parse_pair_values(right)
            if first is None or second is None or not _text(first) or not _text(second):
                raise NodeConfigurationError(
                    f'Row {row_number}: "{op.value}" expects two values (e.g., "min,max").',
                    title=f"{title}: Invalid Range",
                )
            left = resolve_value(row.left, context)
            numbers_ok = not any(math.isnan(to_number(v)) for v in (left, first, second))
            dates_ok = not any(math.isnan(to_timestamp(v)) for v in (left, first, second))
            if not numbers_ok and not dates_ok:
                raise NodeConfigurationError(
                    f'Row {row_number}: "{op.value}" requires numeric or date values '
                    f'(e.g., "10,20" or "2024-01-01,2024-12-31").',
                    title=f"{title}: Invalid Range",
                )

        if op in NUMERIC_RIGHT_COMPARATORS and math.isnan(to_number(right)):
            raise NodeConfigurationError(
                f'Row {row_number}: "Value 2" must be a number for "{op.value}".',
                title=f"{title}: Invalid Number",
            )

        if op in KEY_PROP_COMPARATORS and not _text(right).strip():
            raise NodeConfigurationError(
                f'Row {row_number}: "Value 2" must be a non-empty key/property name.',
                title=f"{title}: Invalid Field",
            )
    return rows


def evaluate_row(row: ConditionRow, context: "ExecutionContext") -> bool:
    left = resolve_value(row.left, context)
    right = None if row.comparator in UNARY_COMPARATORS else resolve_value(row.right or "", context)
    return compare_values(left, row.comparator, right)


def evaluate_rows(rows: list[ConditionRow], context: "ExecutionContext") -> tuple[bool, list[bool]]:
    """Fold rows left to right: ``((r0 op1 r1) op2 r2) ...``.

    Each row's joiner decides how it folds into the running result; the
    first row's joiner is ignored and a missing joiner means AND.
    """
    row_results: list[bool] = []
    cumulative = False
    for index, row in enumerate(rows):
        ok = evaluate_row(row, context)
        row_results.append(ok)
        if index == 0:
            cumulative = ok
        elif row.joiner is Joiner.OR:
            cumulative = cumulative or ok
        else:
            cumulative = cumulative and ok
    return cumulative, row_results
