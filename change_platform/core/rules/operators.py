from __future__ import annotations

from numbers import Number
from typing import Any, Callable, Dict

from change_platform.core.store.documents import is_missing

OperatorFn = Callable[[Any, Any, bool], bool]


def _fold(v: Any, case_sensitive: bool) -> Any:
    if isinstance(v, str) and not case_sensitive:
        return v.casefold()
    return v


def _fold_list(values: Any, case_sensitive: bool) -> list:
    if not isinstance(values, (list, tuple, set)):
        values = [values]
    return [_fold(v, case_sensitive) for v in values]


def _is_number(v: Any) -> bool:
    return isinstance(v, Number) and not isinstance(v, bool)


def _as_number(v: Any):
    if _is_number(v):
        return v
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            return None
    return None


def _equals(actual: Any, expected: Any, cs: bool) -> bool:
    if is_missing(actual):
        return expected is None
    return _fold(actual, cs) == _fold(expected, cs)


def _in(actual: Any, expected: Any, cs: bool) -> bool:
    if is_missing(actual) or actual is None:
        return False
    pool = _fold_list(expected, cs)
    if isinstance(actual, list):
        return any(_fold(a, cs) in pool for a in actual)
    return _fold(actual, cs) in pool


def _contains(actual: Any, expected: Any, cs: bool) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return _fold(expected, cs) in _fold(actual, cs)
    if isinstance(actual, (list, tuple)):
        return _fold(expected, cs) in _fold_list(actual, cs)
    if isinstance(actual, dict) and isinstance(expected, str):
        return expected in actual
    return False


def _starts_with(actual: Any, expected: Any, cs: bool) -> bool:
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    return _fold(actual, cs).startswith(_fold(expected, cs))


def _ends_with(actual: Any, expected: Any, cs: bool) -> bool:
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    return _fold(actual, cs).endswith(_fold(expected, cs))


def _ordered(actual: Any, expected: Any, op: Callable[[Any, Any], bool]) -> bool:
    if is_missing(actual) or actual is None or expected is None:
        return False
    if isinstance(actual, str) and isinstance(expected, str):
        # ISO dates and other lexically ordered strings
        a_num, e_num = _as_number(actual), _as_number(expected)
        if a_num is not None and e_num is not None:
            return op(a_num, e_num)
        return op(actual, expected)
    a, e = _as_number(actual), _as_number(expected)
    if a is None or e is None:
        return False
    return op(a, e)


def is_empty_value(actual: Any) -> bool:
    if is_missing(actual) or actual is None:
        return True
    if isinstance(actual, str):
        return actual.strip() == ""
    if isinstance(actual, (list, tuple, dict, set)):
        return len(actual) == 0
    return False


def _exists(actual: Any, expected: Any, cs: bool) -> bool:
    return not is_missing(actual) and actual is not None


OPERATORS: Dict[str, OperatorFn] = {
    "equals": _equals,
    "not_equals": lambda a, e, cs: not _equals(a, e, cs),
    "in": _in,
    "not_in": lambda a, e, cs: not _in(a, e, cs),
    "contains": _contains,
    "starts_with": _starts_with,
    "ends_with": _ends_with,
    "greater_than": lambda a, e, cs: _ordered(a, e, lambda x, y: x > y),
    "less_than": lambda a, e, cs: _ordered(a, e, lambda x, y: x < y),
    "is_empty": lambda a, e, cs: is_empty_value(a),
    "is_not_empty": lambda a, e, cs: not is_empty_value(a),
    "exists": _exists,
    "not_exists": lambda a, e, cs: not _exists(a, e, cs),
}


def apply_operator(operator: str, actual: Any, expected: Any, case_sensitive: bool = False) -> bool:
    fn = OPERATORS.get(operator)
    if fn is None:
        raise ValueError(f"Unknown operator: {operator}")
    return bool(fn(actual, expected, case_sensitive))
