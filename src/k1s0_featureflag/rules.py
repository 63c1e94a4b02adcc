"""ランタイム評価ルール（JSON Logic）の解釈器

ロールアウトのターゲティング条件を評価する。ルールとコンテキストは評価前に
小文字へ正規化されるため、比較は大文字小文字を区別しない。
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

logger = logging.getLogger(__name__)

_MISSING = object()


def lowercase_leaf_nodes(obj: Any) -> Any:
    """ルール内の文字列リーフを小文字化する。キーは変更しない。"""
    if isinstance(obj, str):
        return obj.lower()
    if isinstance(obj, Mapping):
        return {k: lowercase_leaf_nodes(v) for k, v in obj.items()}
    if isinstance(obj, list | tuple):
        return [lowercase_leaf_nodes(v) for v in obj]
    return obj


def lowercase_all_nodes(obj: Any) -> Any:
    """コンテキストのキーと文字列値を再帰的に小文字化する。"""
    if isinstance(obj, str):
        return obj.lower()
    if isinstance(obj, Mapping):
        return {
            (k.lower() if isinstance(k, str) else k): lowercase_all_nodes(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list | tuple):
        return [lowercase_all_nodes(v) for v in obj]
    return obj


def truthy(value: Any) -> bool:
    """JSON Logic の真偽判定。空配列は偽、空でないオブジェクトは真。"""
    if isinstance(value, Mapping):
        return True
    return bool(value)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int | float):
        return float(value)
    if value is None:
        return 0.0
    if isinstance(value, str):
        return float(value.strip()) if value.strip() else 0.0
    raise ValueError(f"cannot convert {type(value).__name__} to number")


def _loose_equals(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, bool | int | float) or isinstance(b, bool | int | float):
        try:
            return _to_number(a) == _to_number(b)
        except ValueError:
            return False
    return bool(a == b)


def _strict_equals(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    numeric = (int, float)
    if isinstance(a, numeric) and isinstance(b, numeric):
        return a == b
    return type(a) is type(b) and a == b


def _less_than(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a < b
    return _to_number(a) < _to_number(b)


def _less_equal(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a <= b
    return _to_number(a) <= _to_number(b)


def _get_var(data: Any, path: Any, default: Any = None) -> Any:
    if path is None or path == "":
        return data
    current = data
    for part in str(path).split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, list | tuple):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                current = _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


def _op_var(data: Any, args: list[Any]) -> Any:
    path = args[0] if args else None
    default = args[1] if len(args) > 1 else None
    return _get_var(data, path, default)


def _op_missing(data: Any, args: list[Any]) -> list[Any]:
    keys = args[0] if len(args) == 1 and isinstance(args[0], list) else args
    return [k for k in keys if _get_var(data, k, _MISSING) in (_MISSING, None, "")]


def _op_missing_some(data: Any, args: list[Any]) -> list[Any]:
    need, keys = args[0], args[1]
    missing = _op_missing(data, [keys])
    if len(keys) - len(missing) >= need:
        return []
    return missing


def _op_compare(fn: Callable[[Any, Any], bool]) -> Callable[[Any, list[Any]], bool]:
    def _apply(data: Any, args: list[Any]) -> bool:
        if len(args) == 3:
            return fn(args[0], args[1]) and fn(args[1], args[2])
        return fn(args[0], args[1])

    return _apply


def _op_in(data: Any, args: list[Any]) -> bool:
    needle, haystack = args[0], args[1]
    if isinstance(haystack, str):
        return isinstance(needle, str) and needle in haystack
    if isinstance(haystack, list | tuple):
        return any(_strict_equals(needle, item) for item in haystack)
    return False


def _op_merge(data: Any, args: list[Any]) -> list[Any]:
    merged: list[Any] = []
    for arg in args:
        if isinstance(arg, list | tuple):
            merged.extend(arg)
        else:
            merged.append(arg)
    return merged


def _op_minus(data: Any, args: list[Any]) -> float:
    if len(args) == 1:
        return -_to_number(args[0])
    return _to_number(args[0]) - _to_number(args[1])


def _op_cat(data: Any, args: list[Any]) -> str:
    parts = []
    for arg in args:
        if arg is None:
            parts.append("")
        elif isinstance(arg, bool):
            parts.append("true" if arg else "false")
        else:
            parts.append(str(arg))
    return "".join(parts)


_Operation = Callable[[Any, list[Any]], Any]

_OPERATIONS: dict[str, _Operation] = {
    "var": _op_var,
    "missing": _op_missing,
    "missing_some": _op_missing_some,
    "==": lambda d, a: _loose_equals(a[0], a[1]),
    "!=": lambda d, a: not _loose_equals(a[0], a[1]),
    "===": lambda d, a: _strict_equals(a[0], a[1]),
    "!==": lambda d, a: not _strict_equals(a[0], a[1]),
    "!": lambda d, a: not truthy(a[0]),
    "!!": lambda d, a: truthy(a[0]),
    ">": lambda d, a: _less_than(a[1], a[0]),
    ">=": lambda d, a: _less_equal(a[1], a[0]),
    "<": _op_compare(_less_than),
    "<=": _op_compare(_less_equal),
    "in": _op_in,
    "cat": _op_cat,
    "+": lambda d, a: sum(_to_number(x) for x in a),
    "-": _op_minus,
    "*": lambda d, a: _product(a),
    "/": lambda d, a: _to_number(a[0]) / _to_number(a[1]),
    "%": lambda d, a: _to_number(a[0]) % _to_number(a[1]),
    "min": lambda d, a: min(_to_number(x) for x in a),
    "max": lambda d, a: max(_to_number(x) for x in a),
    "merge": _op_merge,
}


def _product(args: Sequence[Any]) -> float:
    result = 1.0
    for arg in args:
        result *= _to_number(arg)
    return result


def _is_logic(rule: Any) -> bool:
    return isinstance(rule, Mapping) and len(rule) == 1 and isinstance(next(iter(rule)), str)


def apply_logic(rule: Any, data: Any = None) -> Any:
    """JSON Logic ルールを data に対して評価した値を返す。

    Raises:
        ValueError: 未知の演算子や型変換できない値を含む場合
    """
    if isinstance(rule, list | tuple):
        return [apply_logic(r, data) for r in rule]
    if not _is_logic(rule):
        return rule

    op, raw_args = next(iter(rule.items()))
    if not isinstance(raw_args, list | tuple):
        raw_args = [raw_args]
    else:
        raw_args = list(raw_args)

    # if / and / or は短絡評価
    if op in ("if", "?:"):
        i = 0
        while i < len(raw_args) - 1:
            if truthy(apply_logic(raw_args[i], data)):
                return apply_logic(raw_args[i + 1], data)
            i += 2
        return apply_logic(raw_args[i], data) if i < len(raw_args) else None
    if op == "and":
        value: Any = None
        for arg in raw_args:
            value = apply_logic(arg, data)
            if not truthy(value):
                return value
        return value
    if op == "or":
        value = None
        for arg in raw_args:
            value = apply_logic(arg, data)
            if truthy(value):
                return value
        return value

    operation = _OPERATIONS.get(op)
    if operation is None:
        raise ValueError(f"unrecognized operation: {op}")
    args = [apply_logic(arg, data) for arg in raw_args]
    return operation(data, args)


def matches(rule: Any, data: Mapping[str, Any] | None) -> bool:
    """ルールがコンテキストに一致するか判定する。

    評価中の例外はすべて不一致として扱う。
    """
    try:
        normalized_rule = lowercase_leaf_nodes(rule)
        normalized_data = lowercase_all_nodes(dict(data or {}))
        return truthy(apply_logic(normalized_rule, normalized_data))
    except Exception as e:
        logger.debug(
            "Runtime rule evaluation failed",
            extra={"rule": rule, "error": str(e)},
        )
        return False


def matches_legacy(
    definition: Mapping[str, Any], properties: Mapping[str, Any] | None
) -> bool:
    """旧形式の完全一致定義を評価する。文字列は大文字小文字を区別しない。"""
    if properties is None:
        return False
    for key, expected in definition.items():
        actual = properties.get(key)
        if expected is None or actual is None:
            if expected is not actual:
                return False
            continue
        if isinstance(expected, str) and isinstance(actual, str):
            if expected.lower() != actual.lower():
                return False
        elif expected != actual:
            return False
    return True
