"""Query intents and the mandatory-predicate rule.

Reads, updates and deletes must carry a filter that actually restricts rows.
A missing filter, or one that is always true (``1=1``, ``'a'='a'``,
``x = 1 OR 1 = 1`` ...), is rejected before any statement is built.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlglot import exp, parse
from sqlglot.errors import SqlglotError

from mssql_mcp.errors import MissingPredicate, OperationError


class OperationKind(Enum):
    READ = "read"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    DDL = "ddl"
    # Metadata lookups (list/describe tables); no row data, no predicate
    CATALOG = "catalog"

    @property
    def is_mutating(self) -> bool:
        return self in _MUTATING_KINDS

    @property
    def requires_predicate(self) -> bool:
        return self in _PREDICATE_KINDS


_MUTATING_KINDS = frozenset(
    {OperationKind.INSERT, OperationKind.UPDATE, OperationKind.DELETE, OperationKind.DDL}
)
_PREDICATE_KINDS = frozenset({OperationKind.READ, OperationKind.UPDATE, OperationKind.DELETE})


@dataclass(frozen=True)
class QueryIntent:
    kind: OperationKind
    predicate: str | None = None

    @classmethod
    def from_arguments(
        cls,
        kind: OperationKind,
        predicate_arg: str | None,
        arguments: dict[str, Any],
    ) -> QueryIntent:
        predicate = arguments.get(predicate_arg) if predicate_arg else None
        if predicate is not None and not isinstance(predicate, str):
            raise OperationError(f"'{predicate_arg}' must be a string")
        return cls(kind=kind, predicate=predicate)

    @property
    def requires_predicate(self) -> bool:
        return self.kind.requires_predicate

    def check(self) -> None:
        """Raise MissingPredicate if this intent needs a filter and lacks a real one."""
        if not self.requires_predicate:
            return
        if self.predicate is None or not self.predicate.strip():
            raise MissingPredicate(
                f"A filter predicate is required for {self.kind.value} operations"
            )
        if is_trivial_predicate(self.predicate):
            raise MissingPredicate(
                f"The filter predicate {self.predicate.strip()!r} matches every row; "
                f"{self.kind.value} operations need a restrictive filter"
            )


# ---------------------------------------------------------------------------
# Predicate analysis
# ---------------------------------------------------------------------------

_NULL = object()
_TRUE_WORDS = {"1", "true"}
_FALSE_WORDS = {"0", "false"}


def _unwrap(node: exp.Expression) -> exp.Expression:
    while isinstance(node, exp.Paren):
        node = node.this
    return node


def _constant(node: exp.Expression) -> Any:
    """Python value of a literal, ``_NULL`` for NULL, or None if not a constant."""
    node = _unwrap(node)
    if isinstance(node, exp.Null):
        return _NULL
    if isinstance(node, exp.Boolean):
        return 1.0 if node.this else 0.0
    if isinstance(node, exp.National):
        return node.name
    if isinstance(node, exp.Literal):
        if node.is_string:
            return node.this
        try:
            return float(node.this)
        except ValueError:
            return None
    if isinstance(node, exp.Neg):
        value = _constant(node.this)
        return -value if isinstance(value, float) else None
    if isinstance(node, exp.Column) and not node.table:
        word = node.name.lower()
        if word in _TRUE_WORDS:
            return 1.0
        if word in _FALSE_WORDS:
            return 0.0
    return None


def _coerce(left: Any, right: Any) -> tuple[Any, Any] | None:
    """Bring two constants to a comparable form, or None when that is impossible."""
    if isinstance(left, float) and isinstance(right, str):
        try:
            return left, float(right)
        except ValueError:
            return None
    if isinstance(left, str) and isinstance(right, float):
        swapped = _coerce(right, left)
        return None if swapped is None else (swapped[1], swapped[0])
    if isinstance(left, str):
        # default collations compare case-insensitively and ignore trailing blanks
        return left.rstrip().casefold(), right.rstrip().casefold()
    return left, right


_COMPARATORS = {
    exp.EQ: lambda a, b: a == b,
    exp.NEQ: lambda a, b: a != b,
    exp.GT: lambda a, b: a > b,
    exp.GTE: lambda a, b: a >= b,
    exp.LT: lambda a, b: a < b,
    exp.LTE: lambda a, b: a <= b,
}
# x OP x for a column compared with itself (NULL rows aside)
_REFLEXIVE = {
    exp.EQ: True,
    exp.GTE: True,
    exp.LTE: True,
    exp.NEQ: False,
    exp.GT: False,
    exp.LT: False,
}


def _same(left: exp.Expression, right: exp.Expression) -> bool:
    return _unwrap(left).sql(dialect="tsql").lower() == _unwrap(right).sql(dialect="tsql").lower()


def _compare(op: type, left: exp.Expression, right: exp.Expression) -> bool | None:
    lvalue, rvalue = _constant(left), _constant(right)
    if lvalue is None or rvalue is None:
        if lvalue is None and rvalue is None and _same(left, right):
            return _REFLEXIVE[op]
        return None
    if lvalue is _NULL or rvalue is _NULL:
        return None
    pair = _coerce(lvalue, rvalue)
    if pair is None:
        return None
    return _COMPARATORS[op](*pair)


def _like(node: exp.Like) -> bool | None:
    pattern = _constant(node.expression)
    if not isinstance(pattern, str):
        return None
    if pattern and set(pattern) == {"%"}:
        # '%' matches every non-NULL value
        value = _constant(node.this)
        return None if value is _NULL else True
    value = _constant(node.this)
    if not isinstance(value, (str, float)):
        return None
    if isinstance(value, float):
        value = f"{value:g}"
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern
    )
    return re.fullmatch(regex, value, re.IGNORECASE | re.DOTALL) is not None


def _in(node: exp.In) -> bool | None:
    value = _constant(node.this)
    if value is None or value is _NULL or node.args.get("query") is not None:
        return None
    unknown = False
    for item in node.expressions:
        candidate = _constant(item)
        pair = None if candidate in (None, _NULL) else _coerce(value, candidate)
        if pair is None:
            unknown = True
        elif pair[0] == pair[1]:
            return True
    return None if unknown else False


def _between(node: exp.Between) -> bool | None:
    low = _compare(exp.GTE, node.this, node.args["low"])
    high = _compare(exp.LTE, node.this, node.args["high"])
    if low is False or high is False:
        return False
    if low is True and high is True:
        return True
    return None


def _null_test(node: exp.Expression) -> tuple[str, bool] | None:
    """``(operand, negated)`` for ``x IS NULL`` / ``x IS NOT NULL``."""
    node = _unwrap(node)
    negated = False
    if isinstance(node, exp.Not):
        negated = True
        node = _unwrap(node.this)
    if isinstance(node, exp.Is) and isinstance(_unwrap(node.expression), exp.Null):
        return _unwrap(node.this).sql(dialect="tsql").lower(), negated
    return None


def _disjuncts(node: exp.Expression) -> list[exp.Expression]:
    node = _unwrap(node)
    if isinstance(node, exp.Or):
        return _disjuncts(node.left) + _disjuncts(node.right)
    return [node]


def _truth(node: exp.Expression) -> bool | None:
    """Truth value of a constant expression, or None if it depends on row data."""
    node = _unwrap(node)

    if isinstance(node, exp.Or):
        parts = _disjuncts(node)
        values = [_truth(part) for part in parts]
        if any(value is True for value in values):
            return True
        tests = {test for test in map(_null_test, parts) if test is not None}
        if any((operand, not negated) in tests for operand, negated in tests):
            # x IS NULL OR x IS NOT NULL
            return True
        if all(value is False for value in values):
            return False
        return None

    if isinstance(node, exp.And):
        values = [_truth(node.left), _truth(node.right)]
        if any(value is False for value in values):
            return False
        if all(value is True for value in values):
            return True
        return None

    if isinstance(node, exp.Not):
        inner = _truth(node.this)
        return None if inner is None else not inner

    for op in _COMPARATORS:
        if isinstance(node, op):
            return _compare(op, node.left, node.right)

    if isinstance(node, exp.Is) and isinstance(_unwrap(node.expression), exp.Null):
        value = _constant(node.this)
        return None if value is None else value is _NULL
    if isinstance(node, exp.Like):
        return _like(node)
    if isinstance(node, exp.In):
        return _in(node)
    if isinstance(node, exp.Between):
        return _between(node)

    value = _constant(node)
    if isinstance(value, float):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    if value is _NULL:
        return False
    return None


def is_trivial_predicate(predicate: str | None) -> bool:
    """True when ``predicate`` is missing or always true.

    A predicate that does not parse as a single T-SQL expression is not
    treated as trivial here; fragment validation and the server reject it.
    """
    if predicate is None or not predicate.strip():
        return True
    try:
        expressions = parse(predicate, read="tsql")
    except SqlglotError:
        return False
    if len(expressions) != 1 or expressions[0] is None:
        return False
    return _truth(expressions[0]) is True
