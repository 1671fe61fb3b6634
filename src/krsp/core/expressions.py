"""Expression trees for predicates, computed columns and sort keys.

Expressions are plain data. They reference columns by exact name and are
checked against a plan's output columns when the plan is built; they are
translated to SQL only when the plan is collected.

    >>> (col("yr") == 2015) & col("br").is_null()
    (yr == 2015 & br IS NULL)
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

COMPARISON_OPERATORS = ("==", "!=", "<", "<=", ">", ">=")
ARITHMETIC_OPERATORS = ("+", "-", "*", "/")


class Expr:
    """Base class of all expression nodes."""

    # Comparisons build predicates instead of comparing nodes
    def __eq__(self, other: Any) -> "Expr":  # type: ignore[override]
        return _compare("==", self, other)

    def __ne__(self, other: Any) -> "Expr":  # type: ignore[override]
        return _compare("!=", self, other)

    def __lt__(self, other: Any) -> "Expr":
        return _compare("<", self, other)

    def __le__(self, other: Any) -> "Expr":
        return _compare("<=", self, other)

    def __gt__(self, other: Any) -> "Expr":
        return _compare(">", self, other)

    def __ge__(self, other: Any) -> "Expr":
        return _compare(">=", self, other)

    __hash__ = object.__hash__

    def __and__(self, other: Any) -> "Expr":
        return BoolOp("and", (self, as_expr(other)))

    def __rand__(self, other: Any) -> "Expr":
        return BoolOp("and", (as_expr(other), self))

    def __or__(self, other: Any) -> "Expr":
        return BoolOp("or", (self, as_expr(other)))

    def __ror__(self, other: Any) -> "Expr":
        return BoolOp("or", (as_expr(other), self))

    def __invert__(self) -> "Expr":
        return Not(self)

    def __add__(self, other: Any) -> "Expr":
        return Arith("+", self, as_expr(other))

    def __radd__(self, other: Any) -> "Expr":
        return Arith("+", as_expr(other), self)

    def __sub__(self, other: Any) -> "Expr":
        return Arith("-", self, as_expr(other))

    def __rsub__(self, other: Any) -> "Expr":
        return Arith("-", as_expr(other), self)

    def __mul__(self, other: Any) -> "Expr":
        return Arith("*", self, as_expr(other))

    def __rmul__(self, other: Any) -> "Expr":
        return Arith("*", as_expr(other), self)

    def __truediv__(self, other: Any) -> "Expr":
        return Arith("/", self, as_expr(other))

    def __rtruediv__(self, other: Any) -> "Expr":
        return Arith("/", as_expr(other), self)

    def __bool__(self) -> bool:
        raise TypeError(
            "Expressions have no truth value; combine predicates with & | ~ "
            "instead of and/or/not"
        )

    def is_null(self) -> "Expr":
        return IsNull(self)

    def not_null(self) -> "Expr":
        return IsNull(self, negated=True)

    def isin(self, values: Iterable[Any]) -> "Expr":
        return InList(self, tuple(as_expr(v) for v in values))

    def not_in(self, values: Iterable[Any]) -> "Expr":
        return InList(self, tuple(as_expr(v) for v in values), negated=True)

    def between(self, low: Any, high: Any) -> "Expr":
        """Inclusive range test."""
        return Between(self, as_expr(low), as_expr(high))

    def like(self, pattern: str) -> "Expr":
        """SQL LIKE pattern match (``%`` and ``_`` wildcards)."""
        return Like(self, pattern)

    def asc(self) -> "SortKey":
        return SortKey(self, descending=False)

    def desc(self) -> "SortKey":
        return SortKey(self, descending=True)

    def columns(self) -> frozenset[str]:
        """Names of all columns referenced by this expression."""
        names: set[str] = set()
        for child in self.children():
            names |= child.columns()
        return frozenset(names)

    def children(self) -> tuple["Expr", ...]:
        return ()


@dataclass(frozen=True, eq=False, repr=False)
class Column(Expr):
    """Reference to an output column of the plan, by exact name."""

    name: str

    def columns(self) -> frozenset[str]:
        return frozenset([self.name])

    def __repr__(self) -> str:
        return self.name


@dataclass(frozen=True, eq=False, repr=False)
class Literal(Expr):
    """Constant value, sent to the backing store as a bound parameter."""

    value: Any

    def __repr__(self) -> str:
        return "NULL" if self.value is None else repr(self.value)


@dataclass(frozen=True, eq=False, repr=False)
class Compare(Expr):
    op: str
    left: Expr
    right: Expr

    def children(self) -> tuple[Expr, ...]:
        return (self.left, self.right)

    def __repr__(self) -> str:
        return f"{self.left!r} {self.op} {self.right!r}"


@dataclass(frozen=True, eq=False, repr=False)
class IsNull(Expr):
    """NULL test; never expressed as an equality with NULL."""

    operand: Expr
    negated: bool = False

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    def __repr__(self) -> str:
        return f"{self.operand!r} IS {'NOT ' if self.negated else ''}NULL"


@dataclass(frozen=True, eq=False, repr=False)
class InList(Expr):
    operand: Expr
    values: tuple[Expr, ...]
    negated: bool = False

    def children(self) -> tuple[Expr, ...]:
        return (self.operand, *self.values)

    def __repr__(self) -> str:
        values = ", ".join(repr(v) for v in self.values)
        return f"{self.operand!r} {'NOT IN' if self.negated else 'IN'} ({values})"


@dataclass(frozen=True, eq=False, repr=False)
class Between(Expr):
    operand: Expr
    low: Expr
    high: Expr

    def children(self) -> tuple[Expr, ...]:
        return (self.operand, self.low, self.high)

    def __repr__(self) -> str:
        return f"{self.operand!r} BETWEEN {self.low!r} AND {self.high!r}"


@dataclass(frozen=True, eq=False, repr=False)
class Like(Expr):
    operand: Expr
    pattern: str

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    def __repr__(self) -> str:
        return f"{self.operand!r} LIKE {self.pattern!r}"


@dataclass(frozen=True, eq=False, repr=False)
class BoolOp(Expr):
    op: str
    operands: tuple[Expr, ...]

    def children(self) -> tuple[Expr, ...]:
        return self.operands

    def __repr__(self) -> str:
        joiner = " & " if self.op == "and" else " | "
        return "(" + joiner.join(repr(o) for o in self.operands) + ")"


@dataclass(frozen=True, eq=False, repr=False)
class Not(Expr):
    operand: Expr

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    def __repr__(self) -> str:
        return f"~({self.operand!r})"


@dataclass(frozen=True, eq=False, repr=False)
class Arith(Expr):
    op: str
    left: Expr
    right: Expr

    def children(self) -> tuple[Expr, ...]:
        return (self.left, self.right)

    def __repr__(self) -> str:
        return f"({self.left!r} {self.op} {self.right!r})"


@dataclass(frozen=True, eq=False, repr=False)
class Call(Expr):
    """
    Function call by name.

    Only names with a known SQL translation can be collected. Anything else,
    including Python callables, is accepted here and fails with
    ``TranslationError`` when the plan is collected.
    """

    function: Union[str, Callable[..., Any]]
    args: tuple[Expr, ...]

    @property
    def function_name(self) -> str:
        if isinstance(self.function, str):
            return self.function
        return getattr(self.function, "__name__", repr(self.function))

    def children(self) -> tuple[Expr, ...]:
        return self.args

    def __repr__(self) -> str:
        args = ", ".join(repr(a) for a in self.args)
        return f"{self.function_name}({args})"


@dataclass(frozen=True, eq=False)
class SortKey:
    """Sort expression plus direction."""

    expr: Expr
    descending: bool = False

    def columns(self) -> frozenset[str]:
        return self.expr.columns()

    def __repr__(self) -> str:
        return f"{self.expr!r} {'DESC' if self.descending else 'ASC'}"


@dataclass(frozen=True, eq=False)
class Agg:
    """Aggregate function applied to an input expression (None counts rows)."""

    function: str
    argument: Optional[Expr] = None

    def columns(self) -> frozenset[str]:
        if self.argument is None:
            return frozenset()
        return self.argument.columns()

    def __repr__(self) -> str:
        arg = "" if self.argument is None else repr(self.argument)
        return f"{self.function}({arg})"


def _compare(op: str, left: Expr, right: Any) -> Expr:
    right = as_expr(right)
    if isinstance(right, Literal) and right.value is None and op in ("==", "!="):
        # x == NULL is never true in SQL
        return IsNull(left, negated=(op == "!="))
    return Compare(op, left, right)


def col(name: str) -> Column:
    """Reference a column by exact name."""
    if not isinstance(name, str) or not name:
        raise TypeError(f"Column name must be a non-empty string, got {name!r}")
    return Column(name)


def lit(value: Any) -> Literal:
    """Wrap a constant."""
    return Literal(value)


def as_expr(value: Any) -> Expr:
    """Return expressions unchanged and wrap anything else as a literal."""
    if isinstance(value, Expr):
        return value
    return Literal(value)


def as_column(value: Union[str, Expr]) -> Expr:
    """Treat strings as column names, pass expressions through."""
    if isinstance(value, str):
        return col(value)
    if isinstance(value, Expr):
        return value
    raise TypeError(f"Expected a column name or expression, got {value!r}")


def and_(*predicates: Expr) -> Expr:
    if len(predicates) == 1:
        return predicates[0]
    return BoolOp("and", tuple(predicates))


def or_(*predicates: Expr) -> Expr:
    if len(predicates) == 1:
        return predicates[0]
    return BoolOp("or", tuple(predicates))


def not_(predicate: Expr) -> Expr:
    return Not(predicate)


class _FunctionNamespace:
    """
    Build function calls: ``fn.lower(col("gr"))`` or ``fn(callable, ...)``.
    """

    def __getattr__(self, name: str) -> Callable[..., Call]:
        if name.startswith("_"):
            raise AttributeError(name)

        def call(*args: Any) -> Call:
            return Call(name, tuple(as_expr(a) for a in args))

        call.__name__ = name
        return call

    def __call__(self, function: Union[str, Callable[..., Any]], *args: Any) -> Call:
        return Call(function, tuple(as_expr(a) for a in args))


fn = _FunctionNamespace()


def concat(*parts: Any) -> Call:
    """String concatenation; NULL if any part is NULL."""
    return Call("concat", tuple(as_expr(p) for p in parts))


def coalesce(*values: Any) -> Call:
    return Call("coalesce", tuple(as_expr(v) for v in values))


def year(value: Any) -> Call:
    """Year of a date column."""
    return Call("year", (as_column(value),))


def agg(function: str, argument: Union[str, Expr, None] = None) -> Agg:
    """Aggregate ``function`` over a column name or expression."""
    return Agg(function, None if argument is None else as_column(argument))


def count(argument: Union[str, Expr, None] = None) -> Agg:
    """Row count, or count of non-NULL values of ``argument``."""
    return agg("count", argument)


def n_distinct(argument: Union[str, Expr]) -> Agg:
    return agg("n_distinct", argument)


def mean(argument: Union[str, Expr]) -> Agg:
    return agg("mean", argument)


def sd(argument: Union[str, Expr]) -> Agg:
    """Sample standard deviation."""
    return agg("sd", argument)
