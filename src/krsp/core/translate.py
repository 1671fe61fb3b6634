"""Translation of plans into SQLAlchemy Core statements.

Operations are folded into one SELECT where SQL allows it; a subquery is
introduced only when an operation has to see the result of an earlier one
(filtering aggregated rows, sorting after a LIMIT, joining a derived side).
"""

import logging
import operator
from functools import reduce
from typing import Any, Callable, Optional

from sqlalchemy import (
    String,
    and_,
    cast,
    distinct,
    extract,
    func,
    literal,
    not_,
    null,
    or_,
    select,
)
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from krsp.adapters.base import BaseAdapter
from krsp.core.expressions import (
    Agg,
    Arith,
    Between,
    BoolOp,
    Call,
    Column,
    Compare,
    Expr,
    InList,
    IsNull,
    Like,
    Literal,
    Not,
    SortKey,
)
from krsp.core.plan import (
    AggregateNode,
    FilterNode,
    GroupByNode,
    HeadNode,
    JoinNode,
    MutateNode,
    Plan,
    RenameNode,
    SelectNode,
    SortNode,
    Source,
)
from krsp.exceptions import TranslationError

logger = logging.getLogger(__name__)

_COMPARISONS: dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_ARITHMETIC: dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}


def _as_string(expr: ColumnElement) -> ColumnElement:
    if isinstance(expr.type, String):
        return expr
    return cast(expr, String)


def _concat(*args: ColumnElement) -> ColumnElement:
    # rendered as || on SQLite and PostgreSQL, concat() on MySQL
    return reduce(lambda a, b: a.concat(b), [_as_string(a) for a in args])


# Functions usable inside expressions, by name
FUNCTIONS: dict[str, Callable[..., ColumnElement]] = {
    "lower": func.lower,
    "upper": func.upper,
    "length": func.length,
    "trim": func.trim,
    "abs": func.abs,
    "round": func.round,
    "coalesce": func.coalesce,
    "concat": _concat,
    "year": lambda x: extract("year", x),
    "month": lambda x: extract("month", x),
    "day": lambda x: extract("day", x),
}


class _Stage:
    """A SELECT under construction: FROM clause plus named output columns."""

    def __init__(self, from_: Any, columns: dict[str, ColumnElement], bare: bool = False):
        self.from_ = from_
        self.columns = columns
        self.where: list[ColumnElement] = []
        self.group_by: list[ColumnElement] = []
        self.aggregated = False
        self.order_by: list[ColumnElement] = []
        self.limit: Optional[int] = None
        # True while the stage is an untouched table
        self.bare = bare

    def to_select(self) -> Select:
        stmt = select(
            *[expr.label(name) for name, expr in self.columns.items()]
        ).select_from(self.from_)
        if self.where:
            stmt = stmt.where(*self.where)
        if self.group_by:
            stmt = stmt.group_by(*self.group_by)
        if self.order_by:
            stmt = stmt.order_by(*self.order_by)
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        return stmt

    def wrap(self) -> "_Stage":
        """Turn this stage into a subquery and select from it."""
        if self.order_by and self.limit is None:
            logger.debug("Ordering inside a subquery is not preserved; sort last")
        sub = self.to_select().subquery()
        return _Stage(sub, {name: sub.c[name] for name in self.columns})


class PlanTranslator:
    """Translates plans for one backing store."""

    def __init__(self, adapter: BaseAdapter):
        self.adapter = adapter

    def to_select(self, plan: Plan, limit: Optional[int] = None) -> Select:
        """
        Build the SELECT statement for a plan.

        Args:
            plan: Plan to translate
            limit: Extra row cap, combined with any head() in the plan

        Returns:
            SQLAlchemy Select whose labels equal the plan's output columns

        Raises:
            TranslationError: If an operation has no SQL equivalent
        """
        stage = self._stage(plan)
        if limit is not None:
            stage.limit = limit if stage.limit is None else min(stage.limit, limit)
        return stage.to_select()

    def _stage(self, plan: Plan) -> _Stage:
        node = plan.node
        try:
            return self._dispatch(node)
        except TranslationError as e:
            if e.operation is None:
                e.operation = node.describe()
            raise

    def _dispatch(self, node: Any) -> _Stage:
        if isinstance(node, Source):
            return self._source(node)
        if isinstance(node, SelectNode):
            return self._select(node)
        if isinstance(node, FilterNode):
            return self._filter(node)
        if isinstance(node, JoinNode):
            return self._join(node)
        if isinstance(node, GroupByNode):
            # grouping is applied by the aggregate that consumes it
            return self._stage(node.parent)
        if isinstance(node, AggregateNode):
            return self._aggregate(node)
        if isinstance(node, SortNode):
            return self._sort(node)
        if isinstance(node, RenameNode):
            return self._rename(node)
        if isinstance(node, MutateNode):
            return self._mutate(node)
        if isinstance(node, HeadNode):
            return self._head(node)
        raise TranslationError(f"Unknown plan operation {type(node).__name__}")

    def _source(self, node: Source) -> _Stage:
        table = node.table.sa_table
        return _Stage(table, {name: table.c[name] for name in node.table.columns}, bare=True)

    def _select(self, node: SelectNode) -> _Stage:
        stage = self._stage(node.parent)
        stage.columns = {name: stage.columns[name] for name in node.columns}
        stage.bare = False
        return stage

    def _filter(self, node: FilterNode) -> _Stage:
        stage = self._stage(node.parent)
        if stage.aggregated or stage.limit is not None:
            stage = stage.wrap()
        stage.where.append(self.expression(node.predicate, stage.columns))
        stage.bare = False
        return stage

    def _join(self, node: JoinNode) -> _Stage:
        left = self._join_side(self._stage(node.left))
        right = self._join_side(self._stage(node.right))

        onclause = and_(
            *[left.columns[l] == right.columns[r] for l, r in node.keys]
        )

        if node.kind == "inner":
            from_ = left.from_.join(right.from_, onclause)
        elif node.kind == "left":
            from_ = left.from_.join(right.from_, onclause, isouter=True)
        elif node.kind == "right":
            # a RIGHT JOIN b is b LEFT JOIN a
            from_ = right.from_.join(left.from_, onclause, isouter=True)
        else:
            if not self.adapter.capabilities.full_join:
                raise TranslationError(
                    f"{self.adapter.name} does not support FULL OUTER JOIN"
                )
            from_ = left.from_.join(right.from_, onclause, full=True)

        key_partner = dict(node.keys)
        columns: dict[str, ColumnElement] = {}
        for source, output in node.left_output:
            expr = left.columns[source]
            if source in key_partner and node.kind in ("right", "full"):
                partner = right.columns[key_partner[source]]
                expr = partner if node.kind == "right" else func.coalesce(expr, partner)
            columns[output] = expr
        for source, output in node.right_output:
            columns[output] = right.columns[source]

        return _Stage(from_, columns)

    def _join_side(self, stage: _Stage) -> _Stage:
        if stage.bare:
            alias = stage.from_.alias()
            return _Stage(alias, {name: alias.c[name] for name in stage.columns})
        if stage.order_by and stage.limit is None:
            # ORDER BY without LIMIT means nothing inside a joined subquery
            stage.order_by = []
        return stage.wrap()

    def _aggregate(self, node: AggregateNode) -> _Stage:
        stage = self._stage(node.parent)
        if stage.aggregated or stage.limit is not None:
            stage = stage.wrap()
        stage.order_by = []

        keys = {name: stage.columns[name] for name in node.keys}
        outputs = {
            name: self.aggregate(aggregate, stage.columns)
            for name, aggregate in node.outputs
        }
        stage.columns = {**keys, **outputs}
        stage.group_by = list(keys.values())
        stage.aggregated = True
        stage.bare = False
        return stage

    def _sort(self, node: SortNode) -> _Stage:
        stage = self._stage(node.parent)
        if stage.limit is not None:
            stage = stage.wrap()
        stage.order_by = [self.sort_key(key, stage.columns) for key in node.keys]
        stage.bare = False
        return stage

    def _rename(self, node: RenameNode) -> _Stage:
        stage = self._stage(node.parent)
        mapping = dict(node.mapping)
        stage.columns = {mapping.get(name, name): expr for name, expr in stage.columns.items()}
        stage.bare = False
        return stage

    def _mutate(self, node: MutateNode) -> _Stage:
        stage = self._stage(node.parent)
        columns = dict(stage.columns)
        for name, expr in node.outputs:
            columns[name] = self.expression(expr, columns)
        stage.columns = columns
        stage.bare = False
        return stage

    def _head(self, node: HeadNode) -> _Stage:
        stage = self._stage(node.parent)
        stage.limit = node.n if stage.limit is None else min(stage.limit, node.n)
        stage.bare = False
        return stage

    # Expressions

    def expression(self, expr: Expr, columns: dict[str, ColumnElement]) -> ColumnElement:
        """
        Translate an expression against the current output columns.

        Raises:
            TranslationError: For function calls without a SQL equivalent
        """
        if isinstance(expr, Column):
            return columns[expr.name]
        if isinstance(expr, Literal):
            return null() if expr.value is None else literal(expr.value)
        if isinstance(expr, Compare):
            return _COMPARISONS[expr.op](
                self.expression(expr.left, columns), self._operand(expr.right, columns)
            )
        if isinstance(expr, IsNull):
            operand = self.expression(expr.operand, columns)
            return operand.is_not(None) if expr.negated else operand.is_(None)
        if isinstance(expr, InList):
            operand = self.expression(expr.operand, columns)
            values = [self._operand(v, columns) for v in expr.values]
            return operand.not_in(values) if expr.negated else operand.in_(values)
        if isinstance(expr, Between):
            return self.expression(expr.operand, columns).between(
                self._operand(expr.low, columns), self._operand(expr.high, columns)
            )
        if isinstance(expr, Like):
            return self.expression(expr.operand, columns).like(expr.pattern)
        if isinstance(expr, BoolOp):
            operands = [self.expression(o, columns) for o in expr.operands]
            return and_(*operands) if expr.op == "and" else or_(*operands)
        if isinstance(expr, Not):
            return not_(self.expression(expr.operand, columns))
        if isinstance(expr, Arith):
            return _ARITHMETIC[expr.op](
                self.expression(expr.left, columns), self._operand(expr.right, columns)
            )
        if isinstance(expr, Call):
            return self._call(expr, columns)
        raise TranslationError(f"Cannot translate expression {expr!r}")

    def _operand(self, expr: Expr, columns: dict[str, ColumnElement]) -> Any:
        # plain values let SQLAlchemy bind them with the other side's type
        if isinstance(expr, Literal):
            return expr.value
        return self.expression(expr, columns)

    def _call(self, call: Call, columns: dict[str, ColumnElement]) -> ColumnElement:
        if not isinstance(call.function, str):
            raise TranslationError(
                f"Python function {call.function_name!r} cannot run in the database; "
                f"collect the rows first and apply it locally"
            )
        translate = FUNCTIONS.get(call.function)
        if translate is None:
            raise TranslationError(
                f"Function {call.function!r} has no SQL translation; "
                f"known functions: {', '.join(sorted(FUNCTIONS))}"
            )
        return translate(*[self.expression(a, columns) for a in call.args])

    def aggregate(self, aggregate: Agg, columns: dict[str, ColumnElement]) -> ColumnElement:
        """Translate one aggregate output."""
        if aggregate.argument is None:
            return func.count()
        argument = self.expression(aggregate.argument, columns)
        if aggregate.function == "count":
            return func.count(argument)
        if aggregate.function == "n_distinct":
            return func.count(distinct(argument))
        if aggregate.function == "sum":
            return func.sum(argument)
        if aggregate.function == "mean":
            return func.avg(argument)
        if aggregate.function == "min":
            return func.min(argument)
        if aggregate.function == "max":
            return func.max(argument)
        if aggregate.function == "sd":
            return self.adapter.stddev(argument)
        raise TranslationError(f"Aggregate {aggregate.function!r} has no SQL translation")

    def sort_key(self, key: SortKey, columns: dict[str, ColumnElement]) -> ColumnElement:
        expr = self.expression(key.expr, columns)
        return expr.desc() if key.descending else expr.asc()


def translate(plan: Plan, limit: Optional[int] = None) -> Select:
    """Translate a plan for the backing store of its connection."""
    return PlanTranslator(plan.handle.adapter).to_select(plan, limit)
