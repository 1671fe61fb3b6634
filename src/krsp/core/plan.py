"""Immutable, lazily executed query plans.

A plan describes a retrieval without running it. Every operation returns a
new plan and checks column names, join keys and aggregate functions right
away, so mistakes surface while the plan is built rather than when rows are
requested. Nothing touches the database until ``collect``.

    >>> litters = table(con, "litter")
    >>> plan = (
    ...     litters.filter(col("yr") == 2015, col("br").is_null())
    ...     .sort("grid", col("fieldBDate").desc())
    ...     .select("id", "grid", "fieldBDate")
    ... )
    >>> result = plan.collect()
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence, Union

from krsp.core.connection import ConnectionHandle
from krsp.core.expressions import (
    Agg,
    Column,
    Expr,
    SortKey,
    and_,
    as_column,
    as_expr,
)
from krsp.core.tables import TableRef
from krsp.exceptions import (
    AmbiguousJoinError,
    ColumnError,
    PlanError,
    UnsupportedAggregateError,
)

if TYPE_CHECKING:
    from krsp.models.result import MaterializedTable

logger = logging.getLogger(__name__)

JOIN_KINDS = ("inner", "left", "right", "full")

# Aggregates with a SQL translation; quantiles and medians have none in MySQL
SUPPORTED_AGGREGATES = frozenset(
    {"count", "n_distinct", "sum", "mean", "min", "max", "sd"}
)

ColumnSpec = Union[str, Column]
JoinOn = Union[str, Sequence[Union[str, tuple[str, str]]], Mapping[str, str], None]


class PlanNode:
    """One operation of a plan."""

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True, eq=False)
class Source(PlanNode):
    table: TableRef

    def describe(self) -> str:
        return f"table({self.table.qualified_name})"


@dataclass(frozen=True, eq=False)
class SelectNode(PlanNode):
    parent: "Plan"
    columns: tuple[str, ...]

    def describe(self) -> str:
        return f"select({', '.join(self.columns)})"


@dataclass(frozen=True, eq=False)
class FilterNode(PlanNode):
    parent: "Plan"
    predicate: Expr

    def describe(self) -> str:
        return f"filter({self.predicate!r})"


@dataclass(frozen=True, eq=False)
class JoinNode(PlanNode):
    left: "Plan"
    right: "Plan"
    kind: str
    keys: tuple[tuple[str, str], ...]
    left_output: tuple[tuple[str, str], ...]
    right_output: tuple[tuple[str, str], ...]

    @property
    def parent(self) -> "Plan":
        return self.left

    def describe(self) -> str:
        keys = ", ".join(l if l == r else f"{l} = {r}" for l, r in self.keys)
        return f"{self.kind}_join({self.right.source_name}, by: {keys})"


@dataclass(frozen=True, eq=False)
class GroupByNode(PlanNode):
    parent: "Plan"
    keys: tuple[str, ...]

    def describe(self) -> str:
        return f"group_by({', '.join(self.keys)})"


@dataclass(frozen=True, eq=False)
class AggregateNode(PlanNode):
    parent: "Plan"
    keys: tuple[str, ...]
    outputs: tuple[tuple[str, Agg], ...]

    def describe(self) -> str:
        outputs = ", ".join(f"{name} = {agg!r}" for name, agg in self.outputs)
        return f"aggregate({outputs})"


@dataclass(frozen=True, eq=False)
class SortNode(PlanNode):
    parent: "Plan"
    keys: tuple[SortKey, ...]

    def describe(self) -> str:
        return f"sort({', '.join(repr(k) for k in self.keys)})"


@dataclass(frozen=True, eq=False)
class RenameNode(PlanNode):
    parent: "Plan"
    mapping: tuple[tuple[str, str], ...]

    def describe(self) -> str:
        pairs = ", ".join(f"{old} -> {new}" for old, new in self.mapping)
        return f"rename({pairs})"


@dataclass(frozen=True, eq=False)
class MutateNode(PlanNode):
    parent: "Plan"
    outputs: tuple[tuple[str, Expr], ...]

    def describe(self) -> str:
        outputs = ", ".join(f"{name} = {expr!r}" for name, expr in self.outputs)
        return f"mutate({outputs})"


@dataclass(frozen=True, eq=False)
class HeadNode(PlanNode):
    parent: "Plan"
    n: int

    def describe(self) -> str:
        return f"head({self.n})"


@dataclass(frozen=True, eq=False, repr=False)
class Plan:
    """
    Deferred query against one connection.

    Attributes:
        node: Last operation of the plan
        columns: Output column names, in order
        handle: Connection the plan will run on
        group_keys: Pending grouping, consumed by ``aggregate``
    """

    node: PlanNode
    columns: tuple[str, ...]
    handle: ConnectionHandle
    group_keys: tuple[str, ...] = ()

    @classmethod
    def from_table(cls, table: TableRef) -> "Plan":
        return cls(Source(table), table.columns, table.handle)

    @property
    def source_name(self) -> str:
        """Name of the table at the root of the main chain."""
        node = self.node
        while not isinstance(node, Source):
            node = node.parent.node  # type: ignore[attr-defined]
        return node.table.name

    @property
    def is_grouped(self) -> bool:
        return bool(self.group_keys)

    def operations(self) -> list[PlanNode]:
        """Operations of the main chain, source first."""
        nodes = []
        node = self.node
        while not isinstance(node, Source):
            nodes.append(node)
            node = node.parent.node  # type: ignore[attr-defined]
        nodes.append(node)
        return list(reversed(nodes))

    # Composition

    def select(self, *columns: Union[ColumnSpec, Iterable[ColumnSpec]]) -> "Plan":
        """Keep the given columns, in the given order."""
        self._require_ungrouped("select")
        names = tuple(_column_name(c) for c in _flatten(columns))
        if not names:
            raise ColumnError("select() needs at least one column")
        self._check_columns(names, "select")
        _check_unique(names, "select")
        return Plan(SelectNode(self, names), names, self.handle)

    def filter(self, *predicates: Expr) -> "Plan":
        """
        Keep rows for which every predicate is true.

        On a grouped plan the filter applies to rows before aggregation.
        """
        if not predicates:
            raise PlanError("filter() needs at least one predicate")
        for predicate in predicates:
            if not isinstance(predicate, Expr):
                raise TypeError(
                    f"filter() takes expressions such as col('yr') == 2015, "
                    f"got {predicate!r}"
                )
        predicate = and_(*predicates)
        self._check_columns(predicate.columns(), "filter")
        return Plan(
            FilterNode(self, predicate), self.columns, self.handle, self.group_keys
        )

    def join(
        self,
        right: Union["Plan", TableRef],
        kind: str = "inner",
        on: JoinOn = None,
        suffixes: tuple[str, str] = ("_x", "_y"),
    ) -> "Plan":
        """
        Join with another plan or table of the same connection.

        Args:
            right: Right-hand plan or table
            kind: inner, left, right or full
            on: Join keys: a column name, a list of names or (left, right)
                pairs, or a {left: right} mapping. When omitted, all column
                names the two sides share are used.
            suffixes: Appended to non-key columns present on both sides

        Returns:
            Plan with the left columns followed by the right non-key columns

        Raises:
            AmbiguousJoinError: If ``on`` is omitted and no column is shared
        """
        if isinstance(right, TableRef):
            right = right.plan()
        if not isinstance(right, Plan):
            raise TypeError(f"Can only join plans or tables, got {right!r}")
        self._require_ungrouped("join")
        right._require_ungrouped("join")
        if right.handle is not self.handle:
            raise PlanError("Cannot join plans from different connections")

        kind = kind.lower()
        if kind not in JOIN_KINDS:
            raise PlanError(
                f"Unknown join kind {kind!r}; expected one of {', '.join(JOIN_KINDS)}"
            )

        keys = self._join_keys(right, on)
        left_output, right_output = _join_output(
            self.columns, right.columns, keys, suffixes
        )
        columns = tuple(out for _, out in left_output) + tuple(
            out for _, out in right_output
        )
        _check_unique(columns, "join")
        node = JoinNode(self, right, kind, keys, left_output, right_output)
        return Plan(node, columns, self.handle)

    def group_by(self, *keys: Union[ColumnSpec, Iterable[ColumnSpec]]) -> "Plan":
        """Group rows by the given columns; follow with ``aggregate``."""
        names = tuple(_column_name(k) for k in _flatten(keys))
        if not names:
            raise PlanError("group_by() needs at least one column")
        self._check_columns(names, "group_by")
        _check_unique(names, "group_by")
        return Plan(GroupByNode(self, names), self.columns, self.handle, names)

    def aggregate(
        self,
        outputs: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> "Plan":
        """
        Summarise each group (or the whole plan) into one row.

        Outputs map a name to an ``Agg`` (``count()``, ``mean("ln")``...), a
        ``(function, input)`` pair, or a bare function name for ``count``.

        Raises:
            UnsupportedAggregateError: For functions such as median or
                quantile, which have no SQL translation
        """
        merged: dict[str, Any] = dict(outputs or {})
        merged.update(kwargs)
        if not merged:
            raise PlanError("aggregate() needs at least one output")

        aggregates = []
        for name, spec in merged.items():
            aggregate = _as_aggregate(name, spec)
            self._check_columns(aggregate.columns(), f"aggregate({name})")
            aggregates.append((name, aggregate))

        columns = self.group_keys + tuple(name for name, _ in aggregates)
        _check_unique(columns, "aggregate")
        node = AggregateNode(self, self.group_keys, tuple(aggregates))
        return Plan(node, columns, self.handle)

    def ungroup(self) -> "Plan":
        """Drop pending grouping."""
        return Plan(self.node, self.columns, self.handle)

    def sort(self, *keys: Any) -> "Plan":
        """
        Order rows by the keys, primary key first.

        Keys are column names (ascending), ``(name, "asc" | "desc")`` pairs or
        ``col(...).asc()`` / ``col(...).desc()``. Replaces earlier ordering.
        """
        self._require_ungrouped("sort")
        sort_keys = tuple(_as_sort_key(k) for k in _flatten(keys, keep_tuples=True))
        if not sort_keys:
            raise PlanError("sort() needs at least one key")
        for key in sort_keys:
            self._check_columns(key.columns(), "sort")
        return Plan(SortNode(self, sort_keys), self.columns, self.handle)

    def rename(self, mapping: Optional[Mapping[str, str]] = None) -> "Plan":
        """Rename columns, given as ``{old: new}``."""
        self._require_ungrouped("rename")
        if not mapping:
            raise PlanError("rename() needs at least one column")
        self._check_columns(mapping.keys(), "rename")
        columns = tuple(mapping.get(name, name) for name in self.columns)
        _check_unique(columns, "rename")
        return Plan(
            RenameNode(self, tuple(mapping.items())), columns, self.handle
        )

    def mutate(self, **outputs: Any) -> "Plan":
        """
        Add computed columns, or replace existing ones.

        Outputs are evaluated in order, so later ones may use earlier ones.
        """
        self._require_ungrouped("mutate")
        if not outputs:
            raise PlanError("mutate() needs at least one output")

        columns = list(self.columns)
        computed = []
        for name, value in outputs.items():
            expr = as_expr(value)
            missing = [c for c in expr.columns() if c not in columns]
            if missing:
                raise ColumnError(_unknown_columns_message(missing, columns, "mutate"))
            if name not in columns:
                columns.append(name)
            computed.append((name, expr))

        return Plan(MutateNode(self, tuple(computed)), tuple(columns), self.handle)

    def head(self, n: int = 6) -> "Plan":
        """Keep at most the first ``n`` rows."""
        self._require_ungrouped("head")
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise PlanError(f"head() needs a non-negative integer, got {n!r}")
        return Plan(HeadNode(self, n), self.columns, self.handle)

    # Execution

    def collect(self, row_limit: Any = None) -> "MaterializedTable":
        """Run the plan; see ``krsp.core.executor.collect``."""
        from krsp.core.executor import collect

        return collect(self, row_limit)

    def show_query(self) -> str:
        """SQL this plan translates to."""
        from krsp.core.executor import show_query

        return show_query(self)

    # Helpers

    def _require_ungrouped(self, operation: str) -> None:
        if self.group_keys:
            raise PlanError(
                f"{operation}() is not allowed on a plan grouped by "
                f"{', '.join(self.group_keys)}; call aggregate() or ungroup() first"
            )

    def _check_columns(self, names: Iterable[str], operation: str) -> None:
        missing = [name for name in names if name not in self.columns]
        if missing:
            raise ColumnError(_unknown_columns_message(missing, self.columns, operation))

    def _join_keys(self, right: "Plan", on: JoinOn) -> tuple[tuple[str, str], ...]:
        if on is None:
            shared = set(right.columns)
            common = [name for name in self.columns if name in shared]
            if not common:
                raise AmbiguousJoinError(
                    f"No common column names between {self.source_name} "
                    f"({', '.join(self.columns)}) and {right.source_name} "
                    f"({', '.join(right.columns)}); pass on= explicitly"
                )
            logger.info(f"Joining {self.source_name} and {right.source_name} by {common}")
            return tuple((name, name) for name in common)

        if isinstance(on, str):
            pairs = [(on, on)]
        elif isinstance(on, Mapping):
            pairs = list(on.items())
        else:
            pairs = []
            for item in on:
                if isinstance(item, str):
                    pairs.append((item, item))
                elif isinstance(item, (tuple, list)) and len(item) == 2:
                    pairs.append((item[0], item[1]))
                else:
                    raise PlanError(f"Invalid join key {item!r}")

        if not pairs:
            raise AmbiguousJoinError("Empty join key list")
        self._check_columns([l for l, _ in pairs], "join")
        right._check_columns([r for _, r in pairs], "join")
        return tuple(pairs)

    def __repr__(self) -> str:
        lines = [f"<Plan on {self.handle.dialect}:{self.handle.schema}>"]
        for node in self.operations():
            lines.append(f"  {node.describe()}")
            if isinstance(node, JoinNode):
                for inner in node.right.operations():
                    lines.append(f"      {inner.describe()}")
        lines.append(f"  -> [{', '.join(self.columns)}]")
        return "\n".join(lines)


def _flatten(items: Iterable[Any], keep_tuples: bool = False) -> list[Any]:
    """Accept both f("a", "b") and f(["a", "b"])."""
    flat: list[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)) and not (keep_tuples and isinstance(item, tuple)):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def _column_name(value: ColumnSpec) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Column):
        return value.name
    raise TypeError(
        f"Expected a column name, got {value!r}; use mutate() for computed columns"
    )


def _check_unique(names: Sequence[str], operation: str) -> None:
    seen: set[str] = set()
    duplicates = []
    for name in names:
        if name in seen:
            duplicates.append(name)
        seen.add(name)
    if duplicates:
        raise ColumnError(
            f"{operation}() would produce duplicate columns: {', '.join(duplicates)}"
        )


def _unknown_columns_message(
    missing: Sequence[str], available: Sequence[str], operation: str
) -> str:
    message = f"Unknown column(s) in {operation}(): {', '.join(missing)}"
    hints = []
    for name in missing:
        matches = [c for c in available if c.lower() == name.lower()]
        if matches:
            hints.append(f"{name!r} -> {matches[0]!r}")
    if hints:
        message += f" (names are case-sensitive: {'; '.join(hints)})"
    message += f". Available: {', '.join(available)}"
    return message


def _join_output(
    left: Sequence[str],
    right: Sequence[str],
    keys: Sequence[tuple[str, str]],
    suffixes: tuple[str, str],
) -> tuple[tuple[tuple[str, str], ...], tuple[tuple[str, str], ...]]:
    """Map source columns of each side to output names."""
    right_keys = {r for _, r in keys}
    right_rest = [name for name in right if name not in right_keys]
    clashes = set(left) & set(right_rest)

    left_output = tuple(
        (name, name + suffixes[0] if name in clashes else name) for name in left
    )
    right_output = tuple(
        (name, name + suffixes[1] if name in clashes else name) for name in right_rest
    )
    return left_output, right_output


def _as_aggregate(name: str, spec: Any) -> Agg:
    if isinstance(spec, Agg):
        aggregate = spec
    elif isinstance(spec, str):
        aggregate = Agg(spec)
    elif isinstance(spec, (tuple, list)) and len(spec) in (1, 2):
        argument = spec[1] if len(spec) == 2 else None
        aggregate = Agg(spec[0], None if argument is None else as_column(argument))
    else:
        raise PlanError(f"Invalid aggregate for {name!r}: {spec!r}")

    if aggregate.function not in SUPPORTED_AGGREGATES:
        raise UnsupportedAggregateError(
            f"Aggregate {aggregate.function!r} for {name!r} has no SQL translation; "
            f"supported: {', '.join(sorted(SUPPORTED_AGGREGATES))}. "
            f"Collect the rows and compute it locally instead"
        )
    if aggregate.argument is None and aggregate.function != "count":
        raise PlanError(f"Aggregate {aggregate.function!r} for {name!r} needs an input")
    return aggregate


def _as_sort_key(value: Any) -> SortKey:
    if isinstance(value, SortKey):
        return value
    if isinstance(value, tuple):
        if len(value) != 2:
            raise PlanError(f"Invalid sort key {value!r}")
        column, direction = value
        direction = str(direction).lower()
        if direction not in ("asc", "ascending", "desc", "descending"):
            raise PlanError(f"Invalid sort direction {direction!r}")
        return SortKey(as_column(column), descending=direction.startswith("desc"))
    return SortKey(as_column(value))
