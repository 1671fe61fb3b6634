"""Standard, parameterized queries against the KRSP schema.

Each entry builds a plan from a handle and validated parameters, so users
get the commonly needed subsets without writing SQL:

    >>> from krsp import CATALOG, connect
    >>> with connect(profile="krsp") as con:
    ...     result = CATALOG.run(con, "litters_missing_breeding_code", year=2015)
"""

import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from krsp.core.connection import ConnectionHandle
from krsp.core.executor import RowLimit, collect
from krsp.core.expressions import col, concat, count, mean
from krsp.core.expressions import year as year_of
from krsp.core.plan import Plan
from krsp.core.tables import table
from krsp.exceptions import CatalogError
from krsp.models.result import MaterializedTable

logger = logging.getLogger(__name__)


class QueryParameter(BaseModel):
    """Typed parameter of a standard query."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., description="Parameter name")
    value_type: type = Field(..., description="Accepted Python type")
    description: str = Field(default="", description="What the parameter selects")

    def check(self, query: str, value: Any) -> None:
        # bool is an int subclass but never a valid year or id
        if isinstance(value, bool) and self.value_type is not bool:
            valid = False
        else:
            valid = isinstance(value, self.value_type)
        if not valid:
            raise CatalogError(
                f"Parameter {self.name!r} of {query!r} must be "
                f"{self.value_type.__name__}, got {type(value).__name__} {value!r}"
            )


class StandardQuery(BaseModel):
    """Named query template: parameter list plus a plan builder."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., description="Catalog name")
    description: str = Field(..., description="What the query returns")
    parameters: list[QueryParameter] = Field(default_factory=list)
    builder: Callable[..., Plan] = Field(..., description="(handle, **params) -> Plan")

    @property
    def parameter_names(self) -> list[str]:
        return [p.name for p in self.parameters]

    def validate_params(self, params: dict[str, Any]) -> None:
        """
        Check that params are exactly the declared ones, with the right types.

        Raises:
            CatalogError: On missing, unknown or mistyped parameters
        """
        unknown = [name for name in params if name not in self.parameter_names]
        if unknown:
            raise CatalogError(
                f"Unknown parameter(s) for {self.name!r}: {', '.join(unknown)}. "
                f"Expected: {', '.join(self.parameter_names) or 'none'}"
            )
        missing = [name for name in self.parameter_names if name not in params]
        if missing:
            raise CatalogError(
                f"Missing parameter(s) for {self.name!r}: {', '.join(missing)}"
            )
        for parameter in self.parameters:
            parameter.check(self.name, params[parameter.name])

    def build(self, handle: ConnectionHandle, **params: Any) -> Plan:
        """Validate params and build the plan."""
        self.validate_params(params)
        return self.builder(handle, **params)


class QueryCatalog:
    """Registry of standard queries by name."""

    def __init__(self) -> None:
        self._queries: dict[str, StandardQuery] = {}

    def register(self, query: StandardQuery) -> StandardQuery:
        """
        Add a query to the catalog.

        Raises:
            CatalogError: If the name is already registered
        """
        if query.name in self._queries:
            raise CatalogError(f"Standard query {query.name!r} is already registered")
        self._queries[query.name] = query
        return query

    def query(
        self,
        name: str,
        description: str,
        parameters: Optional[list[QueryParameter]] = None,
    ) -> Callable[[Callable[..., Plan]], Callable[..., Plan]]:
        """Decorator registering a plan builder under ``name``."""

        def decorator(builder: Callable[..., Plan]) -> Callable[..., Plan]:
            self.register(
                StandardQuery(
                    name=name,
                    description=description,
                    parameters=parameters or [],
                    builder=builder,
                )
            )
            return builder

        return decorator

    def get(self, name: str) -> StandardQuery:
        """
        Look up a query by name.

        Raises:
            CatalogError: If no query has that name
        """
        try:
            return self._queries[name]
        except KeyError:
            raise CatalogError(
                f"Unknown standard query {name!r}; available: {', '.join(self.names())}"
            ) from None

    def names(self) -> list[str]:
        """Sorted names of all registered queries."""
        return sorted(self._queries)

    def plan(self, handle: ConnectionHandle, name: str, **params: Any) -> Plan:
        """Build the plan of a standard query without running it."""
        return self.get(name).build(handle, **params)

    def run(
        self,
        handle: ConnectionHandle,
        name: str,
        row_limit: RowLimit = None,
        **params: Any,
    ) -> MaterializedTable:
        """Build and collect a standard query."""
        plan = self.plan(handle, name, **params)
        logger.info(f"Running standard query {name} with {params}")
        return collect(plan, row_limit)

    def __contains__(self, name: object) -> bool:
        return name in self._queries

    def __len__(self) -> int:
        return len(self._queries)


CATALOG = QueryCatalog()

_YEAR = QueryParameter(name="year", value_type=int, description="Study year")


@CATALOG.query(
    "litters_missing_breeding_code",
    "Litters of a year whose breeding status (br) was never recorded, with "
    "the mother's colours, tags and trap location, by grid and trap date",
    [_YEAR],
)
def litters_missing_breeding_code(handle: ConnectionHandle, year: int) -> Plan:
    return (
        table(handle, "litter")
        .join(table(handle, "squirrel"), "inner", on=[("squirrel_id", "id")])
        .filter(col("br").is_null(), col("yr") == year)
        .sort("grid", "trap_date")
        .mutate(
            colors=concat(col("colorlft"), "/", col("colorrt")),
            tags=concat(col("taglft"), "/", col("tagrt")),
            location=concat(col("locx"), "/", col("locy")),
        )
        .select("grid", "squirrel_id", "colors", "tags", "location", "trap_date")
        .rename({"squirrel_id": "id"})
    )


@CATALOG.query(
    "trapping_history",
    "All trapping records of one squirrel, newest first",
    [QueryParameter(name="squirrel_id", value_type=int, description="Squirrel id")],
)
def trapping_history(handle: ConnectionHandle, squirrel_id: int) -> Plan:
    return (
        table(handle, "trapping")
        .filter(col("squirrel_id") == squirrel_id)
        .sort(col("date").desc())
        .select("id", "date", "gr", "LocX", "LocY", "wgt", "ft")
    )


@CATALOG.query(
    "census_for_grid",
    "Census records of a grid in a year, with the squirrels' tags and colours",
    [_YEAR, QueryParameter(name="grid", value_type=str, description="Grid code, e.g. KL")],
)
def census_for_grid(handle: ConnectionHandle, year: int, grid: str) -> Plan:
    squirrels = table(handle, "squirrel").select(
        "id", "taglft", "tagrt", "colorlft", "colorrt", "sex"
    )
    return (
        table(handle, "census")
        .filter(col("gr") == grid, year_of("census_date") == year)
        .join(squirrels, "left", on=[("squirrel_id", "id")])
        .sort("reflo", "squirrel_id")
        .select(
            "squirrel_id",
            "census_date",
            "reflo",
            "sq_fate",
            "taglft",
            "tagrt",
            "colorlft",
            "colorrt",
            "sex",
        )
    )


@CATALOG.query(
    "juveniles_for_year",
    "Juveniles born in a year, with their litter's grid, birth date and mother",
    [_YEAR],
)
def juveniles_for_year(handle: ConnectionHandle, year: int) -> Plan:
    litters = (
        table(handle, "litter")
        .select("id", "squirrel_id", "yr", "grid", "fieldBDate")
        .rename({"squirrel_id": "dam_id"})
    )
    return (
        table(handle, "juvenile")
        .join(litters, "inner", on=[("litter_id", "id")])
        .filter(col("yr") == year)
        .sort("grid", "litter_id", "squirrel_id")
        .select(
            "litter_id",
            "squirrel_id",
            "sex",
            "weight",
            "tagwt",
            "dam_id",
            "grid",
            "fieldBDate",
        )
    )


@CATALOG.query(
    "litter_summary",
    "Number of litters and mean litter size per grid for a year",
    [_YEAR],
)
def litter_summary(handle: ConnectionHandle, year: int) -> Plan:
    return (
        table(handle, "litter")
        .filter(col("yr") == year)
        .group_by("grid")
        .aggregate(litters=count(), mean_size=mean("ln"))
        .sort("grid")
    )


@CATALOG.query(
    "behaviour_counts",
    "Behaviour observations per grid and behaviour code for a year",
    [_YEAR],
)
def behaviour_counts(handle: ConnectionHandle, year: int) -> Plan:
    return (
        table(handle, "behaviour")
        .filter(year_of("date") == year)
        .group_by("grid", "behaviour")
        .aggregate(observations=count())
        .sort("grid", "behaviour")
    )
