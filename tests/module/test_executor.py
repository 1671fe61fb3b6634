"""Module tests for plan materialization and literal SQL execution

Validates:
- Output schema equals the plan's columns
- Row cap and truncation flag
- NULL predicates, joins, grouping and ordering
- Deferred translation failures
- Read-only enforcement for literal SQL
"""

import datetime
import logging

import pytest

from krsp import (
    UNBOUNDED,
    ConnectionHandle,
    ExecutionError,
    TranslationError,
    WriteRejectedError,
    col,
    collect,
    concat,
    count,
    execute_read_only,
    fn,
    mean,
    n_distinct,
    sd,
    show_query,
    table,
)
from krsp.adapters import SQLiteAdapter

pytestmark = pytest.mark.sqlite


class TestCollectBasic:
    """Collecting simple plans."""

    def test_output_schema_matches_plan(self, handle: ConnectionHandle):
        plans = [
            table(handle, "litter").plan(),
            table(handle, "litter").select("grid", "id"),
            table(handle, "litter").rename({"yr": "year"}),
            table(handle, "litter").group_by("grid").aggregate(n=count()),
            table(handle, "juvenile").join(table(handle, "litter"), on={"litter_id": "id"}),
            table(handle, "litter").select("id", "ln").mutate(double=col("ln") * 2),
        ]
        for plan in plans:
            result = collect(plan)
            assert tuple(result.columns) == plan.columns
            assert all(tuple(row) == plan.columns for row in result.rows)

    def test_result_metadata(self, handle: ConnectionHandle):
        result = table(handle, "squirrel").select("id", "trap_date").collect()
        assert result.row_count == 4
        assert result.row_limit == 100_000
        assert not result.truncated
        assert result.warning is None
        assert result.execution_time_ms is not None
        assert result.column_types["id"] == "INTEGER"
        assert "SELECT" in result.query

    def test_native_values(self, handle: ConnectionHandle):
        result = table(handle, "squirrel").filter(col("id") == 1).collect()
        assert result.rows[0]["trap_date"] == datetime.date(2015, 4, 2)

    def test_collect_is_idempotent(self, handle: ConnectionHandle):
        plan = table(handle, "trapping").filter(col("gr") == "KL").sort("id")
        assert plan.collect().rows == plan.collect().rows

    def test_filter_combines_predicates(self, handle: ConnectionHandle):
        result = (
            table(handle, "trapping")
            .filter(col("squirrel_id") == 1, col("wgt") > 245)
            .sort("id")
            .collect()
        )
        assert result.get_column_values("id") == [1, 2]

    def test_filter_operators(self, handle: ConnectionHandle):
        trapping = table(handle, "trapping")
        assert trapping.filter(col("gr").isin(["SU"])).collect().row_count == 1
        assert trapping.filter(col("wgt").between(240, 250)).collect().row_count == 2
        assert trapping.filter(col("LocX").like("A%")).collect().row_count == 3
        assert trapping.filter(~(col("gr") == "KL")).collect().row_count == 1
        assert (
            trapping.filter((col("ft") == 2) | (col("gr") == "SU")).collect().row_count == 2
        )


class TestNullSemantics:
    """NULL tests are never equalities with NULL."""

    def test_is_null(self, handle: ConnectionHandle):
        result = table(handle, "litter").filter(col("br").is_null()).sort("id").collect()
        assert result.get_column_values("id") == [1, 3, 4]

    def test_equals_none(self, handle: ConnectionHandle):
        result = table(handle, "litter").filter(col("br") == None).collect()  # noqa: E711
        assert result.row_count == 3

    def test_not_null(self, handle: ConnectionHandle):
        result = table(handle, "litter").filter(col("br").not_null()).collect()
        assert result.get_column_values("id") == [2]

    def test_sql_uses_is_null(self, handle: ConnectionHandle):
        sql = show_query(table(handle, "litter").filter(col("br") == None))  # noqa: E711
        assert "IS NULL" in sql


class TestRowLimit:
    """Row cap policy."""

    def test_truncated(self, handle: ConnectionHandle, caplog):
        with caplog.at_level(logging.WARNING, logger="krsp"):
            result = table(handle, "trapping").sort("id").collect(row_limit=2)
        assert result.row_count == 2
        assert result.truncated
        assert result.row_limit == 2
        assert result.get_column_values("id") == [1, 2]
        assert "truncated" in result.warning
        assert any("truncated" in r.getMessage() for r in caplog.records)

    def test_exact_limit_not_truncated(self, handle: ConnectionHandle):
        result = table(handle, "trapping").collect(row_limit=4)
        assert result.row_count == 4
        assert not result.truncated
        assert result.warning is None

    def test_handle_default_limit(self, krsp_db_url: str):
        from krsp import connect

        with connect(url=krsp_db_url, max_rows=3) as handle:
            result = table(handle, "trapping").collect()
        assert result.row_count == 3
        assert result.truncated

    def test_unbounded(self, krsp_db_url: str):
        from krsp import connect

        with connect(url=krsp_db_url, max_rows=1) as handle:
            result = table(handle, "trapping").collect(row_limit=UNBOUNDED)
        assert result.row_count == 4
        assert not result.truncated
        assert result.row_limit is None

    def test_zero_limit(self, handle: ConnectionHandle):
        result = table(handle, "trapping").collect(row_limit=0)
        assert result.row_count == 0
        assert result.truncated

    def test_head_below_limit(self, handle: ConnectionHandle):
        result = table(handle, "trapping").head(2).collect(row_limit=3)
        assert result.row_count == 2
        assert not result.truncated

    def test_head_above_limit(self, handle: ConnectionHandle):
        result = table(handle, "trapping").head(4).collect(row_limit=3)
        assert result.row_count == 3
        assert result.truncated

    def test_limit_pushed_down(self, handle: ConnectionHandle):
        result = table(handle, "trapping").collect(row_limit=2)
        assert "LIMIT 3" in result.query

    @pytest.mark.parametrize("row_limit, error", [(-1, ValueError), ("10", TypeError)])
    def test_invalid_limit(self, handle: ConnectionHandle, row_limit, error):
        with pytest.raises(error):
            table(handle, "trapping").collect(row_limit=row_limit)


class TestJoins:
    """Join kinds."""

    def test_inner(self, handle: ConnectionHandle):
        result = (
            table(handle, "litter")
            .join(table(handle, "squirrel"), "inner", on=[("squirrel_id", "id")])
            .sort("id")
            .collect()
        )
        assert result.get_column_values("id") == [1, 2, 3, 4]
        assert result.get_column_values("taglft") == ["M1001", "M2001", "M3001", "M1001"]

    def test_left(self, handle: ConnectionHandle):
        squirrels = table(handle, "squirrel").select("id", "taglft")
        result = (
            table(handle, "census")
            .join(squirrels, "left", on=[("squirrel_id", "id")])
            .sort("id")
            .collect()
        )
        assert result.row_count == 5
        assert result.rows[4]["squirrel_id"] == 99
        assert result.rows[4]["taglft"] is None

    def test_right_keeps_unmatched_right_rows(self, handle: ConnectionHandle):
        litters = table(handle, "litter").select("squirrel_id", "yr")
        squirrels = table(handle, "squirrel").select("id", "sex")
        result = (
            litters.join(squirrels, "right", on=[("squirrel_id", "id")])
            .sort("squirrel_id", "yr")
            .collect()
        )
        assert result.columns == ["squirrel_id", "yr", "sex"]
        assert result.row_count == 5
        # squirrel 4 has no litter; its key comes from the right side
        assert result.rows[-1] == {"squirrel_id": 4, "yr": None, "sex": "M"}

    @pytest.mark.skipif(
        not SQLiteAdapter().capabilities.full_join,
        reason="SQLite build lacks FULL OUTER JOIN",
    )
    def test_full(self, handle: ConnectionHandle):
        census = table(handle, "census").select("squirrel_id", "reflo")
        squirrels = table(handle, "squirrel").select("id", "sex")
        result = census.join(squirrels, "full", on=[("squirrel_id", "id")]).collect()
        keys = sorted(result.get_column_values("squirrel_id"))
        assert keys == [1, 1, 2, 3, 4, 99]

    def test_join_with_filtered_side(self, handle: ConnectionHandle):
        litters_2015 = table(handle, "litter").filter(col("yr") == 2015).select("id", "grid")
        result = (
            table(handle, "juvenile")
            .join(litters_2015, on={"litter_id": "id"})
            .sort("id")
            .collect()
        )
        assert result.get_column_values("id") == [1, 2, 3]

    def test_self_join(self, handle: ConnectionHandle):
        mothers = table(handle, "squirrel").select("id", "taglft").rename({"taglft": "dam_tag"})
        result = (
            table(handle, "squirrel")
            .select("id", "dam_id")
            .join(mothers, on={"dam_id": "id"})
            .collect()
        )
        assert result.rows == [{"id": 4, "dam_id": 1, "dam_tag": "M1001"}]


class TestAggregation:
    """Grouped and whole-table aggregates."""

    def test_group_counts(self, handle: ConnectionHandle):
        result = (
            table(handle, "litter")
            .filter(col("yr") == 2015)
            .group_by("grid")
            .aggregate(litters=count(), mean_size=mean("ln"), largest=("max", "ln"))
            .sort("grid")
            .collect()
        )
        assert result.rows == [
            {"grid": "KL", "litters": 2, "mean_size": 3.5, "largest": 4},
            {"grid": "SU", "litters": 1, "mean_size": 2.0, "largest": 2},
        ]

    def test_aggregate_without_grouping_is_one_row(self, handle: ConnectionHandle):
        result = table(handle, "litter").aggregate(
            n=count(), mothers=n_distinct("squirrel_id"), total=("sum", "ln")
        ).collect()
        assert result.rows == [{"n": 4, "mothers": 3, "total": 11}]

    def test_filter_after_aggregate(self, handle: ConnectionHandle):
        result = (
            table(handle, "litter")
            .group_by("grid")
            .aggregate(n=count())
            .filter(col("n") > 1)
            .collect()
        )
        assert result.rows == [{"grid": "KL", "n": 3}]

    def test_count_ignores_nulls(self, handle: ConnectionHandle):
        result = table(handle, "litter").aggregate(with_br=count("br")).collect()
        assert result.rows == [{"with_br": 1}]

    def test_sd_untranslatable_on_sqlite(self, handle: ConnectionHandle):
        plan = table(handle, "litter").group_by("grid").aggregate(spread=sd("ln"))
        with pytest.raises(TranslationError) as exc_info:
            plan.collect()
        assert "standard deviation" in str(exc_info.value)
        assert exc_info.value.operation.startswith("aggregate(")


class TestOrderingAndShape:
    """Sort, head, mutate and rename."""

    def test_sort_descending(self, handle: ConnectionHandle):
        result = table(handle, "trapping").sort(col("date").desc()).collect()
        assert result.get_column_values("id") == [2, 4, 1, 3]

    def test_sort_multiple_keys(self, handle: ConnectionHandle):
        result = table(handle, "trapping").sort("gr", ("wgt", "desc")).collect()
        assert result.get_column_values("id") == [2, 1, 3, 4]

    def test_sort_replaces_previous(self, handle: ConnectionHandle):
        result = table(handle, "trapping").sort("wgt").sort("id").collect()
        assert result.get_column_values("id") == [1, 2, 3, 4]

    def test_sort_after_head(self, handle: ConnectionHandle):
        result = table(handle, "trapping").sort("id").head(2).sort(col("id").desc()).collect()
        assert result.get_column_values("id") == [2, 1]

    def test_mutate(self, handle: ConnectionHandle):
        result = (
            table(handle, "squirrel")
            .filter(col("id") == 1)
            .mutate(colors=concat(col("colorlft"), "/", col("colorrt")), age=2015 - col("byear"))
            .select("colors", "age")
            .collect()
        )
        assert result.rows == [{"colors": "R/B", "age": 3}]

    def test_mutate_functions(self, handle: ConnectionHandle):
        result = (
            table(handle, "census")
            .filter(col("id") == 1)
            .mutate(grid=fn.lower(col("gr")), year=fn.year(col("census_date")))
            .select("grid", "year")
            .collect()
        )
        assert result.rows == [{"grid": "kl", "year": 2015}]

    def test_filter_on_computed_column(self, handle: ConnectionHandle):
        result = (
            table(handle, "trapping")
            .mutate(heavy=col("wgt") >= 250)
            .filter(col("heavy") == True)  # noqa: E712
            .collect()
        )
        assert sorted(result.get_column_values("id")) == [1, 2]

    def test_rename_then_filter(self, handle: ConnectionHandle):
        result = (
            table(handle, "litter")
            .rename({"yr": "year"})
            .filter(col("year") == 2014)
            .collect()
        )
        assert result.get_column_values("id") == [4]


class TestDeferredFailures:
    """Untranslatable operations fail at collect, not at build time."""

    def test_python_callable(self, handle: ConnectionHandle):
        plan = table(handle, "trapping").filter(fn(str.lower, col("gr")) == "kl")
        with pytest.raises(TranslationError, match="cannot run in the database") as exc_info:
            plan.collect()
        assert exc_info.value.operation.startswith("filter(")

    def test_unknown_function(self, handle: ConnectionHandle):
        plan = table(handle, "trapping").mutate(x=fn.soundex(col("gr")))
        with pytest.raises(TranslationError, match="soundex"):
            plan.collect()

    def test_show_query_also_fails(self, handle: ConnectionHandle):
        plan = table(handle, "trapping").mutate(x=fn.soundex(col("gr")))
        with pytest.raises(TranslationError):
            show_query(plan)


class TestExecuteReadOnly:
    """Literal SQL through the read-only guard."""

    def test_select(self, handle: ConnectionHandle):
        result = execute_read_only(handle, "SELECT id, gr FROM trapping ORDER BY id")
        assert result.columns == ["id", "gr"]
        assert result.row_count == 4
        assert result.rows[0] == {"id": 1, "gr": "KL"}

    def test_params(self, handle: ConnectionHandle):
        result = execute_read_only(
            handle,
            "SELECT id FROM trapping WHERE squirrel_id = :sid ORDER BY id",
            params={"sid": 1},
        )
        assert result.get_column_values("id") == [1, 2, 3]

    def test_row_limit(self, handle: ConnectionHandle):
        result = execute_read_only(handle, "SELECT * FROM trapping", row_limit=2)
        assert result.row_count == 2
        assert result.truncated
        assert result.query.endswith("LIMIT 3")

    def test_existing_limit_kept(self, handle: ConnectionHandle):
        result = execute_read_only(handle, "SELECT * FROM trapping LIMIT 1", row_limit=2)
        assert result.query == "SELECT * FROM trapping LIMIT 1"
        assert result.row_count == 1
        assert not result.truncated

    def test_existing_limit_above_cap(self, handle: ConnectionHandle):
        result = execute_read_only(handle, "SELECT * FROM trapping LIMIT 10", row_limit=2)
        assert result.row_count == 2
        assert result.truncated

    def test_bound_limit_kept(self, handle: ConnectionHandle):
        query = "SELECT id FROM trapping ORDER BY id LIMIT :n"
        result = execute_read_only(handle, query, params={"n": 2})
        assert result.query == query
        assert result.get_column_values("id") == [1, 2]
        assert not result.truncated

    def test_semicolon_and_trailing_comment(self, handle: ConnectionHandle):
        result = execute_read_only(handle, "SELECT id FROM squirrel; -- all squirrels", row_limit=2)
        assert result.query == "SELECT id FROM squirrel\nLIMIT 3"
        assert result.row_count == 2
        assert result.truncated

    def test_group_by_count(self, handle: ConnectionHandle):
        result = execute_read_only(handle, "SELECT gr, COUNT(*) FROM squirrel GROUP BY gr;")
        assert result.columns[0] == "gr"
        assert sorted(result.to_tuples()) == [("KL", 3), ("SU", 1)]
        assert not result.truncated

    def test_drop_rejected_without_executing(self, handle: ConnectionHandle):
        with pytest.raises(WriteRejectedError) as exc_info:
            execute_read_only(handle, "DROP TABLE squirrel;")
        assert exc_info.value.query == "DROP TABLE squirrel;"
        assert table(handle, "squirrel").collect().row_count == 4

    def test_with_query(self, handle: ConnectionHandle):
        result = execute_read_only(
            handle,
            "WITH kl AS (SELECT * FROM litter WHERE grid = 'KL') SELECT count(*) AS n FROM kl",
        )
        assert result.rows == [{"n": 3}]

    def test_write_rejected_without_executing(self, handle: ConnectionHandle):
        with pytest.raises(WriteRejectedError):
            execute_read_only(handle, "DELETE FROM trapping")
        assert table(handle, "trapping").collect().row_count == 4

    def test_multiple_statements_rejected(self, handle: ConnectionHandle):
        with pytest.raises(WriteRejectedError):
            execute_read_only(handle, "SELECT 1; DROP TABLE trapping")
        assert "trapping" in handle.list_tables()

    def test_execution_error_carries_query(self, handle: ConnectionHandle):
        with pytest.raises(ExecutionError) as exc_info:
            execute_read_only(handle, "SELECT nonexistent FROM trapping")
        assert "nonexistent" in exc_info.value.query
        assert "Query:" in str(exc_info.value)
