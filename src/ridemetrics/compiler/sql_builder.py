"""SQL text builders for the report shapes.

everything in here is string assembly over already-compiled pieces: a
WhereClause from compiler.filters, a column or bucket expression from
compiler.dimensions, and a list of counters. no values are ever pasted in -
the only literals that reach the sql text come from the fixed enums and
table definitions in this package.

the basic flow for every report:
  1. compile the filters into a WhereClause
  2. pick the counters and the dimension / time bucket expression
  3. assemble select / from / where / group by / order by
  4. hand sql + params to the executor

sqlglot is only used for pretty-printing (show-sql), never for execution.
"""

from dataclasses import dataclass, field
from typing import Any

import sqlglot
from pydantic.alias_generators import to_snake

from ridemetrics.compiler.dimensions import TimeBucket
from ridemetrics.compiler.filters import WhereClause
from ridemetrics.errors import InvalidQueryError
from ridemetrics.models.filters import SortOptions


@dataclass(frozen=True)
class Counter:
    """A funnel counter summed over the filtered rows.

    sumIf(..., col IS NOT NULL) keeps nullable columns from poisoning the sum.
    """

    column: str
    alias: str | None = None

    @property
    def name(self) -> str:
        return self.alias or self.column

    def sql(self) -> str:
        return f"sumIf({self.column}, {self.column} IS NOT NULL) AS {self.name}"


def counters(*names: str, **renamed: str) -> tuple[Counter, ...]:
    """counters("searches", earnings="total_driver_earnings") -> Counter tuple."""
    plain = [Counter(name) for name in names]
    aliased = [Counter(column, alias) for alias, column in renamed.items()]
    return tuple(plain + aliased)


@dataclass
class CompiledQuery:
    """Final sql plus the bound parameters it references."""

    sql: str
    params: dict[str, Any] = field(default_factory=dict)

    def pretty(self, dialect: str = "clickhouse") -> str:
        return format_sql(self.sql, dialect)


def assemble_query(
    select_exprs: list[str],
    from_clause: str,
    where: WhereClause | None = None,
    group_by: list[str] | None = None,
    order_by: list[str] | None = None,
    limit: int | None = None,
) -> str:
    """Assemble the final SQL text.

    plain concatenation - sqlglot can pretty print it afterwards if needed.
    """
    parts = ["SELECT\n  " + ",\n  ".join(select_exprs)]
    parts.append(f"FROM {from_clause}")

    if where is not None and where.sql:
        parts.append(where.sql)

    if group_by:
        parts.append(f"GROUP BY {', '.join(group_by)}")

    if order_by:
        parts.append(f"ORDER BY {', '.join(order_by)}")

    if limit:
        parts.append(f"LIMIT {int(limit)}")

    return "\n".join(parts)


def order_by_clause(sort: SortOptions | None, allowed: list[str], default: list[str]) -> list[str]:
    """Validated ORDER BY terms.

    sortBy must name one of the report's output columns (snake or camel case).
    anything else is rejected rather than spliced into the query.
    """
    if sort is None or not sort.sort_by:
        return default

    column = to_snake(sort.sort_by)
    if column not in allowed:
        raise InvalidQueryError(
            f"Invalid sortBy '{sort.sort_by}'. Must be one of: {', '.join(allowed)}"
        )
    direction = "DESC" if sort.sort_order == "desc" else "ASC"
    return [f"{column} {direction}"]


def format_sql(sql: str, dialect: str = "clickhouse") -> str:
    """Pretty print with sqlglot.

    clickhouse's {name:Type} parameters and some functions trip up the parser
    now and then; in that case the raw text is still perfectly valid.
    """
    try:
        parsed = sqlglot.parse_one(sql, dialect=dialect)
        return parsed.sql(dialect=dialect, pretty=True)
    except Exception:
        return sql


# --- report shapes ---


def totals_query(table: str, aggregates: tuple[Counter, ...], where: WhereClause) -> CompiledQuery:
    """Single row, no grouping."""
    sql = assemble_query([c.sql() for c in aggregates], table, where)
    return CompiledQuery(sql, dict(where.params))


def time_series_query(
    table: str,
    aggregates: tuple[Counter, ...],
    where: WhereClause,
    bucket: TimeBucket,
    time_column: str,
    sort: SortOptions | None = None,
    label: str = "date",
) -> CompiledQuery:
    """Grouped by time bucket only, ascending unless a valid sortBy says otherwise."""
    select = [f"{bucket.expr(time_column)} AS {label}"] + [c.sql() for c in aggregates]
    allowed = [label] + [c.name for c in aggregates]
    order = order_by_clause(sort, allowed, default=[f"{label} ASC"])
    sql = assemble_query(select, table, where, group_by=[label], order_by=order)
    return CompiledQuery(sql, dict(where.params))


def grouped_query(
    table: str,
    aggregates: tuple[Counter, ...],
    where: WhereClause,
    dimension_expr: str,
    sort: SortOptions | None = None,
    default_order: list[str] | None = None,
    limit: int | None = None,
) -> CompiledQuery:
    """Grouped by one dimension, no time bucketing."""
    select = [f"{dimension_expr} AS dimension"] + [c.sql() for c in aggregates]
    allowed = ["dimension"] + [c.name for c in aggregates]
    order = order_by_clause(sort, allowed, default=default_order or ["dimension ASC"])
    sql = assemble_query(
        select, table, where, group_by=[dimension_expr], order_by=order, limit=limit
    )
    return CompiledQuery(sql, dict(where.params))


def dimensional_time_series_query(
    table: str,
    aggregates: tuple[Counter, ...],
    where: WhereClause,
    bucket: TimeBucket,
    time_column: str,
    dimension_expr: str,
) -> CompiledQuery:
    """Cross product of time bucket and a scalar dimension, single level GROUP BY."""
    select = [
        f"{bucket.expr(time_column)} AS timestamp",
        f"{dimension_expr} AS dimension_value",
    ] + [c.sql() for c in aggregates]
    sql = assemble_query(
        select,
        table,
        where,
        group_by=["timestamp", "dimension_value"],
        order_by=["timestamp ASC"],
    )
    return CompiledQuery(sql, dict(where.params))


def _json_pairs(column: str) -> str:
    return f"arrayJoin(JSONExtractKeysAndValues(assumeNotNull({column}), 'Int64')) AS pair"


# counters a json map can't attribute to a single key
_UNATTRIBUTED = ["0 AS total_bookings", "0 AS user_cancelled", "0 AS driver_cancelled"]


def json_map_grouped_query(table: str, column: str, where: WhereClause) -> CompiledQuery:
    """Explode a key->count json column and sum the counts per key.

    inner query: one row per (row, key) pair. outer query: sum per key.
    """
    inner_where = where.extend(f"{column} IS NOT NULL", f"{column} != ''")
    inner = assemble_query([_json_pairs(column)], table, inner_where)
    select = [
        "tupleElement(pair, 1) AS dimension",
        "sum(tupleElement(pair, 2)) AS bookings_cancelled",
    ] + _UNATTRIBUTED
    sql = assemble_query(
        select,
        f"(\n{inner}\n)",
        group_by=["dimension"],
        order_by=["bookings_cancelled DESC"],
    )
    return CompiledQuery(sql, dict(inner_where.params))


def json_map_trend_query(
    table: str,
    column: str,
    where: WhereClause,
    bucket: TimeBucket,
    time_column: str,
) -> CompiledQuery:
    """Same explode as json_map_grouped_query, additionally split by time bucket."""
    inner_where = where.extend(f"{column} IS NOT NULL", f"{column} != ''")
    inner = assemble_query(
        [f"{bucket.truncate(time_column)} AS bucket", _json_pairs(column)],
        table,
        inner_where,
    )
    select = [
        f"{bucket.format('bucket')} AS timestamp",
        "tupleElement(pair, 1) AS dimension_value",
        "sum(tupleElement(pair, 2)) AS bookings_cancelled",
    ] + _UNATTRIBUTED
    sql = assemble_query(
        select,
        f"(\n{inner}\n)",
        group_by=["bucket", "dimension_value"],
        order_by=["bucket ASC"],
    )
    return CompiledQuery(sql, dict(inner_where.params))


def distinct_values_query(
    table: str,
    columns: dict[str, str],
    time_column: str | None = None,
    where: WhereClause | None = None,
) -> CompiledQuery:
    """groupArray(DISTINCT ...) per column, plus the table's time range."""
    select = [f"groupArray(DISTINCT {column}) AS {alias}" for alias, column in columns.items()]
    if time_column:
        select += [f"min({time_column}) AS min_date", f"max({time_column}) AS max_date"]
    sql = assemble_query(select, table, where)
    return CompiledQuery(sql, dict(where.params) if where else {})
