"""Date bucketing for saved SQL queries.

Queries are parsed with sqlglot in the backend's dialect, the date column is
located among the select expressions and wrapped in a truncation, and the
GROUP BY and ORDER BY clauses are rewritten on the tree before it is rendered
back to SQL. Shapes with no single obvious bucket (compound queries, SELECT *,
DISTINCT ON, a column only reachable through an un-aliased subquery) are
refused with RewriteError instead of being guessed at.

Rewriting is idempotent: the output of a rewrite is itself a valid input and
rewriting it again with the same arguments returns the same text. A rewrite
to a different granularity replaces the previous truncation.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ..db.errors import RewriteError
from ..models.gateway_models import (
    DateGranularity,
    EngineType,
    normalize_engine_type,
    parse_granularity,
    split_column_list,
)

logger = logging.getLogger(__name__)

POSTGRES_TRUNCATIONS: Dict[DateGranularity, str] = {
    granularity: f"DATE_TRUNC('{granularity.value}', {{col}})" for granularity in DateGranularity
}

MYSQL_TRUNCATIONS: Dict[DateGranularity, str] = {
    DateGranularity.MINUTE: "STR_TO_DATE(DATE_FORMAT({col}, '%Y-%m-%d %H:%i'), '%Y-%m-%d %H:%i')",
    DateGranularity.HOUR: "STR_TO_DATE(DATE_FORMAT({col}, '%Y-%m-%d %H'), '%Y-%m-%d %H')",
    DateGranularity.DAY: "DATE({col})",
    DateGranularity.WEEK: "DATE_SUB(DATE({col}), INTERVAL WEEKDAY({col}) DAY)",
    DateGranularity.MONTH: "STR_TO_DATE(CONCAT(DATE_FORMAT({col}, '%Y-%m'), '-01'), '%Y-%m-%d')",
    DateGranularity.QUARTER: "STR_TO_DATE(CONCAT(YEAR({col}), '-', (QUARTER({col}) * 3) - 2, '-01'), '%Y-%m-%d')",
    DateGranularity.YEAR: "MAKEDATE(YEAR({col}), 1)",
}

TRUNCATIONS: Dict[EngineType, Dict[DateGranularity, str]] = {
    EngineType.POSTGRES: POSTGRES_TRUNCATIONS,
    EngineType.MYSQL: MYSQL_TRUNCATIONS,
}

# sqlglot dialect names per engine
SQLGLOT_DIALECTS: Dict[EngineType, str] = {
    EngineType.POSTGRES: "postgres",
    EngineType.MYSQL: "mysql",
}

_COMPOUND = (exp.Union, exp.Intersect, exp.Except)
_CONSTANTS = (exp.Literal, exp.Null, exp.Boolean)


def parse_statement(sql: str, dialect: str) -> exp.Expression:
    """Parse exactly one SQL statement, raising RewriteError otherwise."""
    try:
        statements = [statement for statement in sqlglot.parse(sql, read=dialect) if statement is not None]
    except SqlglotError as e:
        raise RewriteError(f"Could not parse query: {e}") from e
    if not statements:
        raise RewriteError("Query is empty")
    if len(statements) > 1:
        raise RewriteError("Only a single statement can be bucketed by date")
    return statements[0]


def parse_column(name: str, dialect: str) -> exp.Column:
    """Column reference for a user supplied name such as created_at or o.created_at."""
    try:
        parsed = sqlglot.parse_one(name, read=dialect)
    except SqlglotError:
        parsed = None
    if isinstance(parsed, exp.Column) and not parsed.is_star:
        return parsed
    return exp.column(name.strip())


def column_matches(column: exp.Expression, target: exp.Column) -> bool:
    """True when column names target; an unqualified target matches any qualifier."""
    if not isinstance(column, exp.Column) or column.is_star:
        return False
    if column.name.lower() != target.name.lower():
        return False
    return not target.table or column.table.lower() == target.table.lower()


def _unalias(projection: exp.Expression) -> exp.Expression:
    return projection.this if isinstance(projection, exp.Alias) else projection


def _position(expression: exp.Expression) -> Optional[int]:
    """1-based position for a GROUP BY 2 / ORDER BY 2 style reference."""
    if isinstance(expression, exp.Literal) and expression.is_int:
        return int(expression.name)
    return None


class _Buckets:
    """Builds truncations of a column and recognises them in existing SQL."""

    def __init__(self, engine: EngineType):
        self.templates = TRUNCATIONS[engine]
        self.dialect = SQLGLOT_DIALECTS[engine]
        self._keys: Dict[str, set] = {}

    def key(self, expression: exp.Expression) -> str:
        return expression.sql(dialect=self.dialect, comments=False)

    def build(self, granularity: DateGranularity, column: exp.Column) -> exp.Expression:
        text = self.templates[granularity].format(col=self.key(column))
        return sqlglot.parse_one(text, read=self.dialect)

    def _bucket_keys(self, column: exp.Column) -> set:
        cache_key = self.key(column)
        if cache_key not in self._keys:
            keys = set()
            for granularity in self.templates:
                bucket = self.build(granularity, column)
                rendered = self.key(bucket)
                keys.add(rendered)
                # Rendering can normalise the template text; accept both forms
                keys.add(self.key(sqlglot.parse_one(rendered, read=self.dialect)))
            self._keys[cache_key] = keys
        return self._keys[cache_key]

    def source_column(self, expression: exp.Expression) -> Optional[exp.Column]:
        """The column expression truncates, if expression is a truncation of one column."""
        if isinstance(expression, exp.Column):
            return None
        columns = {self.key(column): column for column in expression.find_all(exp.Column)}
        if len(columns) != 1:
            return None
        column = next(iter(columns.values()))
        if self.key(expression) in self._bucket_keys(column):
            return column
        return None


@dataclass
class _Hit:
    index: int
    column: exp.Column
    alias: Optional[exp.Identifier]


def _reject_unsupported(tree: exp.Expression) -> exp.Select:
    if isinstance(tree, _COMPOUND):
        raise RewriteError("Compound queries (UNION, INTERSECT, EXCEPT) cannot be bucketed by date")
    if not isinstance(tree, exp.Select):
        raise RewriteError("Only SELECT queries can be bucketed by date")
    if not tree.expressions:
        raise RewriteError("Query has an empty select list")
    for projection in tree.expressions:
        if _unalias(projection).is_star:
            raise RewriteError("SELECT * queries cannot be bucketed by date; list the columns explicitly")
    distinct = tree.args.get("distinct")
    if distinct is not None and distinct.args.get("on") is not None:
        raise RewriteError("DISTINCT ON queries cannot be bucketed by date")
    return tree


def _sources(tree: exp.Select) -> List[exp.Expression]:
    """Tables and subqueries in the top-level FROM and JOIN clauses."""
    sources = []
    from_clause = next((node for node in tree.find_all(exp.From) if node.parent is tree), None)
    if from_clause is not None:
        sources.append(from_clause.this)
    for join in tree.find_all(exp.Join):
        if join.parent is tree:
            sources.append(join.this)
    return sources


def _find_hits(tree: exp.Select, buckets: _Buckets, target: Optional[exp.Column]) -> List[_Hit]:
    """Select items that are the target column, or a truncation of it.

    With no target only existing truncations count, of whichever column.
    """
    hits = []
    for index, projection in enumerate(tree.expressions):
        inner = _unalias(projection)
        alias = projection.args.get("alias") if isinstance(projection, exp.Alias) else None
        if target is not None and column_matches(inner, target):
            hits.append(_Hit(index=index, column=inner, alias=alias))
            continue
        source = buckets.source_column(inner)
        if source is not None and (target is None or column_matches(source, target)):
            hits.append(_Hit(index=index, column=source, alias=alias))
    return hits


def _is_groupable(expression: exp.Expression) -> bool:
    if isinstance(expression, _CONSTANTS):
        return False
    return expression.find(exp.AggFunc) is None


def rewrite_for_bucket(
    raw_query: str,
    date_column: Optional[str],
    granularity: Union[str, DateGranularity],
    extra_group_by: Union[str, Sequence[str], None] = None,
    dialect: Union[str, EngineType] = EngineType.POSTGRES,
) -> str:
    """Rewrite a SELECT so it groups by date_column truncated to granularity.

    Args:
        raw_query: the SELECT to rewrite
        date_column: column to bucket on; None detects it from an existing
            truncation in the select list
        granularity: minute, hour, day, week, month, quarter or year
        extra_group_by: additional columns to group by (list or comma separated)
        dialect: postgres or mysql

    Returns:
        The rewritten query text.
    """
    engine = normalize_engine_type(dialect)
    if engine not in TRUNCATIONS:
        raise RewriteError(f"Date bucketing is only supported for SQL databases, not {dialect!r}")
    try:
        granularity = parse_granularity(granularity)
    except ValueError as e:
        raise RewriteError(str(e)) from e
    buckets = _Buckets(engine)
    if date_column is not None and not date_column.strip():
        date_column = None

    tree = _reject_unsupported(parse_statement(raw_query, buckets.dialect))

    if date_column is None:
        candidates = _find_hits(tree, buckets, None)
        if not candidates:
            raise RewriteError("No date column given and no date bucket found in the query")
        names = {hit.column.name.lower() for hit in candidates}
        if len(names) > 1:
            raise RewriteError(f"Query buckets more than one date column ({', '.join(sorted(names))}); name one")
        target = exp.column(candidates[0].column.name)
    else:
        target = parse_column(date_column, buckets.dialect)

    hits = _find_hits(tree, buckets, target)
    if len(hits) > 1:
        raise RewriteError(f"Date column {target.sql(dialect=buckets.dialect)!r} appears in more than one select item")

    items = list(tree.expressions)
    if hits:
        hit = hits[0]
        source = hit.column.copy()
        alias = hit.alias.copy() if hit.alias is not None else source.this.copy()
        bucket_index = hit.index
    else:
        sources = _sources(tree)
        if not sources:
            raise RewriteError("Query has no FROM clause to bucket")
        if any(isinstance(node, exp.Subquery) and not node.alias for node in sources):
            raise RewriteError(
                f"Date column {date_column!r} is only reachable through an un-aliased subquery"
            )
        source = target.copy()
        alias = target.this.copy()
        bucket_index = None

    bucket = buckets.build(granularity, source)
    bucket_item = exp.alias_(bucket.copy(), alias)
    original_items = list(items)
    if bucket_index is None:
        # Appended so positional GROUP BY / ORDER BY references stay valid
        items.append(bucket_item)
        position = len(items)
    else:
        items[bucket_index] = bucket_item
        position = bucket_index + 1

    # Extra group columns reuse the select item that already provides them
    extras = []
    for name in split_column_list(extra_group_by):
        column = parse_column(name, buckets.dialect)
        existing = None
        for item in items:
            inner = _unalias(item)
            if column_matches(inner, column) or (isinstance(item, exp.Alias) and item.alias.lower() == column.name.lower()):
                existing = inner
                break
        if existing is None:
            items.append(column)
            existing = column
        extras.append(existing.copy())

    alias_name = alias.name.lower()

    def is_bucket(expression: exp.Expression) -> bool:
        if _position(expression) == position:
            return True
        if column_matches(expression, target):
            return True
        if isinstance(expression, exp.Column) and not expression.table and expression.name.lower() == alias_name:
            return True
        column = buckets.source_column(expression)
        return column is not None and column_matches(column, target)

    group_by = [bucket.copy()]
    existing_group = tree.args.get("group")
    if existing_group is not None:
        group_by.extend(entry.copy() for entry in existing_group.expressions if not is_bucket(entry))
    else:
        # A fresh GROUP BY must also cover every plain select item
        for index, item in enumerate(original_items):
            inner = _unalias(item)
            if index != bucket_index and _is_groupable(inner):
                group_by.append(inner.copy())
    group_by.extend(extras)

    deduplicated = []
    seen = set()
    for entry in group_by:
        key = buckets.key(entry)
        if key not in seen:
            seen.add(key)
            deduplicated.append(entry)

    tree.set("expressions", items)
    tree.set("group", exp.Group(expressions=deduplicated))

    order = tree.args.get("order")
    if order is not None:
        for ordered in order.expressions:
            expression = ordered.this if isinstance(ordered, exp.Ordered) else ordered
            if _position(expression) is None and is_bucket(expression):
                if isinstance(ordered, exp.Ordered):
                    ordered.set("this", bucket.copy())
                else:
                    ordered.replace(bucket.copy())

    rewritten = tree.sql(dialect=buckets.dialect, comments=False)
    logger.debug(f"Rewrote query for {granularity.value} buckets on {target.name}: {rewritten}")
    return rewritten
