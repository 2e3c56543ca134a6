"""SQL text builders shared by the relational drivers.

Only identifiers are interpolated, always quoted; row values travel as
parameters.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError


@dataclass(frozen=True)
class SqlDialect:
    name: str
    quote: str
    paramstyle: str  # "numeric" ($1) or "format" (%s)

    def ident(self, name: str) -> str:
        """Quote an identifier, doubling any embedded quote character."""
        escaped = name.replace(self.quote, self.quote * 2)
        return f"{self.quote}{escaped}{self.quote}"

    def placeholder(self, position: int) -> str:
        if self.paramstyle == "numeric":
            return f"${position}"
        return "%s"

    def placeholders(self, count: int, start: int = 1) -> str:
        return ", ".join(self.placeholder(start + i) for i in range(count))


POSTGRES_DIALECT = SqlDialect(name="postgres", quote='"', paramstyle="numeric")
MYSQL_DIALECT = SqlDialect(name="mysql", quote="`", paramstyle="format")


def source_table(query: str, dialect: str) -> Optional[str]:
    """Name of the main table a SELECT reads FROM, or None.

    A FROM subquery, a compound query or unparsable text gives None.
    """
    try:
        tree = sqlglot.parse_one(query, read=dialect)
    except SqlglotError:
        return None
    if not isinstance(tree, exp.Select):
        return None
    from_clause = next((node for node in tree.find_all(exp.From) if node.parent is tree), None)
    if from_clause is None or not isinstance(from_clause.this, exp.Table):
        return None
    return from_clause.this.name or None


def collect_columns(rows: Sequence[Dict[str, Any]]) -> List[str]:
    """Union of row keys, in first-seen order."""
    columns: List[str] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def create_table_statement(
    dialect: SqlDialect,
    table: str,
    columns: Sequence[str],
    primary_key: str,
    key_type: str = "TEXT",
) -> str:
    """CREATE TABLE with one text column per key and a primary key constraint."""
    names = list(columns)
    if primary_key not in names:
        names.insert(0, primary_key)
    definitions = [
        f"{dialect.ident(name)} {key_type if name == primary_key else 'TEXT'}"
        for name in names
    ]
    definitions.append(f"PRIMARY KEY ({dialect.ident(primary_key)})")
    return f"CREATE TABLE IF NOT EXISTS {dialect.ident(table)} ({', '.join(definitions)})"


def preview_statement(dialect: SqlDialect, table: str, limit: int) -> str:
    return f"SELECT * FROM {dialect.ident(table)} LIMIT {int(limit)}"


# Postgres

def postgres_delete_stale_statement(table: str, primary_key: str) -> str:
    """Delete every row whose key is not in $1 (a text array)."""
    d = POSTGRES_DIALECT
    return f"DELETE FROM {d.ident(table)} WHERE {d.ident(primary_key)}::text <> ALL($1::text[])"


def postgres_upsert_statement(table: str, columns: Sequence[str], primary_key: str) -> str:
    """Upsert a JSON array ($1) of rows; returns one boolean per row, true when inserted."""
    d = POSTGRES_DIALECT
    column_list = ", ".join(d.ident(c) for c in columns)
    updates = [f"{d.ident(c)} = EXCLUDED.{d.ident(c)}" for c in columns if c != primary_key]
    if updates:
        conflict = f"DO UPDATE SET {', '.join(updates)}"
    else:
        # Key-only rows still need a RETURNING row for the existing record
        conflict = f"DO UPDATE SET {d.ident(primary_key)} = EXCLUDED.{d.ident(primary_key)}"
    return (
        f"INSERT INTO {d.ident(table)} ({column_list}) "
        f"SELECT {column_list} FROM json_populate_recordset(NULL::{d.ident(table)}, $1::json) "
        f"ON CONFLICT ({d.ident(primary_key)}) {conflict} "
        f"RETURNING (xmax = 0) AS inserted"
    )


# MySQL

def mysql_delete_stale_statement(table: str, primary_key: str, key_count: int) -> str:
    d = MYSQL_DIALECT
    return f"DELETE FROM {d.ident(table)} WHERE {d.ident(primary_key)} NOT IN ({d.placeholders(key_count)})"


def mysql_existing_keys_statement(table: str, primary_key: str, key_count: int) -> str:
    d = MYSQL_DIALECT
    return (
        f"SELECT {d.ident(primary_key)} FROM {d.ident(table)} "
        f"WHERE {d.ident(primary_key)} IN ({d.placeholders(key_count)})"
    )


def mysql_upsert_statement(table: str, columns: Sequence[str], primary_key: str, row_count: int) -> str:
    d = MYSQL_DIALECT
    column_list = ", ".join(d.ident(c) for c in columns)
    row_values = f"({d.placeholders(len(columns))})"
    values = ", ".join([row_values] * row_count)
    updates = [f"{d.ident(c)} = VALUES({d.ident(c)})" for c in columns if c != primary_key]
    if not updates:
        updates = [f"{d.ident(primary_key)} = {d.ident(primary_key)}"]
    return (
        f"INSERT INTO {d.ident(table)} ({column_list}) VALUES {values} "
        f"ON DUPLICATE KEY UPDATE {', '.join(updates)}"
    )
