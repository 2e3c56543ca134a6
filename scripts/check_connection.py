#!/usr/bin/env python
"""
Diagnostic script for a stored database connection.

Loads the connection descriptor from Supabase, connects to the external
database and runs a few read-only checks through the gateway, printing what
it finds.

Usage:
    python scripts/check_connection.py <connection_id> [check_name] [--query "SELECT ..."]

Arguments:
    connection_id: Id of a row in the database_connections table
    check_name: (Optional) Run only the specified check.
                Options: tables, schema, preview, query, all

Requirements:
    - python-dotenv
    - SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY in .env or .env.local
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

# Load environment variables
load_dotenv()
load_dotenv(project_root / '.env.local')

from querygate.config.logging_config import setup_logging
from querygate.db.errors import GatewayError
from querygate.db.supabase_client import SupabaseConnectionStore, SupabaseDatasetStore
from querygate.gateway.service import DatabaseGateway


async def check_tables(gateway: DatabaseGateway, connection_id: str) -> bool:
    """List the tables of the connection"""
    print("\n=== Listing Tables ===")
    tables = await gateway.list_tables(connection_id)
    print(f"Found {len(tables)} tables")
    for table in tables[:20]:
        print(f"  - {table}")
    return True


async def check_schema(gateway: DatabaseGateway, connection_id: str) -> bool:
    """Introspect every table and report the ones whose metadata is unreadable"""
    print("\n=== Introspecting Schema ===")
    schema = await gateway.introspect(connection_id)
    unreadable = [table for table in schema.tables if not schema.columns.get(table)]
    print(f"Introspected {len(schema.tables)} tables, {len(unreadable)} without readable columns")
    for table in unreadable:
        print(f"  ! {table}")
    return True


async def check_preview(gateway: DatabaseGateway, connection_id: str) -> bool:
    """Preview the first table of the connection"""
    print("\n=== Previewing First Table ===")
    tables = await gateway.list_tables(connection_id)
    if not tables:
        print("No tables to preview")
        return False

    preview = await gateway.preview_table(connection_id, tables[0], limit=3)
    print(f"{preview.table}: primary keys {preview.primary_keys or 'none'}")
    for column in preview.column_types:
        print(f"  {column.column_name}: {column.data_type}")
    if preview.execution.result.rows:
        print("Sample record:")
        print(json.dumps(preview.execution.result.rows[0], indent=2, ensure_ascii=False, default=str))
    return True


async def check_query(gateway: DatabaseGateway, connection_id: str, query: str) -> bool:
    """Run an ad hoc query with the default row cap"""
    print("\n=== Running Query ===")
    execution = await gateway.run_query(connection_id, query)
    print(f"Executed: {execution.spec.effective_query}")
    print(f"Retrieved {len(execution.result.rows)} rows with {len(execution.result.columns)} columns "
          f"in {execution.execution_time_ms:.1f} ms")
    return True


async def main():
    parser = argparse.ArgumentParser(description="Check a stored database connection")
    parser.add_argument("connection_id")
    parser.add_argument("check", nargs="?", default="all", choices=["tables", "schema", "preview", "query", "all"])
    parser.add_argument("--query", default="SELECT 1 AS ok", help="Query for the query check")
    args = parser.parse_args()

    setup_logging()
    gateway = DatabaseGateway(SupabaseConnectionStore(), SupabaseDatasetStore())

    checks = {
        "tables": lambda: check_tables(gateway, args.connection_id),
        "schema": lambda: check_schema(gateway, args.connection_id),
        "preview": lambda: check_preview(gateway, args.connection_id),
        "query": lambda: check_query(gateway, args.connection_id, args.query),
    }

    results = {}
    for name, check in checks.items():
        if args.check not in (name, "all"):
            continue
        try:
            results[name] = await check()
        except GatewayError as e:
            print(f"Error ({e.status_code}): {e.message}")
            results[name] = False

    # Print a summary of the check results
    print("\n=== Check Summary ===")
    passed = sum(1 for result in results.values() if result)
    print(f"Checks passed: {passed}/{len(results)}")
    for name, result in results.items():
        status = "✓" if result else "❌"
        print(f"{status} {name}")


if __name__ == "__main__":
    asyncio.run(main())
