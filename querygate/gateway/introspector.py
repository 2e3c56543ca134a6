import logging

from ..db.drivers.base import BackendConnection, BackendDriver
from ..db.errors import QueryExecutionError, SchemaIntrospectionError
from ..models.gateway_models import SchemaInfo

logger = logging.getLogger(__name__)


async def introspect_schema(driver: BackendDriver, conn: BackendConnection) -> SchemaInfo:
    """
    Collect tables, columns and column types over one open connection.

    A table whose metadata cannot be read is still listed, with empty
    columns and types; the failure is logged and the walk continues.
    Connection failures are not caught.
    """
    tables = await driver.list_tables(conn)
    schema = SchemaInfo(tables=list(tables))

    for table in tables:
        try:
            columns = await driver.list_columns(conn, table)
            types = await driver.column_types(conn, table)
        except (QueryExecutionError, SchemaIntrospectionError) as e:
            error = e if isinstance(e, SchemaIntrospectionError) else SchemaIntrospectionError(table, e.message)
            logger.warning(error.message)
            columns, types = [], []
        schema.columns[table] = list(columns)
        schema.column_types[table] = list(types)

    logger.info(f"Introspected {len(tables)} tables")
    return schema
