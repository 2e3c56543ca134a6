from typing import List

from fastapi import APIRouter, Depends, Query

from ...config.settings import DEFAULT_ROW_LIMIT
from ...gateway.service import DatabaseGateway
from ...models.api_models import (
    CacheInvalidationResponse,
    ColumnsRequest,
    QueryRequest,
    QueryResponse,
    SchemaResponse,
    TablePreviewResponse,
)
from ..dependencies import get_gateway

router = APIRouter()


@router.get("/{connection_id}/tables", response_model=List[str])
async def list_tables(connection_id: str, gateway: DatabaseGateway = Depends(get_gateway)) -> List[str]:
    """List the tables (or collections) of a connection"""
    return await gateway.list_tables(connection_id)


@router.get("/{connection_id}/schema", response_model=SchemaResponse)
async def get_schema(connection_id: str, gateway: DatabaseGateway = Depends(get_gateway)) -> SchemaResponse:
    """
    Introspect a connection

    Tables whose metadata cannot be read are still listed, with empty
    columns and types.
    """
    schema = await gateway.introspect(connection_id)
    return SchemaResponse.from_schema(schema)


@router.get("/{connection_id}/tables/{table_name}/columns", response_model=List[str])
async def get_table_columns(
    connection_id: str,
    table_name: str,
    gateway: DatabaseGateway = Depends(get_gateway),
) -> List[str]:
    return await gateway.list_columns(connection_id, table_name)


@router.get("/{connection_id}/tables/{table_name}", response_model=TablePreviewResponse)
async def preview_table(
    connection_id: str,
    table_name: str,
    limit: int = Query(DEFAULT_ROW_LIMIT, ge=1, le=10000, description="Rows to return"),
    gateway: DatabaseGateway = Depends(get_gateway),
) -> TablePreviewResponse:
    """First rows of a table with its column types and primary keys"""
    preview = await gateway.preview_table(connection_id, table_name, limit)
    return TablePreviewResponse.from_preview(preview)


@router.post("/{connection_id}/columns", response_model=List[str])
async def get_columns(
    connection_id: str,
    request: ColumnsRequest,
    gateway: DatabaseGateway = Depends(get_gateway),
) -> List[str]:
    """Columns of a table, or of the result of a query"""
    return await gateway.list_columns(connection_id, request.query)


@router.post("/{connection_id}/query", response_model=QueryResponse)
async def run_query(
    connection_id: str,
    request: QueryRequest,
    gateway: DatabaseGateway = Depends(get_gateway),
) -> QueryResponse:
    """
    Execute a query against a stored connection

    Queries that do not mention a limit are capped at the default row limit.
    """
    execution = await gateway.run_query(connection_id, request.query)
    return QueryResponse.from_execution(execution)


@router.delete("/{connection_id}/cache", response_model=CacheInvalidationResponse)
async def invalidate_cache(connection_id: str, gateway: DatabaseGateway = Depends(get_gateway)) -> CacheInvalidationResponse:
    """Forget the cached descriptor so the next request reloads it"""
    return CacheInvalidationResponse(connection_id=connection_id, invalidated=gateway.invalidate(connection_id))
