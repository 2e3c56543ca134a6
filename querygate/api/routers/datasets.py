from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...gateway.service import DatabaseGateway
from ...models.api_models import DatasetQueryRequest, DatasetQueryResponse
from ...models.gateway_models import DateGranularity
from ..dependencies import get_gateway

router = APIRouter()


@router.get("/{connection_id}/{dataset_id}", response_model=DatasetQueryResponse)
async def get_dataset(
    connection_id: str,
    dataset_id: str,
    date_bucket: Optional[DateGranularity] = Query(None, description="Date granularity to bucket by"),
    date_column: Optional[str] = Query(None, description="Column to bucket on"),
    group_by: Optional[str] = Query(None, description="Comma separated extra GROUP BY columns"),
    gateway: DatabaseGateway = Depends(get_gateway),
) -> DatasetQueryResponse:
    """Run a saved dataset with its stored (or overridden) bucketing"""
    result = await gateway.run_dataset_query(
        connection_id,
        dataset_id,
        date_bucket=date_bucket,
        date_column=date_column,
        group_by=group_by,
    )
    return DatasetQueryResponse.from_result(result)


@router.post("/{connection_id}/{dataset_id}/query", response_model=DatasetQueryResponse)
async def query_dataset(
    connection_id: str,
    dataset_id: str,
    request: DatasetQueryRequest,
    gateway: DatabaseGateway = Depends(get_gateway),
) -> DatasetQueryResponse:
    result = await gateway.run_dataset_query(
        connection_id,
        dataset_id,
        override_query=request.query,
        date_bucket=request.date_bucket,
        date_column=request.date_column,
        group_by=request.group_by,
    )
    return DatasetQueryResponse.from_result(result)


@router.get("/{connection_id}/{dataset_id}/columns", response_model=List[str])
async def get_dataset_columns(
    connection_id: str,
    dataset_id: str,
    gateway: DatabaseGateway = Depends(get_gateway),
) -> List[str]:
    return await gateway.dataset_columns(connection_id, dataset_id)
