from fastapi import APIRouter, Depends

from ...gateway.service import DatabaseGateway
from ...models.api_models import ReconcileRequest, ReconcileResponse
from ..dependencies import get_gateway

router = APIRouter()


@router.post("/{connection_id}/refresh", response_model=ReconcileResponse)
async def refresh_table(
    connection_id: str,
    request: ReconcileRequest,
    gateway: DatabaseGateway = Depends(get_gateway),
) -> ReconcileResponse:
    """
    Replace the contents of a table with the supplied rows

    Creates the table when it does not exist, deletes rows whose key is not
    in the payload and upserts the rest. A payload with a missing or
    duplicate key is rejected before anything is written.
    """
    result = await gateway.reconcile(
        connection_id,
        request.table_name,
        request.data,
        primary_key=request.primary_key,
    )
    return ReconcileResponse.from_result(request.table_name, result)
