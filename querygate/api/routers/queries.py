from fastapi import APIRouter

from ...gateway.service import rewrite_query
from ...models.api_models import RewriteRequest, RewriteResponse

router = APIRouter()


@router.post("/rewrite", response_model=RewriteResponse)
async def rewrite(request: RewriteRequest) -> RewriteResponse:
    """
    Rewrite a SELECT so it is grouped into date buckets

    The request never touches a database; the engine only picks the SQL
    dialect of the truncation expressions.
    """
    updated = rewrite_query(
        request.query,
        request.date_by,
        date_column=request.date_column,
        additional_group_by=request.additional_group_by,
        engine=request.engine,
    )
    return RewriteResponse(updated_query=updated)
