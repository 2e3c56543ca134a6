import logging
import time

from ..config.settings import DEFAULT_ROW_LIMIT
from ..db.drivers.base import BackendConnection, BackendDriver
from ..models.gateway_models import ExecutionResult, NormalizedResult

logger = logging.getLogger(__name__)


async def execute_query(
    driver: BackendDriver,
    conn: BackendConnection,
    raw_query: str,
    default_limit: int = DEFAULT_ROW_LIMIT,
) -> ExecutionResult:
    """
    Run a user query with the default row cap.

    The cap is only applied when the query does not mention a limit itself;
    a backend that ignores the appended limit is truncated here.
    """
    spec = driver.prepare_query(raw_query, default_limit)
    logger.info(f"Executing {driver.engine.value} query: {spec.effective_query}")

    start_time = time.time()
    result = await driver.execute(conn, spec)
    execution_time = (time.time() - start_time) * 1000  # Convert to milliseconds

    if spec.applied_limit is not None and len(result.rows) > spec.applied_limit:
        result = NormalizedResult(columns=result.columns, rows=result.rows[:spec.applied_limit])

    logger.info(f"Query returned {len(result.rows)} rows in {execution_time:.1f} ms")
    return ExecutionResult(result=result, spec=spec, execution_time_ms=execution_time)
