import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config.logging_config import setup_logging
from ..db.errors import GatewayError
from ..models.api_models import ErrorResponse
from .routers import database, datasets, queries, sync

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="QueryGate Database Gateway")

# Every GatewayError is answered with an ErrorResponse body
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Bad request or unsupported query shape"},
    404: {"model": ErrorResponse, "description": "Unknown connection or dataset"},
    500: {"model": ErrorResponse, "description": "Query or sync failure"},
    502: {"model": ErrorResponse, "description": "Database or Supabase unreachable"},
    504: {"model": ErrorResponse, "description": "Operation timed out"},
}

# Add CORS middleware to allow dashboard connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Invalid request"})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


app.include_router(database.router, prefix="/database", tags=["database"], responses=ERROR_RESPONSES)
app.include_router(datasets.router, prefix="/datasets", tags=["datasets"], responses=ERROR_RESPONSES)
app.include_router(queries.router, prefix="/queries", tags=["queries"], responses=ERROR_RESPONSES)
app.include_router(sync.router, prefix="/sync", tags=["sync"], responses=ERROR_RESPONSES)
