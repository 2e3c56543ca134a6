import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from supabase import Client, PostgrestAPIError, create_client
from supabase.client import ClientOptions
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import (
    CONNECTIONS_TABLE,
    DATASETS_TABLE,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from ..models.gateway_models import ConnectionDescriptor, DatasetDefinition
from .errors import ConnectionNotFoundError, DatasetNotFoundError, InvalidDefinitionError, StoreError

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get the Supabase client instance, creating it on first use."""
    global _client
    if _client is None:
        if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
            raise ValueError("SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not found in environment variables")

        options = ClientOptions(
            schema='public',
            headers={},
            persist_session=False,
            auto_refresh_token=False
        )
        _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, options=options)
        logger.info("Supabase client created")
    return _client


# Transport hiccups are retried; API errors (bad table, RLS) are not
_store_retry = retry(
    wait=wait_exponential(multiplier=1, min=1, max=4),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


class SupabaseConnectionStore:
    """Reads connection descriptors from the database_connections table"""

    def __init__(self, client: Optional[Client] = None, table: str = CONNECTIONS_TABLE):
        self._client = client
        self.table = table

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    @_store_retry
    def _select(self, connection_id: str) -> List[Dict[str, Any]]:
        response = self.client.table(self.table).select("*").eq("id", connection_id).limit(1).execute()
        return response.data or []

    @_store_retry
    def _touch(self, connection_id: str) -> None:
        self.client.table(self.table).update(
            {"last_refreshed": datetime.now(timezone.utc).isoformat()}
        ).eq("id", connection_id).execute()

    async def fetch(self, connection_id: str) -> ConnectionDescriptor:
        try:
            rows = await asyncio.to_thread(self._select, connection_id)
        except (PostgrestAPIError, httpx.HTTPError) as e:
            raise StoreError(f"Could not load connection {connection_id}: {e}") from e

        if not rows:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")

        logger.info(f"Loaded connection {connection_id} from {self.table}")
        try:
            return ConnectionDescriptor.from_row(connection_id, rows[0])
        except ValueError as e:
            raise InvalidDefinitionError(f"Connection {connection_id} has an invalid definition: {e}") from e

    async def mark_refreshed(self, connection_id: str) -> None:
        try:
            await asyncio.to_thread(self._touch, connection_id)
        except (PostgrestAPIError, httpx.HTTPError) as e:
            raise StoreError(f"Could not update last_refreshed for {connection_id}: {e}") from e


class SupabaseDatasetStore:
    """Reads saved datasets from the datasets table"""

    def __init__(self, client: Optional[Client] = None, table: str = DATASETS_TABLE):
        self._client = client
        self.table = table

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    @_store_retry
    def _select(self, connection_id: str, dataset_id: str) -> List[Dict[str, Any]]:
        response = (
            self.client.table(self.table)
            .select("*")
            .eq("id", dataset_id)
            .eq("connection_id", connection_id)
            .limit(1)
            .execute()
        )
        return response.data or []

    async def fetch(self, connection_id: str, dataset_id: str) -> DatasetDefinition:
        try:
            rows = await asyncio.to_thread(self._select, connection_id, dataset_id)
        except (PostgrestAPIError, httpx.HTTPError) as e:
            raise StoreError(f"Could not load dataset {dataset_id}: {e}") from e

        if not rows:
            raise DatasetNotFoundError(f"Dataset {dataset_id} not found for connection {connection_id}")

        try:
            return DatasetDefinition.from_row(connection_id, dataset_id, rows[0])
        except ValueError as e:
            raise InvalidDefinitionError(f"Dataset {dataset_id} has an invalid definition: {e}") from e
