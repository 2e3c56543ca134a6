from typing import Protocol

from ..models.gateway_models import ConnectionDescriptor, DatasetDefinition


class ConnectionStore(Protocol):
    """Source of truth for stored connection descriptors"""

    async def fetch(self, connection_id: str) -> ConnectionDescriptor:
        """Return the descriptor or raise ConnectionNotFoundError."""
        ...

    async def mark_refreshed(self, connection_id: str) -> None:
        """Record that data was synced into this connection."""
        ...


class DatasetStore(Protocol):
    """Source of truth for saved datasets"""

    async def fetch(self, connection_id: str, dataset_id: str) -> DatasetDefinition:
        """Return the dataset or raise DatasetNotFoundError."""
        ...
