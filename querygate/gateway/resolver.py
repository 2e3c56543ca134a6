import asyncio
import logging
from typing import Dict, Optional

from ..db.cache import ConnectionCache, connection_cache
from ..db.stores import ConnectionStore
from ..models.gateway_models import ConnectionDescriptor

logger = logging.getLogger(__name__)


class DescriptorResolver:
    """Looks descriptors up in the cache, falling back to the store once per id."""

    def __init__(self, store: ConnectionStore, cache: Optional[ConnectionCache] = None):
        self.store = store
        self.cache = cache if cache is not None else connection_cache
        self._locks: Dict[str, asyncio.Lock] = {}

    async def resolve(self, connection_id: str) -> ConnectionDescriptor:
        descriptor = self.cache.get(connection_id)
        if descriptor is not None:
            return descriptor

        # Concurrent misses for one id wait here instead of all hitting the store
        lock = self._locks.setdefault(connection_id, asyncio.Lock())
        async with lock:
            descriptor = self.cache.get(connection_id)
            if descriptor is None:
                logger.info(f"Cache miss for connection {connection_id}, loading from store")
                descriptor = await self.store.fetch(connection_id)
                self.cache.set(connection_id, descriptor)
        return descriptor

    def invalidate(self, connection_id: str) -> bool:
        return self.cache.invalidate(connection_id)
