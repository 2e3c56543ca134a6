import logging
import threading
from typing import Dict, Optional

from ..models.gateway_models import ConnectionDescriptor

logger = logging.getLogger(__name__)


class ConnectionCache:
    """Process-wide map of connection id to descriptor.

    Entries never expire; a descriptor stays until invalidate() or clear().
    """

    def __init__(self):
        self._entries: Dict[str, ConnectionDescriptor] = {}
        self._lock = threading.Lock()

    def get(self, connection_id: str) -> Optional[ConnectionDescriptor]:
        with self._lock:
            return self._entries.get(connection_id)

    def set(self, connection_id: str, descriptor: ConnectionDescriptor) -> None:
        with self._lock:
            self._entries[connection_id] = descriptor
        logger.debug(f"Cached descriptor for connection {connection_id}")

    def invalidate(self, connection_id: str) -> bool:
        """Drop one entry. Returns True if something was removed."""
        with self._lock:
            removed = self._entries.pop(connection_id, None) is not None
        if removed:
            logger.info(f"Invalidated cached descriptor for connection {connection_id}")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Shared by every request handled by this process
connection_cache = ConnectionCache()
