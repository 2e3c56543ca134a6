from typing import Optional

from ..db.supabase_client import SupabaseConnectionStore, SupabaseDatasetStore
from ..gateway.service import DatabaseGateway

_gateway: Optional[DatabaseGateway] = None


def get_gateway() -> DatabaseGateway:
    """Process-wide gateway backed by the Supabase stores.

    Tests replace this through app.dependency_overrides.
    """
    global _gateway
    if _gateway is None:
        _gateway = DatabaseGateway(SupabaseConnectionStore(), SupabaseDatasetStore())
    return _gateway
