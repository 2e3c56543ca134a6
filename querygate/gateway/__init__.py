from .reconcile import Reconciler, build_upsert_request
from .resolver import DescriptorResolver
from .rewriter import rewrite_for_bucket
from .service import DatabaseGateway, rewrite_query, with_deadline

__all__ = [
    'DatabaseGateway',
    'DescriptorResolver',
    'Reconciler',
    'build_upsert_request',
    'rewrite_for_bucket',
    'rewrite_query',
    'with_deadline'
]
