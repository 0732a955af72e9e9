"""Cache layer for kuberelay.

Submodules:
    ttl_store        -- Generic TTL key/value store with lazy and swept expiry.
    reference_cache  -- Snapshot cache reporting ownerReference churn.
"""

from kuberelay.cache.reference_cache import (
    ReferenceTrackingCache,
    owner_references_to_map,
    references_diff,
)
from kuberelay.cache.ttl_store import StoreError, TTLStore, get_key_func

__all__ = [
    "ReferenceTrackingCache",
    "StoreError",
    "TTLStore",
    "get_key_func",
    "owner_references_to_map",
    "references_diff",
]
