from .cache import CacheCategory, CacheStore, build_cache_store
from .invalidation import CacheOperation, invalidate_after_operation

__all__ = [
    "CacheCategory",
    "CacheOperation",
    "CacheStore",
    "build_cache_store",
    "invalidate_after_operation",
]
