"""Build cache management.

This module handles:
- Content-derived cache keys
- The shared cache store
- Restoring and saving the dependency, package and layer domains
"""

from image_release.cache.manager import CacheDomainSpec, CacheManager, CacheRestoreResult
from image_release.cache.store import CacheEntry, CacheStore

__all__ = [
    "CacheDomainSpec",
    "CacheEntry",
    "CacheManager",
    "CacheRestoreResult",
    "CacheStore",
]
