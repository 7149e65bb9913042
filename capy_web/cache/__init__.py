"""Page cache with TTL and per-domain high-signal URL maps."""

from capy_web.cache.cache_manager import CacheEntry, CacheManager

__all__ = ["CacheEntry", "CacheManager"]
