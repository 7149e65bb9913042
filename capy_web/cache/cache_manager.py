"""Page cache and per-domain high-signal URL map.

Pages and their extraction results are cached by normalized URL with a TTL.
Expired entries are evicted lazily when read; prune_expired() exists for
hosts that want an explicit sweep, nothing calls it on a timer.

A cache miss is never an error, only a signal to fetch.

Usage:
    from capy_web.cache.cache_manager import CacheManager

    cache = CacheManager()
    cache.put(url, text, extraction_results=records)
    entry = cache.get(url)           # CacheEntry or None
    cache.get_high_signal_urls("acme.com")
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from capy_web.config.settings import settings
from capy_web.navigation.url_tools import extract_domain, normalize_domain, normalize_url
from capy_web.schemas.claim_schema import ExtractionRecord
from capy_web.utils.logging import get_structured_logger


@dataclass
class CacheEntry:
    """A cached page fetch."""

    url: str
    content: str
    extraction_results: Optional[List[ExtractionRecord]]
    fetched_at: float
    ttl_ms: int
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return (now - self.fetched_at) * 1000 >= self.ttl_ms


@dataclass
class DomainMapEntry:
    """URLs of a domain that produced extractions, with their yield."""

    domain: str
    url_yields: Dict[str, int] = field(default_factory=dict)
    updated_at: float = 0.0


class CacheManager:
    """
    TTL cache for fetched pages plus a domain map of productive URLs.

    Attributes:
        default_ttl_ms: TTL applied when put() is not given one
        domain_map_ttl_ms: TTL for a domain's high-signal URL map
    """

    def __init__(
        self,
        default_ttl_ms: Optional[int] = None,
        domain_map_ttl_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize an empty cache.

        Args:
            default_ttl_ms: Page TTL (defaults to settings.page_cache_ttl_ms)
            domain_map_ttl_ms: Domain map TTL (defaults to settings.domain_map_ttl_ms)
            clock: Time source in seconds
        """
        self.default_ttl_ms = default_ttl_ms or settings.page_cache_ttl_ms
        self.domain_map_ttl_ms = domain_map_ttl_ms or settings.domain_map_ttl_ms
        self._clock = clock
        self._pages: Dict[str, CacheEntry] = {}
        self._domain_map: Dict[str, DomainMapEntry] = {}
        self._hits = 0
        self._misses = 0
        self._logger = get_structured_logger("capy_web.cache", component="CacheManager")

    def get(self, url: str) -> Optional[CacheEntry]:
        """
        Look up a page.

        Args:
            url: Page URL (any equivalent form)

        Returns:
            CacheEntry, or None if absent or expired
        """
        key = normalize_url(url)
        entry = self._pages.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._pages[key]
            self._misses += 1
            self._logger.debug("cache_entry_expired", url=key)
            return None

        entry.hits += 1
        self._hits += 1
        return entry

    def put(
        self,
        url: str,
        content: str,
        extraction_results: Optional[List[ExtractionRecord]] = None,
        ttl_ms: Optional[int] = None,
    ) -> CacheEntry:
        """
        Store a fetched page and record its extraction yield.

        Args:
            url: Page URL
            content: Page text (may be empty when the fetcher returns none)
            extraction_results: Records extracted from the page
            ttl_ms: Entry TTL (defaults to default_ttl_ms)

        Returns:
            The stored entry
        """
        key = normalize_url(url)
        now = self._clock()
        entry = CacheEntry(
            url=key,
            content=content,
            extraction_results=list(extraction_results) if extraction_results is not None else None,
            fetched_at=now,
            ttl_ms=ttl_ms or self.default_ttl_ms,
        )
        self._pages[key] = entry

        if extraction_results:
            domain = extract_domain(key)
            domain_entry = self._live_domain_entry(domain, now)
            if domain_entry is None:
                domain_entry = DomainMapEntry(domain=domain)
                self._domain_map[domain] = domain_entry
            domain_entry.url_yields[key] = len(extraction_results)
            domain_entry.updated_at = now

        self._logger.debug(
            "page_cached",
            url=key,
            extractions=len(extraction_results or []),
        )
        return entry

    def _live_domain_entry(self, domain: str, now: float) -> Optional[DomainMapEntry]:
        entry = self._domain_map.get(domain)
        if entry is None:
            return None
        if (now - entry.updated_at) * 1000 >= self.domain_map_ttl_ms:
            del self._domain_map[domain]
            return None
        return entry

    def get_high_signal_urls(self, domain: str) -> List[str]:
        """
        URLs previously fetched for a domain that yielded at least one extraction.

        Args:
            domain: Domain name

        Returns:
            URLs ordered by extraction yield, highest first
        """
        entry = self._live_domain_entry(normalize_domain(domain), self._clock())
        if entry is None:
            return []
        ranked = sorted(entry.url_yields.items(), key=lambda item: -item[1])
        return [url for url, count in ranked if count >= 1]

    def invalidate(self, url: str) -> bool:
        """Drop one page. Returns True if it was cached."""
        return self._pages.pop(normalize_url(url), None) is not None

    def prune_expired(self) -> int:
        """Remove every expired page entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._pages.items() if entry.is_expired(now)]
        for key in expired:
            del self._pages[key]
        if expired:
            self._logger.info("cache_pruned", removed=len(expired))
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Hit/miss counters and sizes."""
        lookups = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "pages": len(self._pages),
            "domains": len(self._domain_map),
        }

    def clear(self) -> None:
        """Drop all entries and reset counters."""
        self._pages.clear()
        self._domain_map.clear()
        self._hits = 0
        self._misses = 0
        self._logger.info("cache_cleared")
