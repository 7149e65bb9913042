"""Tests for the page cache and the domain high-signal URL map."""

import pytest

from capy_web.cache.cache_manager import CacheManager
from capy_web.schemas.claim_schema import ExtractionRecord


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def records(count: int):
    return [ExtractionRecord(schema_name="pricing", fields={"i": i}) for i in range(count)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheManager(default_ttl_ms=1_000, domain_map_ttl_ms=10_000, clock=clock)


class TestPageCache:
    """Test TTL page entries."""

    def test_miss_then_hit(self, cache):
        assert cache.get("https://acme.com/pricing") is None
        cache.put("https://acme.com/pricing", "Pro $49", records(1))

        entry = cache.get("https://acme.com/pricing")
        assert entry.content == "Pro $49"
        assert entry.hits == 1
        assert cache.get_stats()["hits"] == 1
        assert cache.get_stats()["misses"] == 1

    def test_equivalent_urls_share_entry(self, cache):
        cache.put("https://www.Acme.com/pricing/?utm_source=x#plans", "Pro $49")
        assert cache.get("https://www.acme.com/pricing") is not None

    def test_entry_expires(self, cache, clock):
        cache.put("https://acme.com/", "home")
        clock.now += 1.0
        assert cache.get("https://acme.com/") is None
        assert cache.get_stats()["pages"] == 0

    def test_custom_ttl(self, cache, clock):
        cache.put("https://acme.com/", "home", ttl_ms=5_000)
        clock.now += 2.0
        assert cache.get("https://acme.com/") is not None

    def test_no_extractions_cached_as_none(self, cache):
        entry = cache.put("https://acme.com/", "home")
        assert entry.extraction_results is None

    def test_invalidate(self, cache):
        cache.put("https://acme.com/", "home")
        assert cache.invalidate("https://acme.com/")
        assert not cache.invalidate("https://acme.com/")

    def test_prune_expired(self, cache, clock):
        cache.put("https://acme.com/a", "a")
        clock.now += 0.5
        cache.put("https://acme.com/b", "b")
        clock.now += 0.6
        assert cache.prune_expired() == 1
        assert cache.get("https://acme.com/b") is not None

    def test_clear_resets_counters(self, cache):
        cache.put("https://acme.com/", "home", records(1))
        cache.get("https://acme.com/")
        cache.clear()

        assert cache.get_stats() == {"hits": 0, "misses": 0, "hit_rate": 0.0, "pages": 0, "domains": 0}


class TestDomainMap:
    """Test high-signal URL tracking."""

    def test_urls_ranked_by_yield(self, cache):
        cache.put("https://acme.com/about", "about", records(1))
        cache.put("https://acme.com/pricing", "pricing", records(3))
        cache.put("https://acme.com/blog", "blog", [])

        assert cache.get_high_signal_urls("www.acme.com") == [
            "https://acme.com/pricing",
            "https://acme.com/about",
        ]

    def test_unknown_domain(self, cache):
        assert cache.get_high_signal_urls("acme.com") == []

    def test_domain_map_outlives_pages(self, cache, clock):
        cache.put("https://acme.com/pricing", "pricing", records(2))
        clock.now += 5.0
        assert cache.get("https://acme.com/pricing") is None
        assert cache.get_high_signal_urls("acme.com") == ["https://acme.com/pricing"]

    def test_domain_map_expires(self, cache, clock):
        cache.put("https://acme.com/pricing", "pricing", records(2))
        clock.now += 10.0
        assert cache.get_high_signal_urls("acme.com") == []
        assert cache.get_stats()["domains"] == 0
