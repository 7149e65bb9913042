"""Tests for browsing sessions and policy-checked page visits."""

import asyncio
import time
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from capy_web.cache.cache_manager import CacheManager
from capy_web.core.source_intelligence import SourceIntelligenceEngine
from capy_web.exceptions import SessionNotFoundError
from capy_web.navigation.fetchers import FetchResult
from capy_web.navigation.navigation_engine import NavigationEngine
from capy_web.navigation.rate_limiter import DomainRateLimiter
from capy_web.schemas.claim_schema import ExtractionRecord
from capy_web.schemas.research_schema import ExecutionPath
from capy_web.schemas.session_schema import EventType
from capy_web.telemetry.telemetry_engine import TelemetryEngine

PRICE = ExtractionRecord(schema_name="pricing", fields={"plan": "Pro", "price": "$49"})
# PRICE as fitted by the pricing adapter: no plans list, no currency
SCORED_PRICE = PRICE.model_copy(update={"confidence": 0.5})


class StaticFetcher:
    """Returns a fixed result for every URL and counts calls."""

    def __init__(self, records=None, content="Acme Pro is $49.", success=True, delay=0.0):
        self.records = records
        self.content = content
        self.success = success
        self.delay = delay
        self.calls = []

    async def fetch(self, url, extraction_targets):
        self.calls.append((url, list(extraction_targets)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.success:
            return FetchResult(url=url, success=False, status_code=500, error="HTTP error 500")
        return FetchResult(url=url, success=True, content=self.content, extraction_results=self.records)


class RaisingFetcher:
    async def fetch(self, url, extraction_targets):
        raise RuntimeError("browser crashed")


@pytest.fixture
def source_intel():
    return SourceIntelligenceEngine(ema_alpha=0.3)


@pytest.fixture
def telemetry():
    return TelemetryEngine("SESSION-1")


@pytest.fixture
def path():
    return ExecutionPath(id="PATH-1", domain_scope=["acme.com"], priority=1.0)


def make_engine(fetcher, source_intel, telemetry, **kwargs) -> NavigationEngine:
    kwargs.setdefault("cache", CacheManager())
    return NavigationEngine(
        fetcher=fetcher,
        source_intel=source_intel,
        telemetry=telemetry,
        rate_limiter=DomainRateLimiter(requests_per_second=1000, burst_size=100, per_domain_delay_ms=0),
        **kwargs,
    )


class TestSessions:
    """Test browsing session lifecycle."""

    def test_start_and_end(self, source_intel, telemetry, path):
        engine = make_engine(StaticFetcher(), source_intel, telemetry)
        session = engine.start_session(path)

        assert session.id.startswith("NAV-")
        assert session.path_id == "PATH-1"
        assert session.active
        assert engine.active_sessions() == [session]

        engine.end_session(session.id)
        assert session.status == "completed"
        assert session.ended_at is not None
        assert engine.active_sessions() == []

    def test_terminate_is_idempotent(self, source_intel, telemetry, path):
        engine = make_engine(StaticFetcher(), source_intel, telemetry)
        session = engine.start_session(path)

        engine.terminate_session(session.id, "Low marginal gain")
        engine.terminate_session(session.id, "Second reason")

        assert session.status == "terminated"
        assert session.termination_reason == "Low marginal gain"
        assert session.abort_event.is_set()

    def test_close_all(self, source_intel, telemetry, path):
        engine = make_engine(StaticFetcher(), source_intel, telemetry)
        first = engine.start_session(path)
        engine.start_session(path)
        engine.end_session(first.id)

        assert engine.close_all("Stopped") == 1
        assert engine.active_sessions() == []

    def test_unknown_session(self, source_intel, telemetry):
        engine = make_engine(StaticFetcher(), source_intel, telemetry)
        with pytest.raises(SessionNotFoundError):
            engine.get_session("NAV-missing")


class TestVisitUrl:
    """Test visit outcomes."""

    @pytest.mark.asyncio
    async def test_successful_visit(self, source_intel, telemetry, path):
        fetcher = StaticFetcher(records=[PRICE])
        engine = make_engine(fetcher, source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/pricing", extraction_targets=["pricing"])

        assert result.success
        assert result.fetched
        assert not result.from_cache
        assert result.extraction_results == [SCORED_PRICE]
        assert fetcher.calls == [("https://acme.com/pricing", ["pricing"])]
        assert session.pages_visited == 1
        assert session.extractions == 1
        assert source_intel.get_source_intelligence("acme.com").visits == 1
        assert [e.type for e in telemetry.get_events()] == [EventType.PAGE_LOAD, EventType.EXTRACTION]
        assert telemetry.get_events()[0].path_id == "PATH-1"

    @pytest.mark.asyncio
    async def test_cache_hit_skips_fetch(self, source_intel, telemetry, path):
        fetcher = StaticFetcher(records=[PRICE])
        engine = make_engine(fetcher, source_intel, telemetry)
        session = engine.start_session(path)

        await engine.visit_url(session.id, "https://acme.com/pricing")
        cached = await engine.visit_url(session.id, "https://acme.com/pricing/#plans")

        assert cached.from_cache
        assert not cached.fetched
        assert cached.extraction_results == [SCORED_PRICE]
        assert len(fetcher.calls) == 1
        assert telemetry.get_events(EventType.PAGE_LOAD)[-1].data["from_cache"] is True

    @pytest.mark.asyncio
    async def test_cache_bypass(self, source_intel, telemetry, path):
        fetcher = StaticFetcher(records=[PRICE])
        engine = make_engine(fetcher, source_intel, telemetry)
        session = engine.start_session(path)

        await engine.visit_url(session.id, "https://acme.com/pricing")
        await engine.visit_url(session.id, "https://acme.com/pricing", use_cache=False)
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_cache_disabled(self, source_intel, telemetry, path):
        fetcher = StaticFetcher(records=[PRICE])
        engine = make_engine(fetcher, source_intel, telemetry, cache=None)
        session = engine.start_session(path)

        await engine.visit_url(session.id, "https://acme.com/pricing")
        await engine.visit_url(session.id, "https://acme.com/pricing")
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_extractor_used_for_text_only_results(self, source_intel, telemetry, path):
        extractor = MagicMock()
        extractor.extract = AsyncMock(return_value=[PRICE])
        engine = make_engine(StaticFetcher(records=None), source_intel, telemetry, extractor=extractor)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/pricing", extraction_targets=["pricing"])

        extractor.extract.assert_awaited_once_with("https://acme.com/pricing", "Acme Pro is $49.", ["pricing"])
        assert result.extraction_results == [SCORED_PRICE]

    @pytest.mark.asyncio
    async def test_text_only_without_extractor(self, source_intel, telemetry, path):
        engine = make_engine(StaticFetcher(records=None), source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/")
        assert result.success
        assert result.extraction_results == []

    @pytest.mark.asyncio
    async def test_content_freshness_recorded(self, source_intel, telemetry, path):
        year = datetime.now(timezone.utc).year
        engine = make_engine(StaticFetcher(records=[], content=f"Updated {year}"), source_intel, telemetry)
        session = engine.start_session(path)

        await engine.visit_url(session.id, "https://acme.com/")
        assert source_intel.get_source_intelligence("acme.com").content_freshness == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_fetch_failure(self, source_intel, telemetry, path):
        engine = make_engine(StaticFetcher(success=False), source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/pricing")

        assert not result.success
        assert result.fetched
        assert result.error == "HTTP error 500"
        history = source_intel.get_source_intelligence("acme.com")
        assert history.success_rate == pytest.approx(0.7)
        assert history.blocked_paths == ["https://acme.com/pricing"]
        error = telemetry.get_events(EventType.ERROR)[0]
        assert error.data["fatal"] is False

    @pytest.mark.asyncio
    async def test_fetcher_exception_is_a_failure(self, source_intel, telemetry, path):
        engine = make_engine(RaisingFetcher(), source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/")

        assert not result.success
        assert result.error == "RuntimeError: browser crashed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url", ["ftp://acme.com/file", "not a url", "https://user:pw@acme.com/"]
    )
    async def test_policy_blocks_url(self, source_intel, telemetry, path, url):
        fetcher = StaticFetcher()
        engine = make_engine(fetcher, source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, url)

        assert result.blocked
        assert fetcher.calls == []
        assert telemetry.get_events(EventType.BLOCKED)[0].data["url"] == url

    @pytest.mark.asyncio
    async def test_robots_disallow(self, source_intel, telemetry, path):
        robots = MagicMock()
        robots.allowed = AsyncMock(return_value=False)
        fetcher = StaticFetcher()
        engine = make_engine(fetcher, source_intel, telemetry, robots=robots)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/private")

        assert result.blocked
        assert result.error == "Blocked by robots.txt"
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_inactive_session_aborts(self, source_intel, telemetry, path):
        fetcher = StaticFetcher()
        engine = make_engine(fetcher, source_intel, telemetry)
        session = engine.start_session(path)
        engine.terminate_session(session.id, "Stopped")

        result = await engine.visit_url(session.id, "https://acme.com/")
        assert result.aborted
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_terminate_aborts_in_flight_fetch(self, source_intel, telemetry, path):
        engine = make_engine(StaticFetcher(records=[PRICE], delay=5.0), source_intel, telemetry)
        session = engine.start_session(path)

        asyncio.get_running_loop().call_later(0.05, engine.terminate_session, session.id, "User stop")
        start = time.monotonic()
        result = await engine.visit_url(session.id, "https://acme.com/pricing")

        assert result.aborted
        assert not result.success
        assert time.monotonic() - start < 1.0
        assert source_intel.get_source_intelligence("acme.com") is None
        assert not result.fetched
        assert telemetry.get_events(EventType.ERROR) == []
        assert session.visits == [result]

    @pytest.mark.asyncio
    async def test_terminate_aborts_in_flight_extraction(self, source_intel, telemetry, path):
        async def slow_extract(url, content, targets):
            await asyncio.sleep(5.0)
            return [PRICE]

        extractor = MagicMock()
        extractor.extract = slow_extract
        engine = make_engine(StaticFetcher(records=None), source_intel, telemetry, extractor=extractor)
        session = engine.start_session(path)

        asyncio.get_running_loop().call_later(0.05, engine.terminate_session, session.id, "User stop")
        result = await engine.visit_url(session.id, "https://acme.com/pricing")

        assert result.aborted
        assert source_intel.get_source_intelligence("acme.com") is None
        assert telemetry.get_events(EventType.ERROR) == []

    @pytest.mark.asyncio
    async def test_robots_exception_fails_before_fetch(self, source_intel, telemetry, path):
        robots = MagicMock()
        robots.allowed = AsyncMock(side_effect=RuntimeError("robots unreachable"))
        fetcher = StaticFetcher()
        engine = make_engine(fetcher, source_intel, telemetry, robots=robots)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/pricing")

        assert not result.success
        assert not result.fetched
        assert result.error == "RuntimeError: robots unreachable"
        assert fetcher.calls == []
        assert source_intel.get_source_intelligence("acme.com").blocked_paths == []

    @pytest.mark.asyncio
    async def test_fetcher_exception_counts_as_fetched(self, source_intel, telemetry, path):
        engine = make_engine(RaisingFetcher(), source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/")

        assert result.fetched
        assert source_intel.get_source_intelligence("acme.com").blocked_paths == ["https://acme.com/"]


class TestDomainAdapters:
    """Test per-URL adapter selection during visits."""

    @pytest.mark.asyncio
    async def test_adapter_schema_appended_to_targets(self, source_intel, telemetry, path):
        fetcher = StaticFetcher(records=[])
        engine = make_engine(fetcher, source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(
            session.id, "https://github.com/acme/sdk", extraction_targets=["features"]
        )

        assert fetcher.calls == [("https://github.com/acme/sdk", ["features", "github_repo"])]
        assert result.adapter == "GitHub Repository Adapter"

    @pytest.mark.asyncio
    async def test_generic_records_take_adapter_category(self, source_intel, telemetry, path):
        record = ExtractionRecord(
            schema_name="generic",
            fields={"certifications": ["SOC 2 Type II"], "has_soc2": True},
        )
        engine = make_engine(StaticFetcher(records=[record]), source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/trust")

        fitted = result.extraction_results[0]
        assert fitted.schema_name == "security_info"
        assert fitted.confidence == pytest.approx(0.85)
        assert fitted.fields == record.fields

    @pytest.mark.asyncio
    async def test_unmatched_url_uses_generic_adapter(self, source_intel, telemetry, path):
        record = ExtractionRecord(schema_name="features", fields={"sso": True}, confidence=0.9)
        fetcher = StaticFetcher(records=[record])
        engine = make_engine(fetcher, source_intel, telemetry)
        session = engine.start_session(path)

        result = await engine.visit_url(session.id, "https://acme.com/blog/launch", extraction_targets=["features"])

        assert fetcher.calls == [("https://acme.com/blog/launch", ["features"])]
        assert result.adapter == "Generic Web Adapter"
        assert result.extraction_results == [record]
