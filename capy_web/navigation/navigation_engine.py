"""Navigation engine: policy-checked, rate-limited, abortable page visits.

One BrowsingSession exists per execution path. visit_url() runs, in order:

1. URL policy (http/https only, no embedded credentials)
2. Cache lookup
3. robots.txt check
4. Rate-limit wait (global bucket plus per-domain spacing)
5. Fetch through the attached PageFetcher
6. Extraction through the Extractor when the fetcher returned only text,
   with records fitted to the URL's domain adapter
7. Cache store, source-intelligence update, telemetry

Every suspension point (robots fetch, rate-limit wait, fetch, extraction)
races against the session's abort event, so terminate_session() makes an
in-flight visit return promptly instead of waiting out a network timeout.

Per-URL failures never raise: they come back as VisitResult(success=False).
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from capy_web.cache.cache_manager import CacheManager
from capy_web.config.logging import get_logger
from capy_web.core.source_intelligence import SourceIntelligenceEngine, estimate_content_freshness
from capy_web.exceptions import SessionNotFoundError
from capy_web.navigation.adapters import AdapterRegistry
from capy_web.navigation.fetchers import Extractor, PageFetcher
from capy_web.navigation.rate_limiter import DomainRateLimiter
from capy_web.navigation.robots import RobotsPolicy
from capy_web.navigation.url_tools import extract_domain, has_embedded_credentials, parse_url
from capy_web.schemas.claim_schema import ExtractionRecord
from capy_web.schemas.research_schema import ExecutionPath
from capy_web.telemetry.telemetry_engine import TelemetryEngine


@dataclass
class VisitResult:
    """Outcome of one visit_url() call."""

    url: str
    success: bool
    extraction_results: List[ExtractionRecord] = field(default_factory=list)
    content: str = ""
    from_cache: bool = False
    fetched: bool = False
    blocked: bool = False
    aborted: bool = False
    load_time_ms: int = 0
    error: Optional[str] = None
    adapter: Optional[str] = None


@dataclass
class BrowsingSession:
    """Browsing state owned by one execution path."""

    id: str
    path_id: str
    domain_scope: List[str]
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    status: str = "active"
    termination_reason: Optional[str] = None
    visits: List[VisitResult] = field(default_factory=list)
    abort_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def active(self) -> bool:
        return self.status == "active"

    @property
    def pages_visited(self) -> int:
        return sum(1 for visit in self.visits if visit.success)

    @property
    def extractions(self) -> int:
        return sum(len(visit.extraction_results) for visit in self.visits)


class NavigationEngine:
    """
    Executes page visits for execution paths.

    Attributes:
        fetcher: Page-fetching collaborator
        extractor: Extraction collaborator (optional)
        use_cache: Global cache switch; visit_url(use_cache=False) bypasses per call
        adapters: Registry choosing the extraction schema for each URL
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        source_intel: SourceIntelligenceEngine,
        cache: Optional[CacheManager] = None,
        telemetry: Optional[TelemetryEngine] = None,
        extractor: Optional[Extractor] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        robots: Optional[RobotsPolicy] = None,
        use_cache: bool = True,
        adapters: Optional[AdapterRegistry] = None,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.source_intel = source_intel
        self.cache = cache
        self.telemetry = telemetry
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self.robots = robots
        self.use_cache = use_cache
        self.adapters = adapters or AdapterRegistry()
        self._sessions: Dict[str, BrowsingSession] = {}
        self.logger = get_logger("NavigationEngine")

    # ── Session lifecycle ──────────────────────────────────────────

    def start_session(self, path: ExecutionPath) -> BrowsingSession:
        """Open a browsing session scoped to one execution path."""
        session = BrowsingSession(
            id=f"NAV-{uuid.uuid4().hex[:8]}",
            path_id=path.id,
            domain_scope=list(path.domain_scope),
        )
        self._sessions[session.id] = session
        self.logger.debug("Browsing session started", session_id=session.id, path_id=path.id)
        return session

    def get_session(self, session_id: str) -> BrowsingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def end_session(self, session_id: str, final_status: str = "completed") -> None:
        """Release a session after its path finished."""
        session = self.get_session(session_id)
        if not session.active:
            return
        session.status = final_status
        session.ended_at = datetime.now(timezone.utc)
        session.abort_event.set()
        self.logger.debug(
            "Browsing session ended",
            session_id=session_id,
            status=final_status,
            pages=session.pages_visited,
        )

    def terminate_session(self, session_id: str, reason: str) -> None:
        """
        Terminate a session, aborting any in-flight visit.

        Safe to call while visit_url() is suspended on the same session and
        safe to call more than once.
        """
        session = self._sessions.get(session_id)
        if session is None or not session.active:
            return
        session.status = "terminated"
        session.termination_reason = reason
        session.ended_at = datetime.now(timezone.utc)
        session.abort_event.set()
        self.logger.info("Browsing session terminated", session_id=session_id, reason=reason)

    def close_all(self, reason: str = "Session closed") -> int:
        """Terminate every active session. Returns how many were terminated."""
        active = [s.id for s in self._sessions.values() if s.active]
        for session_id in active:
            self.terminate_session(session_id, reason)
        return len(active)

    def active_sessions(self) -> List[BrowsingSession]:
        return [s for s in self._sessions.values() if s.active]

    # ── Visiting ───────────────────────────────────────────────────

    @staticmethod
    async def _race(session: BrowsingSession, awaitable: Awaitable[Any]) -> Tuple[bool, Any]:
        """
        Run an awaitable unless the session aborts first.

        Returns:
            (True, result) if it completed, (False, None) if aborted
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(session.abort_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        # cancel() only requests cancellation; the task is not done yet
        if not task.done():
            task.cancel()
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            return False, None
        if task.cancelled():
            return False, None
        return True, task.result()

    def _finish(self, session: BrowsingSession, result: VisitResult, start: float) -> VisitResult:
        result.load_time_ms = int((time.monotonic() - start) * 1000)
        session.visits.append(result)
        return result

    def _aborted(self, session: BrowsingSession, url: str, start: float) -> VisitResult:
        self.logger.debug("Visit aborted", url=url, session_id=session.id)
        return self._finish(
            session,
            VisitResult(url=url, success=False, aborted=True, error="Aborted"),
            start,
        )

    def _blocked(self, session: BrowsingSession, url: str, reason: str, start: float) -> VisitResult:
        if self.telemetry is not None:
            self.telemetry.record_blocked(url, reason, session.path_id)
        return self._finish(
            session,
            VisitResult(url=url, success=False, blocked=True, error=reason),
            start,
        )

    async def visit_url(
        self,
        session_id: str,
        url: str,
        use_cache: bool = True,
        extraction_targets: Optional[List[str]] = None,
    ) -> VisitResult:
        """
        Visit one URL within a browsing session.

        Args:
            session_id: Session returned by start_session()
            url: Absolute http(s) URL
            use_cache: Consult the cache before fetching
            extraction_targets: What the extractor should look for; the URL's
                adapter schema is appended when not already named

        Returns:
            VisitResult; success=False on any per-URL failure or abort

        Raises:
            SessionNotFoundError: Unknown session id
        """
        session = self.get_session(session_id)
        start = time.monotonic()
        targets = list(extraction_targets or [])

        if not session.active:
            return self._aborted(session, url, start)

        try:
            parse_url(url)
        except ValueError as e:
            return self._blocked(session, url, f"Invalid URL: {e}", start)
        if has_embedded_credentials(url):
            return self._blocked(session, url, "URL carries credentials", start)

        domain = extract_domain(url)
        adapter = self.adapters.get_adapter(url)
        for target in adapter.extraction_targets():
            if target not in targets:
                targets.append(target)

        if use_cache and self.use_cache and self.cache is not None:
            entry = self.cache.get(url)
            if entry is not None:
                if self.telemetry is not None:
                    self.telemetry.record_page_load(url, True, 0, from_cache=True, path_id=session.path_id)
                return self._finish(
                    session,
                    VisitResult(
                        url=url,
                        success=True,
                        extraction_results=list(entry.extraction_results or []),
                        content=entry.content,
                        from_cache=True,
                        adapter=adapter.name,
                    ),
                    start,
                )

        fetch_started = False
        try:
            if self.robots is not None:
                completed, allowed = await self._race(session, self.robots.allowed(url))
                if not completed:
                    return self._aborted(session, url, start)
                if not allowed:
                    return self._blocked(session, url, "Blocked by robots.txt", start)

            if not await self.rate_limiter.acquire(domain, session.abort_event):
                return self._aborted(session, url, start)

            fetch_started = True
            completed, fetch_result = await self._race(
                session, self.fetcher.fetch(url, targets)
            )
            if not completed:
                return self._aborted(session, url, start)

            if not fetch_result.success:
                return self._failed(session, url, domain, fetch_result.error or "Fetch failed", start)

            records = fetch_result.extraction_results
            if records is None:
                records = []
                if self.extractor is not None and fetch_result.content:
                    completed, records = await self._race(
                        session,
                        self.extractor.extract(url, fetch_result.content, targets),
                    )
                    if not completed:
                        return self._aborted(session, url, start)
            records = [adapter.apply(record) for record in records]
        except Exception as e:
            self.logger.warning("Visit failed", url=url, error=str(e))
            return self._failed(
                session, url, domain, f"{type(e).__name__}: {e}", start, fetched=fetch_started
            )

        content = fetch_result.content or ""
        if self.cache is not None:
            self.cache.put(url, content, extraction_results=records)

        self.source_intel.update_source_intelligence(
            domain,
            success=True,
            url=url,
            extraction_yield=len(records),
            content_freshness=estimate_content_freshness(content) if content else None,
        )

        result = self._finish(
            session,
            VisitResult(
                url=url,
                success=True,
                extraction_results=list(records),
                content=content,
                fetched=True,
                adapter=adapter.name,
            ),
            start,
        )
        if self.telemetry is not None:
            self.telemetry.record_page_load(url, True, result.load_time_ms, path_id=session.path_id)
            if records:
                self.telemetry.record_extraction(url, len(records), session.path_id)
        return result

    def _failed(
        self,
        session: BrowsingSession,
        url: str,
        domain: str,
        error: str,
        start: float,
        fetched: bool = True,
    ) -> VisitResult:
        self.source_intel.update_source_intelligence(
            domain,
            success=False,
            url=url,
            extraction_yield=0,
            blocked_paths=[url] if fetched else None,
        )
        result = self._finish(
            session,
            VisitResult(url=url, success=False, fetched=fetched, error=error),
            start,
        )
        if self.telemetry is not None:
            self.telemetry.record_page_load(url, False, result.load_time_ms, path_id=session.path_id)
            self.telemetry.record_error(error, url=url, fatal=False, path_id=session.path_id)
        return result
