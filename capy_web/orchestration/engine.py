"""Research orchestrator.

CapyWebEngine composes the planner, navigation, claim graph, confidence
and telemetry components into one research session:

    idle -> planning -> executing (<-> paused) -> stopping -> completed | failed

A session runs as a three-node LangGraph workflow (plan -> execute ->
assemble). The execute node is a cooperative scheduler over execution
paths: launch up to min(max_concurrency, parallelism) path tasks, wait for
any one to finish (or a control signal), re-check stop conditions, repeat.

Claim ingestion and confidence updates from concurrent path tasks are
serialized by one asyncio.Lock so no update is lost. stop() aborts every
in-flight visit immediately through the navigation engine.

Usage:
    engine = CapyWebEngine()
    engine.attach_fetcher(HttpPageFetcher(), extractor=GeminiResearchCollaborator())
    result = await engine.research(ResearchObjective(query="What does Acme charge?"))
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from capy_web.cache.cache_manager import CacheManager
from capy_web.config.logging import get_logger
from capy_web.config.settings import settings
from capy_web.core.claim_graph import ClaimGraph
from capy_web.core.confidence_engine import ConfidenceEngine
from capy_web.core.planner_brain import PlannerBrain, PlanningCollaborator
from capy_web.core.source_intelligence import SourceIntelligenceEngine
from capy_web.exceptions import FetcherNotAttachedError, PlanInvalidError, ResearchInProgressError
from capy_web.navigation.adapters import AdapterRegistry
from capy_web.navigation.fetchers import Extractor, PageFetcher
from capy_web.navigation.navigation_engine import BrowsingSession, NavigationEngine, VisitResult
from capy_web.navigation.rate_limiter import DomainRateLimiter
from capy_web.navigation.robots import RobotsPolicy
from capy_web.navigation.url_tools import VisitedUrls, dedupe_urls, extract_domain, root_urls
from capy_web.orchestration.path_queue import PathQueue
from capy_web.orchestration.state_schemas import ResearchState
from capy_web.schemas.claim_schema import ClaimConfidence, ExtractionRecord
from capy_web.schemas.research_schema import ExecutionPath, OperatorMode, ResearchObjective, ResearchPlan
from capy_web.schemas.session_schema import (
    Answer,
    ExecutionStats,
    ExecutionStatus,
    ProgressState,
    ResearchResult,
    ResearchSession,
    StopCondition,
    StopReason,
    TelemetryEvent,
)
from capy_web.telemetry.telemetry_engine import Disposer, TelemetryEngine
from capy_web.utils.logging import new_session_id

# Minimum answer score for a result to count as successful
SUCCESS_SCORE = 0.5


class EngineConfig(BaseModel):
    """Per-engine overrides of the global settings."""

    mode: OperatorMode = Field(default_factory=lambda: OperatorMode(settings.default_mode))
    parallelism: int = Field(default_factory=lambda: settings.parallelism, gt=0)
    cache_enabled: bool = Field(default_factory=lambda: settings.cache_enabled)
    page_cache_ttl_ms: int = Field(default_factory=lambda: settings.page_cache_ttl_ms, gt=0)
    domain_map_ttl_ms: int = Field(default_factory=lambda: settings.domain_map_ttl_ms, gt=0)
    requests_per_second: float = Field(default_factory=lambda: settings.requests_per_second, gt=0)
    burst_size: int = Field(default_factory=lambda: settings.burst_size, gt=0)
    per_domain_delay_ms: int = Field(default_factory=lambda: settings.per_domain_delay_ms, ge=0)
    respect_robots_txt: bool = Field(default_factory=lambda: settings.respect_robots_txt)
    ema_alpha: float = Field(default_factory=lambda: settings.ema_alpha, gt=0, le=1)
    marginal_gain_window: int = Field(default_factory=lambda: settings.marginal_gain_window, gt=0)
    max_telemetry_events: int = Field(default_factory=lambda: settings.max_telemetry_events, gt=0)


class CapyWebEngine:
    """
    Autonomous research engine. One research() run at a time per instance.

    Source intelligence and the page cache persist across runs; the claim
    graph, confidence state and telemetry are per session.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        collaborator: Optional[PlanningCollaborator] = None,
        source_intel: Optional[SourceIntelligenceEngine] = None,
        cache: Optional[CacheManager] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        robots: Optional[RobotsPolicy] = None,
        adapters: Optional[AdapterRegistry] = None,
    ):
        """
        Args:
            config: Engine configuration (defaults built from settings)
            collaborator: Planning collaborator; keyword planning when None
            source_intel: Shared source intelligence (new engine when None)
            cache: Shared page cache (new cache when None)
            rate_limiter: Fetch rate limiter (built from config when None)
            robots: robots.txt policy (built from config when None)
            adapters: Domain adapter registry (built-in adapters when None)
        """
        self.config = config or EngineConfig()
        self.logger = get_logger("CapyWebEngine")

        self.source_intel = source_intel or SourceIntelligenceEngine(ema_alpha=self.config.ema_alpha)
        self.cache = cache or CacheManager(
            default_ttl_ms=self.config.page_cache_ttl_ms,
            domain_map_ttl_ms=self.config.domain_map_ttl_ms,
        )
        self.rate_limiter = rate_limiter or DomainRateLimiter(
            requests_per_second=self.config.requests_per_second,
            burst_size=self.config.burst_size,
            per_domain_delay_ms=self.config.per_domain_delay_ms,
        )
        self.robots = robots or RobotsPolicy(enabled=self.config.respect_robots_txt)
        self.adapters = adapters or AdapterRegistry()
        self.claim_graph = ClaimGraph()
        self.planner = PlannerBrain(self.source_intel, collaborator=collaborator, mode=self.config.mode)

        self.fetcher: Optional[PageFetcher] = None
        self.extractor: Optional[Extractor] = None

        # Per-session state
        self.navigation: Optional[NavigationEngine] = None
        self.telemetry: Optional[TelemetryEngine] = None
        self.confidence: Optional[ConfidenceEngine] = None
        self._session: Optional[ResearchSession] = None
        self._visited = VisitedUrls()
        self._lock: Optional[asyncio.Lock] = None
        self._control_event: Optional[asyncio.Event] = None
        self._halted = False
        self._researching = False
        self._cache_baseline = (0, 0)

        self._event_observers: List[Callable[[TelemetryEvent], None]] = []
        self._progress_observers: List[Callable[[ProgressState], None]] = []
        self._complete_observers: List[Callable[[ResearchResult], None]] = []

        self._workflow = self._build_workflow()

    # ── Collaborators ──────────────────────────────────────────────

    def attach_fetcher(self, fetcher: PageFetcher, extractor: Optional[Extractor] = None) -> None:
        """
        Attach the page-fetching collaborator (and optionally an extractor).

        Must be called before research().
        """
        self.fetcher = fetcher
        if extractor is not None:
            self.extractor = extractor
        self.logger.info(
            "Fetcher attached",
            fetcher=type(fetcher).__name__,
            extractor=type(extractor).__name__ if extractor else None,
        )

    # ── Observers ──────────────────────────────────────────────────

    @staticmethod
    def _subscribe(observers: list, callback: Callable) -> Disposer:
        observers.append(callback)

        def dispose() -> None:
            if callback in observers:
                observers.remove(callback)

        return dispose

    def on_event(self, callback: Callable[[TelemetryEvent], None]) -> Disposer:
        """Subscribe to telemetry events of every session run by this engine."""
        return self._subscribe(self._event_observers, callback)

    def on_progress(self, callback: Callable[[ProgressState], None]) -> Disposer:
        """Subscribe to progress snapshots."""
        return self._subscribe(self._progress_observers, callback)

    def on_complete(self, callback: Callable[[ResearchResult], None]) -> Disposer:
        """Subscribe to final results."""
        return self._subscribe(self._complete_observers, callback)

    def _fan_out(self, observers: list, payload: Any) -> None:
        for callback in list(observers):
            try:
                callback(payload)
            except Exception:
                self.logger.exception("Engine observer failed")

    # ── Workflow ───────────────────────────────────────────────────

    def _build_workflow(self):
        """Compile the plan -> execute -> assemble session graph."""
        graph = StateGraph(ResearchState)
        graph.add_node("plan", self._plan_node)
        graph.add_node("execute", self._execute_node)
        graph.add_node("assemble", self._assemble_node)
        graph.set_entry_point("plan")
        graph.add_conditional_edges(
            "plan",
            self._route_after_plan,
            {"execute": "execute", "assemble": "assemble", "end": END},
        )
        graph.add_edge("execute", "assemble")
        graph.add_edge("assemble", END)
        return graph.compile()

    @staticmethod
    def _route_after_plan(state: ResearchState) -> str:
        return state.get("next_action", "end")

    async def _plan_node(self, state: ResearchState) -> Dict[str, Any]:
        objective = state["objective"]
        self._set_status(ExecutionStatus.PLANNING)

        plan = await self.planner.generate_plan(objective)
        self._session.plan = plan
        self.telemetry.set_plan_summary(plan.summary())

        if not plan.is_valid:
            return {"plan": plan, "next_action": "end"}

        self.confidence = ConfidenceEngine(plan.budgets, window=self.config.marginal_gain_window)
        self.confidence.initialize(plan.primary_questions)

        if plan.mode == OperatorMode.SIMULATION:
            stop = StopCondition(
                reason=StopReason.SIMULATION,
                details=f"Simulation only: {plan.summary()}",
                final_confidence=0.0,
            )
            return {"plan": plan, "stop_condition": stop, "next_action": "assemble"}

        return {"plan": plan, "next_action": "execute"}

    async def _execute_node(self, state: ResearchState) -> Dict[str, Any]:
        stop = await self._execute(state["plan"])
        return {"stop_condition": stop}

    async def _assemble_node(self, state: ResearchState) -> Dict[str, Any]:
        result = self._build_result(state["plan"], state["stop_condition"])
        return {"result": result}

    # ── Research ───────────────────────────────────────────────────

    async def research(self, objective: Union[ResearchObjective, str]) -> ResearchResult:
        """
        Run one research session to completion.

        Args:
            objective: Research objective (a bare string becomes the query)

        Returns:
            ResearchResult, including partial answers on any non-fatal stop

        Raises:
            ResearchInProgressError: Another run is executing on this engine
            FetcherNotAttachedError: attach_fetcher() was never called
            PlanInvalidError: The planner could not produce an executable plan
        """
        if self._researching:
            raise ResearchInProgressError(self._session.id if self._session else None)
        if self.fetcher is None:
            raise FetcherNotAttachedError()
        if isinstance(objective, str):
            objective = ResearchObjective(query=objective)

        self._researching = True
        try:
            self._begin_session(objective)
            self.logger.info("Research started", session_id=self._session.id, query=objective.query)

            try:
                final_state = await self._workflow.ainvoke({"objective": objective})
            except Exception as e:
                self._fail(f"{type(e).__name__}: {e}")
                raise

            plan = final_state.get("plan")
            if plan is None or not plan.is_valid:
                errors = plan.validation_errors if plan is not None else ["No plan produced"]
                self._fail(f"Invalid plan: {', '.join(errors)}")
                raise PlanInvalidError(errors)

            result = final_state["result"]
            self._session.stop_condition = result.stop_condition
            self._session.ended_at = datetime.now(timezone.utc)
            self._set_status(ExecutionStatus.COMPLETED)
            self.telemetry.notify_complete(result)

            self.logger.info(
                "Research completed",
                session_id=result.session_id,
                reason=result.stop_condition.reason.value,
                confidence=round(result.confidence, 3),
                pages=result.stats.pages_visited,
                success=result.success,
            )
            return result
        finally:
            self._researching = False

    def _begin_session(self, objective: ResearchObjective) -> None:
        session_id = new_session_id()
        self._session = ResearchSession(id=session_id, objective=objective)

        self.telemetry = TelemetryEngine(session_id, max_events=self.config.max_telemetry_events)
        self.telemetry.on_event(lambda event: self._fan_out(self._event_observers, event))
        self.telemetry.on_progress(lambda progress: self._fan_out(self._progress_observers, progress))
        self.telemetry.on_complete(lambda result: self._fan_out(self._complete_observers, result))

        self.navigation = NavigationEngine(
            fetcher=self.fetcher,
            source_intel=self.source_intel,
            cache=self.cache if self.config.cache_enabled else None,
            telemetry=self.telemetry,
            extractor=self.extractor,
            rate_limiter=self.rate_limiter,
            robots=self.robots,
            use_cache=self.config.cache_enabled,
            adapters=self.adapters,
        )
        self.confidence = None
        self.claim_graph.clear()
        self._visited = VisitedUrls()
        self._lock = asyncio.Lock()
        self._control_event = asyncio.Event()
        self._halted = False

        stats = self.cache.get_stats()
        self._cache_baseline = (stats["hits"], stats["misses"])
        self.telemetry.start("planning")

    def _set_status(self, status: ExecutionStatus) -> None:
        self._session.status = status
        self.telemetry.update_status(status)

    def _fail(self, message: str) -> None:
        """Mark the session failed and release every browsing session."""
        self._halted = True
        if self.navigation is not None:
            self.navigation.close_all("Session failed")
        self.telemetry.record_error(message, fatal=True)
        self._session.ended_at = datetime.now(timezone.utc)
        self._set_status(ExecutionStatus.FAILED)
        self.logger.error("Research failed", session_id=self._session.id, error=message)

    # ── Scheduling ─────────────────────────────────────────────────

    def _check_stop(self, threshold: float) -> Optional[StopCondition]:
        if self.telemetry.has_pending_stop():
            self.confidence.request_stop(StopReason.USER_STOP, self.telemetry.stop_reason or "Stop requested")
        return self.confidence.check_stop_condition(threshold)

    def _wait_timeout(self) -> float:
        remaining_ms = self.confidence.budgets.max_time_ms - self.confidence.elapsed_ms()
        return max(remaining_ms / 1000, 0.001)

    async def _execute(self, plan: ResearchPlan) -> StopCondition:
        """
        Drive execution paths until a stop condition fires or work runs out.

        Returns:
            The StopCondition that ended execution
        """
        self._set_status(ExecutionStatus.EXECUTING)
        if self.telemetry.is_paused():
            self._set_status(ExecutionStatus.PAUSED)
        self.telemetry.record_strategy_shift(
            "Plan ready", "planning", "executing", {"paths": len(plan.execution_paths)}
        )

        queue = PathQueue(plan.execution_paths)
        limit = min(plan.budgets.max_concurrency, self.config.parallelism)
        active: Dict[asyncio.Task, ExecutionPath] = {}
        stop: Optional[StopCondition] = None

        while queue or active:
            self._control_event.clear()

            stop = self._check_stop(plan.confidence_threshold)
            if stop is not None:
                break

            if not self.telemetry.is_paused():
                while queue and len(active) < limit:
                    path = queue.pop()
                    active[asyncio.create_task(self._run_path(path, plan))] = path
                self.telemetry.update_active_paths(len(active))

            waiter = asyncio.ensure_future(self._control_event.wait())
            try:
                done, _ = await asyncio.wait(
                    set(active) | {waiter},
                    timeout=self._wait_timeout(),
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                waiter.cancel()

            for task in done:
                if task is waiter:
                    continue
                active.pop(task)
                # Path tasks handle their own failures
                task.result()

            self.telemetry.update_active_paths(len(active))
            self.telemetry.update_confidence(
                self.confidence.get_overall_confidence(),
                self.confidence.estimate_time_to_threshold(plan.confidence_threshold),
            )

        if stop is None:
            stop = self._check_stop(plan.confidence_threshold) or StopCondition(
                reason=StopReason.PATHS_EXHAUSTED,
                details="All execution paths finished",
                final_confidence=max(0.0, min(1.0, self.confidence.get_overall_confidence())),
            )

        await self._halt(stop, list(active))
        return stop

    async def _halt(self, stop: StopCondition, active: List[asyncio.Task]) -> None:
        """Terminate in-flight paths and wait for them to unwind."""
        self._halted = True
        self._set_status(ExecutionStatus.STOPPING)
        if stop.reason != StopReason.USER_STOP:
            self.telemetry.record_strategy_shift(
                stop.details, "executing", "stopping", {"stop_reason": stop.reason.value}
            )

        terminated = self.navigation.close_all(stop.details)
        if active:
            await asyncio.gather(*active)
        self.telemetry.update_active_paths(0)
        self.logger.info(
            "Execution stopped",
            reason=stop.reason.value,
            details=stop.details,
            sessions_terminated=terminated,
        )

    def _halting(self) -> bool:
        return self._halted or self.telemetry.has_pending_stop()

    # ── Path execution ─────────────────────────────────────────────

    def _path_urls(self, path: ExecutionPath, plan: ResearchPlan) -> List[str]:
        """Expected pages, then known high-signal URLs, then domain roots."""
        urls: List[str] = []
        for domain in path.domain_scope:
            domain_urls: List[str] = []
            expectation = plan.get_expectation(domain)
            if expectation is not None:
                domain_urls.extend(expectation.expected_pages)
            domain_urls.extend(self.cache.get_high_signal_urls(domain))
            if not domain_urls:
                domain_urls.extend(root_urls(domain))
            urls.extend(domain_urls)
        return dedupe_urls(urls)

    async def _run_path(self, path: ExecutionPath, plan: ResearchPlan) -> None:
        """
        Visit one path's URLs sequentially.

        Never raises: an unexpected exception terminates this path only.
        """
        nav_session = self.navigation.start_session(path)
        path.status = "active"
        window = self.config.marginal_gain_window
        gains: Deque[float] = deque(maxlen=window)

        try:
            for url in self._path_urls(path, plan):
                if self._halting() or not nav_session.active:
                    break

                domain = extract_domain(url)
                if self.source_intel.should_avoid(domain):
                    self.telemetry.record_blocked(url, "Low-quality source", path.id)
                    continue
                if not self._visited.claim(url):
                    continue

                visit = await self.navigation.visit_url(
                    nav_session.id,
                    url,
                    use_cache=self.config.cache_enabled,
                    extraction_targets=path.extraction_targets,
                )
                if visit.aborted:
                    break

                async with self._lock:
                    if self._halting():
                        break
                    if visit.fetched:
                        self.confidence.record_cost()
                    if visit.success:
                        self._ingest(visit, path, plan)
                    delta = self.confidence.update(self.claim_graph.get_all_claims(), url)

                gains.append(delta)
                self._control_event.set()

                if len(gains) == window and sum(gains) / window < plan.budgets.marginal_gain_floor:
                    self._end_path_early(nav_session, path, sum(gains) / window)
                    return

            if nav_session.active and not self._halting():
                self.navigation.end_session(nav_session.id, "completed")
                path.status = "completed"
            else:
                reason = nav_session.termination_reason or "Session stopping"
                self.navigation.terminate_session(nav_session.id, reason)
                path.status = "terminated"
                path.termination_reason = reason
                self.telemetry.record_path_terminated(path.id, reason, early=False)
        except Exception as e:
            self.logger.error("Path failed", path_id=path.id, error=str(e))
            self.navigation.terminate_session(nav_session.id, f"Path failed: {e}")
            path.status = "terminated"
            path.termination_reason = f"{type(e).__name__}: {e}"
            self.telemetry.record_error(path.termination_reason, fatal=True, path_id=path.id)
        finally:
            self._control_event.set()

    def _end_path_early(self, nav_session: BrowsingSession, path: ExecutionPath, avg_gain: float) -> None:
        reason = "Low marginal gain"
        self.navigation.terminate_session(nav_session.id, reason)
        path.status = "terminated"
        path.termination_reason = reason
        self.telemetry.record_strategy_shift(
            reason, "exploring", "terminating_path", {"avg_gain": avg_gain}, path_id=path.id
        )
        self.telemetry.record_path_terminated(path.id, reason, early=True)

    def _map_question(self, record: ExtractionRecord, path: ExecutionPath, plan: ResearchPlan) -> Optional[str]:
        """
        Question an extraction record answers.

        Order: the record's own question_id, a path question whose type or
        hints name the record's schema, a path question whose text mentions
        it, the only question of a single-question plan.
        """
        question_ids = {q.id for q in plan.primary_questions}
        if record.question_id in question_ids:
            return record.question_id

        schema = record.schema_name.lower()
        candidates = [q for q in plan.primary_questions if q.id in path.question_ids] or plan.primary_questions
        for question in candidates:
            if question.question_type.lower() == schema or schema in (h.lower() for h in question.extraction_hints):
                return question.id
        for question in candidates:
            if schema in question.question.lower():
                return question.id
        if len(plan.primary_questions) == 1:
            return plan.primary_questions[0].id
        return None

    def _ingest(self, visit: VisitResult, path: ExecutionPath, plan: ResearchPlan) -> None:
        """Turn a visit's extraction records into claims. Caller holds the lock."""
        domain = extract_domain(visit.url)
        tier = self.source_intel.classify_domain(domain)

        for record in visit.extraction_results:
            history = {c.id: len(c.verification_history) for c in self.claim_graph.get_all_claims()}
            claim = self.claim_graph.create_claim(
                record,
                visit.url,
                tier,
                question_id=self._map_question(record, path, plan),
            )

            if claim.id not in history:
                self.telemetry.record_claim_found(
                    claim.id, claim.category, claim.confidence_score, visit.url, path.id
                )

            for updated in self.claim_graph.get_all_claims():
                for event in updated.verification_history[history.get(updated.id, 0):]:
                    self.telemetry.record_verification(
                        updated.id, event.type, event.new_confidence.value, path.id
                    )

            self.source_intel.update_consistency(self.claim_graph.peer_values(claim))

    # ── Result ─────────────────────────────────────────────────────

    def _build_result(self, plan: ResearchPlan, stop: StopCondition) -> ResearchResult:
        answers: List[Answer] = []
        for question in plan.primary_questions:
            best = self.claim_graph.get_best_answer_for_question(question.id)
            if best is None:
                answers.append(Answer(question_id=question.id, question=question.question))
                continue
            answers.append(
                Answer(
                    question_id=question.id,
                    question=question.question,
                    answer=best.normalized_value,
                    confidence=best.confidence,
                    confidence_score=best.confidence_score,
                    sources=list(best.sources),
                    reasoning=(
                        f"Based on {len(best.sources)} source(s) with "
                        f"{best.corroboration_count} corroboration(s)"
                    ),
                )
            )

        claim_stats = self.claim_graph.get_stats()
        cache_stats = self.cache.get_stats()
        overall = self.confidence.get_overall_confidence()
        pages = self.confidence.pages_visited

        stats = ExecutionStats(
            total_time_ms=self.telemetry.elapsed_ms(),
            pages_visited=pages,
            claims_found=claim_stats["total_claims"],
            claims_verified=claim_stats[ClaimConfidence.VERIFIED.value] + claim_stats[ClaimConfidence.HIGH.value],
            contradictions_found=claim_stats["contradiction_pairs"],
            cache_hits=cache_stats["hits"] - self._cache_baseline[0],
            cache_misses=cache_stats["misses"] - self._cache_baseline[1],
            paths_executed=sum(1 for p in plan.execution_paths if p.status in ("completed", "terminated")),
            paths_terminated_early=sum(1 for p in plan.execution_paths if p.status == "terminated"),
            avg_confidence_per_page=overall / max(pages, 1),
        )

        return ResearchResult(
            session_id=self._session.id,
            objective=plan.objective.query,
            success=any(a.confidence_score > SUCCESS_SCORE for a in answers),
            answers=answers,
            claims=self.claim_graph.get_all_claims(),
            confidence=max(0.0, min(1.0, overall)),
            stats=stats,
            visited_urls=self._visited.as_list(),
            telemetry=self.telemetry.get_events(),
            stop_condition=stop,
        )

    # ── Control surface ────────────────────────────────────────────

    def pause(self) -> None:
        """Stop dequeuing new paths; active paths keep running."""
        if self.telemetry is None or not self._researching:
            return
        self.telemetry.pause()
        self._control_event.set()

    def resume(self) -> None:
        if self.telemetry is None or not self._researching:
            return
        self.telemetry.resume()
        self._control_event.set()

    def stop(self, reason: Optional[str] = None) -> None:
        """
        Stop the running session.

        In-flight visits are aborted immediately; the scheduler then records
        a user_stop condition and assembles the partial result.
        """
        if self.telemetry is None or not self._researching:
            self.logger.debug("Stop ignored, no research running")
            return
        reason = reason or "User requested stop"
        self.telemetry.stop(reason)
        if self.navigation is not None:
            self.navigation.close_all(reason)
        self._control_event.set()

    def get_progress(self) -> Optional[ProgressState]:
        return self.telemetry.get_progress() if self.telemetry is not None else None

    def get_session(self) -> Optional[ResearchSession]:
        return self._session

    def is_researching(self) -> bool:
        return self._researching

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    def export_source_intelligence(self) -> Dict[str, Any]:
        """Serializable source reputation, for persisting across runs."""
        return self.source_intel.export_state()

    def import_source_intelligence(self, state: Dict[str, Any]) -> None:
        self.source_intel.import_state(state)

    def clear_cache(self) -> None:
        self.cache.clear()
        self.robots.forget()

    async def aclose(self) -> None:
        """Release HTTP resources owned by the engine."""
        await self.robots.aclose()

    async def __aenter__(self) -> "CapyWebEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


async def research(
    objective: Union[ResearchObjective, str],
    fetcher: PageFetcher,
    extractor: Optional[Extractor] = None,
    collaborator: Optional[PlanningCollaborator] = None,
    config: Optional[EngineConfig] = None,
) -> ResearchResult:
    """
    Run a single research session on a throwaway engine.

    Args:
        objective: Research objective or query string
        fetcher: Page-fetching collaborator
        extractor: Extraction collaborator, when the fetcher returns only text
        collaborator: Planning collaborator
        config: Engine configuration

    Returns:
        ResearchResult
    """
    async with CapyWebEngine(config=config, collaborator=collaborator) as engine:
        engine.attach_fetcher(fetcher, extractor=extractor)
        return await engine.research(objective)
