"""Confidence engine: decides when a research session has learned enough.

Overall confidence is the mean, over the plan's primary questions, of the
best non-contradicted claim score mapped to each question (an unanswered
question counts as 0). It is recomputed from the full claim snapshot on
every update, so concurrent paths that update back-to-back never lose each
other's contributions.

Every attempted page visit produces one update() call and therefore one
marginal-gain sample, even when the page changed nothing (gain 0).

Stop conditions, in priority order:
1. An externally requested stop (always wins)
2. Overall confidence reached the threshold
3. Average marginal gain over the sample window below the floor
4. Any budget exhausted (time, pages, cost)
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from capy_web.config.logging import get_logger
from capy_web.config.settings import settings
from capy_web.schemas.claim_schema import Claim, ClaimConfidence
from capy_web.schemas.research_schema import Budgets, Question
from capy_web.schemas.session_schema import StopCondition, StopReason

PROJECTION_DECAY = 0.8
PROJECTION_SAMPLES = 5
ANSWERED_THRESHOLD = 0.7


@dataclass
class MarginalGainSample:
    """Confidence before and after one processed page."""

    timestamp: float
    action: str
    before: float
    after: float

    @property
    def gain(self) -> float:
        return self.after - self.before


@dataclass
class ConfidenceState:
    """Snapshot of the session's aggregate confidence."""

    overall: float = 0.0
    per_question: Dict[str, float] = field(default_factory=dict)
    pages_visited: int = 0
    avg_marginal_gain: float = 0.0
    cost_units: int = 0
    last_action: Optional[str] = None


class ConfidenceEngine:
    """
    Aggregate confidence tracking and stop-condition policy.

    Single writer: only the orchestrator calls update(), under the same lock
    that serializes claim ingestion.
    """

    def __init__(
        self,
        budgets: Budgets,
        window: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the engine.

        Args:
            budgets: Session budgets (time, pages, cost, marginal-gain floor)
            window: Marginal-gain sample window (defaults to settings)
            clock: Time source in seconds
        """
        self.budgets = budgets
        self.window = window or settings.marginal_gain_window
        self._clock = clock
        self._questions: List[Question] = []
        self._per_question: Dict[str, float] = {}
        self._overall = 0.0
        self._history: List[MarginalGainSample] = []
        self._pages_visited = 0
        self._cost_units = 0
        self._started_at = clock()
        self._stop_request: Optional[StopCondition] = None
        self.logger = get_logger("ConfidenceEngine")

    def initialize(self, questions: Iterable[Question]) -> None:
        """Seed per-question confidence at 0 and restart the clock."""
        self._questions = list(questions)
        self._per_question = {q.id: 0.0 for q in self._questions}
        self._overall = 0.0
        self._history = []
        self._pages_visited = 0
        self._cost_units = 0
        self._started_at = self._clock()
        self._stop_request = None
        self.logger.debug("Confidence engine initialized", questions=len(self._questions))

    # ── Updates ────────────────────────────────────────────────────

    def update(self, all_claims: Iterable[Claim], source_tag: str) -> float:
        """
        Recompute confidence from the current full claim snapshot.

        Args:
            all_claims: Every claim in the graph
            source_tag: What produced this update (usually the visited URL)

        Returns:
            The change in overall confidence caused by this update
        """
        best: Dict[str, float] = {q.id: 0.0 for q in self._questions}
        for claim in all_claims:
            if claim.question_id not in best:
                continue
            if claim.confidence == ClaimConfidence.CONTRADICTED:
                continue
            best[claim.question_id] = max(best[claim.question_id], claim.confidence_score)

        before = self._overall
        self._per_question = best
        self._overall = sum(best.values()) / len(best) if best else 0.0
        self._pages_visited += 1
        self._history.append(
            MarginalGainSample(
                timestamp=self._clock(),
                action=source_tag,
                before=before,
                after=self._overall,
            )
        )

        delta = self._overall - before
        self.logger.debug(
            "Confidence updated",
            source=source_tag,
            overall=round(self._overall, 4),
            delta=round(delta, 4),
        )
        return delta

    def record_cost(self, units: int = 1) -> None:
        """Charge cost units (one per network fetch)."""
        self._cost_units += units

    def request_stop(
        self,
        reason: StopReason = StopReason.USER_STOP,
        details: str = "Stop requested",
    ) -> None:
        """Register an external stop. The first request is kept."""
        if self._stop_request is None:
            self._stop_request = self._condition(reason, details)

    # ── Queries ────────────────────────────────────────────────────

    @property
    def avg_marginal_gain(self) -> float:
        """Mean gain of the most recent samples (0 with no samples)."""
        recent = self._history[-self.window:]
        if not recent:
            return 0.0
        return sum(sample.gain for sample in recent) / len(recent)

    @property
    def pages_visited(self) -> int:
        return self._pages_visited

    @property
    def cost_units(self) -> int:
        return self._cost_units

    def elapsed_ms(self) -> float:
        return (self._clock() - self._started_at) * 1000

    def get_overall_confidence(self) -> float:
        return self._overall

    def get_question_confidence(self, question_id: str) -> float:
        return self._per_question.get(question_id, 0.0)

    def _condition(self, reason: StopReason, details: str) -> StopCondition:
        return StopCondition(
            reason=reason,
            details=details,
            final_confidence=max(0.0, min(1.0, self._overall)),
        )

    def check_stop_condition(self, threshold: float) -> Optional[StopCondition]:
        """
        Evaluate stop conditions in priority order.

        Args:
            threshold: Overall confidence required for success

        Returns:
            The first applicable StopCondition, or None to keep going
        """
        if self._stop_request is not None:
            return self._stop_request.model_copy(
                update={"final_confidence": max(0.0, min(1.0, self._overall))}
            )

        if self._overall >= threshold:
            return self._condition(
                StopReason.CONFIDENCE_REACHED,
                f"Overall confidence {self._overall:.1%} reached threshold {threshold:.1%}",
            )

        if len(self._history) >= self.window:
            avg_gain = self.avg_marginal_gain
            if avg_gain < self.budgets.marginal_gain_floor:
                return self._condition(
                    StopReason.MARGINAL_GAIN_LOW,
                    f"Marginal gain {avg_gain:.2%} below floor "
                    f"{self.budgets.marginal_gain_floor:.2%}",
                )

        elapsed = self.elapsed_ms()
        if elapsed >= self.budgets.max_time_ms:
            return self._condition(
                StopReason.BUDGET_EXHAUSTED,
                f"Time budget exhausted: {elapsed / 1000:.1f}s >= "
                f"{self.budgets.max_time_ms / 1000:.1f}s",
            )
        if self._pages_visited >= self.budgets.max_pages:
            return self._condition(
                StopReason.BUDGET_EXHAUSTED,
                f"Page budget exhausted: {self._pages_visited} >= {self.budgets.max_pages}",
            )
        if self._cost_units >= self.budgets.max_cost_units:
            return self._condition(
                StopReason.BUDGET_EXHAUSTED,
                f"Cost budget exhausted: {self._cost_units} >= {self.budgets.max_cost_units}",
            )

        return None

    def get_underconfident_questions(self) -> List[Question]:
        """Questions whose confidence is below their own requirement."""
        return [
            q for q in self._questions
            if self._per_question.get(q.id, 0.0) < q.required_confidence
        ]

    def projected_gain(self) -> float:
        """Expected gain of the next page: recent average gain decayed by 0.8."""
        recent = self._history[-PROJECTION_SAMPLES:]
        if not recent:
            return 0.0
        return sum(sample.gain for sample in recent) / len(recent) * PROJECTION_DECAY

    def estimate_time_to_threshold(self, threshold: float) -> Optional[float]:
        """
        Linear extrapolation of the time needed to reach the threshold.

        Advisory only; never used to decide stopping.

        Returns:
            Milliseconds, 0 if already reached, None when not estimable
        """
        if self._overall >= threshold:
            return 0.0
        if len(self._history) < 2:
            return None

        span = self._history[-1].timestamp - self._history[0].timestamp
        growth = self._history[-1].after - self._history[0].before
        if growth <= 0 or span <= 0:
            return None

        rate_per_ms = growth / (span * 1000)
        return (threshold - self._overall) / rate_per_ms

    def get_state(self) -> ConfidenceState:
        """Copy of the current aggregate state."""
        return ConfidenceState(
            overall=self._overall,
            per_question=dict(self._per_question),
            pages_visited=self._pages_visited,
            avg_marginal_gain=self.avg_marginal_gain,
            cost_units=self._cost_units,
            last_action=self._history[-1].action if self._history else None,
        )

    def get_summary(self) -> Dict[str, Any]:
        """Progress summary including budget consumption fractions."""
        elapsed = self.elapsed_ms()
        answered = sum(1 for conf in self._per_question.values() if conf >= ANSWERED_THRESHOLD)
        return {
            "overall": self._overall,
            "questions_answered": answered,
            "questions_total": len(self._questions),
            "avg_marginal_gain": self.avg_marginal_gain,
            "projected_gain": self.projected_gain(),
            "pages_visited": self._pages_visited,
            "cost_units": self._cost_units,
            "elapsed_ms": elapsed,
            "budget_used": {
                "time": elapsed / self.budgets.max_time_ms,
                "pages": self._pages_visited / self.budgets.max_pages,
                "cost": self._cost_units / self.budgets.max_cost_units,
            },
        }
