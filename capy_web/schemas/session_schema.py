"""Session, telemetry and result schemas.

ProgressState is the polling-friendly snapshot the telemetry engine derives
from its event log. ResearchResult is what research() returns; it is built
on every non-fatal termination, so partial answers are never discarded.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from capy_web.schemas.claim_schema import Claim, ClaimConfidence, SourceRef
from capy_web.schemas.research_schema import ResearchObjective, ResearchPlan


class ExecutionStatus(str, Enum):
    """Session state machine: idle -> planning -> executing -> completed | failed."""

    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    PAUSED = "paused"
    STOPPING = "stopping"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(str, Enum):
    """Telemetry event stream types."""

    PAGE_LOAD = "page_load"
    EXTRACTION = "extraction"
    CLAIM_FOUND = "claim_found"
    VERIFICATION = "verification"
    STRATEGY_SHIFT = "strategy_shift"
    PATH_TERMINATED = "path_terminated"
    STATUS_CHANGE = "status_change"
    ERROR = "error"
    BLOCKED = "blocked"


class StopReason(str, Enum):
    """Why a research session ended."""

    CONFIDENCE_REACHED = "confidence_reached"
    MARGINAL_GAIN_LOW = "marginal_gain_low"
    BUDGET_EXHAUSTED = "budget_exhausted"
    USER_STOP = "user_stop"
    ERROR = "error"
    PATHS_EXHAUSTED = "paths_exhausted"
    SIMULATION = "simulation"


class StopCondition(BaseModel):
    """The policy decision that ended a session."""

    reason: StopReason
    details: str
    final_confidence: float = Field(..., ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TelemetryEvent(BaseModel):
    """One entry of the append-only session event log."""

    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: EventType
    session_id: str
    path_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class ProgressState(BaseModel):
    """Current progress snapshot derived from the event log."""

    status: ExecutionStatus = ExecutionStatus.IDLE
    plan_summary: Optional[str] = None
    current_phase: str = "idle"
    pages_visited: int = 0
    claims_found: int = 0
    confidence: float = 0.0
    active_paths: int = 0
    elapsed_ms: int = 0
    estimated_remaining_ms: Optional[int] = None


class Answer(BaseModel):
    """Best available answer to one primary question."""

    question_id: str
    question: str
    answer: Any = None
    confidence: ClaimConfidence = ClaimConfidence.UNCERTAIN
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    sources: List[SourceRef] = Field(default_factory=list)
    reasoning: str = "No data found"


class ExecutionStats(BaseModel):
    """Aggregate counters for one session."""

    total_time_ms: int = 0
    pages_visited: int = 0
    claims_found: int = 0
    claims_verified: int = 0
    contradictions_found: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    paths_executed: int = 0
    paths_terminated_early: int = 0
    avg_confidence_per_page: float = 0.0


class ResearchResult(BaseModel):
    """Outcome of a research session."""

    session_id: str
    objective: str
    success: bool
    answers: List[Answer] = Field(default_factory=list)
    claims: List[Claim] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    stats: ExecutionStats = Field(default_factory=ExecutionStats)
    visited_urls: List[str] = Field(default_factory=list)
    telemetry: List[TelemetryEvent] = Field(default_factory=list)
    stop_condition: StopCondition


class ResearchSession(BaseModel):
    """Live view of the session a research engine is running or last ran."""

    id: str
    objective: ResearchObjective
    plan: Optional[ResearchPlan] = None
    status: ExecutionStatus = ExecutionStatus.IDLE
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    stop_condition: Optional[StopCondition] = None
