"""Schema package for research plans, claims, source intelligence and sessions.

Primary exports:
- ResearchObjective / ResearchPlan: planning input and output
- Claim / ExtractionRecord: claim graph input and records
- SourceIntel: scored view of a domain
- ResearchResult: what a research session returns

Usage:
    from capy_web.schemas import ResearchObjective, SourceTier
    objective = ResearchObjective(query="Acme pricing", known_domains=["acme.com"])
"""

from capy_web.schemas.claim_schema import (
    Claim,
    ClaimConfidence,
    ClaimRelationship,
    ExtractionRecord,
    SourceRef,
    SourceTier,
    VerificationEvent,
)
from capy_web.schemas.research_schema import (
    MODE_BUDGETS,
    Budgets,
    DomainExpectation,
    ExecutionPath,
    OperatorMode,
    PlanProposal,
    Question,
    RankedDomain,
    ResearchConstraints,
    ResearchObjective,
    ResearchPlan,
)
from capy_web.schemas.session_schema import (
    Answer,
    EventType,
    ExecutionStats,
    ExecutionStatus,
    ProgressState,
    ResearchResult,
    ResearchSession,
    StopCondition,
    StopReason,
    TelemetryEvent,
)
from capy_web.schemas.source_schema import SourceHistory, SourceIntel, SourceScores

__all__ = [
    # Claims
    "Claim",
    "ClaimConfidence",
    "ClaimRelationship",
    "ExtractionRecord",
    "SourceRef",
    "SourceTier",
    "VerificationEvent",
    # Planning
    "MODE_BUDGETS",
    "Budgets",
    "DomainExpectation",
    "ExecutionPath",
    "OperatorMode",
    "PlanProposal",
    "Question",
    "RankedDomain",
    "ResearchConstraints",
    "ResearchObjective",
    "ResearchPlan",
    # Sessions
    "Answer",
    "EventType",
    "ExecutionStats",
    "ExecutionStatus",
    "ProgressState",
    "ResearchResult",
    "ResearchSession",
    "StopCondition",
    "StopReason",
    "TelemetryEvent",
    # Sources
    "SourceHistory",
    "SourceIntel",
    "SourceScores",
]
