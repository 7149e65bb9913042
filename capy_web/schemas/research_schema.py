"""Research objective and plan schemas.

A research session starts from a ResearchObjective and is driven by the
ResearchPlan the Planner Brain produces for it. The plan is built once and
treated as read-only afterwards, except for the per-path status field which
only the task executing that path writes.

PlanProposal is the validated shape of the planning collaborator's raw
output. Language-model output is occasionally malformed, so everything the
collaborator returns passes through this model before a plan is built.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from capy_web.schemas.claim_schema import SourceTier


class OperatorMode(str, Enum):
    """Research depth presets.

    LIGHTNING: fast, cache-heavy, shallow.
    STANDARD: balanced and verified.
    DEEP_RESEARCH: many paths, contradiction aware.
    COMPLIANCE: authoritative sources only.
    SIMULATION: produce the plan, execute nothing.
    """

    LIGHTNING = "lightning"
    STANDARD = "standard"
    DEEP_RESEARCH = "deep"
    COMPLIANCE = "compliance"
    SIMULATION = "simulation"


class Budgets(BaseModel):
    """Caps bounding every research run. All fields must be positive."""

    max_time_ms: int = Field(..., description="Wall-clock budget in milliseconds")
    max_pages: int = Field(..., description="Maximum pages visited")
    max_concurrency: int = Field(..., description="Maximum concurrently active paths")
    max_cost_units: int = Field(..., description="Maximum cost units (one per network fetch)")
    marginal_gain_floor: float = Field(
        ..., description="Average confidence gain per page below which research stops"
    )

    @model_validator(mode="after")
    def check_positive(self) -> "Budgets":
        """Reject zero or negative caps."""
        for name in (
            "max_time_ms",
            "max_pages",
            "max_concurrency",
            "max_cost_units",
            "marginal_gain_floor",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        return self


# Default budgets per operator mode
MODE_BUDGETS: Dict[OperatorMode, Budgets] = {
    OperatorMode.LIGHTNING: Budgets(
        max_time_ms=30_000, max_pages=10, max_concurrency=5,
        max_cost_units=10, marginal_gain_floor=0.05,
    ),
    OperatorMode.STANDARD: Budgets(
        max_time_ms=120_000, max_pages=30, max_concurrency=3,
        max_cost_units=50, marginal_gain_floor=0.02,
    ),
    OperatorMode.DEEP_RESEARCH: Budgets(
        max_time_ms=600_000, max_pages=100, max_concurrency=5,
        max_cost_units=200, marginal_gain_floor=0.01,
    ),
    OperatorMode.COMPLIANCE: Budgets(
        max_time_ms=300_000, max_pages=50, max_concurrency=2,
        max_cost_units=100, marginal_gain_floor=0.03,
    ),
    OperatorMode.SIMULATION: Budgets(
        max_time_ms=1, max_pages=1, max_concurrency=1,
        max_cost_units=1, marginal_gain_floor=1.0,
    ),
}


class ResearchConstraints(BaseModel):
    """Optional per-objective overrides of engine defaults."""

    max_time_ms: Optional[int] = Field(default=None, gt=0)
    max_pages: Optional[int] = Field(default=None, gt=0)
    max_concurrency: Optional[int] = Field(default=None, gt=0)
    max_cost_units: Optional[int] = Field(default=None, gt=0)
    mode: Optional[OperatorMode] = Field(default=None, description="Operator mode override")
    allowed_tiers: Optional[List[SourceTier]] = Field(
        default=None, description="Restrict target domains to these tiers"
    )
    blocked_domains: List[str] = Field(
        default_factory=list, description="Domains never visited in this run"
    )


class ResearchObjective(BaseModel):
    """A natural-language research request. Immutable for one session."""

    query: str = Field(..., min_length=1, description="Research question or goal")
    confidence_requirement: float = Field(
        default=0.8, gt=0.0, le=1.0, description="Overall confidence needed to stop"
    )
    known_domains: List[str] = Field(
        default_factory=list, description="Domains the caller already knows are relevant"
    )
    context: Optional[str] = Field(default=None, description="Extra background for planning")
    constraints: Optional[ResearchConstraints] = None

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "query": "What does Acme charge for its pro plan?",
                    "confidence_requirement": 0.8,
                    "known_domains": ["acme.com"],
                }
            ]
        },
    }


class Question(BaseModel):
    """A primary question the research must answer."""

    id: str = Field(..., description="Question identifier (Q1, Q2, ...)")
    question: str = Field(..., description="Question text")
    question_type: str = Field(default="general", description="Pattern category, e.g. pricing")
    priority: int = Field(default=1, ge=1, description="Relative importance")
    required_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    extraction_hints: List[str] = Field(
        default_factory=list, description="Extraction targets that answer this question"
    )


class DomainExpectation(BaseModel):
    """Pages expected to hold answers on one domain."""

    domain: str
    expected_pages: List[str] = Field(default_factory=list, description="Absolute URLs")
    extraction_targets: List[str] = Field(default_factory=list)
    navigation_type: Literal["direct", "search", "crawl"] = "direct"


class RankedDomain(BaseModel):
    """A target domain with its tier and planning rank."""

    domain: str
    expected_tier: SourceTier
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    is_known: bool = Field(default=False, description="Supplied by the caller")


class ExecutionPath(BaseModel):
    """A scheduled unit of research work scoped to one or more domains."""

    id: str
    goal: str = ""
    domain_scope: List[str] = Field(default_factory=list)
    extraction_targets: List[str] = Field(default_factory=list)
    question_ids: List[str] = Field(
        default_factory=list, description="Questions this path is expected to answer"
    )
    priority: float = Field(..., description="Higher runs first")
    status: Literal["pending", "active", "completed", "terminated"] = "pending"
    termination_reason: Optional[str] = None


class ResearchPlan(BaseModel):
    """The Planner Brain's output. Execution must not start unless is_valid."""

    id: str
    objective: ResearchObjective
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    mode: OperatorMode = OperatorMode.STANDARD
    primary_questions: List[Question] = Field(default_factory=list)
    target_domains: List[RankedDomain] = Field(default_factory=list)
    domain_expectations: List[DomainExpectation] = Field(default_factory=list)
    execution_paths: List[ExecutionPath] = Field(default_factory=list)
    budgets: Budgets
    confidence_threshold: float = Field(..., gt=0.0, le=1.0)
    is_valid: bool = True
    validation_errors: List[str] = Field(default_factory=list)
    planned_by: Literal["collaborator", "fallback"] = "fallback"

    def get_expectation(self, domain: str) -> Optional[DomainExpectation]:
        """Return the expectation entry for a domain, if the plan has one."""
        for expectation in self.domain_expectations:
            if expectation.domain == domain:
                return expectation
        return None

    def summary(self) -> str:
        """One-line description used in progress snapshots."""
        return (
            f"{len(self.primary_questions)} questions, "
            f"{len(self.target_domains)} domains, "
            f"{len(self.execution_paths)} paths ({self.mode.value})"
        )


class ProposedQuestion(BaseModel):
    """Question as proposed by the planning collaborator."""

    question: str = Field(..., min_length=1)
    priority: int = Field(default=1, ge=1)
    extraction_hints: List[str] = Field(default_factory=list)


class ProposedExpectation(BaseModel):
    """Domain expectation as proposed by the planning collaborator."""

    domain: str = Field(..., min_length=1)
    expected_pages: List[str] = Field(default_factory=list)
    extraction_targets: List[str] = Field(default_factory=list)


class PlanProposal(BaseModel):
    """Validated planning collaborator output.

    Accepts both snake_case and the camelCase keys language models tend to
    emit (targetDomains, domainExpectations, expectedPages), and bare strings
    in place of question objects.
    """

    questions: List[ProposedQuestion] = Field(default_factory=list)
    target_domains: List[str] = Field(default_factory=list)
    domain_expectations: List[ProposedExpectation] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_collaborator_aliases(cls, data: Any) -> Any:
        """Map camelCase keys and string questions onto the model fields."""
        if not isinstance(data, dict):
            raise ValueError("planning output must be an object")

        data = dict(data)
        aliases = {
            "targetDomains": "target_domains",
            "domainExpectations": "domain_expectations",
        }
        for alias, field_name in aliases.items():
            if alias in data and field_name not in data:
                data[field_name] = data.pop(alias)

        questions = data.get("questions", [])
        if isinstance(questions, list):
            data["questions"] = [
                {"question": q} if isinstance(q, str) else q for q in questions
            ]

        expectations = data.get("domain_expectations", [])
        if isinstance(expectations, list):
            normalized = []
            for entry in expectations:
                if isinstance(entry, dict):
                    entry = dict(entry)
                    if "expectedPages" in entry and "expected_pages" not in entry:
                        entry["expected_pages"] = entry.pop("expectedPages")
                    if "extractionTargets" in entry and "extraction_targets" not in entry:
                        entry["extraction_targets"] = entry.pop("extractionTargets")
                normalized.append(entry)
            data["domain_expectations"] = normalized

        return data
