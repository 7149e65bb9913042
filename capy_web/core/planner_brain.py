"""Planner Brain: turns a research objective into an executable plan.

Question decomposition and domain discovery are delegated to a planning
collaborator (a language model). Its output is validated as a PlanProposal
before use; when the collaborator is absent, raises, or returns something
malformed, a keyword decomposition takes over so planning still succeeds.

The planner then:
- ranks candidate domains through the Source Intelligence Engine
  (avoided domains drop out, order is tier asc / score desc)
- gives each ranked domain one ExecutionPath, priority = rank position
  plus a boost for domains the caller supplied
- fills in expected pages from the proposal or from domain templates
- derives budgets from the operator mode and per-objective constraints

A plan with no questions or no domains is returned with is_valid=False and
explicit validation_errors. That is the only place a run can be aborted
before navigation begins.
"""

import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from pydantic import ValidationError

from capy_web.config.logging import get_logger
from capy_web.config.settings import settings
from capy_web.core.source_intelligence import SourceIntelligenceEngine
from capy_web.navigation.url_tools import dedupe_urls, extract_domain, normalize_domain
from capy_web.schemas.claim_schema import SourceTier
from capy_web.schemas.research_schema import (
    MODE_BUDGETS,
    Budgets,
    DomainExpectation,
    ExecutionPath,
    OperatorMode,
    PlanProposal,
    Question,
    RankedDomain,
    ResearchObjective,
    ResearchPlan,
)

KNOWN_DOMAIN_BOOST = 10
FIRST_QUESTION_PRIORITY = 10
FOLLOWUP_QUESTION_PRIORITY = 5
COMPLIANCE_TIERS = (SourceTier.TIER_1, SourceTier.TIER_2)


class PlanningCollaborator(Protocol):
    """Language-model planning service.

    propose() returns raw structured output shaped like
    {"questions": [...], "target_domains": [...], "domain_expectations": [...]}
    (camelCase keys are accepted too).
    """

    async def propose(self, objective: ResearchObjective) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class QuestionPattern:
    """Keyword pattern used by the fallback decomposition."""

    question_type: str
    pattern: re.Pattern
    template: str
    extraction_hints: Tuple[str, ...]
    domains: Tuple[str, ...] = ()


QUESTION_PATTERNS: List[QuestionPattern] = [
    QuestionPattern(
        "pricing",
        re.compile(r"pricing|cost|price|how much|subscription|plans?\b", re.IGNORECASE),
        "What is the pricing structure for {subject}?",
        ("pricing", "plans", "pricing-table"),
    ),
    QuestionPattern(
        "features",
        re.compile(r"features?|capabilities|what can|does it|functionality", re.IGNORECASE),
        "What are the key features and capabilities of {subject}?",
        ("features", "product-page", "docs"),
    ),
    QuestionPattern(
        "technical",
        re.compile(r"tech stack|technolog|built with|framework|programming language", re.IGNORECASE),
        "What technologies and frameworks does {subject} use?",
        ("technical", "github-repo", "docs"),
        ("github.com",),
    ),
    QuestionPattern(
        "company_history",
        re.compile(r"founded|started|when was|history|origin", re.IGNORECASE),
        "When was {subject} founded and what is its history?",
        ("company_info", "about-page", "press"),
        ("crunchbase.com",),
    ),
    QuestionPattern(
        "company_size",
        re.compile(r"employees?|team size|headcount|how many people", re.IGNORECASE),
        "How many employees does {subject} have?",
        ("company_info", "about-page"),
    ),
    QuestionPattern(
        "security",
        re.compile(r"security|compliance|\bsoc\b|gdpr|hipaa|certifications?", re.IGNORECASE),
        "What security certifications and compliance does {subject} have?",
        ("security", "trust-center", "compliance"),
    ),
    QuestionPattern(
        "integrations",
        re.compile(r"integrat|\bapis?\b|connect|webhook", re.IGNORECASE),
        "What integrations and APIs does {subject} offer?",
        ("integrations", "api-docs", "marketplace"),
    ),
    QuestionPattern(
        "competitive",
        re.compile(r"competitors?|alternatives?|\bvs\.?\b|compared to|similar", re.IGNORECASE),
        "What are the main competitors and alternatives to {subject}?",
        ("competitive", "reviews", "comparison"),
        ("g2.com",),
    ),
    QuestionPattern(
        "funding",
        re.compile(r"funding|investors?|raised|valuation|series [a-e]", re.IGNORECASE),
        "What is the funding history and who are the investors of {subject}?",
        ("funding", "press-releases"),
        ("crunchbase.com",),
    ),
    QuestionPattern(
        "contact",
        re.compile(r"contact|e-?mail|phone|address|headquarters|location", re.IGNORECASE),
        "What are the contact details for {subject}?",
        ("contact", "contact-page", "about-page"),
    ),
]

# Context keywords that add follow-up questions
CONTEXT_QUESTIONS: List[Tuple[re.Pattern, str, str]] = [
    (
        re.compile(r"compare|versus|\bvs\.?\b|alternative", re.IGNORECASE),
        "competitive",
        "How does {subject} compare to alternatives?",
    ),
    (
        re.compile(r"recent|latest|\bnew\b|update", re.IGNORECASE),
        "updates",
        "What are the most recent updates or changes at {subject}?",
    ),
]

# Common entry paths per kind of site
DOMAIN_TEMPLATES: List[Tuple[re.Pattern, Tuple[str, ...]]] = [
    (re.compile(r"(^|\.)github\.com$"), ("/", "/releases")),
    (re.compile(r"^(docs|documentation|developer)\."), ("/", "/getting-started", "/api")),
    (re.compile(r"\.gov$"), ("/",)),
    (re.compile(r"(^|\.)crunchbase\.com$"), ("/",)),
    (re.compile(r"(^|\.)(g2\.com|capterra\.com|trustradius\.com)$"), ("/",)),
]
GENERIC_PATHS: Tuple[str, ...] = ("/", "/about", "/pricing", "/features")

_LEADING_WORDS = re.compile(
    r"^(what|who|when|where|how|why|is|are|does|do|can|could|would|tell me about|find|search|look up)\s+",
    re.IGNORECASE,
)
_PROPER_NOUN = re.compile(r"\b([A-Z][a-zA-Z0-9]+(?:\s+[A-Z][a-zA-Z0-9]+)*)")


def extract_subject(query: str) -> str:
    """Main subject of a query: the first capitalized name, else the cleaned query."""
    cleaned = _LEADING_WORDS.sub("", query.strip()).rstrip("?").strip()
    match = _PROPER_NOUN.search(cleaned)
    return match.group(1) if match else cleaned


def infer_primary_domain(query: str) -> Optional[str]:
    """
    Guess the subject's own domain from a capitalized name in the query.

    Returns:
        "<name>.com", or None when the query names nothing
    """
    cleaned = _LEADING_WORDS.sub("", query.strip())
    match = _PROPER_NOUN.search(cleaned)
    if not match:
        return None
    slug = re.sub(r"[^a-z0-9]", "", match.group(1).lower())
    return f"{slug}.com" if slug else None


def template_pages(domain: str) -> List[str]:
    """Absolute entry URLs for a domain from its template (or generic paths)."""
    paths = GENERIC_PATHS
    for pattern, common_paths in DOMAIN_TEMPLATES:
        if pattern.search(domain):
            paths = common_paths
            break
    return [f"https://{domain}{path}" for path in paths]


class PlannerBrain:
    """
    Builds ResearchPlans.

    Attributes:
        source_intel: Engine used to rank and filter domains
        collaborator: Optional language-model planning collaborator
        mode: Operator mode used when the objective does not set one
    """

    def __init__(
        self,
        source_intel: SourceIntelligenceEngine,
        collaborator: Optional[PlanningCollaborator] = None,
        mode: Optional[OperatorMode] = None,
    ):
        self.source_intel = source_intel
        self.collaborator = collaborator
        self.mode = mode or OperatorMode(settings.default_mode)
        self.logger = get_logger("PlannerBrain")

    async def generate_plan(self, objective: ResearchObjective) -> ResearchPlan:
        """
        Generate a plan for an objective.

        Never raises for bad collaborator output; an unusable objective
        yields a plan with is_valid=False.

        Args:
            objective: Research objective

        Returns:
            ResearchPlan (check is_valid before executing)
        """
        constraints = objective.constraints
        mode = constraints.mode if constraints and constraints.mode else self.mode

        proposal = await self._propose(objective)
        if proposal is not None and proposal.questions:
            questions = self._questions_from_proposal(proposal)
            planned_by = "collaborator"
        else:
            questions = self.decompose(objective)
            planned_by = "fallback"

        candidates = self._candidate_domains(objective, proposal, questions)
        ranked = self.source_intel.rank_domains(candidates)
        ranked = self._filter_blocked(ranked, objective)
        ranked = self._filter_tiers(ranked, objective, mode)

        known = {normalize_domain(d) for d in objective.known_domains}
        target_domains = [
            RankedDomain(
                domain=domain,
                expected_tier=self.source_intel.classify_domain(domain),
                relevance_score=round((len(ranked) - index) / len(ranked), 6),
                is_known=domain in known,
            )
            for index, domain in enumerate(ranked)
        ]

        expectations = [
            self._expectation_for(domain, proposal, questions) for domain in ranked
        ]
        paths = self._execution_paths(target_domains, expectations, questions)

        plan = ResearchPlan(
            id=f"PLAN-{uuid.uuid4().hex[:8]}",
            objective=objective,
            mode=mode,
            primary_questions=questions,
            target_domains=target_domains,
            domain_expectations=expectations,
            execution_paths=paths,
            budgets=self.calculate_budgets(objective, mode),
            confidence_threshold=objective.confidence_requirement,
            planned_by=planned_by,
        )

        errors = self.validate_plan(plan)
        plan.is_valid = not errors
        plan.validation_errors = errors

        if errors:
            self.logger.warning("Plan invalid", plan_id=plan.id, errors=errors)
        else:
            self.logger.info(
                "Plan generated",
                plan_id=plan.id,
                summary=plan.summary(),
                planned_by=planned_by,
            )
        return plan

    def validate_plan(self, plan: ResearchPlan) -> List[str]:
        """
        Check that a plan can be executed.

        Returns:
            Validation errors (empty when the plan is executable)
        """
        errors: List[str] = []
        if not plan.primary_questions:
            errors.append("Could not decompose objective into actionable questions")
        if not plan.target_domains:
            errors.append("Could not identify any target domains")
        elif not plan.execution_paths:
            errors.append("No execution paths could be generated")
        return errors

    # ── Collaborator ───────────────────────────────────────────────

    async def _propose(self, objective: ResearchObjective) -> Optional[PlanProposal]:
        if self.collaborator is None:
            return None

        try:
            raw = await self.collaborator.propose(objective)
        except Exception as e:
            self.logger.warning("Planning collaborator failed, using fallback", error=str(e))
            return None

        try:
            proposal = PlanProposal.model_validate(raw)
        except ValidationError as e:
            self.logger.warning(
                "Malformed planning output, using fallback",
                errors=e.error_count(),
            )
            return None

        self.logger.debug(
            "Planning proposal accepted",
            questions=len(proposal.questions),
            domains=len(proposal.target_domains),
        )
        return proposal

    @staticmethod
    def _questions_from_proposal(proposal: PlanProposal) -> List[Question]:
        questions = []
        for index, proposed in enumerate(proposal.questions, start=1):
            question_type = "general"
            for pattern in QUESTION_PATTERNS:
                if pattern.pattern.search(proposed.question):
                    question_type = pattern.question_type
                    break
            questions.append(
                Question(
                    id=f"Q{index}",
                    question=proposed.question,
                    question_type=question_type,
                    priority=proposed.priority,
                    extraction_hints=list(proposed.extraction_hints),
                )
            )
        return questions

    # ── Fallback decomposition ─────────────────────────────────────

    def decompose(self, objective: ResearchObjective) -> List[Question]:
        """
        Keyword decomposition of an objective into primary questions.

        One question per matching pattern; a single generic question equal
        to the query when nothing matches; follow-ups from context keywords.
        """
        subject = extract_subject(objective.query)
        questions: List[Question] = []

        for pattern in QUESTION_PATTERNS:
            if pattern.pattern.search(objective.query):
                questions.append(
                    Question(
                        id=f"Q{len(questions) + 1}",
                        question=pattern.template.format(subject=subject),
                        question_type=pattern.question_type,
                        priority=FIRST_QUESTION_PRIORITY if not questions else FOLLOWUP_QUESTION_PRIORITY,
                        extraction_hints=list(pattern.extraction_hints),
                    )
                )

        if not questions:
            questions.append(
                Question(
                    id="Q1",
                    question=objective.query,
                    priority=FIRST_QUESTION_PRIORITY,
                )
            )

        if objective.context:
            existing_types = {q.question_type for q in questions}
            for pattern, question_type, template in CONTEXT_QUESTIONS:
                if question_type in existing_types or not pattern.search(objective.context):
                    continue
                questions.append(
                    Question(
                        id=f"Q{len(questions) + 1}",
                        question=template.format(subject=subject),
                        question_type=question_type,
                        priority=3,
                        required_confidence=0.6,
                    )
                )

        return questions

    # ── Domains ────────────────────────────────────────────────────

    def _candidate_domains(
        self,
        objective: ResearchObjective,
        proposal: Optional[PlanProposal],
        questions: Sequence[Question],
    ) -> List[str]:
        candidates: List[str] = list(objective.known_domains)

        if proposal is not None and (proposal.target_domains or proposal.domain_expectations):
            candidates.extend(proposal.target_domains)
            candidates.extend(e.domain for e in proposal.domain_expectations)
        else:
            primary = infer_primary_domain(objective.query)
            if primary:
                candidates.append(primary)
            question_types = {q.question_type for q in questions}
            for pattern in QUESTION_PATTERNS:
                if pattern.question_type in question_types:
                    candidates.extend(pattern.domains)

        return [normalize_domain(d) for d in candidates if normalize_domain(d)]

    def _filter_blocked(self, ranked: List[str], objective: ResearchObjective) -> List[str]:
        """Drop domains the objective blocks, including their subdomains. Scoped to this plan only."""
        constraints = objective.constraints
        if not constraints or not constraints.blocked_domains:
            return ranked

        blocked = {normalize_domain(d) for d in constraints.blocked_domains}
        blocked.discard("")
        kept = [
            d for d in ranked
            if not any(d == b or d.endswith("." + b) for b in blocked)
        ]
        if len(kept) < len(ranked):
            self.logger.info("Blocked domains removed from plan", dropped=len(ranked) - len(kept))
        return kept

    def _filter_tiers(
        self,
        ranked: List[str],
        objective: ResearchObjective,
        mode: OperatorMode,
    ) -> List[str]:
        constraints = objective.constraints
        allowed: Optional[Sequence[SourceTier]] = None
        if constraints and constraints.allowed_tiers:
            allowed = constraints.allowed_tiers
        elif mode == OperatorMode.COMPLIANCE:
            allowed = COMPLIANCE_TIERS
        if allowed is None:
            return ranked

        kept = [d for d in ranked if self.source_intel.classify_domain(d) in allowed]
        if len(kept) < len(ranked):
            self.logger.info(
                "Domains filtered by tier",
                kept=len(kept),
                dropped=len(ranked) - len(kept),
                allowed=[int(t) for t in allowed],
            )
        return kept

    def _expectation_for(
        self,
        domain: str,
        proposal: Optional[PlanProposal],
        questions: Sequence[Question],
    ) -> DomainExpectation:
        pages: List[str] = []
        targets: List[str] = []

        if proposal is not None:
            for proposed in proposal.domain_expectations:
                if normalize_domain(proposed.domain) != domain:
                    continue
                for page in proposed.expected_pages:
                    if page.startswith("/"):
                        pages.append(f"https://{domain}{page}")
                    elif page.startswith(("http://", "https://")):
                        try:
                            if extract_domain(page) == domain:
                                pages.append(page)
                        except ValueError:
                            continue
                targets.extend(proposed.extraction_targets)

        if not pages:
            pages = template_pages(domain)
        if not targets:
            for question in questions:
                targets.extend(question.extraction_hints or [question.question_type])

        return DomainExpectation(
            domain=domain,
            expected_pages=dedupe_urls(pages),
            extraction_targets=list(dict.fromkeys(targets)),
        )

    @staticmethod
    def _execution_paths(
        target_domains: Sequence[RankedDomain],
        expectations: Sequence[DomainExpectation],
        questions: Sequence[Question],
    ) -> List[ExecutionPath]:
        total = len(target_domains)
        question_ids = [q.id for q in questions]
        paths = []
        for index, (ranked, expectation) in enumerate(zip(target_domains, expectations)):
            priority = float(total - index)
            if ranked.is_known:
                priority += KNOWN_DOMAIN_BOOST
            paths.append(
                ExecutionPath(
                    id=f"PATH-{uuid.uuid4().hex[:8]}",
                    goal=f"Investigate {ranked.domain}",
                    domain_scope=[ranked.domain],
                    extraction_targets=list(expectation.extraction_targets),
                    question_ids=question_ids,
                    priority=priority,
                )
            )
        return paths

    # ── Budgets ────────────────────────────────────────────────────

    @staticmethod
    def calculate_budgets(objective: ResearchObjective, mode: OperatorMode) -> Budgets:
        """
        Mode defaults overridden field by field by the objective's constraints.

        Standard mode takes its defaults from settings so deployments can
        tune them through the environment.
        """
        if mode == OperatorMode.STANDARD:
            base = Budgets(
                max_time_ms=settings.max_time_ms,
                max_pages=settings.max_pages,
                max_concurrency=settings.max_concurrency,
                max_cost_units=settings.max_cost_units,
                marginal_gain_floor=settings.marginal_gain_floor,
            )
        else:
            base = MODE_BUDGETS[mode]
        constraints = objective.constraints
        if constraints is None:
            return base.model_copy()
        return Budgets(
            max_time_ms=constraints.max_time_ms or base.max_time_ms,
            max_pages=constraints.max_pages or base.max_pages,
            max_concurrency=constraints.max_concurrency or base.max_concurrency,
            max_cost_units=constraints.max_cost_units or base.max_cost_units,
            marginal_gain_floor=base.marginal_gain_floor,
        )
