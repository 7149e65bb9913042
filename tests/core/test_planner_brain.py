"""Tests for plan generation, fallback decomposition and budgets."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from capy_web.config.settings import settings
from capy_web.core.planner_brain import (
    PlannerBrain,
    extract_subject,
    infer_primary_domain,
    template_pages,
)
from capy_web.core.source_intelligence import SourceIntelligenceEngine
from capy_web.schemas.claim_schema import SourceTier
from capy_web.schemas.research_schema import (
    MODE_BUDGETS,
    OperatorMode,
    ResearchConstraints,
    ResearchObjective,
)


@pytest.fixture
def planner():
    """Planner with no collaborator (keyword fallback only)."""
    return PlannerBrain(SourceIntelligenceEngine(), mode=OperatorMode.STANDARD)


def collaborator_returning(payload=None, error=None):
    collaborator = MagicMock()
    collaborator.propose = AsyncMock(return_value=payload, side_effect=error)
    return collaborator


class TestHelpers:
    """Test subject and domain inference."""

    def test_extract_subject(self):
        assert extract_subject("What is the pricing of Notion Labs?") == "Notion Labs"
        assert extract_subject("how much does it cost") == "much does it cost"

    def test_infer_primary_domain(self):
        assert infer_primary_domain("What is the pricing of Notion Labs?") == "notionlabs.com"
        assert infer_primary_domain("how much does it cost") is None

    def test_template_pages(self):
        assert template_pages("github.com") == ["https://github.com/", "https://github.com/releases"]
        assert template_pages("docs.acme.com")[1] == "https://docs.acme.com/getting-started"
        assert template_pages("acme.com") == [
            "https://acme.com/",
            "https://acme.com/about",
            "https://acme.com/pricing",
            "https://acme.com/features",
        ]


class TestDecompose:
    """Test keyword decomposition."""

    def test_single_pattern(self, planner):
        questions = planner.decompose(ResearchObjective(query="What does Acme charge for its pro plan?"))

        assert len(questions) == 1
        assert questions[0].id == "Q1"
        assert questions[0].question_type == "pricing"
        assert questions[0].question == "What is the pricing structure for Acme?"
        assert questions[0].priority == 10

    def test_followups_get_lower_priority(self, planner):
        questions = planner.decompose(ResearchObjective(query="Acme pricing and features"))
        assert [q.question_type for q in questions] == ["pricing", "features"]
        assert [q.priority for q in questions] == [10, 5]

    def test_generic_question_when_nothing_matches(self, planner):
        questions = planner.decompose(ResearchObjective(query="Acme"))
        assert len(questions) == 1
        assert questions[0].question == "Acme"
        assert questions[0].question_type == "general"

    def test_context_adds_questions(self, planner):
        objective = ResearchObjective(query="Acme pricing", context="compare with the latest Beta release")
        questions = planner.decompose(objective)

        assert [q.question_type for q in questions] == ["pricing", "competitive", "updates"]
        assert questions[1].priority == 3
        assert questions[2].required_confidence == 0.6

    def test_context_skips_existing_type(self, planner):
        objective = ResearchObjective(query="Acme alternatives", context="compare them")
        assert [q.question_type for q in planner.decompose(objective)] == ["competitive"]


class TestGeneratePlan:
    """Test full plan generation."""

    @pytest.mark.asyncio
    async def test_fallback_plan(self, planner):
        plan = await planner.generate_plan(ResearchObjective(query="What does Acme charge for its pro plan?"))

        assert plan.is_valid
        assert plan.id.startswith("PLAN-")
        assert plan.planned_by == "fallback"
        assert [d.domain for d in plan.target_domains] == ["acme.com"]
        assert plan.get_expectation("acme.com").expected_pages[2] == "https://acme.com/pricing"
        assert plan.get_expectation("acme.com").extraction_targets == ["pricing", "plans", "pricing-table"]
        assert plan.execution_paths[0].question_ids == ["Q1"]
        assert plan.execution_paths[0].id.startswith("PATH-")
        assert plan.confidence_threshold == 0.8

    @pytest.mark.asyncio
    async def test_pattern_domains_added(self, planner):
        plan = await planner.generate_plan(ResearchObjective(query="When was Acme founded?"))
        assert [d.domain for d in plan.target_domains] == ["crunchbase.com", "acme.com"]

    @pytest.mark.asyncio
    async def test_known_domain_ranked_and_boosted(self, planner):
        plan = await planner.generate_plan(
            ResearchObjective(query="Acme pricing", known_domains=["docs.acme.com"])
        )

        assert [d.domain for d in plan.target_domains] == ["docs.acme.com", "acme.com"]
        assert plan.target_domains[0].is_known
        assert plan.target_domains[0].expected_tier == SourceTier.TIER_1
        assert plan.target_domains[0].relevance_score == 1.0
        assert plan.target_domains[1].relevance_score == 0.5
        assert [p.priority for p in plan.execution_paths] == [12.0, 1.0]

    @pytest.mark.asyncio
    async def test_known_boost_outranks_better_tier(self, planner):
        plan = await planner.generate_plan(
            ResearchObjective(query="Acme pricing", known_domains=["reddit.com"])
        )
        priorities = {p.domain_scope[0]: p.priority for p in plan.execution_paths}
        assert priorities == {"acme.com": 2.0, "reddit.com": 11.0}

    @pytest.mark.asyncio
    async def test_avoided_domains_dropped(self, planner):
        plan = await planner.generate_plan(
            ResearchObjective(query="Acme pricing", known_domains=["pinterest.com", "medium.com"])
        )
        assert [d.domain for d in plan.target_domains] == ["acme.com"]

    @pytest.mark.asyncio
    async def test_blocked_domains_constraint(self, planner):
        objective = ResearchObjective(
            query="pricing",
            known_domains=["acme.com", "shop.io"],
            constraints=ResearchConstraints(blocked_domains=["shop.io"]),
        )
        plan = await planner.generate_plan(objective)
        assert [d.domain for d in plan.target_domains] == ["acme.com"]

    @pytest.mark.asyncio
    async def test_blocked_domains_are_scoped_to_the_plan(self, planner):
        blocked = ResearchObjective(
            query="pricing",
            known_domains=["docs.acme.com", "example.org"],
            constraints=ResearchConstraints(blocked_domains=["www.acme.com"]),
        )
        plan = await planner.generate_plan(blocked)

        assert [d.domain for d in plan.target_domains] == ["example.org"]
        assert not planner.source_intel.should_avoid("acme.com")

        later = await planner.generate_plan(
            ResearchObjective(query="pricing", known_domains=["docs.acme.com"])
        )
        assert [d.domain for d in later.target_domains] == ["docs.acme.com"]

    @pytest.mark.asyncio
    async def test_compliance_mode_keeps_authoritative_tiers(self, planner):
        objective = ResearchObjective(
            query="Acme pricing",
            known_domains=["docs.acme.com", "techcrunch.com"],
            constraints=ResearchConstraints(mode=OperatorMode.COMPLIANCE),
        )
        plan = await planner.generate_plan(objective)

        assert plan.mode == OperatorMode.COMPLIANCE
        assert [d.domain for d in plan.target_domains] == ["docs.acme.com"]
        assert plan.budgets == MODE_BUDGETS[OperatorMode.COMPLIANCE]

    @pytest.mark.asyncio
    async def test_allowed_tiers_constraint(self, planner):
        objective = ResearchObjective(
            query="Acme pricing",
            known_domains=["reddit.com"],
            constraints=ResearchConstraints(allowed_tiers=[SourceTier.TIER_4]),
        )
        plan = await planner.generate_plan(objective)
        assert [d.domain for d in plan.target_domains] == ["reddit.com"]

    @pytest.mark.asyncio
    async def test_no_domains_is_invalid(self, planner):
        plan = await planner.generate_plan(ResearchObjective(query="how much does it cost"))

        assert not plan.is_valid
        assert plan.validation_errors == ["Could not identify any target domains"]
        assert plan.execution_paths == []

    @pytest.mark.asyncio
    async def test_compliance_without_authoritative_domains_is_invalid(self, planner):
        objective = ResearchObjective(
            query="Acme pricing",
            constraints=ResearchConstraints(mode=OperatorMode.COMPLIANCE),
        )
        plan = await planner.generate_plan(objective)
        assert not plan.is_valid

    def test_validate_plan_reports_missing_questions(self, planner):
        plan = MagicMock(primary_questions=[], target_domains=[], execution_paths=[])
        assert planner.validate_plan(plan) == [
            "Could not decompose objective into actionable questions",
            "Could not identify any target domains",
        ]


class TestCollaborator:
    """Test use of the planning collaborator."""

    PROPOSAL = {
        "questions": [
            "What is the price of the Acme Pro plan?",
            {"question": "Does Acme offer SSO?", "priority": 2, "extraction_hints": ["security"]},
        ],
        "targetDomains": ["acme.com"],
        "domainExpectations": [
            {
                "domain": "acme.com",
                "expectedPages": ["/pricing", "https://acme.com/plans", "https://other.com/x"],
            }
        ],
    }

    @pytest.mark.asyncio
    async def test_proposal_used(self):
        collaborator = collaborator_returning(self.PROPOSAL)
        planner = PlannerBrain(SourceIntelligenceEngine(), collaborator=collaborator)

        objective = ResearchObjective(query="Acme pro plan and SSO")
        plan = await planner.generate_plan(objective)

        collaborator.propose.assert_awaited_once_with(objective)
        assert plan.is_valid
        assert plan.planned_by == "collaborator"
        assert [q.question_type for q in plan.primary_questions] == ["pricing", "general"]
        assert plan.primary_questions[1].priority == 2
        expectation = plan.get_expectation("acme.com")
        assert expectation.expected_pages == ["https://acme.com/pricing", "https://acme.com/plans"]
        assert expectation.extraction_targets == ["pricing", "security"]

    @pytest.mark.asyncio
    async def test_collaborator_failure_falls_back(self):
        collaborator = collaborator_returning(error=RuntimeError("quota exceeded"))
        planner = PlannerBrain(SourceIntelligenceEngine(), collaborator=collaborator)

        plan = await planner.generate_plan(ResearchObjective(query="Acme pricing"))

        assert plan.is_valid
        assert plan.planned_by == "fallback"
        assert plan.primary_questions[0].question_type == "pricing"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            ["not", "an", "object"],
            {"questions": [{"priority": 0}]},
            {"questions": "pricing"},
        ],
    )
    async def test_malformed_output_falls_back(self, payload):
        planner = PlannerBrain(SourceIntelligenceEngine(), collaborator=collaborator_returning(payload))
        plan = await planner.generate_plan(ResearchObjective(query="Acme pricing"))

        assert plan.is_valid
        assert plan.planned_by == "fallback"

    @pytest.mark.asyncio
    async def test_empty_questions_fall_back(self):
        planner = PlannerBrain(
            SourceIntelligenceEngine(), collaborator=collaborator_returning({"questions": []})
        )
        plan = await planner.generate_plan(ResearchObjective(query="Acme pricing"))

        assert plan.planned_by == "fallback"
        assert [d.domain for d in plan.target_domains] == ["acme.com"]


class TestBudgets:
    """Test budget derivation."""

    def test_mode_defaults(self):
        budgets = PlannerBrain.calculate_budgets(ResearchObjective(query="x"), OperatorMode.LIGHTNING)
        assert budgets == MODE_BUDGETS[OperatorMode.LIGHTNING]
        assert budgets is not MODE_BUDGETS[OperatorMode.LIGHTNING]

    def test_constraints_override_fields(self):
        objective = ResearchObjective(
            query="x",
            constraints=ResearchConstraints(max_pages=5, max_concurrency=1),
        )
        budgets = PlannerBrain.calculate_budgets(objective, OperatorMode.STANDARD)

        assert budgets.max_pages == 5
        assert budgets.max_concurrency == 1
        assert budgets.max_time_ms == MODE_BUDGETS[OperatorMode.STANDARD].max_time_ms
        assert budgets.marginal_gain_floor == 0.02

    def test_standard_defaults_follow_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "max_pages", 12)
        monkeypatch.setattr(settings, "marginal_gain_floor", 0.04)

        budgets = PlannerBrain.calculate_budgets(ResearchObjective(query="x"), OperatorMode.STANDARD)

        assert budgets.max_pages == 12
        assert budgets.marginal_gain_floor == 0.04
        assert budgets.max_concurrency == MODE_BUDGETS[OperatorMode.STANDARD].max_concurrency
