"""Research core: source trust, claim verification, confidence and planning.

- SourceIntelligenceEngine: domain tiers, scores and reputation history
- ClaimGraph: claims with corroboration and contradiction tracking
- ConfidenceEngine: aggregate confidence and stop-condition policy
- PlannerBrain: objective -> ResearchPlan
"""

from capy_web.core.claim_graph import ClaimGraph
from capy_web.core.confidence_engine import ConfidenceEngine
from capy_web.core.planner_brain import PlannerBrain
from capy_web.core.source_intelligence import SourceIntelligenceEngine

__all__ = [
    "ClaimGraph",
    "ConfidenceEngine",
    "PlannerBrain",
    "SourceIntelligenceEngine",
]
