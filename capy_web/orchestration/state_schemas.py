"""State schema for the research session workflow graph."""

from typing import Optional, TypedDict

from capy_web.schemas.research_schema import ResearchObjective, ResearchPlan
from capy_web.schemas.session_schema import ResearchResult, StopCondition


class ResearchState(TypedDict, total=False):
    """
    State carried through plan -> execute -> assemble.

    Fields:
        objective: The research objective
        plan: Plan produced by the planner node
        stop_condition: Why execution ended (set by the execute node)
        result: Assembled result (set by the assemble node)
        next_action: Routing decision after planning
    """

    objective: ResearchObjective
    plan: Optional[ResearchPlan]
    stop_condition: Optional[StopCondition]
    result: Optional[ResearchResult]
    next_action: str
