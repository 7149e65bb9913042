"""Capy Web: autonomous research orchestration.

Given a natural-language objective, plans questions and target domains,
visits pages under source-trust and politeness policies, verifies claims
across sources and stops when confidence is sufficient.

Usage:
    from capy_web import CapyWebEngine, ResearchObjective
    from capy_web.navigation import HttpPageFetcher

    engine = CapyWebEngine()
    engine.attach_fetcher(HttpPageFetcher())
    result = await engine.research(ResearchObjective(query="Acme pricing", known_domains=["acme.com"]))
"""

from capy_web.orchestration.engine import CapyWebEngine, EngineConfig, research
from capy_web.schemas import ResearchObjective, ResearchResult

__version__ = "0.1.0"

__all__ = [
    "CapyWebEngine",
    "EngineConfig",
    "research",
    "ResearchObjective",
    "ResearchResult",
]
