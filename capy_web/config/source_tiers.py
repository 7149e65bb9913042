"""Source tier configuration for domain trust classification.

Tier hierarchy (1 = most authoritative):
1. Official domains, documentation, code repositories, filings
2. First-party blogs and company databases
3. Reputable analysis, news and review aggregators
4. Forums and Q&A sites (corroboration only)
5. SEO / content-farm hosting (actively penalized)

Rule patterns use a small matching grammar:
- "github.com"     exact domain or any subdomain of it
- ".gov"           suffix match on the domain
- "docs."          prefix match on the first label
- ".blogspot."     substring match anywhere in the domain

Rules are checked in order and the first match wins, so specific
patterns (sec.gov) come before general ones (.gov).
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List


@dataclass(frozen=True)
class TierRule:
    """A static classification rule with its baseline sub-scores."""

    pattern: str
    tier: int
    category: str
    authority: float
    originality: float
    specificity: float


TIER_RULES: List[TierRule] = [
    # Tier 1: official, docs, code, filings
    TierRule("sec.gov", 1, "filings", 1.0, 1.0, 0.95),
    TierRule(".gov", 1, "official", 1.0, 0.95, 0.8),
    TierRule("github.com", 1, "code", 0.95, 0.95, 0.9),
    TierRule("gitlab.com", 1, "code", 0.9, 0.95, 0.9),
    TierRule("docs.", 1, "docs", 0.9, 0.9, 0.95),
    TierRule("developer.", 1, "docs", 0.9, 0.9, 0.9),

    # Tier 2: first-party blogs, company databases
    TierRule("blog.", 2, "blog", 0.8, 0.9, 0.7),
    TierRule("crunchbase.com", 2, "company_info", 0.85, 0.7, 0.9),
    TierRule("linkedin.com", 2, "company_info", 0.8, 0.75, 0.8),
    TierRule("pitchbook.com", 2, "funding", 0.9, 0.8, 0.9),

    # Tier 3: news and review aggregators
    TierRule("techcrunch.com", 3, "news", 0.75, 0.7, 0.6),
    TierRule("bloomberg.com", 3, "news", 0.85, 0.75, 0.7),
    TierRule("reuters.com", 3, "news", 0.9, 0.8, 0.7),
    TierRule("wsj.com", 3, "news", 0.9, 0.75, 0.7),
    TierRule("g2.com", 3, "reviews", 0.7, 0.65, 0.8),
    TierRule("capterra.com", 3, "reviews", 0.7, 0.6, 0.75),
    TierRule("trustradius.com", 3, "reviews", 0.7, 0.65, 0.75),

    # Tier 4: forums
    TierRule("reddit.com", 4, "forum", 0.4, 0.8, 0.5),
    TierRule("quora.com", 4, "forum", 0.35, 0.6, 0.4),
    TierRule("stackexchange.com", 4, "forum", 0.6, 0.7, 0.7),
    TierRule("stackoverflow.com", 4, "forum", 0.65, 0.7, 0.75),
    TierRule("ycombinator.com", 4, "forum", 0.55, 0.8, 0.6),

    # Tier 5: SEO / content farms
    TierRule("medium.com", 5, "blog", 0.3, 0.4, 0.3),
    TierRule(".blogspot.", 5, "blog", 0.2, 0.3, 0.2),
    TierRule("wordpress.com", 5, "blog", 0.25, 0.35, 0.25),
    TierRule("hubspot.com", 5, "seo", 0.3, 0.2, 0.3),
]

# Social networks and marketplaces: always avoided, classified TIER_5
BLOCKED_DOMAINS: FrozenSet[str] = frozenset({
    "pinterest.com",
    "pinterest.co.uk",
    "facebook.com",
    "instagram.com",
    "twitter.com",
    "x.com",
    "tiktok.com",
    "youtube.com",
    "amazon.com",
    "ebay.com",
})

DEFAULT_TIER: int = 3

# Baseline for every sub-score of an unrecognized domain
DEFAULT_SUB_SCORE: float = 0.5

# Weights combining the five sub-scores into overall_score (sum 1.0)
SCORE_WEIGHTS: Dict[str, float] = {
    "authority": 0.30,
    "originality": 0.25,
    "freshness": 0.15,
    "specificity": 0.20,
    "consistency": 0.10,
}

# EMA weight for pairwise domain agreement
CONSISTENCY_ALPHA: float = 0.2

# Domains with this many visits and a success rate below the floor are avoided
LOW_SUCCESS_MIN_VISITS: int = 3
LOW_SUCCESS_RATE_FLOOR: float = 0.2

# Extraction yield at which the specificity history signal saturates
YIELD_SATURATION: float = 3.0

# Freshness lost per year of age of the newest date found in page content
FRESHNESS_DECAY_PER_YEAR: float = 0.2
