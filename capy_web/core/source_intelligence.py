"""Source intelligence: tiering, scoring and reputation history per domain.

Classification uses the static rule table in capy_web.config.source_tiers.
Scores are recomputed on every request from the rule baseline plus the
accumulated visit history, which makes scoring idempotent between updates
and lets a host persist reputation across sessions via export_state().

Usage:
    from capy_web.core.source_intelligence import SourceIntelligenceEngine

    intel = SourceIntelligenceEngine()
    intel.classify_domain("docs.acme.com")        # SourceTier.TIER_1
    ranked = intel.rank_domains(["reddit.com", "acme.com", "pinterest.com"])
"""

import re
from datetime import datetime, timezone
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from capy_web.config.logging import get_logger
from capy_web.config.settings import settings
from capy_web.config.source_tiers import (
    BLOCKED_DOMAINS,
    CONSISTENCY_ALPHA,
    DEFAULT_SUB_SCORE,
    DEFAULT_TIER,
    FRESHNESS_DECAY_PER_YEAR,
    LOW_SUCCESS_MIN_VISITS,
    LOW_SUCCESS_RATE_FLOOR,
    SCORE_WEIGHTS,
    TIER_RULES,
    YIELD_SATURATION,
    TierRule,
)
from capy_web.navigation.url_tools import normalize_domain
from capy_web.schemas.claim_schema import SourceTier
from capy_web.schemas.source_schema import SourceHistory, SourceIntel, SourceScores


_YEAR_PATTERN = re.compile(r"\b(19[89]\d|20\d{2})\b")


def matches_rule(domain: str, pattern: str) -> bool:
    """
    Match a normalized domain against a tier rule pattern.

    Args:
        domain: Normalized domain
        pattern: Rule pattern (see source_tiers module docstring)

    Returns:
        True if the rule applies to the domain
    """
    if pattern.startswith(".") and pattern.endswith("."):
        return pattern in f".{domain}."
    if pattern.startswith("."):
        return domain.endswith(pattern)
    if pattern.endswith("."):
        return domain.startswith(pattern)
    return domain == pattern or domain.endswith(f".{pattern}")


def estimate_content_freshness(text: str, now: Optional[datetime] = None) -> Optional[float]:
    """
    Estimate content freshness from the newest year mentioned in page text.

    Args:
        text: Page text
        now: Reference time (defaults to current UTC time)

    Returns:
        Freshness 0.0-1.0, or None when the text carries no year
    """
    years = [int(y) for y in _YEAR_PATTERN.findall(text or "")]
    current_year = (now or datetime.now(timezone.utc)).year
    years = [y for y in years if y <= current_year]
    if not years:
        return None
    age = current_year - max(years)
    return max(0.0, 1.0 - age * FRESHNESS_DECAY_PER_YEAR)


class SourceIntelligenceEngine:
    """
    Scores and tiers domains by trustworthiness.

    Tier policy:
    - Blocklisted domains (and their subdomains) are TIER_5 and always avoided
    - .gov and docs.* force TIER_1
    - Otherwise the first matching rule decides; unknown domains are TIER_3

    History (per domain, persisted):
    - success_rate and avg_extraction_yield via EMA (alpha from settings)
    - blocked_paths accumulated from failed visits
    - pairwise agreement matrix feeding the consistency sub-score
    """

    def __init__(self, ema_alpha: Optional[float] = None):
        """
        Initialize an engine with empty history.

        Args:
            ema_alpha: Smoothing weight for visit updates (defaults to settings)
        """
        self.ema_alpha = ema_alpha if ema_alpha is not None else settings.ema_alpha
        self._history: Dict[str, SourceHistory] = {}
        self._consistency: Dict[str, Dict[str, float]] = {}
        self._session_blocked: Set[str] = set()
        self.logger = get_logger("SourceIntelligence")

    # ── Classification ─────────────────────────────────────────────

    def _is_blocked(self, domain: str) -> bool:
        for blocked in BLOCKED_DOMAINS | self._session_blocked:
            if domain == blocked or domain.endswith(f".{blocked}"):
                return True
        return False

    def _match_rule(self, domain: str) -> Optional[TierRule]:
        for rule in TIER_RULES:
            if matches_rule(domain, rule.pattern):
                return rule
        return None

    def classify_domain(self, domain: str) -> SourceTier:
        """
        Classify a domain into a source tier.

        Args:
            domain: Domain name (any case, optional www. prefix)

        Returns:
            SourceTier for the domain, TIER_3 if unrecognized
        """
        normalized = normalize_domain(domain)
        if self._is_blocked(normalized):
            return SourceTier.TIER_5

        rule = self._match_rule(normalized)
        if rule is not None:
            return SourceTier(rule.tier)
        return SourceTier(DEFAULT_TIER)

    def block_domain(self, domain: str) -> None:
        """Add a domain to this engine's blocklist (not persisted)."""
        normalized = normalize_domain(domain)
        self._session_blocked.add(normalized)
        self.logger.info("Domain blocked", domain=normalized)

    def should_avoid(self, domain: str) -> bool:
        """
        Decide whether a domain must not be visited.

        True for blocklisted or TIER_5 domains, and for non TIER_1 domains
        whose visits keep failing. Never true for TIER_1.
        """
        normalized = normalize_domain(domain)
        tier = self.classify_domain(normalized)
        if tier == SourceTier.TIER_5:
            return True
        if tier == SourceTier.TIER_1:
            return False

        history = self._history.get(normalized)
        if (
            history is not None
            and history.visits >= LOW_SUCCESS_MIN_VISITS
            and history.success_rate < LOW_SUCCESS_RATE_FLOOR
        ):
            return True
        return False

    # ── Scoring ────────────────────────────────────────────────────

    @staticmethod
    def calculate_overall_score(scores: SourceScores) -> float:
        """Weighted mean of the five sub-scores."""
        total = sum(getattr(scores, name) * weight for name, weight in SCORE_WEIGHTS.items())
        return round(min(1.0, max(0.0, total)), 6)

    def _consistency_score(self, domain: str) -> float:
        agreements = self._consistency.get(domain)
        if not agreements:
            return DEFAULT_SUB_SCORE
        return sum(agreements.values()) / len(agreements)

    def score_domain(self, domain: str) -> SourceIntel:
        """
        Compute the scored view of a domain.

        Recomputed on each call from the tier rule baseline and the
        persisted history; two calls with no update in between return
        identical scores.

        Args:
            domain: Domain name

        Returns:
            SourceIntel with sub-scores and overall_score
        """
        normalized = normalize_domain(domain)
        tier = self.classify_domain(normalized)
        rule = None if self._is_blocked(normalized) else self._match_rule(normalized)

        authority = rule.authority if rule else DEFAULT_SUB_SCORE
        originality = rule.originality if rule else DEFAULT_SUB_SCORE
        specificity = rule.specificity if rule else DEFAULT_SUB_SCORE
        freshness = DEFAULT_SUB_SCORE
        if tier == SourceTier.TIER_5 and rule is None:
            authority = originality = specificity = 0.1

        history = self._history.get(normalized)
        if history is None:
            history = SourceHistory(domain=normalized)
            self._history[normalized] = history

        if history.visits > 0:
            authority *= 0.5 + 0.5 * history.success_rate
            yield_signal = min(history.avg_extraction_yield / YIELD_SATURATION, 1.0)
            specificity = 0.7 * specificity + 0.3 * yield_signal
        if history.content_freshness is not None:
            freshness = history.content_freshness

        scores = SourceScores(
            authority=round(authority, 6),
            originality=round(originality, 6),
            freshness=round(freshness, 6),
            specificity=round(specificity, 6),
            consistency=round(self._consistency_score(normalized), 6),
        )

        return SourceIntel(
            domain=normalized,
            tier=tier,
            category=rule.category if rule else ("blocked" if tier == SourceTier.TIER_5 else "unknown"),
            scores=scores,
            overall_score=self.calculate_overall_score(scores),
            success_rate=history.success_rate,
            avg_extraction_yield=history.avg_extraction_yield,
            blocked_paths=list(history.blocked_paths),
            sample_size=history.visits,
            last_updated=history.last_visit,
        )

    def rank_domains(self, domains: Iterable[str]) -> List[str]:
        """
        Filter avoided domains and sort by (tier asc, overall_score desc).

        Duplicates (after normalization) are collapsed; the sort is stable so
        equal domains keep their input order.
        """
        scored: List[Tuple[str, SourceIntel]] = []
        seen: Set[str] = set()
        for domain in domains:
            normalized = normalize_domain(domain)
            if not normalized or normalized in seen:
                continue
            seen.add(normalized)
            if self.should_avoid(normalized):
                self.logger.debug("Domain avoided during ranking", domain=normalized)
                continue
            scored.append((normalized, self.score_domain(normalized)))

        scored.sort(key=lambda item: (item[1].tier, -item[1].overall_score))
        return [domain for domain, _ in scored]

    # ── History updates ────────────────────────────────────────────

    def update_source_intelligence(
        self,
        domain: str,
        success: bool,
        url: str,
        extraction_yield: float = 0.0,
        blocked_paths: Optional[List[str]] = None,
        content_freshness: Optional[float] = None,
    ) -> SourceHistory:
        """
        Record the outcome of a visit.

        Success rate and extraction yield follow
        new = old * (1 - alpha) + sample * alpha.

        Args:
            domain: Domain visited
            success: Whether the fetch/extraction succeeded
            url: URL visited
            extraction_yield: Number of extraction records produced
            blocked_paths: Paths to remember as unproductive
            content_freshness: Optional freshness sample from page content

        Returns:
            Updated history record
        """
        normalized = normalize_domain(domain)
        history = self._history.get(normalized) or SourceHistory(domain=normalized)
        alpha = self.ema_alpha

        history.success_rate = history.success_rate * (1 - alpha) + (1.0 if success else 0.0) * alpha
        history.avg_extraction_yield = (
            history.avg_extraction_yield * (1 - alpha) + max(0.0, extraction_yield) * alpha
        )
        if content_freshness is not None:
            if history.content_freshness is None:
                history.content_freshness = content_freshness
            else:
                history.content_freshness = (
                    history.content_freshness * (1 - alpha) + content_freshness * alpha
                )

        history.visits += 1
        now = datetime.now(timezone.utc)
        history.last_visit = now
        history.last_updated = now

        for path in blocked_paths or []:
            if path not in history.blocked_paths:
                history.blocked_paths.append(path)

        self._history[normalized] = history

        self.logger.debug(
            "Source intelligence updated",
            domain=normalized,
            url=url,
            success=success,
            success_rate=f"{history.success_rate:.2f}",
            avg_yield=f"{history.avg_extraction_yield:.2f}",
        )
        return history

    def update_consistency(self, claims: Iterable[Tuple[str, Any]]) -> None:
        """
        Adjust pairwise agreement between domains reporting on one fact.

        Each (domain, value) pair is compared with every other pair from a
        different domain; agreement moves the pair's score toward 1, a
        disagreement toward 0. A domain's consistency sub-score is the mean
        of its row.

        Args:
            claims: (domain, normalized value) observations for the same fact
        """
        observations = [(normalize_domain(d), v) for d, v in claims]
        for (d1, v1), (d2, v2) in combinations(observations, 2):
            if d1 == d2:
                continue
            agree = 1.0 if v1 == v2 else 0.0
            for a, b in ((d1, d2), (d2, d1)):
                row = self._consistency.setdefault(a, {})
                current = row.get(b, DEFAULT_SUB_SCORE)
                row[b] = current * (1 - CONSISTENCY_ALPHA) + agree * CONSISTENCY_ALPHA

    # ── Queries ────────────────────────────────────────────────────

    def get_source_intelligence(self, domain: str) -> Optional[SourceHistory]:
        """Return the history record for a domain, if it has one."""
        return self._history.get(normalize_domain(domain))

    def get_domains_by_tier(self, tier: SourceTier) -> List[str]:
        """Domains with history that classify into the given tier."""
        return sorted(d for d in self._history if self.classify_domain(d) == tier)

    def get_best_domains_for_category(self, category: str, limit: int = 5) -> List[str]:
        """Known rule domains of a category, best first."""
        candidates = [
            rule.pattern
            for rule in TIER_RULES
            if rule.category == category and not rule.pattern.startswith(".") and not rule.pattern.endswith(".")
        ]
        return self.rank_domains(candidates)[:limit]

    # ── Persistence ────────────────────────────────────────────────

    def export_state(self) -> Dict[str, Any]:
        """
        Export accumulated reputation as a JSON-serializable dict.

        Returns:
            {"history": {domain: record}, "consistency": {domain: {domain: score}}}
        """
        return {
            "history": {
                domain: record.model_dump(mode="json")
                for domain, record in self._history.items()
            },
            "consistency": {
                domain: dict(row) for domain, row in self._consistency.items()
            },
        }

    def import_state(self, state: Dict[str, Any]) -> None:
        """
        Load reputation exported by export_state(), replacing overlapping entries.

        Args:
            state: Dict produced by export_state()
        """
        for domain, record in (state.get("history") or {}).items():
            self._history[domain] = SourceHistory.model_validate(record)
        for domain, row in (state.get("consistency") or {}).items():
            self._consistency[domain] = {other: float(score) for other, score in row.items()}

        self.logger.info(
            "Source intelligence imported",
            domains=len(self._history),
            consistency_rows=len(self._consistency),
        )
