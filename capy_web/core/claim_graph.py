"""Claim graph and verification engine.

Ingests extraction records, merges equivalent claims, detects
contradictions and assigns every claim a deterministic confidence tier
and score.

Scoring (pure function of a claim's sources and counts):
- Base score from the most authoritative source tier:
  T1 0.80, T2 0.60, T3 0.40, T4 0.25, T5 0.10
- +0.10 per corroboration, capped at +0.30
- +0.05 per additional independent domain, capped at +0.15
- -0.20 per contradiction
- Clamped to [0, 1]

Tier rules (first match wins):
- CONTRADICTED: contradictions not outweighed by corroborations
- VERIFIED: >= 2 independent domains, no contradictions, a T1/T2 source
- HIGH: >= 2 independent domains, or a T1 source
- MEDIUM: a T2 source
- LOW: only T3+ sources

Corroboration only counts a source from a domain the claim does not
already cite, so corroboration_count always equals independent domains
minus one.

All methods are synchronous. Path tasks share one event loop, so a
create_claim() call runs its find-match-then-insert sequence without
interleaving; the orchestrator additionally serializes claim ingestion
with confidence updates.

Usage:
    from capy_web.core.claim_graph import ClaimGraph

    graph = ClaimGraph()
    claim = graph.create_claim(record, "https://docs.acme.com/pricing", SourceTier.TIER_1, "Q1")
    best = graph.get_best_answer_for_question("Q1")
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from capy_web.core.normalization import (
    normalize_fields,
    render_text,
    snippet_hash,
    value_key,
    values_conflict,
    values_similar,
)
from capy_web.navigation.url_tools import extract_domain
from capy_web.schemas.claim_schema import (
    Claim,
    ClaimConfidence,
    ClaimRelationship,
    ExtractionRecord,
    SourceRef,
    SourceTier,
    VerificationEvent,
)
from capy_web.utils.logging import get_structured_logger

TIER_BASE_SCORES: Dict[SourceTier, float] = {
    SourceTier.TIER_1: 0.80,
    SourceTier.TIER_2: 0.60,
    SourceTier.TIER_3: 0.40,
    SourceTier.TIER_4: 0.25,
    SourceTier.TIER_5: 0.10,
}

CORROBORATION_BONUS = 0.10
MAX_CORROBORATION_BONUS = 0.30
DIVERSITY_BONUS = 0.05
MAX_DIVERSITY_BONUS = 0.15
CONTRADICTION_PENALTY = 0.20

AUTHORITATIVE_TIERS = {SourceTier.TIER_1, SourceTier.TIER_2}


def compute_confidence_score(claim: Claim) -> float:
    """
    Compute a claim's continuous confidence score from its own state.

    Args:
        claim: Claim to score

    Returns:
        Score in [0, 1]
    """
    if not claim.sources:
        return 0.0

    best_tier = min(source.tier for source in claim.sources)
    score = TIER_BASE_SCORES[SourceTier(best_tier)]
    score += min(claim.corroboration_count * CORROBORATION_BONUS, MAX_CORROBORATION_BONUS)
    score += min((len(claim.independent_domains) - 1) * DIVERSITY_BONUS, MAX_DIVERSITY_BONUS)
    score -= claim.contradiction_count * CONTRADICTION_PENALTY
    return round(max(0.0, min(1.0, score)), 6)


def determine_confidence(claim: Claim) -> ClaimConfidence:
    """
    Assign the deterministic confidence tier of a claim.

    Args:
        claim: Claim to classify

    Returns:
        ClaimConfidence tier
    """
    if not claim.sources:
        return ClaimConfidence.UNCERTAIN

    domains = len(claim.independent_domains)
    tiers = {source.tier for source in claim.sources}

    if claim.contradiction_count > 0 and claim.corroboration_count <= claim.contradiction_count:
        return ClaimConfidence.CONTRADICTED
    if domains >= 2 and claim.contradiction_count == 0 and tiers & AUTHORITATIVE_TIERS:
        return ClaimConfidence.VERIFIED
    if domains >= 2 or SourceTier.TIER_1 in tiers:
        return ClaimConfidence.HIGH
    if SourceTier.TIER_2 in tiers:
        return ClaimConfidence.MEDIUM
    return ClaimConfidence.LOW


class ClaimGraph:
    """
    In-memory claim store with corroboration and contradiction tracking.

    Indexes:
    - claims by id
    - claim ids by category
    - contradiction relationships between claim pairs
    """

    def __init__(self):
        """Initialize an empty graph."""
        self._claims: Dict[str, Claim] = {}
        self._category_index: Dict[str, List[str]] = {}
        self._relationships: List[ClaimRelationship] = []
        self._contested: Set[Tuple[str, Optional[str]]] = set()
        self._logger = get_structured_logger("capy_web.claims", component="ClaimGraph")

    # ── Ingestion ──────────────────────────────────────────────────

    def create_claim(
        self,
        extraction: ExtractionRecord,
        source_url: str,
        tier: SourceTier,
        question_id: Optional[str] = None,
        schema_name: Optional[str] = None,
    ) -> Claim:
        """
        Ingest one extraction record as a claim.

        If an equivalent claim exists in the same category the source is
        attached to it (corroborating it when the domain is new). Otherwise a
        new claim is created and checked for conflicts against claims in the
        same category and question.

        Args:
            extraction: Extraction record
            source_url: Page the record came from
            tier: Source tier of the page's domain
            question_id: Question the record answers, if known
            schema_name: Category override (defaults to extraction.schema_name)

        Returns:
            The new or merged claim
        """
        category = schema_name or extraction.schema_name
        question_id = question_id or extraction.question_id
        normalized = normalize_fields(extraction.fields)
        source = SourceRef(
            url=source_url,
            domain=extract_domain(source_url),
            tier=SourceTier(tier),
            snippet_hash=snippet_hash(extraction.fields),
        )

        existing = self._find_similar(category, normalized)
        if existing is not None:
            return self._merge(existing, source, question_id)

        now = datetime.now(timezone.utc)
        claim = Claim(
            id=f"CLAIM-{uuid.uuid4().hex[:8].upper()}",
            category=category,
            normalized_value=normalized,
            raw_text=render_text(extraction.fields),
            question_id=question_id,
            sources=[source],
            primary_source_tier=source.tier,
            created_at=now,
            last_updated=now,
        )
        self._refresh(claim)
        self._claims[claim.id] = claim
        self._category_index.setdefault(category, []).append(claim.id)

        self._check_contradictions(claim)

        self._logger.debug(
            "claim_created",
            claim_id=claim.id,
            category=category,
            question_id=question_id,
            tier=int(source.tier),
            confidence=claim.confidence.value,
        )
        return claim

    def _find_similar(self, category: str, normalized: Dict[str, Any]) -> Optional[Claim]:
        for claim_id in self._category_index.get(category, []):
            claim = self._claims[claim_id]
            if values_similar(claim.normalized_value, normalized):
                return claim
        return None

    def _merge(self, claim: Claim, source: SourceRef, question_id: Optional[str]) -> Claim:
        if any(existing.url == source.url for existing in claim.sources):
            return claim

        is_new_domain = source.domain not in claim.independent_domains
        claim.sources.append(source)
        claim.last_updated = datetime.now(timezone.utc)
        if claim.question_id is None and question_id is not None:
            claim.question_id = question_id
        if source.tier < claim.primary_source_tier:
            claim.primary_source_tier = source.tier

        if is_new_domain:
            previous = claim.confidence
            claim.corroboration_count += 1
            self._refresh(claim)
            claim.verification_history.append(
                VerificationEvent(
                    type="corroboration",
                    source_url=source.url,
                    previous_confidence=previous,
                    new_confidence=claim.confidence,
                    note=f"Corroborated by {source.domain}",
                )
            )
            self._logger.info(
                "claim_corroborated",
                claim_id=claim.id,
                domain=source.domain,
                corroborations=claim.corroboration_count,
                confidence=claim.confidence.value,
            )
        else:
            self._refresh(claim)
        return claim

    def _check_contradictions(self, new_claim: Claim) -> None:
        for claim_id in self._category_index.get(new_claim.category, []):
            if claim_id == new_claim.id:
                continue
            existing = self._claims[claim_id]
            if existing.question_id != new_claim.question_id:
                continue
            if values_conflict(existing.normalized_value, new_claim.normalized_value):
                self._record_contradiction(existing, new_claim)

    def _record_contradiction(self, claim1: Claim, claim2: Claim) -> None:
        self._relationships.append(
            ClaimRelationship(claim_id_1=claim1.id, claim_id_2=claim2.id, type="contradicts")
        )
        self._contested.add((claim1.category, claim1.question_id))

        for claim, other in ((claim1, claim2), (claim2, claim1)):
            previous = claim.confidence
            claim.contradiction_count += 1
            claim.last_updated = datetime.now(timezone.utc)
            self._refresh(claim)
            claim.verification_history.append(
                VerificationEvent(
                    type="contradiction",
                    source_url=other.sources[0].url if other.sources else "",
                    previous_confidence=previous,
                    new_confidence=claim.confidence,
                    note=f"Contradicted by: {other.raw_text[:50]}",
                )
            )

        self._logger.info(
            "contradiction_detected",
            claim_ids=[claim1.id, claim2.id],
            category=claim1.category,
            question_id=claim1.question_id,
        )

    @staticmethod
    def _refresh(claim: Claim) -> None:
        claim.confidence_score = compute_confidence_score(claim)
        claim.confidence = determine_confidence(claim)

    # ── Queries ────────────────────────────────────────────────────

    def get_claim(self, claim_id: str) -> Optional[Claim]:
        return self._claims.get(claim_id)

    def get_all_claims(self) -> List[Claim]:
        return list(self._claims.values())

    def get_claims_by_category(self, category: str) -> List[Claim]:
        return [self._claims[cid] for cid in self._category_index.get(category, [])]

    def get_claims_for_question(self, question_id: str) -> List[Claim]:
        return [c for c in self._claims.values() if c.question_id == question_id]

    def get_verified_claims(self) -> List[Claim]:
        return [c for c in self._claims.values() if c.confidence == ClaimConfidence.VERIFIED]

    def get_contradicted_claims(self) -> List[Claim]:
        return [c for c in self._claims.values() if c.confidence == ClaimConfidence.CONTRADICTED]

    def is_contested(self, category: str, question_id: Optional[str] = None) -> bool:
        """True once any contradiction was recorded for the category/question."""
        return (category, question_id) in self._contested

    def get_best_answer_for_question(self, question_id: str) -> Optional[Claim]:
        """
        Highest-scoring non-contradicted claim mapped to a question.

        Ties keep the earlier claim.
        """
        candidates = [
            c for c in self.get_claims_for_question(question_id)
            if c.confidence != ClaimConfidence.CONTRADICTED
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.confidence_score)

    def peer_values(self, claim: Claim) -> List[Tuple[str, str]]:
        """
        (domain, value) observations for every claim sharing this claim's fact.

        Feeds SourceIntelligenceEngine.update_consistency(): domains citing the
        same claim agree, domains citing conflicting claims disagree.
        """
        observations: List[Tuple[str, str]] = []
        for other in self.get_claims_by_category(claim.category):
            if other.question_id != claim.question_id:
                continue
            if other.id != claim.id and not (
                values_similar(other.normalized_value, claim.normalized_value)
                or values_conflict(other.normalized_value, claim.normalized_value)
            ):
                continue
            key = value_key(other.normalized_value)
            for domain in sorted(other.independent_domains):
                observations.append((domain, key))
        return observations

    def get_stats(self) -> Dict[str, Any]:
        """
        Claim counts by confidence tier plus contradiction pairs.

        Returns:
            Dict with total_claims, one count per tier, avg_confidence,
            categories and contradiction_pairs
        """
        counts = {tier.value: 0 for tier in ClaimConfidence}
        total_score = 0.0
        for claim in self._claims.values():
            counts[claim.confidence.value] += 1
            total_score += claim.confidence_score

        pairs = {
            frozenset((r.claim_id_1, r.claim_id_2))
            for r in self._relationships
            if r.type == "contradicts"
        }
        return {
            "total_claims": len(self._claims),
            **counts,
            "avg_confidence": total_score / len(self._claims) if self._claims else 0.0,
            "categories": list(self._category_index),
            "contradiction_pairs": len(pairs),
        }

    def clear(self) -> None:
        """Reset all state for a new research session."""
        self._claims.clear()
        self._category_index.clear()
        self._relationships.clear()
        self._contested.clear()

    # ── Persistence ────────────────────────────────────────────────

    def export_state(self) -> Dict[str, Any]:
        """Serialize claims and relationships to JSON-compatible data."""
        return {
            "claims": [claim.model_dump(mode="json") for claim in self._claims.values()],
            "relationships": [r.model_dump(mode="json") for r in self._relationships],
        }

    def import_state(self, data: Dict[str, Any]) -> None:
        """Replace the graph with exported data, rebuilding indexes."""
        self.clear()
        for raw in data.get("claims", []):
            claim = Claim.model_validate(raw)
            self._claims[claim.id] = claim
            self._category_index.setdefault(claim.category, []).append(claim.id)
        for raw in data.get("relationships", []):
            relationship = ClaimRelationship.model_validate(raw)
            self._relationships.append(relationship)
            first = self._claims.get(relationship.claim_id_1)
            if relationship.type == "contradicts" and first is not None:
                self._contested.add((first.category, first.question_id))
