"""Claim and extraction schemas for the claim verification graph.

Claims are normalized factual assertions built from extraction records.
A claim's confidence_score is derived only from its sources and its
corroboration / contradiction counts, so recomputing it from the claim
alone always reproduces the stored value.
"""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SourceTier(IntEnum):
    """Domain trust classification, 1 = most authoritative.

    TIER_1: official domains, docs, repos, filings
    TIER_2: first-party blogs, changelogs, company databases
    TIER_3: reputable analysis and news
    TIER_4: reviews and forums (corroboration only)
    TIER_5: SEO / junk (actively penalized)
    """

    TIER_1 = 1
    TIER_2 = 2
    TIER_3 = 3
    TIER_4 = 4
    TIER_5 = 5


class ClaimConfidence(str, Enum):
    """Deterministic confidence tier of a claim."""

    VERIFIED = "verified"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNCERTAIN = "uncertain"
    CONTRADICTED = "contradicted"


class ExtractionRecord(BaseModel):
    """Structured fields pulled from one page by the extraction collaborator."""

    schema_name: str = Field(..., description="Extraction schema, used as claim category")
    fields: Dict[str, Any] = Field(default_factory=dict)
    question_id: Optional[str] = Field(
        default=None, description="Question this record answers, when the extractor knows"
    )
    confidence: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Extraction confidence from the page adapter's rules",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "schema_name": "pricing",
                    "fields": {"plan": "Pro", "price": "$49/month"},
                    "question_id": "Q1",
                }
            ]
        }
    }


class SourceRef(BaseModel):
    """A page backing a claim. Immutable once attached."""

    url: str
    domain: str
    tier: SourceTier
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    snippet_hash: str = Field(default="", description="Hash of the extracted fields")

    model_config = {"frozen": True}


class VerificationEvent(BaseModel):
    """A change to a claim's standing caused by another source."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: Literal["corroboration", "contradiction"]
    source_url: str
    previous_confidence: ClaimConfidence
    new_confidence: ClaimConfidence
    note: str = ""


class ClaimRelationship(BaseModel):
    """Edge between two claims in the graph."""

    claim_id_1: str
    claim_id_2: str
    type: Literal["supports", "contradicts", "related"]
    strength: float = Field(default=1.0, ge=0.0, le=1.0)


class Claim(BaseModel):
    """A normalized factual assertion with attached sources."""

    id: str
    category: str
    normalized_value: Any = None
    raw_text: str = Field(default="", description="Readable rendering of the extraction")
    question_id: Optional[str] = None
    sources: List[SourceRef] = Field(default_factory=list)
    primary_source_tier: SourceTier = SourceTier.TIER_3
    corroboration_count: int = 0
    contradiction_count: int = 0
    confidence: ClaimConfidence = ClaimConfidence.UNCERTAIN
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    verification_history: List[VerificationEvent] = Field(default_factory=list)

    @property
    def independent_domains(self) -> set:
        """Distinct domains among the claim's sources."""
        return {source.domain for source in self.sources}
