"""Per-domain source intelligence records."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from capy_web.schemas.claim_schema import SourceTier


class SourceScores(BaseModel):
    """The five trust sub-scores of a domain, each 0.0-1.0."""

    authority: float = Field(..., ge=0.0, le=1.0, description="Is this a primary source?")
    originality: float = Field(..., ge=0.0, le=1.0, description="Is content first-hand?")
    freshness: float = Field(..., ge=0.0, le=1.0, description="How recent is content?")
    specificity: float = Field(..., ge=0.0, le=1.0, description="Is content concrete?")
    consistency: float = Field(..., ge=0.0, le=1.0, description="Does it agree with others?")


class SourceHistory(BaseModel):
    """Accumulated visit history for one domain. This is what gets persisted."""

    domain: str
    visits: int = 0
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    avg_extraction_yield: float = Field(default=0.0, ge=0.0)
    content_freshness: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, description="EMA of page content freshness"
    )
    blocked_paths: List[str] = Field(default_factory=list)
    last_visit: Optional[datetime] = None
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SourceIntel(BaseModel):
    """Scored view of a domain, recomputed on every scoring request."""

    domain: str
    tier: SourceTier
    category: str = "unknown"
    scores: SourceScores
    overall_score: float = Field(..., ge=0.0, le=1.0)
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    avg_extraction_yield: float = Field(default=0.0, ge=0.0)
    blocked_paths: List[str] = Field(default_factory=list)
    sample_size: int = 0
    last_updated: Optional[datetime] = None
