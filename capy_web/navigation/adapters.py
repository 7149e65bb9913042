"""Domain adapters: per-URL extraction schemas and confidence rules.

An adapter recognizes a family of pages by URL (pricing pages, GitHub
repositories, documentation, trust centers, news articles, Crunchbase
profiles, company sites). It names the extraction schema the extractor
should target on such pages, which also becomes the claim category, and
scores extracted fields with additive confidence rules.

The registry picks exactly one adapter per URL: the first specialized
adapter whose pattern matches, otherwise the generic adapter.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from capy_web.config.logging import get_logger
from capy_web.schemas.claim_schema import ExtractionRecord

# Record schema names that carry no category of their own
GENERIC_SCHEMA_NAMES = {"", "generic", "general", "unknown"}


class AdapterType(str, Enum):
    """Page family an adapter handles."""

    COMPANY_SITE = "company_site"
    PRICING = "pricing"
    GITHUB = "github"
    DOCS = "docs"
    SECURITY_TRUST = "security_trust"
    NEWS = "news"
    CRUNCHBASE = "crunchbase"
    GENERIC = "generic"


@dataclass(frozen=True)
class ExtractionField:
    """One field of an extraction schema."""

    name: str
    type: str = "string"
    required: bool = False


@dataclass(frozen=True)
class ExtractionSchema:
    """Named set of fields an adapter expects to find on its pages."""

    name: str
    fields: List[ExtractionField] = field(default_factory=list)

    @property
    def required_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.required]


@dataclass(frozen=True)
class ConfidenceRule:
    """
    Additive confidence adjustment applied when a field condition holds.

    Exactly one condition applies, checked in this order:
    min_items (list longer than min_items), equals (value equality),
    otherwise presence (not None, not empty).
    """

    field_name: str
    adjustment: float
    reason: str
    min_items: Optional[int] = None
    equals: Any = None

    def matches(self, fields: Dict[str, Any]) -> bool:
        value = fields.get(self.field_name)
        if self.min_items is not None:
            return isinstance(value, (list, tuple)) and len(value) > self.min_items
        if self.equals is not None:
            return value == self.equals
        return value not in (None, "", [], {})


@dataclass
class DomainAdapter:
    """
    Extraction profile for one page family.

    Attributes:
        adapter_type: Page family
        name: Human-readable adapter name
        url_patterns: Regexes searched against the full URL
        schema: Extraction schema (its name is the claim category)
        confidence_rules: Rules applied by score()
        base_confidence: Score before any rule applies
    """

    adapter_type: AdapterType
    name: str
    url_patterns: List[re.Pattern]
    schema: ExtractionSchema
    confidence_rules: List[ConfidenceRule] = field(default_factory=list)
    base_confidence: float = 0.5

    def matches(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.url_patterns)

    @property
    def is_specialized(self) -> bool:
        return self.adapter_type != AdapterType.GENERIC

    def extraction_targets(self) -> List[str]:
        """Targets to pass to the extractor; the generic adapter adds none."""
        return [self.schema.name] if self.is_specialized else []

    def score(self, fields: Dict[str, Any]) -> float:
        """Base confidence plus every matching rule's adjustment, clamped to [0, 1]."""
        confidence = self.base_confidence
        for rule in self.confidence_rules:
            if rule.matches(fields):
                confidence += rule.adjustment
        return round(max(0.0, min(1.0, confidence)), 6)

    def apply(self, record: ExtractionRecord) -> ExtractionRecord:
        """
        Fit a record to this adapter.

        Records with a generic schema name take the adapter's schema name.
        Records without a confidence get one from the adapter's rules.
        """
        update: Dict[str, Any] = {}
        if self.is_specialized and record.schema_name.strip().lower() in GENERIC_SCHEMA_NAMES:
            update["schema_name"] = self.schema.name
        if record.confidence is None:
            update["confidence"] = self.score(record.fields)
        return record.model_copy(update=update) if update else record


def _patterns(*expressions: str) -> List[re.Pattern]:
    return [re.compile(expression, re.IGNORECASE) for expression in expressions]


def crunchbase_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.CRUNCHBASE,
        name="Crunchbase Adapter",
        url_patterns=_patterns(r"crunchbase\.com/organization/"),
        schema=ExtractionSchema(
            name="crunchbase_company",
            fields=[
                ExtractionField("company_name", required=True),
                ExtractionField("description"),
                ExtractionField("founded"),
                ExtractionField("headquarters"),
                ExtractionField("employees"),
                ExtractionField("funding_total"),
                ExtractionField("last_funding_type"),
                ExtractionField("investors", "list"),
                ExtractionField("categories", "list"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("company_name", 0.2, "Has company name"),
            ConfidenceRule("funding_total", 0.15, "Has funding info"),
            ConfidenceRule("founded", 0.1, "Has founding date"),
        ],
    )


def github_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.GITHUB,
        name="GitHub Repository Adapter",
        url_patterns=_patterns(r"github\.com/[^/]+/[^/?#]+"),
        schema=ExtractionSchema(
            name="github_repo",
            fields=[
                ExtractionField("name", required=True),
                ExtractionField("description"),
                ExtractionField("stars", "number"),
                ExtractionField("forks", "number"),
                ExtractionField("language"),
                ExtractionField("topics", "list"),
                ExtractionField("license"),
                ExtractionField("last_updated"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("name", 0.2, "Has repo name"),
            ConfidenceRule("stars", 0.1, "Has star count"),
            ConfidenceRule("language", 0.15, "Has language info"),
            ConfidenceRule("topics", 0.1, "Has topics", min_items=0),
        ],
    )


def pricing_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.PRICING,
        name="Pricing Page Adapter",
        url_patterns=_patterns(r"/pricing", r"/plans", r"/subscribe", r"/packages"),
        schema=ExtractionSchema(
            name="pricing",
            fields=[
                ExtractionField("plans", "list", required=True),
                ExtractionField("currency"),
                ExtractionField("has_free_tier", "boolean"),
                ExtractionField("has_enterprise", "boolean"),
                ExtractionField("billing_options", "list"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("plans", 0.3, "Has pricing plans", min_items=0),
            ConfidenceRule("currency", 0.1, "Has currency"),
            ConfidenceRule("plans", 0.1, "Multiple plans found", min_items=2),
        ],
    )


def docs_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.DOCS,
        name="Documentation Adapter",
        url_patterns=_patterns(r"//docs\.", r"/docs/", r"/documentation/", r"/api/", r"//developers?\."),
        schema=ExtractionSchema(
            name="documentation",
            fields=[
                ExtractionField("title", required=True),
                ExtractionField("content_summary"),
                ExtractionField("sections", "list"),
                ExtractionField("code_examples", "boolean"),
                ExtractionField("api_endpoints", "list"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("title", 0.15, "Has title"),
            ConfidenceRule("sections", 0.15, "Has multiple sections", min_items=2),
            ConfidenceRule("code_examples", 0.1, "Has code examples", equals=True),
        ],
    )


def security_trust_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.SECURITY_TRUST,
        name="Security & Trust Adapter",
        url_patterns=_patterns(r"/security", r"/trust", r"/compliance", r"/privacy"),
        schema=ExtractionSchema(
            name="security_info",
            fields=[
                ExtractionField("certifications", "list"),
                ExtractionField("compliance_standards", "list"),
                ExtractionField("security_features", "list"),
                ExtractionField("has_soc2", "boolean"),
                ExtractionField("has_gdpr", "boolean"),
                ExtractionField("has_hipaa", "boolean"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("certifications", 0.2, "Has certifications", min_items=0),
            ConfidenceRule("has_soc2", 0.15, "Has SOC 2", equals=True),
            ConfidenceRule("has_gdpr", 0.1, "GDPR compliant", equals=True),
        ],
    )


def news_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.NEWS,
        name="News Article Adapter",
        url_patterns=_patterns(
            r"techcrunch\.com",
            r"bloomberg\.com",
            r"reuters\.com",
            r"wsj\.com",
            r"theverge\.com",
            r"wired\.com",
            r"/news/",
            r"/article/",
            r"/story/",
        ),
        schema=ExtractionSchema(
            name="news_article",
            fields=[
                ExtractionField("headline", required=True),
                ExtractionField("author"),
                ExtractionField("date", "date"),
                ExtractionField("summary"),
                ExtractionField("mentions", "list"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("headline", 0.15, "Has headline"),
            ConfidenceRule("date", 0.1, "Has date"),
            ConfidenceRule("author", 0.1, "Has author"),
        ],
    )


def company_site_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.COMPANY_SITE,
        name="Company Website Adapter",
        # Homepage, or an about/company/team page
        url_patterns=_patterns(r"^https?://[^/]+/?$", r"/about", r"/company", r"/team"),
        schema=ExtractionSchema(
            name="company_info",
            fields=[
                ExtractionField("company_name", required=True),
                ExtractionField("tagline"),
                ExtractionField("description"),
                ExtractionField("founded"),
                ExtractionField("location"),
                ExtractionField("employees"),
                ExtractionField("industry"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("company_name", 0.2, "Has company name"),
            ConfidenceRule("description", 0.15, "Has description"),
            ConfidenceRule("founded", 0.1, "Has founding date"),
            ConfidenceRule("location", 0.1, "Has location"),
        ],
    )


def generic_adapter() -> DomainAdapter:
    return DomainAdapter(
        adapter_type=AdapterType.GENERIC,
        name="Generic Web Adapter",
        url_patterns=_patterns(r".*"),
        schema=ExtractionSchema(
            name="generic",
            fields=[
                ExtractionField("title"),
                ExtractionField("description"),
                ExtractionField("headings", "list"),
                ExtractionField("links", "list"),
            ],
        ),
        confidence_rules=[
            ConfidenceRule("title", 0.1, "Has title"),
            ConfidenceRule("description", 0.1, "Has description"),
            ConfidenceRule("headings", 0.1, "Has multiple headings", min_items=3),
        ],
    )


class AdapterRegistry:
    """
    Ordered set of specialized adapters plus a generic fallback.

    Built-in adapters are checked most specific first. Adapters added with
    register() take priority over everything registered before them.
    """

    def __init__(self, include_defaults: bool = True):
        self._adapters: List[DomainAdapter] = []
        self._generic = generic_adapter()
        self.logger = get_logger("AdapterRegistry")
        if include_defaults:
            self._adapters = [
                crunchbase_adapter(),
                github_adapter(),
                pricing_adapter(),
                docs_adapter(),
                security_trust_adapter(),
                news_adapter(),
                company_site_adapter(),
            ]

    def register(self, adapter: DomainAdapter) -> None:
        """Add an adapter ahead of all existing ones."""
        self._adapters.insert(0, adapter)
        self.logger.debug("Adapter registered", adapter=adapter.name, type=adapter.adapter_type.value)

    def get_adapter(self, url: str) -> DomainAdapter:
        """Best adapter for a URL; the generic adapter when none matches."""
        for adapter in self._adapters:
            if adapter.matches(url):
                return adapter
        return self._generic

    def get_adapter_by_type(self, adapter_type: AdapterType) -> Optional[DomainAdapter]:
        if adapter_type == AdapterType.GENERIC:
            return self._generic
        return next((a for a in self._adapters if a.adapter_type == adapter_type), None)

    def all_adapters(self) -> List[DomainAdapter]:
        return [*self._adapters, self._generic]

    def has_specialized_adapter(self, url: str) -> bool:
        return any(adapter.matches(url) for adapter in self._adapters)

    def adapter_info(self, url: str) -> Dict[str, Any]:
        adapter = self.get_adapter(url)
        return {
            "name": adapter.name,
            "type": adapter.adapter_type.value,
            "schema": adapter.schema.name,
            "is_specialized": adapter.is_specialized,
        }
