"""Application settings using Pydantic BaseSettings for environment variable management."""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Global research engine settings loaded from environment variables.

    Attributes:
        default_mode: Operator mode used when an objective does not pick one
        max_time_ms: Default wall-clock budget per research session
        max_pages: Default page budget per research session
        max_concurrency: Default number of execution paths run at once
        max_cost_units: Default cost budget (one unit per network fetch)
        marginal_gain_floor: Average confidence gain below which research stops
        parallelism: Hard cap on concurrent paths regardless of plan budgets
        cache_enabled: Reuse fetched pages within their TTL
        page_cache_ttl_ms: TTL for cached pages and extractions
        domain_map_ttl_ms: TTL for per-domain high-signal URL maps
        requests_per_second: Global fetch rate (token bucket refill)
        burst_size: Token bucket capacity
        per_domain_delay_ms: Minimum spacing between hits on one domain
        respect_robots_txt: Enforce robots.txt before every fetch
        user_agent: User agent sent by the default fetcher
        http_timeout: Timeout in seconds for HTTP requests
        use_playwright: Allow the default fetcher to render JS-heavy pages
        ema_alpha: Smoothing weight for success rate / extraction yield
        marginal_gain_window: Number of updates averaged for marginal gain
        max_telemetry_events: Cap on the in-memory telemetry event log
        gemini_api_key: Google Gemini API key (optional, enables LLM planning)
        gemini_model: Gemini model used for planning and extraction
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log output format (json for production, console for dev)
    """

    default_mode: str = Field(
        default="standard",
        description="Operator mode: lightning, standard, deep, compliance, simulation"
    )
    max_time_ms: int = Field(default=120_000, description="Session time budget in ms")
    max_pages: int = Field(default=30, description="Session page budget")
    max_concurrency: int = Field(default=3, description="Concurrent execution paths")
    max_cost_units: int = Field(default=50, description="Session cost budget")
    marginal_gain_floor: float = Field(
        default=0.02,
        description="Stop when average marginal gain falls below this"
    )
    parallelism: int = Field(
        default=3,
        description="Engine-wide cap on concurrently active paths"
    )
    cache_enabled: bool = Field(default=True, description="Enable page cache")
    page_cache_ttl_ms: int = Field(
        default=3_600_000,
        description="TTL for cached pages in ms (1 hour)"
    )
    domain_map_ttl_ms: int = Field(
        default=86_400_000,
        description="TTL for domain high-signal URL maps in ms (24 hours)"
    )
    requests_per_second: float = Field(default=2.0, description="Global fetch rate")
    burst_size: int = Field(default=5, description="Fetch burst capacity")
    per_domain_delay_ms: int = Field(
        default=1000,
        description="Minimum delay between requests to one domain in ms"
    )
    respect_robots_txt: bool = Field(default=True, description="Honor robots.txt")
    user_agent: str = Field(
        default="capy-web-bot/0.1 (+research)",
        description="User agent for page and robots.txt fetches"
    )
    http_timeout: float = Field(default=20.0, description="HTTP timeout in seconds")
    use_playwright: bool = Field(
        default=False,
        description="Render JavaScript-heavy pages with Playwright"
    )
    ema_alpha: float = Field(
        default=0.3,
        description="EMA weight for source success rate and extraction yield"
    )
    marginal_gain_window: int = Field(
        default=3,
        description="Updates averaged before a marginal-gain stop can fire"
    )
    max_telemetry_events: int = Field(
        default=10_000,
        description="Maximum telemetry events kept in memory per session"
    )
    gemini_api_key: str | None = Field(
        default=None,
        description="Google Gemini API key"
    )
    gemini_model: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model identifier for planning and extraction"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: json or console"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Singleton instance - import this throughout the application
settings = Settings()
