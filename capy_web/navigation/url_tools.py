"""URL normalization and visit deduplication for research sessions.

Uses yarl for RFC-compliant URL normalization. The cache, the session-wide
visited set and the per-domain rate limiter all key on the forms produced
here, so the same page reached through a tracking link, a trailing slash or
a fragment is treated as one page.
"""

from typing import Iterable, List, Optional, Set

from yarl import URL

from capy_web.config.logging import get_logger


logger = get_logger("url_tools")


# Tracking parameters stripped during normalization
TRACKING_PARAMS: frozenset[str] = frozenset({
    # Google Analytics
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "utm_id", "utm_source_platform", "utm_creative_format", "utm_marketing_tactic",
    # Ad click identifiers
    "fbclid", "gclid", "gclsrc", "dclid", "msclkid", "twclid",
    # Email / marketing automation
    "mc_cid", "mc_eid", "_hsenc", "_hsmi", "hsCtaTracking", "mkt_tok", "vero_id",
    # Other common trackers
    "ref", "_ga", "_gl",
})

ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})


def normalize_domain(domain: str) -> str:
    """
    Canonical form of a domain for scoring and rate limiting.

    Lowercases, drops a leading "www.", any port and a trailing dot.

    Args:
        domain: Host name, possibly with port

    Returns:
        Normalized domain (e.g., "docs.acme.com")
    """
    host = domain.strip().lower()
    if "://" in host:
        host = URL(host).host or ""
    host = host.split(":", 1)[0].rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def parse_url(url: str) -> URL:
    """
    Parse an absolute http(s) URL.

    Args:
        url: Raw URL string

    Returns:
        Parsed yarl URL

    Raises:
        ValueError: If the URL is relative, unparseable or not http(s)
    """
    try:
        parsed = URL(url)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid URL: {url}") from e

    if not parsed.is_absolute() or not parsed.host:
        raise ValueError(f"URL is not absolute: {url}")
    if parsed.scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Unsupported URL scheme: {parsed.scheme}")
    return parsed


def has_embedded_credentials(url: str) -> bool:
    """True when a URL carries user info (user:password@host)."""
    try:
        parsed = URL(url)
    except (TypeError, ValueError):
        return False
    return bool(parsed.user or parsed.password)


def normalize_url(url: str) -> str:
    """
    Normalize URL for consistent comparison.

    Normalization steps:
    1. Parse with yarl (handles encoding, IDNA)
    2. Lowercase host
    3. Remove tracking parameters and sort the rest
    4. Remove fragment
    5. Remove trailing slash unless root path
    6. Drop default ports

    Args:
        url: Raw URL string

    Returns:
        Normalized URL string suitable for deduplication

    Raises:
        ValueError: If URL cannot be parsed
    """
    parsed = parse_url(url)
    host = (parsed.host or "").lower()

    query_string = ""
    if parsed.query_string:
        kept = [
            (key, value)
            for key, value in sorted(parsed.query.items())
            if key.lower() not in TRACKING_PARAMS
        ]
        query_string = "&".join(f"{k}={v}" for k, v in kept)

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")

    scheme = parsed.scheme
    port = parsed.explicit_port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        host = f"{host}:{port}"

    normalized = f"{scheme}://{host}{path}"
    if query_string:
        normalized = f"{normalized}?{query_string}"
    return normalized


def extract_domain(url: str) -> str:
    """
    Extract the normalized domain from a URL.

    Args:
        url: URL string

    Returns:
        Domain string without "www." (e.g., "reuters.com")

    Raises:
        ValueError: If URL cannot be parsed
    """
    return normalize_domain(parse_url(url).host or "")


def root_urls(domain: str) -> List[str]:
    """Fallback entry points for a domain with no known pages."""
    bare = normalize_domain(domain)
    return [f"https://{bare}/", f"https://www.{bare}/"]


def dedupe_urls(urls: Iterable[str]) -> List[str]:
    """
    Deduplicate URLs by normalized form, keeping first occurrence order.

    Unparseable URLs are dropped with a debug log.
    """
    seen: Set[str] = set()
    result: List[str] = []
    for url in urls:
        try:
            key = normalize_url(url)
        except ValueError:
            logger.debug("Dropping invalid URL", url=url)
            continue
        if key not in seen:
            seen.add(key)
            result.append(url)
    return result


class VisitedUrls:
    """
    Session-wide set of visited URLs keyed by normalized form.

    claim() is a single synchronous check-and-add, so concurrently running
    path tasks on one event loop can never both claim the same page.
    """

    def __init__(self):
        self._urls: Set[str] = set()
        self._order: List[str] = []

    def claim(self, url: str) -> bool:
        """
        Mark a URL visited.

        Returns:
            True if this call claimed the URL, False if it was already visited
        """
        key = self._key(url)
        if key is None or key in self._urls:
            return False
        self._urls.add(key)
        self._order.append(url)
        return True

    def __contains__(self, url: str) -> bool:
        key = self._key(url)
        return key is not None and key in self._urls

    def __len__(self) -> int:
        return len(self._urls)

    def as_list(self) -> List[str]:
        """URLs in the order they were first claimed."""
        return list(self._order)

    def clear(self) -> None:
        self._urls.clear()
        self._order.clear()

    @staticmethod
    def _key(url: str) -> Optional[str]:
        try:
            return normalize_url(url)
        except ValueError:
            return None
