"""Page-fetching and extraction collaborators.

The navigation engine depends only on the two protocols defined here:

- PageFetcher.fetch(url, extraction_targets) -> FetchResult
- Extractor.extract(url, text, extraction_targets) -> list of ExtractionRecord

A fetcher may return extraction_results itself (a browser adapter that
scrapes structured data directly) or just page text, in which case the
navigation engine hands the text to the configured Extractor.

Ordinary fetch failures are reported as FetchResult(success=False), never
raised.

HttpPageFetcher is the default fetcher: httpx first, optional Playwright
render for JavaScript-heavy pages, then trafilatura main-text extraction
with a BeautifulSoup fallback.
"""

import re
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable

import httpx
import structlog
import trafilatura
from bs4 import BeautifulSoup

from capy_web.config.settings import settings
from capy_web.schemas.claim_schema import ExtractionRecord

# JavaScript framework markers that suggest a client-rendered page
JS_FRAMEWORK_PATTERNS: List[re.Pattern] = [
    re.compile(r'<div\s+id=["\'](?:root|app|__next)["\']>\s*</div>', re.IGNORECASE),
    re.compile(r'__NEXT_DATA__|_reactRoot', re.IGNORECASE),
    re.compile(r'v-cloak|__vue__', re.IGNORECASE),
    re.compile(r'ng-app|<app-root>', re.IGNORECASE),
    re.compile(r'__sveltekit', re.IGNORECASE),
    re.compile(r'<noscript>.*enable\s+javascript', re.IGNORECASE | re.DOTALL),
]

# Minimum HTML length to consider a page server-rendered
MIN_HTML_LENGTH = 500

# Minimum text length for an extractor result to be accepted
MIN_TEXT_LENGTH = 50

BOILERPLATE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form"]
MAIN_CONTENT_TAGS = ("main", "article")

_logger = structlog.get_logger().bind(component="html_to_text")


@dataclass
class FetchResult:
    """Outcome of fetching one URL."""

    url: str
    success: bool
    content: str = ""
    extraction_results: Optional[List[ExtractionRecord]] = None
    status_code: Optional[int] = None
    rendered: bool = False
    error: Optional[str] = None


@runtime_checkable
class PageFetcher(Protocol):
    """Fetches a page. Must not raise on ordinary fetch failure."""

    async def fetch(self, url: str, extraction_targets: List[str]) -> FetchResult:
        ...


@runtime_checkable
class Extractor(Protocol):
    """Turns page text into structured extraction records."""

    async def extract(
        self, url: str, text: str, extraction_targets: List[str]
    ) -> List[ExtractionRecord]:
        ...


def needs_js_rendering(html: str) -> bool:
    """True when the HTML looks like an unrendered single-page app shell."""
    if len(html) < MIN_HTML_LENGTH:
        return True
    return any(pattern.search(html) for pattern in JS_FRAMEWORK_PATTERNS)


def _soup_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(BOILERPLATE_TAGS):
        element.decompose()

    for tag in MAIN_CONTENT_TAGS:
        main = soup.find(tag)
        if main is not None:
            text = main.get_text(separator="\n", strip=True)
            if len(text) >= MIN_TEXT_LENGTH:
                return text

    return soup.get_text(separator="\n", strip=True)


def html_to_text(html: str, url: Optional[str] = None) -> str:
    """
    Extract readable main text from HTML.

    Tries trafilatura in precision mode, then in recall mode. When neither
    yields MIN_TEXT_LENGTH characters, falls back to BeautifulSoup: the
    page's <main> or <article> element when it carries enough text,
    otherwise the whole document with boilerplate elements dropped.

    Args:
        html: Raw or rendered page HTML
        url: Page URL, used for logging only

    Returns:
        Extracted text (possibly empty)
    """
    content = trafilatura.extract(
        html,
        include_comments=False,
        include_tables=True,
        favor_precision=True,
    )
    if content and len(content.strip()) >= MIN_TEXT_LENGTH:
        _logger.debug("text_extracted", url=url, extractor="trafilatura", length=len(content))
        return content.strip()

    # Recall mode catches more content on sparse pages
    content = trafilatura.extract(
        html,
        include_comments=False,
        include_tables=True,
        favor_recall=True,
    )
    if content and len(content.strip()) >= MIN_TEXT_LENGTH:
        _logger.debug("text_extracted", url=url, extractor="trafilatura_recall", length=len(content))
        return content.strip()

    text = _soup_text(html)
    _logger.debug("text_extracted", url=url, extractor="beautifulsoup", length=len(text))
    return text


class HttpPageFetcher:
    """
    Default fetcher using httpx with an optional Playwright fallback.

    Attributes:
        user_agent: User agent header sent with every request
        timeout: Request timeout in seconds
        use_playwright: Whether to render JavaScript-heavy pages
        fetch_count: Number of network fetches made
        render_count: Number of Playwright renders made
    """

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        use_playwright: Optional[bool] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.user_agent = user_agent or settings.user_agent
        self.timeout = timeout or settings.http_timeout
        self.use_playwright = settings.use_playwright if use_playwright is None else use_playwright
        self._client = client
        self._owns_client = client is None
        self._playwright_available: Optional[bool] = None
        self.fetch_count = 0
        self.render_count = 0
        self._logger = structlog.get_logger().bind(component="HttpPageFetcher")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
            self._owns_client = True
        return self._client

    def _check_playwright_available(self) -> bool:
        if self._playwright_available is None:
            try:
                import playwright  # noqa: F401
                self._playwright_available = True
            except ImportError:
                self._playwright_available = False
                self._logger.warning("playwright_not_installed")
        return self._playwright_available

    async def _render(self, url: str) -> Optional[str]:
        """Render a page with headless Chromium. None if unavailable or failed."""
        if not self._check_playwright_available():
            return None

        from playwright.async_api import async_playwright

        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(user_agent=self.user_agent)
                    await page.goto(url, timeout=self.timeout * 1000)
                    await page.wait_for_load_state("networkidle")
                    html = await page.content()
                finally:
                    await browser.close()
        except Exception as e:
            self._logger.warning("render_failed", url=url, error=str(e))
            return None

        self.render_count += 1
        return html

    async def fetch(self, url: str, extraction_targets: List[str]) -> FetchResult:
        """
        Fetch a URL and return its main text.

        Args:
            url: Absolute http(s) URL
            extraction_targets: Ignored here; extraction runs downstream

        Returns:
            FetchResult with content on success, error otherwise
        """
        self.fetch_count += 1
        start = time.monotonic()

        try:
            client = await self._get_client()
            response = await client.get(url)
            response.raise_for_status()
            html = response.text
        except httpx.TimeoutException:
            return FetchResult(url=url, success=False, error=f"Request timeout after {self.timeout}s")
        except httpx.HTTPStatusError as e:
            return FetchResult(
                url=url,
                success=False,
                status_code=e.response.status_code,
                error=f"HTTP error {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            return FetchResult(url=url, success=False, error=f"Fetch failed: {e}")

        rendered = False
        if self.use_playwright and needs_js_rendering(html):
            rendered_html = await self._render(url)
            if rendered_html is not None:
                html = rendered_html
                rendered = True

        text = html_to_text(html, url=url)
        self._logger.debug(
            "page_fetched",
            url=url,
            status=response.status_code,
            rendered=rendered,
            text_length=len(text),
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        return FetchResult(
            url=str(response.url),
            success=True,
            content=text,
            status_code=response.status_code,
            rendered=rendered,
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
