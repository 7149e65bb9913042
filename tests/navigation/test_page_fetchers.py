"""Tests for the default HTTP page fetcher and HTML text extraction."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from capy_web.navigation.fetchers import (
    FetchResult,
    HttpPageFetcher,
    PageFetcher,
    html_to_text,
    needs_js_rendering,
)

PRICING_TEXT = "Acme Pro costs $49 per month and includes unlimited projects and SSO."

PRICING_HTML = f"""
<html>
  <head><title>Acme pricing</title><script>var tracking = 1;</script></head>
  <body>
    <nav>Home | Pricing | Blog</nav>
    <main><h1>Pricing</h1><p>{PRICING_TEXT}</p></main>
    <footer>Copyright Acme</footer>
  </body>
</html>
""" + "<!-- padding -->" * 40


def fetcher_for(handler, **kwargs) -> HttpPageFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpPageFetcher(client=client, use_playwright=kwargs.pop("use_playwright", False), **kwargs)


class TestHtmlToText:
    """Test main-text extraction."""

    def test_extracts_main_text(self):
        text = html_to_text(PRICING_HTML)
        assert PRICING_TEXT in text
        assert "tracking" not in text

    def test_trafilatura_precision_result_used(self):
        extracted = f"Pricing\n{PRICING_TEXT}"
        with patch("capy_web.navigation.fetchers.trafilatura.extract", return_value=extracted) as extract:
            assert html_to_text(PRICING_HTML) == extracted

        extract.assert_called_once()
        assert extract.call_args.kwargs["favor_precision"] is True

    def test_trafilatura_recall_after_short_precision_result(self):
        with patch(
            "capy_web.navigation.fetchers.trafilatura.extract", side_effect=["Pricing", PRICING_TEXT]
        ) as extract:
            assert html_to_text(PRICING_HTML) == PRICING_TEXT

        assert extract.call_count == 2
        assert extract.call_args.kwargs["favor_recall"] is True


class TestSoupFallback:
    """Test the BeautifulSoup fallback when trafilatura finds nothing."""

    @pytest.fixture(autouse=True)
    def no_trafilatura_result(self):
        with patch("capy_web.navigation.fetchers.trafilatura.extract", return_value=None):
            yield

    def test_prefers_main_element(self):
        text = html_to_text(PRICING_HTML)
        assert PRICING_TEXT in text
        assert "Home | Pricing" not in text
        assert "Copyright" not in text
        assert "tracking" not in text

    def test_falls_back_to_body(self):
        html = "<html><body><main>short</main><div>Company overview text</div></body></html>"
        text = html_to_text(html)
        assert "short" in text
        assert "Company overview text" in text

    def test_article_element(self):
        html = f"<html><body><aside>Related links</aside><article>{PRICING_TEXT}</article></body></html>"
        assert html_to_text(html) == PRICING_TEXT


class TestNeedsJsRendering:
    """Test SPA shell detection."""

    def test_short_html(self):
        assert needs_js_rendering("<html><body></body></html>")

    def test_server_rendered_page(self):
        assert not needs_js_rendering(PRICING_HTML)

    def test_framework_shell(self):
        html = '<html><body><div id="root"></div></body></html>' + " " * 600
        assert needs_js_rendering(html)


class TestHttpPageFetcher:
    """Test fetch outcomes through a mock transport."""

    def test_satisfies_protocol(self):
        assert isinstance(HttpPageFetcher(), PageFetcher)

    @pytest.mark.asyncio
    async def test_successful_fetch(self):
        fetcher = fetcher_for(lambda request: httpx.Response(200, html=PRICING_HTML))
        result = await fetcher.fetch("https://acme.com/pricing", ["pricing"])

        assert isinstance(result, FetchResult)
        assert result.success
        assert result.status_code == 200
        assert result.url == "https://acme.com/pricing"
        assert PRICING_TEXT in result.content
        assert result.extraction_results is None
        assert fetcher.fetch_count == 1

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        fetcher = fetcher_for(lambda request: httpx.Response(404, text="not found"))
        result = await fetcher.fetch("https://acme.com/missing", [])

        assert not result.success
        assert result.status_code == 404
        assert result.error == "HTTP error 404"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        fetcher = fetcher_for(handler, timeout=3.0)
        result = await fetcher.fetch("https://acme.com/", [])

        assert not result.success
        assert result.error == "Request timeout after 3.0s"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await fetcher_for(handler).fetch("https://acme.com/", [])
        assert not result.success
        assert result.error.startswith("Fetch failed")

    @pytest.mark.asyncio
    async def test_js_shell_rendered_when_enabled(self):
        shell = '<html><body><div id="root"></div></body></html>'
        fetcher = fetcher_for(lambda request: httpx.Response(200, html=shell), use_playwright=True)
        fetcher._render = AsyncMock(return_value=PRICING_HTML)

        result = await fetcher.fetch("https://app.acme.com/", [])

        fetcher._render.assert_awaited_once_with("https://app.acme.com/")
        assert result.rendered
        assert PRICING_TEXT in result.content

    @pytest.mark.asyncio
    async def test_failed_render_keeps_raw_html(self):
        shell = f'<html><body><div id="root"></div><p>{PRICING_TEXT}</p></body></html>'
        fetcher = fetcher_for(lambda request: httpx.Response(200, html=shell), use_playwright=True)
        fetcher._render = AsyncMock(return_value=None)

        result = await fetcher.fetch("https://app.acme.com/", [])

        assert result.success
        assert not result.rendered
        assert PRICING_TEXT in result.content

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        fetcher = HttpPageFetcher(client=client)
        await fetcher.aclose()
        assert not client.is_closed
        await client.aclose()
