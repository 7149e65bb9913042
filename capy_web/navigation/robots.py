"""robots.txt enforcement.

robots.txt is fetched once per origin with httpx and parsed with the
standard library's urllib.robotparser. Outcomes:
- 2xx: rules apply
- 401 / 403: the whole origin is disallowed
- other 4xx / 5xx: everything allowed
- network failure: everything allowed (logged), retried on next session
"""

from typing import Dict, Optional
from urllib.robotparser import RobotFileParser

import httpx
from yarl import URL

from capy_web.config.logging import get_logger
from capy_web.config.settings import settings


class RobotsPolicy:
    """
    Per-origin robots.txt cache and allow/deny decisions.

    Attributes:
        user_agent: Agent name matched against robots.txt groups
        enabled: When False every URL is allowed without a fetch
    """

    def __init__(
        self,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        self.user_agent = user_agent or settings.user_agent
        self.enabled = settings.respect_robots_txt if enabled is None else enabled
        self.timeout = timeout or min(settings.http_timeout, 10.0)
        self._client = client
        self._owns_client = client is None
        self._parsers: Dict[str, Optional[RobotFileParser]] = {}
        self.logger = get_logger("RobotsPolicy")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
            self._owns_client = True
        return self._client

    async def _load(self, origin: str) -> Optional[RobotFileParser]:
        """Fetch and parse robots.txt for an origin. None means allow all."""
        robots_url = f"{origin}/robots.txt"
        try:
            client = await self._get_client()
            response = await client.get(robots_url)
        except httpx.HTTPError as e:
            self.logger.warning("robots.txt unreachable, allowing", origin=origin, error=str(e))
            return None

        parser = RobotFileParser(robots_url)
        if response.status_code in (401, 403):
            parser.disallow_all = True
        elif response.status_code >= 400:
            parser.allow_all = True
        else:
            parser.parse(response.text.splitlines())
        return parser

    async def allowed(self, url: str) -> bool:
        """
        Decide whether a URL may be fetched.

        Args:
            url: Absolute http(s) URL

        Returns:
            True if robots.txt permits fetching it
        """
        if not self.enabled:
            return True

        parsed = URL(url)
        origin = f"{parsed.scheme}://{parsed.raw_authority}"
        if origin not in self._parsers:
            self._parsers[origin] = await self._load(origin)
            # Network failures are not cached
            if self._parsers[origin] is None:
                del self._parsers[origin]
                return True

        parser = self._parsers[origin]
        permitted = parser.can_fetch(self.user_agent, url)
        if not permitted:
            self.logger.info("Disallowed by robots.txt", url=url)
        return permitted

    def forget(self, origin: Optional[str] = None) -> None:
        """Drop cached rules for one origin, or all of them."""
        if origin is None:
            self._parsers.clear()
        else:
            self._parsers.pop(origin.rstrip("/"), None)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
