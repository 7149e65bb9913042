"""Token bucket rate limiting for page fetches.

Two limits apply to every fetch:
- a global token bucket (requests per second with a burst allowance)
- a minimum delay between consecutive requests to the same domain

Limits are enforced by reservation: reserve() books the next free slot
and returns how long the caller must wait for it. Waiting is abortable so
a stop request never sits out the remainder of a delay.
"""

import asyncio
import time
from typing import Callable, Dict, Optional

from capy_web.config.logging import get_logger
from capy_web.config.settings import settings
from capy_web.navigation.url_tools import normalize_domain

logger = get_logger("RateLimiter")


class TokenBucket:
    """
    Token bucket where reservations may drive the balance negative.

    A negative balance is debt: the reservation's wait is the time needed to
    refill back to zero.

    Attributes:
        capacity: Maximum number of tokens the bucket can hold
        refill_rate: Tokens added per second
        tokens: Current balance (negative while reservations are pending)
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize a full bucket.

        Args:
            capacity: Maximum tokens (burst size)
            refill_rate: Tokens per second
            clock: Time source in seconds
        """
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self.tokens = float(capacity)
        self.last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def reserve(self, tokens: int = 1) -> float:
        """
        Take tokens now, going into debt if necessary.

        Returns:
            Seconds until the reservation is covered (0.0 if immediately)
        """
        self._refill()
        self.tokens -= tokens
        if self.tokens >= 0:
            return 0.0
        return -self.tokens / self.refill_rate


class DomainRateLimiter:
    """
    Global token bucket plus per-domain spacing.

    Usage:
        limiter = DomainRateLimiter(requests_per_second=2, burst_size=5, per_domain_delay_ms=1000)
        if await limiter.acquire("acme.com", abort_event):
            ...  # go ahead and fetch
    """

    def __init__(
        self,
        requests_per_second: Optional[float] = None,
        burst_size: Optional[int] = None,
        per_domain_delay_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        rps = requests_per_second or settings.requests_per_second
        burst = burst_size or settings.burst_size
        delay_ms = settings.per_domain_delay_ms if per_domain_delay_ms is None else per_domain_delay_ms

        self.per_domain_delay = delay_ms / 1000.0
        self._clock = clock
        self._bucket = TokenBucket(capacity=burst, refill_rate=rps, clock=clock)
        self._next_slot: Dict[str, float] = {}

        logger.debug(
            "Rate limiter initialized",
            requests_per_second=rps,
            burst_size=burst,
            per_domain_delay_ms=delay_ms,
        )

    def reserve(self, domain: str) -> float:
        """
        Book the next request slot for a domain.

        Args:
            domain: Target domain

        Returns:
            Seconds the caller must wait before fetching
        """
        key = normalize_domain(domain)
        now = self._clock()
        start = now + self._bucket.reserve()
        start = max(start, self._next_slot.get(key, now))
        self._next_slot[key] = start + self.per_domain_delay
        return start - now

    async def acquire(self, domain: str, abort_event: Optional[asyncio.Event] = None) -> bool:
        """
        Wait for a request slot.

        Args:
            domain: Target domain
            abort_event: Event that cancels the wait when set

        Returns:
            True when the slot is reached, False if aborted first
        """
        if abort_event is not None and abort_event.is_set():
            return False

        delay = self.reserve(domain)
        if delay <= 0:
            return True

        logger.debug("Rate limited", domain=domain, wait_s=round(delay, 3))
        if abort_event is None:
            await asyncio.sleep(delay)
            return True

        try:
            await asyncio.wait_for(abort_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False
