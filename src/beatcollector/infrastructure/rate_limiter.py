"""
Token-bucket rate limiter for outbound API calls.

Hey future me - every request to Spotify and MusicBrainz goes through one of these!

ALGORITHM: Token Bucket
- Bucket holds at most max_tokens
- Tokens refill at refill_rate per second
- Each request consumes 1 token
- Empty bucket: sleep until the next token has accumulated

WHY max_tokens=1 FOR BOTH SERVICES?
- A burst bucket lets N requests out at once, then throttles. Spotify's ceiling is
  approximate and MusicBrainz bans bursty clients, so we want a STEADY rate:
  2 req/s for Spotify, 1 req/s for MusicBrainz ("wait until 1s has passed since
  the last call").

NO SINGLETONS:
- Limiters are created once in lifecycle.py and handed to the clients. Jobs that
  run concurrently share the same client, therefore the same bucket.

ON 429/503:
- backoff() sleeps ONCE (Retry-After or the fixed backoff) and drains the bucket.
  The client then raises RateLimitExceededError - no automatic retry loop.

USAGE:
    limiter = RateLimiter.for_spotify()

    await limiter.until_ready()
    response = await client.get(url)

    # or
    async with limiter:
        response = await client.get(url)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter.

    max_backoff_seconds caps whatever the server puts in Retry-After. Spotify can
    ask for minutes; a job sleeping longer than that is better off failing and
    being resubmitted.
    """

    max_tokens: int = 1
    refill_rate: float = 2.0  # Tokens per second
    backoff_seconds: float = 2.0  # Sleep on 429/503 without Retry-After
    max_backoff_seconds: float = 120.0


@dataclass
class RateLimiter:
    """Token bucket rate limiter shared by concurrent tasks.

    Attributes:
        config: Rate limiter configuration
        name: Label used in log lines
        _tokens: Current available tokens
        _last_refill: Monotonic time of the last refill
        _lock: Guards the check-and-set of _tokens/_last_refill
    """

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        """Start with a full bucket."""
        self._tokens = float(self.config.max_tokens)

    @classmethod
    def for_spotify(cls, requests_per_second: float = 2.0) -> "RateLimiter":
        """Create rate limiter for the Spotify Web API (steady 2 req/sec)."""
        return cls(
            config=RateLimiterConfig(
                max_tokens=1,
                refill_rate=requests_per_second,
                backoff_seconds=5.0,
                max_backoff_seconds=120.0,
            ),
            name="spotify",
        )

    @classmethod
    def for_musicbrainz(cls, requests_per_second: float = 1.0) -> "RateLimiter":
        """Create rate limiter for MusicBrainz.

        MusicBrainz is STRICT: 1 req/sec, no bursts. A 503 from them means we
        were too fast - back off 2 seconds.
        """
        return cls(
            config=RateLimiterConfig(
                max_tokens=1,
                refill_rate=requests_per_second,
                backoff_seconds=2.0,
                max_backoff_seconds=60.0,
            ),
            name="musicbrainz",
        )

    def _refill_tokens(self) -> None:
        """Add tokens for the time elapsed since the last refill."""
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            float(self.config.max_tokens),
            self._tokens + elapsed * self.config.refill_rate,
        )
        self._last_refill = now

    async def until_ready(self) -> None:
        """Wait until one token is available, then consume it.

        The lock only covers the bookkeeping; it is released while sleeping so
        other tasks can queue up behind the same budget.
        """
        while True:
            async with self._lock:
                self._refill_tokens()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) / self.config.refill_rate

            logger.debug(f"RateLimiter[{self.name}]: waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)

    async def backoff(self, retry_after: float | None = None) -> float:
        """Sleep once after a server-side rate-limit signal.

        Args:
            retry_after: Seconds from a Retry-After header, if the server sent one

        Returns:
            The wait time actually used
        """
        wait_time = (
            float(retry_after) if retry_after is not None else self.config.backoff_seconds
        )
        wait_time = min(wait_time, self.config.max_backoff_seconds)

        async with self._lock:
            # drain the bucket so nobody else fires during the cooldown
            self._tokens = 0.0
            self._last_refill = time.monotonic() + wait_time

        logger.warning(
            f"RateLimiter[{self.name}]: rate limited by server, backing off {wait_time:.1f}s"
        )
        await asyncio.sleep(wait_time)
        return wait_time

    async def __aenter__(self) -> "RateLimiter":
        """Enter async context - acquire token."""
        await self.until_ready()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        """Exit async context. The token was consumed on entry."""
        return None


__all__ = ["RateLimiter", "RateLimiterConfig"]
