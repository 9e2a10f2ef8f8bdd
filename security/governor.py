from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Request

from config import Settings
from exceptions import CapacityError, RateLimitError
from security.rate_limiter import InMemoryRateLimiter, RedisRateLimiter
from security.ssrf import validate_request_url
from utils.concurrency import FetchGate
from utils.logging import get_logger

logger = get_logger("security.governor")

# Peers allowed to tell us the real client address (our own reverse proxy)
TRUSTED_PROXY_ADDRESSES = {"127.0.0.1", "::1", "::ffff:127.0.0.1"}


class RequestGovernor:
    """Admission control for the image proxy.

    Owns the only shared mutable state of the service: the per-client rate
    counter and the global in-flight fetch counter. One instance lives on
    ``app.state.governor`` so tests get fresh counters with a fresh app.

    Order per request:
    1. Rate limit by client IP (429)
    2. Validate the inbound URL, no network (400)
    3. Take a fetch slot for the duration of the fetch (503)
    """

    def __init__(self, rate_limiter, fetch_gate: FetchGate, max_url_length: int | None = None):
        self.rate_limiter = rate_limiter
        self.fetch_gate = fetch_gate
        self.max_url_length = max_url_length

    @classmethod
    def from_settings(cls, config: Settings) -> "RequestGovernor":
        if config.redis_url:
            rate_limiter = RedisRateLimiter(
                config.redis_url,
                limit=config.rate_limit_rpm,
                window_seconds=config.rate_limit_window_seconds,
            )
        else:
            rate_limiter = InMemoryRateLimiter(
                limit=config.rate_limit_rpm,
                window_seconds=config.rate_limit_window_seconds,
                max_clients=config.rate_limit_max_clients,
            )
        return cls(
            rate_limiter,
            FetchGate(config.max_concurrent_fetches),
            max_url_length=config.max_url_length,
        )

    async def check_rate_limit(self, client_ip: str) -> None:
        try:
            await self.rate_limiter.hit(client_ip)
        except RateLimitError:
            logger.warning(
                "Rate limit exceeded",
                extra={"context": {"client_ip": client_ip}},
            )
            raise

    async def admit(self, request: Request, url: str | None) -> str:
        """Run the pre-network checks for one request.

        Returns:
            The validated URL.

        Raises:
            RateLimitError: Client is over its request budget.
            ValidationError: URL fails an inbound check.
        """
        await self.check_rate_limit(get_client_ip(request))
        return validate_request_url(url, self.max_url_length)

    @asynccontextmanager
    async def fetch_slot(self) -> AsyncIterator[None]:
        """Hold one of the global fetch slots (CapacityError when full)."""
        try:
            await self.fetch_gate.acquire()
        except CapacityError:
            logger.warning(
                "Concurrent fetch limit reached",
                extra={"context": {"limit": self.fetch_gate.max_active}},
            )
            raise
        try:
            yield
        finally:
            self.fetch_gate.release()

    async def close(self) -> None:
        close = getattr(self.rate_limiter, "close", None)
        if close is not None:
            await close()


def get_client_ip(request: Request) -> str:
    """Client IP from the socket, or X-Forwarded-For if the peer is our proxy."""
    peer = request.client.host if request.client else ""
    if peer in TRUSTED_PROXY_ADDRESSES:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return peer or "unknown"
