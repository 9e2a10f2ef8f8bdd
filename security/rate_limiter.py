import time
from collections import OrderedDict

from exceptions import RateLimitError
from utils.logging import get_logger

logger = get_logger("security.rate_limiter")


class InMemoryRateLimiter:
    """Per-client request counter held in a bounded LRU with entry expiry.

    Each hit increments the client's count and re-stores the entry, which
    restarts its lifetime. A client is therefore limited to ``limit``
    requests until it has been quiet for ``window_seconds``. At most
    ``max_clients`` keys are kept; the least recently used is evicted first.

    Single event loop only: ``hit`` never awaits, so the read-increment-write
    cannot interleave with another task.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int = 60,
        max_clients: int = 10000,
        clock=time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_clients = max_clients
        self._clock = clock
        self._entries: OrderedDict[str, tuple[int, float]] = OrderedDict()

    async def hit(self, client_ip: str) -> int:
        """Record one request from ``client_ip``.

        Returns:
            The client's count including this request.

        Raises:
            RateLimitError: If the count is now above the limit (429).
        """
        count = self._increment(client_ip)
        if self.limit and count > self.limit:
            raise RateLimitError(
                retry_after=self.window_seconds,
                limit=self.limit,
                client_ip=client_ip,
            )
        return count

    def _increment(self, key: str) -> int:
        now = self._clock()
        entry = self._entries.pop(key, None)
        count = entry[0] if entry is not None and entry[1] > now else 0
        count += 1

        self._entries[key] = (count, now + self.window_seconds)
        self._evict(now)
        return count

    def _evict(self, now: float) -> None:
        while len(self._entries) > self.max_clients:
            self._entries.popitem(last=False)
        # Oldest entries sit at the front; drop the expired prefix
        while self._entries:
            _key, (_count, expires_at) = next(iter(self._entries.items()))
            if expires_at > now:
                break
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimiter:
    """Redis-backed sliding window, shared by every worker process.

    Weighted count = previous minute * (1 - elapsed fraction) + current.
    Redis errors fail open: an outage must not take the proxy down.
    """

    def __init__(self, redis_url: str, limit: int, window_seconds: int = 60):
        self.redis_url = redis_url
        self.limit = limit
        self.window_seconds = window_seconds
        self._redis = None

    async def get_redis(self):
        """Get or create async Redis connection."""
        if self._redis is None:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def check(self, client_ip: str) -> float:
        """Count one request and return the weighted count.

        Raises:
            RateLimitError: If the weighted count is above the limit.
        """
        r = await self.get_redis()
        now = time.time()
        window = self.window_seconds
        current_window = int(now // window)
        elapsed_fraction = (now % window) / window

        current_key = f"rate:{client_ip}:{current_window}"
        prev_key = f"rate:{client_ip}:{current_window - 1}"

        pipe = r.pipeline()
        pipe.incr(current_key)
        pipe.expire(current_key, window * 2)
        pipe.get(prev_key)
        results = await pipe.execute()

        current_count = results[0]
        prev_count = int(results[2] or 0)
        weighted = prev_count * (1 - elapsed_fraction) + current_count

        if weighted > self.limit:
            raise RateLimitError(
                retry_after=self.window_seconds,
                limit=self.limit,
                client_ip=client_ip,
            )
        return weighted

    async def hit(self, client_ip: str) -> None:
        if not self.limit:
            return
        try:
            await self.check(client_ip)
        except RateLimitError:
            raise
        except Exception:
            logger.warning(
                "Rate limiter unavailable, allowing request",
                exc_info=True,
            )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
