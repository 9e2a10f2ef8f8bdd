import asyncio

from exceptions import CapacityError


class FetchGate:
    """Caps in-flight upstream fetches with rejection-based backpressure.

    - At most ``max_active`` fetches run at once per process
    - Excess requests are rejected immediately (503), never queued
    - A slot is released exactly once, whatever happened inside it
    """

    def __init__(self, max_active: int):
        self._max_active = max_active
        self._active = 0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Take a fetch slot.

        Raises CapacityError (503) if all slots are in use.
        """
        async with self._lock:
            if self._active >= self._max_active:
                raise CapacityError(active=self._active, limit=self._max_active)
            self._active += 1

    def release(self) -> None:
        """Give a fetch slot back."""
        if self._active > 0:
            self._active -= 1

    @property
    def active_fetches(self) -> int:
        return self._active

    @property
    def max_active(self) -> int:
        return self._max_active
