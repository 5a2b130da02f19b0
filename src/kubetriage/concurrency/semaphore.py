"""
Admission control for alert tasks

Every accepted webhook alert becomes its own task; ``AsyncSemaphore``
caps how many of them run the pipeline at once so an alert storm queues
instead of opening hundreds of LLM streams. A capacity of 0 disables the
cap.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SemaphoreStats:
    name: str
    capacity: int
    in_use: int
    waiting: int
    total_acquisitions: int
    total_timeouts: int


class AsyncSemaphore:
    """
    Counting semaphore with wait accounting

    Args:
        value: Permits, 0 for unbounded
        name: Label used in logs and stats
    """

    def __init__(self, value: int, name: str = "unnamed"):
        if value < 0:
            raise ValueError(f"Semaphore '{name}' capacity must be >= 0, got {value}")

        self.name = name
        self.capacity = value
        self._permits = asyncio.Semaphore(value) if value else None
        self._in_use = 0
        self._waiting = 0
        self._acquisitions = 0
        self._timeouts = 0

    @asynccontextmanager
    async def acquire(self, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """
        Hold one permit for the duration of the block

        Raises:
            asyncio.TimeoutError: No permit became free within ``timeout``
        """
        if self._permits is not None:
            if self.locked():
                logger.debug(f"'{self.name}' saturated ({self.capacity}), alert queued")
            self._waiting += 1
            try:
                await asyncio.wait_for(self._permits.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                self._timeouts += 1
                logger.warning(f"'{self.name}' permit not available after {timeout}s")
                raise
            finally:
                self._waiting -= 1

        self._in_use += 1
        self._acquisitions += 1
        try:
            yield
        finally:
            self._in_use -= 1
            if self._permits is not None:
                self._permits.release()

    def locked(self) -> bool:
        return self._permits is not None and self._permits.locked()

    def get_stats(self) -> SemaphoreStats:
        return SemaphoreStats(
            name=self.name,
            capacity=self.capacity,
            in_use=self._in_use,
            waiting=self._waiting,
            total_acquisitions=self._acquisitions,
            total_timeouts=self._timeouts,
        )
