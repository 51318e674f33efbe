"""
Semaphore bulkheads.

Caps the number of concurrent calls into one downstream service so a slow
gateway cannot exhaust the whole worker pool.
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

import structlog

from payment_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class BulkheadFullError(Exception):
    """Raised when no bulkhead slot frees up within the max wait."""

    def __init__(self, name: str, max_concurrent_calls: int):
        super().__init__(
            f"Bulkhead '{name}' is full ({max_concurrent_calls} concurrent calls)"
        )
        self.name = name
        self.max_concurrent_calls = max_concurrent_calls


@dataclass(frozen=True)
class BulkheadConfig:
    max_concurrent_calls: int = 25
    max_wait_duration: float = 0.5  # seconds

    def __post_init__(self) -> None:
        if self.max_concurrent_calls < 1:
            raise ValueError("max_concurrent_calls must be at least 1")
        if self.max_wait_duration < 0:
            raise ValueError("max_wait_duration must not be negative")


class Bulkhead:
    """Concurrency limit for a single service."""

    def __init__(self, name: str, config: Optional[BulkheadConfig] = None):
        self.name = name
        self.config = config or BulkheadConfig()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_calls)
        self._active = 0

    @property
    def available_permits(self) -> int:
        return self.config.max_concurrent_calls - self._active

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        """
        Hold one slot for the duration of the block.

        Raises:
            BulkheadFullError: If no slot frees up within max_wait_duration
        """
        try:
            if self._semaphore.locked():
                await asyncio.wait_for(
                    self._semaphore.acquire(), timeout=self.config.max_wait_duration
                )
            else:
                await self._semaphore.acquire()
        except asyncio.TimeoutError:
            metrics.record_bulkhead_rejection(self.name)
            logger.warning(
                "bulkhead_full",
                service=self.name,
                max_concurrent_calls=self.config.max_concurrent_calls,
            )
            raise BulkheadFullError(self.name, self.config.max_concurrent_calls)

        self._active += 1
        try:
            yield
        finally:
            self._active -= 1
            self._semaphore.release()


class BulkheadRegistry:
    """Get-or-create store of named bulkheads sharing one default config."""

    def __init__(self, default_config: Optional[BulkheadConfig] = None):
        self.default_config = default_config or BulkheadConfig()
        self._bulkheads: Dict[str, Bulkhead] = {}

    def bulkhead(self, name: str) -> Bulkhead:
        if name not in self._bulkheads:
            self._bulkheads[name] = Bulkhead(name, self.default_config)
        return self._bulkheads[name]
