"""
Background worker that re-submits payments queued during gateway outages.
"""
import asyncio
from typing import Callable

import structlog

from payment_gateway.core.service import PaymentService
from payment_gateway.domain.models import QueueDrainResult

logger = structlog.get_logger(__name__)


class PaymentQueueWorker:
    """
    Periodically drains the fallback payment queue.

    The service is looked up on every pass, so a worker started before the
    first request does not build gateways early.

    Example:
        >>> worker = PaymentQueueWorker(get_payment_service, interval_seconds=30)
        >>> task = asyncio.create_task(worker.start())
        >>> worker.stop()
    """

    def __init__(
        self,
        service_provider: Callable[[], PaymentService],
        interval_seconds: float = 30.0,
    ):
        self.service_provider = service_provider
        self.interval_seconds = interval_seconds
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> QueueDrainResult:
        """Drain the queue a single time."""
        service = self.service_provider()
        if not service.fallbacks.queued_payments():
            return QueueDrainResult()
        return await service.process_queued_payments()

    async def start(self) -> None:
        """Drain the queue every interval until stopped or cancelled."""
        self._running = True
        logger.info("payment_queue_worker_started", interval_seconds=self.interval_seconds)

        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error("payment_queue_worker_error", error=str(e))
        finally:
            self._running = False
            logger.info("payment_queue_worker_stopped")

    def stop(self) -> None:
        self._running = False
        logger.info("payment_queue_worker_stop_requested")
