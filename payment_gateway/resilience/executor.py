"""
Resilient execution of downstream calls.

Decorators are applied in a fixed order around every operation:

    fallback( time limit( bulkhead( retry( circuit breaker( operation )))))

so a retry is recorded by the breaker once per attempt, an open breaker
stops retries immediately, and the fallback sees the final failure.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from payment_gateway.config import Settings
from payment_gateway.core.exceptions import PaymentProcessingError
from payment_gateway.resilience.bulkhead import BulkheadConfig, BulkheadRegistry
from payment_gateway.resilience.circuit_breaker import CircuitBreakerRegistry

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Fallback = Callable[[BaseException], Any]


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    min_wait: float = 0.5  # seconds
    max_wait: float = 8.0


def is_retryable(error: BaseException) -> bool:
    """Retry transient gateway failures, timeouts and transport errors only."""
    if isinstance(error, PaymentProcessingError):
        return error.retryable
    return isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TransportError))


class ResilienceExecutor:
    """
    Runs operations under circuit breaker, retry, bulkhead, time limit and fallback.

    Example:
        >>> executor = ResilienceExecutor()
        >>> response = await executor.execute(
        ...     "stripe-gateway",
        ...     lambda: gateway.process_payment(request),
        ...     fallback=lambda error: fallbacks.payment_fallback(request, error),
        ... )
    """

    def __init__(
        self,
        circuit_breakers: Optional[CircuitBreakerRegistry] = None,
        bulkheads: Optional[BulkheadRegistry] = None,
        retry_config: Optional[RetryConfig] = None,
        default_timeout: float = 10.0,
    ):
        self.circuit_breakers = circuit_breakers or CircuitBreakerRegistry()
        self.bulkheads = bulkheads or BulkheadRegistry()
        self.retry_config = retry_config or RetryConfig()
        self.default_timeout = default_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        circuit_breakers: Optional[CircuitBreakerRegistry] = None,
    ) -> "ResilienceExecutor":
        return cls(
            circuit_breakers=circuit_breakers,
            bulkheads=BulkheadRegistry(
                BulkheadConfig(
                    max_concurrent_calls=settings.bulkhead_max_concurrent_calls,
                    max_wait_duration=settings.bulkhead_max_wait,
                )
            ),
            retry_config=RetryConfig(
                max_attempts=settings.retry_max_attempts,
                min_wait=settings.retry_min_wait,
                max_wait=settings.retry_max_wait,
            ),
            default_timeout=settings.call_timeout,
        )

    def _log_retry(self, service_name: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "retrying_call",
                service=service_name,
                attempt=retry_state.attempt_number,
                error=str(error),
            )

        return before_sleep

    async def _retrying(self, service_name: str, operation: Operation) -> Any:
        breaker = self.circuit_breakers.circuit_breaker(service_name)
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(self.retry_config.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry_config.min_wait,
                min=self.retry_config.min_wait,
                max=self.retry_config.max_wait,
            ),
            before_sleep=self._log_retry(service_name),
            reraise=True,
        )
        return await retrying(breaker.call, operation)

    async def _bulkheaded(self, service_name: str, operation: Operation) -> Any:
        async with self.bulkheads.bulkhead(service_name).acquire():
            return await self._retrying(service_name, operation)

    async def execute(
        self,
        service_name: str,
        operation: Operation,
        fallback: Optional[Fallback] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Execute an operation with the full resilience chain.

        Args:
            service_name: Downstream service; selects breaker and bulkhead
            operation: Zero-argument coroutine function
            fallback: Called with the final exception; may return a value or raise
            timeout: Overall time limit in seconds (default_timeout if omitted)

        Returns:
            Operation result, or the fallback's result on failure
        """
        limit = timeout if timeout is not None else self.default_timeout
        try:
            return await asyncio.wait_for(self._bulkheaded(service_name, operation), timeout=limit)
        except Exception as e:
            if fallback is None:
                raise
            logger.warning(
                "executing_fallback",
                service=service_name,
                error_type=type(e).__name__,
                error=str(e),
            )
            result = fallback(e)
            if asyncio.iscoroutine(result):
                result = await result
            return result

    async def execute_with_circuit_breaker(self, service_name: str, operation: Operation) -> Any:
        """Breaker-only protection, no retry, bulkhead or time limit."""
        return await self.circuit_breakers.circuit_breaker(service_name).call(operation)
