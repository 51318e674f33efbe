"""Circuit breakers, bulkheads, retries and fallbacks for downstream calls."""
from payment_gateway.resilience.bulkhead import (
    Bulkhead,
    BulkheadConfig,
    BulkheadFullError,
    BulkheadRegistry,
)
from payment_gateway.resilience.circuit_breaker import (
    AdaptiveCircuitBreakerTuner,
    CallNotPermittedError,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    ServiceHealth,
)
from payment_gateway.resilience.executor import ResilienceExecutor, RetryConfig
from payment_gateway.resilience.fallback import FallbackNotAvailableError, FallbackStrategies
from payment_gateway.resilience.health import check_circuit_breaker_health

__all__ = [
    "AdaptiveCircuitBreakerTuner",
    "Bulkhead",
    "BulkheadConfig",
    "BulkheadFullError",
    "BulkheadRegistry",
    "CallNotPermittedError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "FallbackNotAvailableError",
    "FallbackStrategies",
    "ResilienceExecutor",
    "RetryConfig",
    "ServiceHealth",
    "check_circuit_breaker_health",
]
