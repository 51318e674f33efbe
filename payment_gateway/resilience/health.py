"""Circuit breaker health reporting."""
from typing import Any, Dict

from payment_gateway.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState


def check_circuit_breaker_health(registry: CircuitBreakerRegistry) -> Dict[str, Dict[str, Any]]:
    """
    Report every registered breaker.

    A breaker is healthy unless it is OPEN; FORCED_OPEN is an operator
    decision rather than a detected failure.
    """
    health: Dict[str, Dict[str, Any]] = {}
    for breaker in registry.all():
        state = breaker.state
        health[breaker.name] = {
            "name": breaker.name,
            "state": state.value,
            "healthy": state != CircuitState.OPEN,
            "metrics": breaker.get_metrics().to_dict(),
        }
    return health
