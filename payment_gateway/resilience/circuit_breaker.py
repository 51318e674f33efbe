"""
Circuit breakers for downstream payment services.

Each breaker keeps a count-based sliding window of call outcomes:

- CLOSED: calls flow; once the window holds enough calls and the failure
  rate reaches the threshold the breaker opens.
- OPEN: calls are rejected with CallNotPermittedError until the wait
  duration has elapsed, then the breaker moves to HALF_OPEN.
- HALF_OPEN: a fixed number of trial calls is let through. When all of them
  have completed the breaker closes, or opens again if they failed too often.
- FORCED_OPEN: manual override, rejects everything until closed.

Example:
    >>> registry = CircuitBreakerRegistry()
    >>> breaker = registry.circuit_breaker("stripe-gateway")
    >>> result = await breaker.call(gateway.process_payment, request)
"""
import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import structlog

from payment_gateway.core.exceptions import PaymentProcessingError, PaymentValidationError
from payment_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, rejecting requests
    HALF_OPEN = "HALF_OPEN"  # Testing if recovered
    FORCED_OPEN = "FORCED_OPEN"  # Manually opened


def record_gateway_failure(error: BaseException) -> bool:
    """
    Decide whether an exception counts against the failure rate.

    Declined cards and invalid input say nothing about the health of the
    downstream service, so they are ignored.
    """
    if isinstance(error, PaymentValidationError):
        return False
    if isinstance(error, PaymentProcessingError) and not error.retryable:
        return False
    return True


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """
    Circuit breaker configuration.

    Attributes:
        failure_rate_threshold: Failure percentage (0-100) that opens the circuit
        wait_duration_in_open_state: Seconds to stay open before trial calls
        sliding_window_size: Number of recent calls to track
        minimum_number_of_calls: Calls required before the failure rate is evaluated
        permitted_calls_in_half_open_state: Trial calls allowed while half open
        record_failure: Predicate deciding which exceptions are failures
    """

    failure_rate_threshold: float = 50.0
    wait_duration_in_open_state: float = 30.0
    sliding_window_size: int = 100
    minimum_number_of_calls: int = 20
    permitted_calls_in_half_open_state: int = 10
    record_failure: Callable[[BaseException], bool] = field(
        default=record_gateway_failure, compare=False
    )

    def __post_init__(self) -> None:
        if not 0 < self.failure_rate_threshold <= 100:
            raise ValueError("failure_rate_threshold must be in (0, 100]")
        if self.wait_duration_in_open_state < 0:
            raise ValueError("wait_duration_in_open_state must not be negative")
        if self.sliding_window_size < 1:
            raise ValueError("sliding_window_size must be at least 1")
        if self.minimum_number_of_calls < 1:
            raise ValueError("minimum_number_of_calls must be at least 1")
        if self.permitted_calls_in_half_open_state < 1:
            raise ValueError("permitted_calls_in_half_open_state must be at least 1")


class CallNotPermittedError(Exception):
    """Raised when a circuit breaker rejects a call."""

    def __init__(self, name: str, state: CircuitState):
        super().__init__(f"Circuit breaker '{name}' is {state.value} and does not permit calls")
        self.name = name
        self.state = state


@dataclass
class CircuitBreakerEvent:
    """Event emitted by a circuit breaker."""

    circuit_name: str
    event_type: str  # SUCCESS, ERROR, IGNORED_ERROR, NOT_PERMITTED, STATE_TRANSITION
    from_state: Optional[CircuitState] = None
    to_state: Optional[CircuitState] = None
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CircuitBreakerMetrics:
    """Snapshot of a breaker's window."""

    state: str
    failure_rate: float
    number_of_buffered_calls: int
    number_of_successful_calls: int
    number_of_failed_calls: int
    number_of_not_permitted_calls: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "failure_rate": self.failure_rate,
            "number_of_buffered_calls": self.number_of_buffered_calls,
            "number_of_successful_calls": self.number_of_successful_calls,
            "number_of_failed_calls": self.number_of_failed_calls,
            "number_of_not_permitted_calls": self.number_of_not_permitted_calls,
        }


EventListener = Callable[[CircuitBreakerEvent], None]


def log_and_measure(event: CircuitBreakerEvent) -> None:
    """Default listener: structured log line plus Prometheus counters."""
    metrics.record_circuit_breaker_event(event.circuit_name, event.event_type.lower())

    if event.event_type == "STATE_TRANSITION":
        metrics.set_circuit_breaker_state(event.circuit_name, event.to_state.value)
        log = logger.warning if event.to_state == CircuitState.OPEN else logger.info
        log(
            "circuit_breaker_state_transition",
            circuit=event.circuit_name,
            from_state=event.from_state.value,
            to_state=event.to_state.value,
        )
    elif event.event_type == "ERROR":
        logger.warning(
            "circuit_breaker_error",
            circuit=event.circuit_name,
            error=str(event.error),
        )
    elif event.event_type == "NOT_PERMITTED":
        logger.info("circuit_breaker_call_not_permitted", circuit=event.circuit_name)


class CircuitBreaker:
    """
    Count-based circuit breaker.

    State changes happen under a lock so a breaker can be shared between
    threads and coroutines; listeners run outside the lock.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Breaker name, usually the downstream service name
            config: Circuit breaker configuration
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._window: Deque[bool] = deque(maxlen=self.config.sliding_window_size)
        self._half_open_permits = 0
        self._half_open_outcomes: List[bool] = []
        self._opened_at: Optional[float] = None
        self._successful_calls = 0
        self._failed_calls = 0
        self._not_permitted_calls = 0
        self._listeners: List[EventListener] = [log_and_measure]

        metrics.set_circuit_breaker_state(self.name, self._state.value)
        logger.info(
            "circuit_breaker_initialized",
            circuit=name,
            failure_rate_threshold=self.config.failure_rate_threshold,
            sliding_window_size=self.config.sliding_window_size,
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def _emit(self, events: List[CircuitBreakerEvent]) -> None:
        for event in events:
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception as e:
                    logger.error(
                        "circuit_breaker_listener_failed",
                        circuit=self.name,
                        error=str(e),
                    )

    # ------------------------------------------------------------------
    # State handling (callers hold the lock)
    # ------------------------------------------------------------------

    def _transition(self, to_state: CircuitState) -> CircuitBreakerEvent:
        from_state = self._state
        self._state = to_state

        if to_state in (CircuitState.OPEN, CircuitState.FORCED_OPEN):
            self._opened_at = self._clock()
        elif to_state == CircuitState.HALF_OPEN:
            self._half_open_permits = self.config.permitted_calls_in_half_open_state
            self._half_open_outcomes = []
        elif to_state == CircuitState.CLOSED:
            self._window.clear()
            self._opened_at = None

        return CircuitBreakerEvent(
            circuit_name=self.name,
            event_type="STATE_TRANSITION",
            from_state=from_state,
            to_state=to_state,
        )

    def _maybe_half_open(self) -> Optional[CircuitBreakerEvent]:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        if self._clock() - self._opened_at >= self.config.wait_duration_in_open_state:
            return self._transition(CircuitState.HALF_OPEN)
        return None

    @staticmethod
    def _rate(outcomes: Any) -> float:
        outcomes = list(outcomes)
        return outcomes.count(False) / len(outcomes) * 100.0

    def _window_failure_rate(self) -> float:
        required = min(self.config.minimum_number_of_calls, self.config.sliding_window_size)
        if len(self._window) < required:
            return -1.0
        return self._rate(self._window)

    def _record(self, success: bool) -> List[CircuitBreakerEvent]:
        events: List[CircuitBreakerEvent] = []

        if self._state == CircuitState.CLOSED:
            self._window.append(success)
            failure_rate = self._window_failure_rate()
            metrics.set_circuit_breaker_failure_rate(self.name, failure_rate)
            if failure_rate >= self.config.failure_rate_threshold:
                logger.error(
                    "circuit_breaker_failure_rate_exceeded",
                    circuit=self.name,
                    failure_rate=failure_rate,
                )
                events.append(self._transition(CircuitState.OPEN))

        elif self._state == CircuitState.HALF_OPEN:
            self._half_open_outcomes.append(success)
            if len(self._half_open_outcomes) >= self.config.permitted_calls_in_half_open_state:
                failure_rate = self._rate(self._half_open_outcomes)
                if failure_rate >= self.config.failure_rate_threshold:
                    events.append(self._transition(CircuitState.OPEN))
                else:
                    events.append(self._transition(CircuitState.CLOSED))

        return events

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN state is reported as HALF_OPEN."""
        with self._lock:
            event = self._maybe_half_open()
            state = self._state
        if event:
            self._emit([event])
        return state

    def _acquire(self) -> Tuple[bool, CircuitState]:
        events: List[CircuitBreakerEvent] = []
        with self._lock:
            transition = self._maybe_half_open()
            if transition:
                events.append(transition)

            if self._state == CircuitState.CLOSED:
                permitted = True
            elif self._state == CircuitState.HALF_OPEN and self._half_open_permits > 0:
                self._half_open_permits -= 1
                permitted = True
            else:
                permitted = False
                self._not_permitted_calls += 1
                events.append(CircuitBreakerEvent(self.name, "NOT_PERMITTED"))
            state = self._state

        self._emit(events)
        return permitted, state

    def try_acquire_permission(self) -> bool:
        """Reserve permission for one call; False when the call must be rejected."""
        permitted, _ = self._acquire()
        return permitted

    def acquire_permission(self) -> None:
        """
        Reserve permission for one call.

        Raises:
            CallNotPermittedError: If the circuit does not accept calls
        """
        permitted, state = self._acquire()
        if not permitted:
            raise CallNotPermittedError(self.name, state)

    def on_success(self) -> None:
        """Record successful call."""
        with self._lock:
            self._successful_calls += 1
            events = self._record(True)
        self._emit([CircuitBreakerEvent(self.name, "SUCCESS")] + events)

    def on_error(self, error: BaseException) -> None:
        """Record failed call, unless the config says the error is ignorable."""
        if not self.config.record_failure(error):
            with self._lock:
                # Ignored outcomes give the half-open trial slot back
                if self._state == CircuitState.HALF_OPEN:
                    self._half_open_permits += 1
            self._emit([CircuitBreakerEvent(self.name, "IGNORED_ERROR", error=error)])
            return

        with self._lock:
            self._failed_calls += 1
            events = self._record(False)
        self._emit([CircuitBreakerEvent(self.name, "ERROR", error=error)] + events)

    async def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Execute function with circuit breaker protection.

        Args:
            func: Sync or async function to call
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            CallNotPermittedError: If circuit is open
        """
        self.acquire_permission()

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
                if asyncio.iscoroutine(result):
                    result = await result
        except asyncio.CancelledError:
            # A time limit cancelled the call; count it as a timeout so a hung
            # service trips the breaker and a half-open trial slot is settled.
            self.on_error(asyncio.TimeoutError(f"Call through '{self.name}' was cancelled"))
            raise
        except Exception as e:
            self.on_error(e)
            raise

        self.on_success()
        return result

    def transition_to_forced_open(self) -> None:
        with self._lock:
            event = self._transition(CircuitState.FORCED_OPEN)
        self._emit([event])

    def transition_to_closed(self) -> None:
        with self._lock:
            event = self._transition(CircuitState.CLOSED)
        self._emit([event])

    def reset(self) -> None:
        """Close the circuit and forget all recorded calls."""
        with self._lock:
            event = self._transition(CircuitState.CLOSED)
            self._successful_calls = 0
            self._failed_calls = 0
            self._not_permitted_calls = 0
        self._emit([event])

    def get_metrics(self) -> CircuitBreakerMetrics:
        """
        Get circuit breaker metrics.

        The failure rate is -1.0 until the window holds the minimum number
        of calls.
        """
        with self._lock:
            return CircuitBreakerMetrics(
                state=self._state.value,
                failure_rate=self._window_failure_rate(),
                number_of_buffered_calls=len(self._window),
                number_of_successful_calls=self._successful_calls,
                number_of_failed_calls=self._failed_calls,
                number_of_not_permitted_calls=self._not_permitted_calls,
            )


# Payment paths are the most sensitive to failures
PAYMENT_PROFILE = CircuitBreakerConfig(
    failure_rate_threshold=30,
    wait_duration_in_open_state=60,
    sliding_window_size=50,
    minimum_number_of_calls=10,
)

SERVICE_CONFIGS: Dict[str, CircuitBreakerConfig] = {
    "payment-service": PAYMENT_PROFILE,
    "stripe-gateway": PAYMENT_PROFILE,
    "paystack-gateway": PAYMENT_PROFILE,
    "order-service": CircuitBreakerConfig(
        failure_rate_threshold=50,
        wait_duration_in_open_state=30,
        sliding_window_size=100,
        minimum_number_of_calls=20,
    ),
    "social-service": CircuitBreakerConfig(
        failure_rate_threshold=70,
        wait_duration_in_open_state=15,
        sliding_window_size=200,
        minimum_number_of_calls=50,
    ),
    # Currency lookups need high availability
    "currency-service": CircuitBreakerConfig(
        failure_rate_threshold=20,
        wait_duration_in_open_state=45,
        sliding_window_size=200,
        minimum_number_of_calls=30,
    ),
    "event-bus": CircuitBreakerConfig(
        failure_rate_threshold=50,
        wait_duration_in_open_state=30,
        sliding_window_size=20,
        minimum_number_of_calls=10,
        permitted_calls_in_half_open_state=5,
    ),
}


class CircuitBreakerRegistry:
    """Get-or-create store of named circuit breakers."""

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        service_configs: Optional[Dict[str, CircuitBreakerConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self.service_configs = dict(SERVICE_CONFIGS if service_configs is None else service_configs)
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def config_for(self, name: str) -> CircuitBreakerConfig:
        return self.service_configs.get(name, self.default_config)

    def circuit_breaker(
        self, name: str, config: Optional[CircuitBreakerConfig] = None
    ) -> CircuitBreaker:
        """Return the breaker for a service, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config or self.config_for(name), clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def find(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def replace(self, name: str, config: CircuitBreakerConfig) -> CircuitBreaker:
        """Swap in a new breaker with the given config, keeping listeners."""
        with self._lock:
            old = self._breakers.get(name)
            breaker = CircuitBreaker(name, config, clock=self._clock)
            if old is not None:
                for listener in old._listeners:
                    if listener not in breaker._listeners:
                        breaker.add_listener(listener)
            self._breakers[name] = breaker
            self.service_configs[name] = config
        logger.info("circuit_breaker_replaced", circuit=name)
        return breaker

    def all(self) -> List[CircuitBreaker]:
        return list(self._breakers.values())


@dataclass
class ServiceHealth:
    """Observed health of a downstream service, in milliseconds and percent."""

    average_response_time: float
    error_rate: float
    standard_deviation: float
    average_error_rate: float
    average_recovery_time: float


class AdaptiveCircuitBreakerTuner:
    """Re-tunes a breaker from observed service health."""

    def __init__(self, registry: CircuitBreakerRegistry):
        self.registry = registry

    @staticmethod
    def optimal_threshold(health: ServiceHealth) -> float:
        if health.standard_deviation > 1000:
            return 30.0  # Volatile services trip sooner
        if health.average_error_rate < 2.0:
            return 70.0
        return 50.0

    @staticmethod
    def optimal_wait_duration(health: ServiceHealth) -> float:
        return max(10.0, health.average_recovery_time / 2 / 1000)

    def adjust(self, name: str, health: ServiceHealth) -> CircuitBreaker:
        """
        Adjust a breaker's state and configuration.

        Slow services (> 5s average) are forced open; services with an error
        rate under 5% are closed. The config is then replaced with a
        threshold and wait duration derived from the health figures.
        """
        breaker = self.registry.circuit_breaker(name)

        new_config = replace(
            breaker.config,
            failure_rate_threshold=self.optimal_threshold(health),
            wait_duration_in_open_state=self.optimal_wait_duration(health),
        )
        new_breaker = self.registry.replace(name, new_config)

        if health.average_response_time > 5000:
            new_breaker.transition_to_forced_open()
        elif health.error_rate < 5.0:
            new_breaker.transition_to_closed()

        logger.info(
            "circuit_breaker_adjusted",
            circuit=name,
            failure_rate_threshold=new_config.failure_rate_threshold,
            wait_duration=new_config.wait_duration_in_open_state,
            state=new_breaker.state.value,
        )
        return new_breaker
