"""Circuit breaker for asynchronous downstream calls.

Each :class:`CircuitBreaker` wraps one awaitable operation (for example
"find user by email") and owns its state.  Repositories build one breaker per
method at construction time, so breakers never share state across operations
and tests get fresh state with a fresh repository.

State Machine
-------------
::

    closed ──(failure rate > threshold)──▶ open
      ▲                                     │
      │                          (reset timeout elapsed)
      │                                     ▼
      └──────(probe succeeds)────────── half_open ──(probe fails)──▶ open

- **closed**: calls pass through; outcomes are kept in a rolling time window.
  Once the window holds at least ``volume_threshold`` calls and the failure
  percentage exceeds ``error_threshold_percentage`` the breaker opens.
- **open**: calls fail immediately with :class:`BreakerOpenError` and the
  wrapped function is not invoked.
- **half_open**: exactly one probe call is let through.  Other callers keep
  getting :class:`BreakerOpenError` until the probe settles.

Every call also runs under ``timeout``; a call that overruns counts as a
failure and raises :class:`DownstreamTimeoutError`.

Bookkeeping only happens on the event loop thread between awaits, so
concurrent callers of the same breaker cannot interleave a state update.

Usage
-----
::

    breaker = CircuitBreaker(fetch_user, "UserRepository.findById", settings)
    user = await breaker(42)

    @circuit_breaker("reports.fetch")
    async def fetch_report(report_id: int) -> dict: ...
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Generic, ParamSpec, TypeVar

from modelia.core.errors import BreakerOpenError, DownstreamError, DownstreamTimeoutError

if TYPE_CHECKING:
    from modelia.core.config import ModeliaConfig

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSettings:
    """Tuning shared by every breaker in the process.

    Attributes:
        timeout: Seconds a single call may take before it counts as failed.
        error_threshold_percentage: Failure percentage that opens the breaker.
        reset_timeout: Seconds an open breaker waits before half-opening.
        rolling_window: Seconds of history the failure percentage covers.
        volume_threshold: Minimum calls in the window before opening.
    """

    timeout: float = 3.0
    error_threshold_percentage: float = 50.0
    reset_timeout: float = 30.0
    rolling_window: float = 10.0
    volume_threshold: int = 5

    @classmethod
    def from_config(cls, config: ModeliaConfig) -> BreakerSettings:
        return cls(
            timeout=config.breaker_timeout_seconds,
            error_threshold_percentage=config.breaker_error_threshold_percentage,
            reset_timeout=config.breaker_reset_timeout_seconds,
            rolling_window=config.breaker_rolling_window_seconds,
            volume_threshold=config.breaker_volume_threshold,
        )


class CircuitBreaker(Generic[P, R]):
    """Stateful wrapper around one asynchronous operation.

    The wrapper is transparent on success: ``await breaker(*args)`` returns
    exactly what ``await fn(*args)`` would.

    Attributes:
        name: Operation name used in logs and error messages.
        settings: Thresholds and timeouts for this breaker.
    """

    def __init__(
        self,
        fn: Callable[P, Awaitable[R]],
        name: str,
        settings: BreakerSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fn = fn
        self.name = name
        self.settings = settings or BreakerSettings()
        self._clock = clock

        self._state = BreakerState.CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False
        # (timestamp, succeeded) for calls inside the rolling window
        self._outcomes: deque[tuple[float, bool]] = deque()

    # -- Public interface ---------------------------------------------------

    @property
    def state(self) -> BreakerState:
        """Current state; an expired open breaker reports half-open."""
        if (
            self._state is BreakerState.OPEN
            and self._clock() - self._opened_at >= self.settings.reset_timeout
        ):
            self._transition(BreakerState.HALF_OPEN)
        return self._state

    async def call(self, *args: P.args, **kwargs: P.kwargs) -> R:
        """Invoke the wrapped operation through the breaker.

        Raises:
            BreakerOpenError: The breaker is open, or half-open with a probe
                already in flight.  The operation was not invoked.
            DownstreamTimeoutError: The operation exceeded ``timeout``.
            DownstreamError: The operation raised; the original exception is
                chained as ``__cause__``.
        """
        state = self.state
        if state is BreakerState.OPEN:
            raise BreakerOpenError(self.name)

        probing = state is BreakerState.HALF_OPEN
        if probing:
            if self._probe_in_flight:
                raise BreakerOpenError(self.name)
            self._probe_in_flight = True

        try:
            result = await asyncio.wait_for(
                self._fn(*args, **kwargs), timeout=self.settings.timeout
            )
        except asyncio.TimeoutError as exc:
            self._record_failure(probing, exc)
            raise DownstreamTimeoutError(self.name, self.settings.timeout) from exc
        except Exception as exc:
            self._record_failure(probing, exc)
            raise DownstreamError(self.name) from exc
        finally:
            if probing:
                self._probe_in_flight = False

        self._record_success(probing)
        return result

    async def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        return await self.call(*args, **kwargs)

    def stats(self) -> dict:
        """Snapshot of the rolling window for observability."""
        self._prune(self._clock())
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return {
            "name": self.name,
            "state": self.state.value,
            "calls": len(self._outcomes),
            "failures": failures,
        }

    def reset(self) -> None:
        """Force the breaker closed and forget recorded outcomes."""
        self._outcomes.clear()
        self._probe_in_flight = False
        if self._state is not BreakerState.CLOSED:
            self._transition(BreakerState.CLOSED)

    # -- Bookkeeping --------------------------------------------------------

    def _record_success(self, probing: bool) -> None:
        if probing:
            self._outcomes.clear()
            self._transition(BreakerState.CLOSED)
            return
        now = self._clock()
        self._outcomes.append((now, True))
        self._prune(now)

    def _record_failure(self, probing: bool, exc: BaseException) -> None:
        logger.error(f"Circuit breaker {self.name} failure: {exc!r}")

        if probing:
            self._open()
            return

        now = self._clock()
        self._outcomes.append((now, False))
        self._prune(now)

        if self._state is not BreakerState.CLOSED:
            return

        calls = len(self._outcomes)
        if calls < self.settings.volume_threshold:
            return

        failures = sum(1 for _, ok in self._outcomes if not ok)
        if failures / calls * 100 > self.settings.error_threshold_percentage:
            self._open()

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._transition(BreakerState.OPEN)

    def _prune(self, now: float) -> None:
        horizon = now - self.settings.rolling_window
        while self._outcomes and self._outcomes[0][0] < horizon:
            self._outcomes.popleft()

    def _transition(self, new_state: BreakerState) -> None:
        if new_state is self._state:
            return
        self._state = new_state
        if new_state is BreakerState.OPEN:
            logger.warning(f"Circuit breaker {self.name} opened")
        elif new_state is BreakerState.HALF_OPEN:
            logger.info(f"Circuit breaker {self.name} half-open")
        else:
            logger.info(f"Circuit breaker {self.name} closed")


def circuit_breaker(
    name: str,
    settings: BreakerSettings | None = None,
) -> Callable[[Callable[P, Awaitable[R]]], CircuitBreaker[P, R]]:
    """Decorator form of :class:`CircuitBreaker` for module-level coroutines.

    The decorated name becomes the breaker itself, so its state is reachable
    as ``fn.state`` and ``fn.stats()``.

    Args:
        name: Operation name used in logs and errors.
        settings: Breaker tuning; defaults to :class:`BreakerSettings`.
    """

    def decorate(fn: Callable[P, Awaitable[R]]) -> CircuitBreaker[P, R]:
        breaker = CircuitBreaker(fn, name, settings)
        functools.update_wrapper(breaker, fn)
        return breaker

    return decorate
