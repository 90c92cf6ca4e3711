# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Circuit Breaker for AI provider calls.

Prevents a degraded provider from stalling every AI-directed message.

Circuit Breaker States:
- CLOSED: Normal operation, requests pass through
- OPEN: Provider is failing, requests fail fast without calling it
- HALF-OPEN: Testing if the provider has recovered

Usage:
    from app.core.circuit_breaker import ai_service_breaker, call_with_breaker

    reply = call_with_breaker(ai_service_breaker, provider.generate, messages)
"""

import logging
from typing import Any, Callable

import pybreaker
from prometheus_client import Counter, Gauge

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)

CIRCUIT_BREAKER_STATE = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half-open)",
    ["breaker_name"],
)
CIRCUIT_BREAKER_FAILURES = Counter(
    "circuit_breaker_failures_total",
    "Total circuit breaker failures",
    ["breaker_name"],
)
CIRCUIT_BREAKER_SUCCESS = Counter(
    "circuit_breaker_success_total",
    "Total circuit breaker successes",
    ["breaker_name"],
)
CIRCUIT_BREAKER_REJECTED = Counter(
    "circuit_breaker_rejected_total",
    "Total requests rejected by open circuit",
    ["breaker_name"],
)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker state changes and metrics."""

    def __init__(self, breaker_name: str):
        self.breaker_name = breaker_name

    def state_change(
        self,
        cb: pybreaker.CircuitBreaker,
        old_state: pybreaker.CircuitBreakerState,
        new_state: pybreaker.CircuitBreakerState,
    ) -> None:
        state_map = {
            pybreaker.STATE_CLOSED: 0,
            pybreaker.STATE_OPEN: 1,
            pybreaker.STATE_HALF_OPEN: 2,
        }
        new_name = getattr(new_state, "name", new_state)
        CIRCUIT_BREAKER_STATE.labels(breaker_name=self.breaker_name).set(
            state_map.get(new_name, 0)
        )
        logger.warning(
            f"[CircuitBreaker] {self.breaker_name} state changed: "
            f"{getattr(old_state, 'name', old_state)} -> {new_name}"
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        CIRCUIT_BREAKER_FAILURES.labels(breaker_name=self.breaker_name).inc()
        logger.warning(f"[CircuitBreaker] {self.breaker_name} recorded failure: {exc}")

    def success(self, cb: pybreaker.CircuitBreaker) -> None:
        CIRCUIT_BREAKER_SUCCESS.labels(breaker_name=self.breaker_name).inc()


def create_breaker(name: str) -> pybreaker.CircuitBreaker:
    return pybreaker.CircuitBreaker(
        fail_max=settings.CIRCUIT_BREAKER_FAIL_MAX,
        reset_timeout=settings.CIRCUIT_BREAKER_RESET_TIMEOUT,
        listeners=[CircuitBreakerListener(name)],
        name=name,
    )


# Circuit breaker for AI provider calls
ai_service_breaker = create_breaker("ai_service")


def call_with_breaker(
    breaker: pybreaker.CircuitBreaker, func: Callable[..., Any], *args, **kwargs
) -> Any:
    """
    Call func through the breaker.

    An open circuit is reported as UpstreamUnavailable; errors raised by func
    itself propagate unchanged after being counted by the breaker.
    """
    try:
        return breaker.call(func, *args, **kwargs)
    except pybreaker.CircuitBreakerError as e:
        CIRCUIT_BREAKER_REJECTED.labels(breaker_name=breaker.name).inc()
        logger.error(f"[CircuitBreaker] {breaker.name} is OPEN, rejecting request")
        raise UpstreamUnavailable(
            f"Service temporarily unavailable. Circuit will reset in {breaker.reset_timeout}s"
        ) from e


def get_circuit_breaker_status() -> dict:
    """Get the current status of the AI circuit breaker."""
    breaker = ai_service_breaker
    return {
        breaker.name: {
            "state": str(breaker.current_state),
            "fail_counter": breaker.fail_counter,
            "fail_max": breaker.fail_max,
            "reset_timeout": breaker.reset_timeout,
        }
    }
