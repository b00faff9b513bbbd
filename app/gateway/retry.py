"""Retry policy shared by every provider adapter.

Replaces the per-handler retry loops with one parameterized policy:
  - max attempts (default 3)
  - retryable predicate: transport failure, attempt timeout, or upstream 502/504
  - linear backoff: delay before attempt k is (k - 1) * base_delay

No state is kept between requests; each call to the executor walks the policy afresh.
"""

from __future__ import annotations

from app.gateway.errors import ErrorKind, GatewayError
from app.gateway.types import RetryPolicy

_TRANSPORT_KINDS = frozenset({ErrorKind.UPSTREAM_TIMEOUT, ErrorKind.UPSTREAM_UNREACHABLE})


def should_retry(policy: RetryPolicy, error: GatewayError) -> bool:
    """Whether ``error`` from one attempt is worth another attempt under ``policy``."""
    if error.kind in _TRANSPORT_KINDS and error.upstream_status is None:
        return True
    if error.upstream_status is not None:
        return error.upstream_status in policy.retryable_statuses
    return False


def calculate_backoff(policy: RetryPolicy, attempt: int) -> float:
    """Delay in seconds before ``attempt`` (1-based). The first attempt never waits.

    Formula: (attempt - 1) * base_delay
    """
    if attempt <= 1:
        return 0.0
    return (attempt - 1) * policy.base_delay_seconds


def attempts_left(policy: RetryPolicy, attempt: int) -> int:
    return max(policy.max_attempts - attempt, 0)
