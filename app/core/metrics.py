"""Prometheus metrics configuration."""

from prometheus_client import Counter

# Authorization metrics
AUTHORIZATION_DENIALS_TOTAL = Counter(
    "authorization_denials_total",
    "Total authorization denials",
    ["reason"],
)


def record_denial(reason: str) -> None:
    """Record a denied authorization check.

    Args:
        reason: Internal denial reason, never shown to the caller
    """
    AUTHORIZATION_DENIALS_TOTAL.labels(reason=reason).inc()
