"""Prometheus instruments for credential operations."""

from __future__ import annotations

from prometheus_client import Counter

AUTH_EVENTS = Counter(
    "credential_auth_events_total",
    "Credential operations by outcome.",
    ["operation", "outcome"],
)


def record(operation: str, outcome: str) -> None:
    AUTH_EVENTS.labels(operation=operation, outcome=outcome).inc()
