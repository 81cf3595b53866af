"""
Prometheus metrics for the governance layer.

Only low-cardinality labels are exported. Account keys (CUI), message ids and
URLs never become label values.

Usage:
    registry = CollectorRegistry()
    metrics = GovernanceMetrics(registry=registry)
    ledger = QuotaLedger(scopes, metrics=metrics)
    # generate_latest(registry) -> bytes for /metrics endpoint
"""

from __future__ import annotations

from prometheus_client import Counter
from prometheus_client.registry import CollectorRegistry

# Labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "account",
        "account_key",
        "cui",
        "cif",
        "message",
        "message_key",
        "upload_id",
        "download_id",
        "url",
        "endpoint",
        "path",
        "token",
    }
)

ADMISSION_OUTCOMES = ("admitted", "denied")
REFRESH_OUTCOMES = ("success", "failure")


class GovernanceMetrics:
    """
    Counters for admissions, token refreshes, transport attempts and retries.

    Metric names:
    - anafguard_quota_admissions_total{scope, outcome}
    - anafguard_token_refreshes_total{outcome}
    - anafguard_transport_attempts_total{kind}
    - anafguard_retries_total
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Args:
            registry: Prometheus CollectorRegistry. A private one is created
                when omitted so several instances never collide.
        """
        self._registry = registry or CollectorRegistry()

        self._admissions = Counter(
            "anafguard_quota_admissions",
            "Quota admission decisions per scope",
            ["scope", "outcome"],
            registry=self._registry,
        )
        self._refreshes = Counter(
            "anafguard_token_refreshes",
            "Token refresh exchanges by outcome",
            ["outcome"],
            registry=self._registry,
        )
        self._attempts = Counter(
            "anafguard_transport_attempts",
            "Transport attempts by classified outcome (ok for success)",
            ["kind"],
            registry=self._registry,
        )
        self._retries = Counter(
            "anafguard_retries",
            "Transport attempts repeated after a retryable failure",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def record_admission(self, scope: str, outcome: str) -> None:
        if outcome not in ADMISSION_OUTCOMES:
            raise ValueError(f"Unknown admission outcome: {outcome}")
        self._admissions.labels(scope=scope, outcome=outcome).inc()

    def record_refresh(self, outcome: str) -> None:
        if outcome not in REFRESH_OUTCOMES:
            raise ValueError(f"Unknown refresh outcome: {outcome}")
        self._refreshes.labels(outcome=outcome).inc()

    def record_attempt(self, kind: str) -> None:
        self._attempts.labels(kind=kind).inc()

    def record_retry(self) -> None:
        self._retries.inc()


REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        "anafguard_quota_admissions_total",
        "anafguard_token_refreshes_total",
        "anafguard_transport_attempts_total",
        "anafguard_retries_total",
    }
)
