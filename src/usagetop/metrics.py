from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from usagetop.models import Metric, Provider


class RefreshMetrics:
    """
    tracks the health of the refresh cycles: how long each provider
    took, which datasets failed, when the last complete refresh
    happened and how many records each dataset holds.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._refresh_duration: "Histogram" = Histogram(
            "usagetop_refresh_duration_seconds",
            "Duration of provider refresh cycles",
            ["provider"],
            registry=registry,
        )
        self._fetch_errors: "Counter" = Counter(
            "usagetop_fetch_errors_total",
            "Total number of failed fetches by provider and metric",
            ["provider", "metric"],
            registry=registry,
        )
        self._last_refresh_success: "Gauge" = Gauge(
            "usagetop_last_refresh_success_timestamp_seconds",
            "Unix timestamp of the last refresh where every dataset succeeded",
            ["provider"],
            registry=registry,
        )
        self._records: "Gauge" = Gauge(
            "usagetop_records",
            "Number of daily records held per provider and metric",
            ["provider", "metric"],
            registry=registry,
        )

    def observe_refresh_duration(
        self, provider: "Provider", duration_seconds: "float"
    ) -> "None":
        self._refresh_duration.labels(provider=provider.value).observe(duration_seconds)

    def inc_fetch_error(self, provider: "Provider", metric: "Metric") -> "None":
        self._fetch_errors.labels(provider=provider.value, metric=metric.value).inc()

    def set_last_refresh_success(
        self, provider: "Provider", timestamp: "float"
    ) -> "None":
        self._last_refresh_success.labels(provider=provider.value).set(timestamp)

    def set_record_count(
        self, provider: "Provider", metric: "Metric", count: "int"
    ) -> "None":
        self._records.labels(provider=provider.value, metric=metric.value).set(count)
