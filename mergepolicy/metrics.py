import os
from prometheus_client import CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest, Counter, Gauge, Histogram

try:
    from prometheus_client import multiprocess
except Exception:  # pragma: no cover
    multiprocess = None  # type: ignore


def build_registry() -> CollectorRegistry:
    """Build a Prometheus registry, supporting multiprocess if PROMETHEUS_MULTIPROC_DIR is set."""
    registry = CollectorRegistry()
    mp_dir = os.getenv("PROMETHEUS_MULTIPROC_DIR")
    if mp_dir and multiprocess is not None:
        multiprocess.MultiProcessCollector(registry)
    return registry


REGISTRY: CollectorRegistry = build_registry()

# Policy evaluation metrics
policy_decisions_total = Counter(
    "policy_decisions_total",
    "Eligibility decisions by policy and outcome",
    labelnames=("policy", "outcome"),
    registry=REGISTRY,
)
policy_evaluation_errors_total = Counter(
    "policy_evaluation_errors_total",
    "Signals that could not be evaluated",
    labelnames=("signal",),
    registry=REGISTRY,
)
method_resolutions_total = Counter(
    "method_resolutions_total",
    "Merge method resolutions by precedence tier and method",
    labelnames=("source", "method"),
    registry=REGISTRY,
)
worker_processing_seconds = Histogram(
    "worker_processing_seconds",
    "Worker phase durations",
    labelnames=("phase", "owner", "repo"),
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

# GitHub API metrics
github_api_requests_total = Counter(
    "github_api_requests_total",
    "Outbound GitHub API requests",
    labelnames=("endpoint", "status"),
    registry=REGISTRY,
)
github_api_latency_seconds = Histogram(
    "github_api_latency_seconds",
    "Latency of GitHub API requests",
    labelnames=("endpoint",),
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
github_rate_limit_remaining = Gauge(
    "github_rate_limit_remaining",
    "GitHub REST API remaining requests",
    labelnames=("installation",),
    registry=REGISTRY,
)
github_rate_limit_reset = Gauge(
    "github_rate_limit_reset",
    "Epoch seconds when GitHub rate limit resets",
    labelnames=("installation",),
    registry=REGISTRY,
)
config_load_failures_total = Counter(
    "config_load_failures_total",
    "Failures to load repository configuration",
    registry=REGISTRY,
)

# Update and merge behavior metrics
branch_updates_total = Counter(
    "branch_updates_total",
    "Attempted branch update outcomes",
    labelnames=("result",),
    registry=REGISTRY,
)
merge_attempts_total = Counter(
    "merge_attempts_total",
    "Merge attempts by method and result",
    labelnames=("method", "result"),
    registry=REGISTRY,
)

# Build info (set from environment)
service_info = Gauge(
    "service_info",
    "Service build/version info labeled on 1",
    labelnames=("version",),
    registry=REGISTRY,
)
service_info.labels(version=os.getenv("SERVICE_VERSION", "dev")).set(1)


def metrics_response():
    data = generate_latest(REGISTRY)
    return CONTENT_TYPE_LATEST, data
