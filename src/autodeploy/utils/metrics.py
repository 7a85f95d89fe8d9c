"""Prometheus metrics for the deploy loop and the process supervisor."""

import structlog
from prometheus_client import Counter, Gauge, start_http_server

logger = structlog.get_logger()

RELOAD_COUNT = Counter(
    "autodeploy_reloads_total",
    "Reload cycles by result",
    ["result"],
)

DEPLOY_COUNT = Counter(
    "autodeploy_deploys_total",
    "Launch requests handed to the supervisor",
)

PROCESS_RESTARTS = Counter(
    "autodeploy_process_restarts_total",
    "Crash restarts of the supervised service",
)

PROCESS_EXITS = Counter(
    "autodeploy_process_exits_total",
    "Exits of the supervised service by outcome",
    ["outcome"],
)

SUPERVISOR_STATE = Gauge(
    "autodeploy_supervisor_state",
    "1 for the current supervisor state, 0 otherwise",
    ["state"],
)


def record_supervisor_state(current: str, states) -> None:
    """Flip the state gauge so exactly one label is set."""
    for state in states:
        SUPERVISOR_STATE.labels(state=state.value).set(1 if state.value == current else 0)


def start_metrics_server(port: int) -> None:
    """Expose /metrics on the given port."""
    start_http_server(port)
    logger.info("Metrics exporter started", port=port)
