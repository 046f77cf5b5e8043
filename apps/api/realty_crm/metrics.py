from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

team_assignment_operations_total = Counter(
    "team_assignment_operations_total",
    "Team assignment ledger operations by outcome",
    ["operation", "outcome"],
)

team_assignment_conflicts_total = Counter(
    "team_assignment_conflicts_total",
    "Team assignment conflicts by reason",
    ["reason"],
)

team_assignment_cache_repairs_total = Counter(
    "team_assignment_cache_repairs_total",
    "Users whose assignment cache was rewritten from the ledger",
)

serialization_retries_total = Counter(
    "serialization_retries_total",
    "Transactions retried after a storage serialization failure",
    ["operation"],
)

viewing_operations_total = Counter(
    "viewing_operations_total",
    "Viewing hierarchy operations by outcome",
    ["operation", "outcome"],
)

viewing_duplicate_roots_total = Counter(
    "viewing_duplicate_roots_total",
    "Rejected duplicate root viewings",
)

authz_denied_total = Counter(
    "authz_denied_total",
    "Authorization gate denials",
    ["resource", "action", "reason"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_assignment_operation(operation: str, outcome: str) -> None:
    team_assignment_operations_total.labels(operation=operation, outcome=outcome).inc()


def observe_assignment_conflict(reason: str) -> None:
    team_assignment_conflicts_total.labels(reason=reason).inc()


def observe_assignment_cache_repairs(count: int) -> None:
    if count > 0:
        team_assignment_cache_repairs_total.inc(count)


def observe_serialization_retry(operation: str) -> None:
    serialization_retries_total.labels(operation=operation).inc()


def observe_viewing_operation(operation: str, outcome: str) -> None:
    viewing_operations_total.labels(operation=operation, outcome=outcome).inc()


def observe_viewing_duplicate_root() -> None:
    viewing_duplicate_roots_total.inc()


def observe_authz_denied(resource: str, action: str, reason: str) -> None:
    authz_denied_total.labels(resource=resource, action=action, reason=reason).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
