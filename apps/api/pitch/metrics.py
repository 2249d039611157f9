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

numbering_allocations_total = Counter(
    "numbering_allocations_total",
    "Total identifier allocations by kind and scope",
    ["kind", "scope"],
)

numbering_allocation_conflicts_total = Counter(
    "numbering_allocation_conflicts_total",
    "Total retryable allocation conflicts by kind",
    ["kind"],
)

numbering_allocation_exhausted_total = Counter(
    "numbering_allocation_exhausted_total",
    "Total allocations that ran out of retry attempts",
    ["kind"],
)

numbering_missing_ancestor_total = Counter(
    "numbering_missing_ancestor_total",
    "Total allocations that proceeded with a missing ancestor",
    ["kind"],
)

numbering_allocation_duration_seconds = Histogram(
    "numbering_allocation_duration_seconds",
    "Identifier allocation duration in seconds",
    ["kind"],
)

rls_denied_reads_count = Counter(
    "rls_denied_reads_count",
    "Total denied reads by RLS",
    ["resource"],
)

rls_denied_writes_count = Counter(
    "rls_denied_writes_count",
    "Total denied writes by RLS",
    ["resource", "action"],
)

pipeline_invalid_status_observed_total = Counter(
    "pipeline_invalid_status_observed_total",
    "Pipeline entries observed with a status outside the recognized set",
)

pipeline_status_normalized_total = Counter(
    "pipeline_status_normalized_total",
    "Pipeline entries whose status was normalized",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_allocation(kind: str, scope: str, duration: float) -> None:
    numbering_allocations_total.labels(kind=kind, scope=scope).inc()
    numbering_allocation_duration_seconds.labels(kind=kind).observe(duration)


def observe_allocation_conflict(kind: str) -> None:
    numbering_allocation_conflicts_total.labels(kind=kind).inc()


def observe_allocation_exhausted(kind: str) -> None:
    numbering_allocation_exhausted_total.labels(kind=kind).inc()


def observe_missing_ancestor(kind: str) -> None:
    numbering_missing_ancestor_total.labels(kind=kind).inc()


def observe_rls_denied_read(resource: str, count: int = 1) -> None:
    if count > 0:
        rls_denied_reads_count.labels(resource=resource).inc(count)


def observe_rls_denied_write(resource: str, action: str) -> None:
    rls_denied_writes_count.labels(resource=resource, action=action).inc()


def observe_invalid_status(count: int = 1) -> None:
    if count > 0:
        pipeline_invalid_status_observed_total.inc(count)


def observe_status_normalized(count: int) -> None:
    if count > 0:
        pipeline_status_normalized_total.inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
