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

scope_denied_total = Counter(
    "scope_denied_total",
    "Reads or writes denied because the record is outside the caller's scope",
    ["resource", "action"],
)

ownership_rejections_total = Counter(
    "ownership_rejections_total",
    "Creates or updates rejected by an ownership-consistency rule",
    ["resource", "code"],
)

permission_denied_total = Counter(
    "permission_denied_total",
    "Requests rejected by the static role permission gate",
    ["permission", "role"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_scope_denied(resource: str, action: str) -> None:
    scope_denied_total.labels(resource=resource, action=action).inc()


def observe_ownership_rejection(resource: str, code: str) -> None:
    ownership_rejections_total.labels(resource=resource, code=code).inc()


def observe_permission_denied(permission: str, role: str) -> None:
    permission_denied_total.labels(permission=permission, role=role).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
