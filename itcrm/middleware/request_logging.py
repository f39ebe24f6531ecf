from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from itcrm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("itcrm.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access line and one metrics sample per request, labelled by route template."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception:
            logger.exception("http.error", extra={"method": request.method, "path": request.url.path})
            raise
        finally:
            elapsed = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=request.method, path=path, status=status_code, duration=elapsed)
            level = logging.WARNING if status_code in (401, 403) else logging.INFO
            logger.log(
                level,
                "http.request",
                extra={
                    "method": request.method,
                    "path": path,
                    "status_code": status_code,
                    "duration_ms": round(elapsed * 1000, 2),
                    "user_id": getattr(request.state, "user_id", None),
                    "role": getattr(request.state, "role", None),
                },
            )
