import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from itcrm.api.errors import register_exception_handlers
from itcrm.api.routes import router as api_router
from itcrm.core.config import get_settings
from itcrm.logging import configure_logging
from itcrm.middleware.correlation_id import CorrelationIdMiddleware
from itcrm.middleware.rate_limit import MutationRateLimitMiddleware
from itcrm.middleware.request_logging import RequestLoggingMiddleware
from itcrm.otel import server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("itcrm.lifecycle")

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)
# Starlette wraps in reverse: correlation id is outermost, the rate limiter innermost.
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

if setup_otel(settings) is not None:
    logger.info("otel.enabled")

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
