import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from realty_crm.api.routes import router as api_router
from realty_crm.core.config import get_settings
from realty_crm.logging import configure_logging
from realty_crm.middleware.correlation_id import CorrelationIdMiddleware
from realty_crm.middleware.request_logging import RequestLoggingMiddleware
from realty_crm.otel import get_fastapi_server_request_hook, setup_otel


settings = get_settings()
configure_logging(settings)
setup_otel(settings)
logger = logging.getLogger("realty_crm.lifecycle")

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())

logger.info("app.started", extra={"app_env": settings.app_env})
