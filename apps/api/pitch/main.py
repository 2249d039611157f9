from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from pitch.api.routes import router as api_router
from pitch.core.config import get_settings
from pitch.core.events import Envelope, event_dispatcher
from pitch.logging import configure_logging
from pitch.middleware.correlation_id import CorrelationIdMiddleware
from pitch.middleware.request_logging import RequestLoggingMiddleware
from pitch.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("pitch.lifecycle")
_subscriptions_registered = False


def _on_system_started(envelope: Envelope) -> None:
    logger.info("system_event", extra={"action": envelope["event_type"]})


def _on_numbered_entity_created(envelope: Envelope) -> None:
    logger.info(
        "crm.entity_numbered",
        extra={
            "action": envelope["event_type"],
            "tenant_id": envelope.get("tenant_id"),
            "number": envelope.get("payload", {}).get("clj_formatted_number"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_dispatcher.subscribe("system.started", _on_system_started)
        event_dispatcher.subscribe("crm.*.created", _on_numbered_entity_created)
        _subscriptions_registered = True
    event_dispatcher.dispatch({"event_type": "system.started", "payload": {"service": "api"}})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("pitch-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
