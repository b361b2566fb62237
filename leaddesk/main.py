from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from leaddesk.api.routes import router as api_router
from leaddesk.core.config import get_settings
from leaddesk.core.context import RequestContextMiddleware
from leaddesk.logging import configure_logging
from leaddesk.middleware.correlation_id import CorrelationIdMiddleware
from leaddesk.middleware.rate_limit import LeadMutationRateLimitMiddleware
from leaddesk.middleware.request_logging import RequestLoggingMiddleware
from leaddesk.otel import get_fastapi_server_request_hook, setup_otel
from leaddesk.platform.security.policies import RoleMaskPolicyBackend, set_policy_backend


configure_logging()

settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(LeadMutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

set_policy_backend(RoleMaskPolicyBackend())

if settings.otel_enabled:
    setup_otel("leaddesk-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
