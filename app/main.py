import logging

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.responses import Response

from app.api.identity import router as identity_router
from app.api.payments import router as payments_router
from app.api.radius import router as radius_router
from app.api.router_sync import router as router_sync_router
from app.api.subscribers import router as subscribers_router
from app.api.subscriptions import router as subscriptions_router
from app.api.vouchers import limiter as voucher_limiter
from app.api.vouchers import router as vouchers_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware

app = FastAPI(title="hotspot_access API")
logger = logging.getLogger(__name__)
app.state.limiter = voucher_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

configure_logging()
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(payments_router)
_include_api_router(vouchers_router)
_include_api_router(router_sync_router)
_include_api_router(identity_router)
_include_api_router(subscriptions_router)
_include_api_router(subscribers_router)
_include_api_router(radius_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
