"""FastAPI application entry point."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from storefront.core.config import settings
from storefront.core.logging import setup_logging
from storefront.core.metrics import get_metrics, get_metrics_content_type, set_app_info
from storefront.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from storefront.core.tracing import setup_tracing
from storefront.modules.payment_gateway.router import admin_router, payment_router

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Storefront Payments API

Payment core for the storefront checkout.

### Features

* **Gateway payments** - Midtrans Core API (VA, bill payment, QRIS, e-wallets) and Duitku hosted payment page
* **Manual payments** - bank transfer and e-wallet accounts reconciled by an admin
* **Status polling** - payment instruction view with deadline countdown
* **Notifications** - signed Midtrans and Duitku webhooks
    """,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "Payments",
            "description": "Checkout, payment configuration, status polling and gateway webhooks",
        },
        {
            "name": "Payment Admin",
            "description": "Gateway credentials, active gateway, payment mode, manual methods and order reconciliation",
        },
    ],
)

setup_logging(
    level="INFO" if not settings.DEBUG else "DEBUG",
    json_format=True,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
    enable_console_export=settings.DEBUG,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


app.include_router(payment_router, prefix=settings.API_PREFIX)
app.include_router(admin_router, prefix=settings.API_PREFIX)
