"""OpenTelemetry tracing for checkout requests and gateway charges.

Each HTTP request runs in a server span and each outbound charge in a client
span beneath it, so a slow provider shows up inside the checkout that waited
on it. Log lines pick up the active trace and span IDs through
current_trace_ids().
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

TRACER_NAME = "storefront.payments"


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    enable_console_export: bool = False,
) -> None:
    """Install the tracer provider and W3C trace-context propagation.

    Args:
        service_name: Reported as service.name
        service_version: Reported as service.version
        environment: Reported as deployment.environment
        enable_console_export: Print finished spans to stdout (local debugging)
    """
    provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    }))
    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    set_global_textmap(TraceContextTextMapPropagator())
    logger.info(f"Tracing initialized for {service_name} v{service_version} ({environment})")


def current_trace_ids() -> tuple[Optional[str], Optional[str]]:
    """Return (trace_id, span_id) of the active span as hex, or (None, None)."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


@contextmanager
def request_span(method: str, path: str, correlation_id: str) -> Iterator[Span]:
    """Server span for one HTTP request.

    An exception escaping the block is recorded on the span and sets its
    status to ERROR.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        f"{method} {path}",
        kind=trace.SpanKind.SERVER,
        attributes={
            "http.method": method,
            "http.route": path,
            "correlation_id": correlation_id,
        },
    ) as span:
        yield span


@contextmanager
def gateway_charge_span(gateway: str, order_id: str) -> Iterator[Span]:
    """Client span around one outbound charge to a payment gateway.

    A GatewayRejectedError or transport error raised inside the block is
    recorded on the span (the SDK default) before it propagates.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        f"payment_gateway.{gateway}.charge",
        kind=trace.SpanKind.CLIENT,
        attributes={"payment.gateway": gateway, "payment.order_id": order_id},
    ) as span:
        yield span
