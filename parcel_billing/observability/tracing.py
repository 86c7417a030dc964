# ==== OPENTELEMETRY TRACING CONFIGURATION ==== #

"""
OpenTelemetry tracing configuration for the parcel billing engine.

Sets up OTLP export and SQLAlchemy auto-instrumentation when an
exporter endpoint is configured; local runs keep the no-op provider.
"""

import os
from typing import Dict, Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor


# ==== TRACING INITIALIZATION ==== #

def init_tracing(service_name: str) -> None:
    """
    Initialize OpenTelemetry tracing with an OTLP exporter.

    Args:
        service_name (str): Name of the service for tracing identification
    """
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    headers = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")

    # ⚠️ Allow local runs without SaaS APM
    if not endpoint:
        return

    # --► RESOURCE ATTRIBUTES CONFIGURATION
    resource_attrs = _parse_key_values(os.getenv("OTEL_RESOURCE_ATTRIBUTES", ""))
    resource_attrs["service.name"] = os.getenv("OTEL_SERVICE_NAME", service_name)

    # --► TRACER PROVIDER SETUP
    provider = TracerProvider(resource=Resource.create(resource_attrs))
    exporter = OTLPSpanExporter(
        endpoint=endpoint,
        headers=_parse_key_values(headers)
    )

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    try:
        SQLAlchemyInstrumentor().instrument()
    except Exception as e:
        # Don't fail startup if instrumentation fails
        print(f"Warning: Failed to setup auto-instrumentation: {e}")


def _parse_key_values(raw: str | None) -> Dict[str, Any]:
    """Parse comma-separated ``key=value`` pairs from an environment variable.

    Args:
        raw: Comma-separated key=value pairs

    Returns:
        Dictionary of parsed pairs
    """
    parsed: Dict[str, Any] = {}
    if not raw:
        return parsed

    for part in filter(None, map(str.strip, raw.split(","))):
        if "=" in part:
            key, value = part.split("=", 1)
            parsed[key.strip()] = value.strip()

    return parsed


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)
