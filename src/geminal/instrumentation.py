"""Optional OpenTelemetry instrumentation for geminal.

Call ``geminal.instrumentation.instrument()`` once at startup to enable
tracing. Requires ``opentelemetry-api`` to be installed; the client
works identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None

PROVIDER_NAME = "gcp.gemini"


def instrument(*, tracer_name: str = "geminal") -> None:
    """Enable OpenTelemetry tracing for chat exchanges.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install geminal[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            SimpleSpanProcessor, ConsoleSpanExporter,
        )

        provider = TracerProvider()
        provider.add_span_processor(
            SimpleSpanProcessor(ConsoleSpanExporter())
        )
        trace.set_tracer_provider(provider)

        from geminal.instrumentation import instrument
        instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install geminal[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("Geminal instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def exchange_span(model: str, session_id: str | None = None):
    """Wrap one streamed chat exchange in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    attributes = {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": PROVIDER_NAME,
        "gen_ai.request.model": model,
    }
    if session_id:
        attributes["gen_ai.conversation.id"] = session_id
    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes=attributes,
    ) as span:
        yield span


def record_response(span, text: str, fragment_count: int) -> None:
    """Set response-size attributes on a span."""
    if span is None:
        return
    span.set_attribute("geminal.response.fragments", fragment_count)
    span.set_attribute("geminal.response.characters", len(text))


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    Sets ``error.type`` per GenAI semantic conventions.
    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
