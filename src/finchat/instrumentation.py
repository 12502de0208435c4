"""Optional OpenTelemetry instrumentation for finchat.

Call ``finchat.instrumentation.instrument()`` once at startup to enable
tracing. Requires ``opentelemetry-api`` to be installed; every helper
here is a no-op until then.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "finchat") -> None:
    """Enable OpenTelemetry tracing for runs, completions and tool calls.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install finchat[otel]``

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install finchat[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be discarded."
        )
    else:
        logger.info("finchat instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def run_span(strategy: str, model: str):
    """Wrap one orchestration run in an ``invoke_agent`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"invoke_agent {strategy}",
        attributes={
            "gen_ai.operation.name": "invoke_agent",
            "gen_ai.agent.name": f"finchat-{strategy}",
            "gen_ai.request.model": model,
        },
    ) as span:
        yield span


@asynccontextmanager
async def completion_span(model: str, system: str = "openai"):
    """Wrap one model generation in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str = ""):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


def record_usage(span, usage) -> None:
    """Set token-usage attributes from a :class:`~finchat.streaming.Usage`."""
    if span is None or usage is None:
        return
    span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens)
    span.set_attribute("gen_ai.usage.output_tokens", usage.completion_tokens)


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
