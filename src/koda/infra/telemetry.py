"""OpenTelemetry tracer and span naming.

Only the tracing *API* is used here: spans are no-ops until the host
application installs a ``TracerProvider`` with an exporter.

Usage::

    from koda.infra.telemetry import tracer, SPAN_PIPELINE

    with tracer.start_as_current_span(SPAN_PIPELINE) as span:
        ...
"""

from opentelemetry import trace

tracer = trace.get_tracer("koda")

# ---------------------------------------------------------------------------
# Span names
# ---------------------------------------------------------------------------

SPAN_PIPELINE = "assistant.pipeline"
SPAN_MODERATION = "assistant.moderation"
SPAN_QUERY_REWRITE = "assistant.query_rewrite"
SPAN_RETRIEVE = "assistant.retrieve"
SPAN_GUARDRAIL = "assistant.guardrail"
SPAN_GENERATE = "assistant.generate"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_TOPIC = "assistant.topic"
ATTR_QUERY_LEN = "assistant.query_len"
ATTR_HISTORY_LEN = "assistant.history_len"
ATTR_OUTCOME = "assistant.outcome"
ATTR_RETRIEVE_NAMESPACES = "retrieve.namespaces"
ATTR_RETRIEVE_TOP_K = "retrieve.top_k"
ATTR_RETRIEVE_THRESHOLD = "retrieve.threshold"
ATTR_RETRIEVE_RESULT_COUNT = "retrieve.result_count"
ATTR_GUARDRAIL_ACCEPTED = "guardrail.accepted"
ATTR_GUARDRAIL_ANOMALY = "guardrail.anomaly"
ATTR_QUERY_REWRITE_RESULT = "query_rewrite.result"
