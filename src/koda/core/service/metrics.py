"""Prometheus metrics for the assistant pipeline.

All metrics use the ``koda_`` prefix.  Exposition (``/metrics`` endpoint
or push gateway) is left to the host application.
"""

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Chat turn metrics
# ---------------------------------------------------------------------------

CHAT_TURNS_TOTAL = Counter(
    "koda_chat_turns_total",
    "Chat turns by final outcome",
    ["topic", "outcome"],  # ok | moderated | rejected | error | cancelled
)

CHAT_TURN_DURATION_SECONDS = Histogram(
    "koda_chat_turn_duration_seconds",
    "End-to-end duration of a chat turn, including streaming",
    ["topic"],
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60, 120),
)

# ---------------------------------------------------------------------------
# Gate metrics
# ---------------------------------------------------------------------------

MODERATION_FLAGGED_TOTAL = Counter(
    "koda_moderation_flagged_total",
    "Messages flagged by the moderation endpoint",
)

GUARDRAIL_VERDICTS_TOTAL = Counter(
    "koda_guardrail_verdicts_total",
    "Guardrail decisions",
    ["decision"],  # accept | reject | fail_open
)

QUERY_REWRITES_TOTAL = Counter(
    "koda_query_rewrites_total",
    "Pre-retrieval query rewrites",
    ["result"],  # rewritten | unchanged | fail_open
)

# ---------------------------------------------------------------------------
# Retrieval and budgeting metrics
# ---------------------------------------------------------------------------

RETRIEVAL_LATENCY_SECONDS = Histogram(
    "koda_retrieval_latency_seconds",
    "Vector index query latency (all namespaces of one turn)",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

RETRIEVAL_SNIPPETS_RETURNED = Histogram(
    "koda_retrieval_snippets_returned",
    "Snippets surviving threshold filtering per turn",
    buckets=(0, 1, 2, 3, 5, 10, 20),
)

HISTORY_TRIMMED_TOTAL = Counter(
    "koda_history_trimmed_total",
    "Turns whose history was trimmed to fit the token budget",
)

PROMPT_TOKENS = Histogram(
    "koda_prompt_tokens",
    "Token count of the assembled prompt",
    buckets=(256, 512, 1024, 1536, 2048, 2560, 3072, 4096),
)
