"""Chat model construction and reply streaming."""

from .factory import (  # noqa: F401
    create_guardrail_llm,
    create_llm,
    create_query_rewrite_llm,
)
from .streamer import CompletionStreamer  # noqa: F401
