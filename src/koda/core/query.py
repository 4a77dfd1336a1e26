"""Pre-retrieval query rewriting.

Follow-up questions ("And sorting?") embed poorly on their own.  Before
retrieval the user turn goes through up to two single-shot model calls:

1. *compression* folds the prior turns into a standalone query (only when
   there is history);
2. *rewrite* trims it to a concise search query.

The rewritten text is used for embedding only; moderation, the guardrail
and the answer model still see the user's own words.  Any error falls
back to the raw user turn.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from koda.core.guardrail import format_history
from koda.core.service.metrics import QUERY_REWRITES_TOTAL
from koda.infra.telemetry import ATTR_QUERY_REWRITE_RESULT, SPAN_QUERY_REWRITE, tracer

logger = logging.getLogger(__name__)

RESULT_REWRITTEN = "rewritten"
RESULT_UNCHANGED = "unchanged"
RESULT_FAIL_OPEN = "fail_open"

COMPRESSION_TEMPLATE = """Given the following conversation history and a follow-up query, your task is to synthesize
a concise, standalone query that incorporates the context from the history.
Ensure the standalone query is clear, specific, and maintains the user's intent.

Conversation history:
{history}

Follow-up query:
{query}

Standalone query:"""  # noqa: E501

REWRITE_TEMPLATE = """Given a user query, rewrite it to provide better results when querying a {target}.
Remove any irrelevant information, and ensure the query is concise and specific.

Original query:
{query}

Rewritten query:"""  # noqa: E501


class QueryRewriter:
    """Turns a user turn into a standalone search query."""

    def __init__(
        self,
        llm: BaseChatModel,
        enabled: bool = True,
        compress_history: bool = True,
        rewrite: bool = True,
        target: str = "vector store",
    ) -> None:
        self._llm = llm
        self._enabled = enabled
        self._compress_history = compress_history
        self._rewrite = rewrite
        self._target = target

    async def rewrite(
        self, query: str, history: Sequence[BaseMessage] = ()
    ) -> str:
        """Return the search query for *query* given the prior turns."""
        if not self._enabled or not (self._compress_history or self._rewrite):
            return query

        with tracer.start_as_current_span(SPAN_QUERY_REWRITE) as span:
            try:
                result = query
                if self._compress_history and history:
                    result = await self._ask(
                        COMPRESSION_TEMPLATE.format(
                            history=format_history(history), query=result
                        ),
                        fallback=result,
                    )
                if self._rewrite:
                    result = await self._ask(
                        REWRITE_TEMPLATE.format(target=self._target, query=result),
                        fallback=result,
                    )
            except Exception:
                logger.warning(
                    "Query rewrite failed, using the raw user turn", exc_info=True
                )
                outcome, result = RESULT_FAIL_OPEN, query
            else:
                outcome = RESULT_UNCHANGED if result == query else RESULT_REWRITTEN
            span.set_attribute(ATTR_QUERY_REWRITE_RESULT, outcome)

        QUERY_REWRITES_TOTAL.labels(result=outcome).inc()
        logger.debug("Search query %r -> %r", query, result)
        return result

    async def _ask(self, prompt: str, fallback: str) -> str:
        # A blank reply keeps the previous query.
        response = await self._llm.ainvoke(prompt)
        text = str(response.content).strip()
        return text or fallback
