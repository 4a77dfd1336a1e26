"""Completion streamer: chat model ``astream`` as plain text fragments.

Some OpenAI-compatible servers let the terminal ``data: [DONE]`` sentinel
leak through the SSE decoder, either as literal content or as a JSON
decode error on the sentinel line.  Both are treated as a clean end of
stream.  Fragments that are exactly a blank paragraph break carry no
content and are dropped.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage
from opentelemetry.context import Context

from koda.infra.telemetry import SPAN_GENERATE, tracer

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
BLANK_FRAGMENT = "\n\n"


def _is_done_error(exc: json.JSONDecodeError) -> bool:
    return exc.doc.strip() == DONE_SENTINEL


class CompletionStreamer:
    """Streams the assistant reply for an assembled prompt."""

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def generate(
        self,
        messages: Sequence[BaseMessage],
        parent: Context | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply fragments in emission order.

        The generation span is a child of *parent* (or of the context
        current at the first fragment request) and is never made current,
        so nothing leaks into the consumer's context between fragments.
        The upstream stream is closed as soon as the consumer stops
        iterating (early exit, cancellation or error).
        """
        span = tracer.start_span(SPAN_GENERATE, context=parent)
        try:
            async with aclosing(self._llm.astream(list(messages))) as stream:
                async for chunk in stream:
                    content = chunk.content
                    if not isinstance(content, str) or not content:
                        continue
                    if content.strip() == DONE_SENTINEL:
                        logger.debug("Received [DONE] sentinel as content")
                        return
                    if content == BLANK_FRAGMENT:
                        continue
                    yield content
        except json.JSONDecodeError as exc:
            if not _is_done_error(exc):
                span.record_exception(exc)
                raise
            logger.debug("Treating [DONE] decode error as end of stream")
        except Exception as exc:
            span.record_exception(exc)
            raise
        finally:
            span.end()
