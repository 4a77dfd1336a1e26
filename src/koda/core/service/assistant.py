"""Documentation assistant: the per-turn retrieval-augmented pipeline.

One chat turn runs as a single async generator::

    moderate ─┬─ (flagged) → RejectedEvent → END
              └─ rewrite → embed → retrieve → budget → guard ─┬─ (reject) → RejectedEvent → END
                                                              └─ generate → ContentEvent* → END

Nothing is retried.  Policy failures are reported as ``RejectedEvent``;
upstream and budget errors propagate to the caller.  The user turn and
the assistant reply are recorded in history only after the reply has been
streamed completely.

The pipeline span is made current only around awaited steps, never
across a ``yield``, so a suspended turn leaves the consumer's context
untouched.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from opentelemetry import trace
from opentelemetry.trace import Span

from koda.configs.config import AppConfig
from koda.configs.topics import TopicProfile, resolve_topic
from koda.core.embedding import EmbeddingClient
from koda.core.guardrail import GuardrailGate
from koda.core.llm.streamer import CompletionStreamer
from koda.core.moderation import ModerationGate
from koda.core.query import QueryRewriter
from koda.core.retrieval import DocumentRetriever
from koda.infra.history import ChatHistoryStore
from koda.infra.telemetry import (
    ATTR_HISTORY_LEN,
    ATTR_OUTCOME,
    ATTR_QUERY_LEN,
    ATTR_TOPIC,
    SPAN_PIPELINE,
    tracer,
)
from koda.infra.tokens import Tokenizer

from .budget import build_context, cap_messages
from .metrics import CHAT_TURN_DURATION_SECONDS, CHAT_TURNS_TOTAL
from .models import (
    REJECT_REASON_GUARDRAIL,
    REJECT_REASON_MODERATION,
    ChatContext,
    ContentEvent,
    RejectedEvent,
    StreamEvent,
)
from .prompt import build_prompt_messages

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_MODERATED = "moderated"
OUTCOME_REJECTED = "rejected"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_ERROR = "error"


class DocsAssistantService:
    """Streams answers to documentation questions.

    The service holds only long-lived, stateless-per-call collaborators
    and is safe to share between concurrent turns.  Everything about a
    turn (topic, history, snippets) lives in locals or ``ChatContext``.
    """

    def __init__(
        self,
        config: AppConfig,
        tokenizer: Tokenizer,
        moderation: ModerationGate,
        rewriter: QueryRewriter,
        embedder: EmbeddingClient,
        retriever: DocumentRetriever,
        guardrail: GuardrailGate,
        streamer: CompletionStreamer,
        history: ChatHistoryStore,
    ) -> None:
        self._config = config
        self._tokenizer = tokenizer
        self._moderation = moderation
        self._rewriter = rewriter
        self._embedder = embedder
        self._retriever = retriever
        self._guardrail = guardrail
        self._streamer = streamer
        self._history = history

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def supported_topics(self) -> list[TopicProfile]:
        return list(self._config.topics)

    async def get_history(self, chat_id: str) -> list[BaseMessage]:
        return await self._history.load(chat_id)

    async def clear_history(self, chat_id: str) -> None:
        await self._history.clear(chat_id)

    async def stream(
        self, chat_id: str, user_message: str, topic: str | None
    ) -> AsyncIterator[str]:
        """Yield the reply as text fragments.

        A rejected turn yields exactly one fragment: the rejection message.
        """
        async with aclosing(self.stream_events(chat_id, user_message, topic)) as events:
            async for event in events:
                if isinstance(event, ContentEvent):
                    yield event.content
                else:
                    yield event.message

    async def stream_events(
        self, chat_id: str, user_message: str, topic: str | None
    ) -> AsyncIterator[StreamEvent]:
        """Run one chat turn and yield domain events.

        Raises:
            UnsupportedTopicError: *topic* is not a supported selector.
            ValueError: *user_message* is blank.
            PromptBudgetExceeded: the question does not fit the budget.
        """
        profile = resolve_topic(topic, self._config.topics)
        if not user_message or not user_message.strip():
            raise ValueError("User message must not be empty")

        ctx = ChatContext(
            chat_id=chat_id,
            query=user_message,
            topic=profile,
            history=await self._history.load(chat_id),
        )

        outcome: str | None = None
        start = time.monotonic()
        span = tracer.start_span(SPAN_PIPELINE)
        span.set_attribute(ATTR_TOPIC, profile.value)
        span.set_attribute(ATTR_QUERY_LEN, len(ctx.query))
        span.set_attribute(ATTR_HISTORY_LEN, len(ctx.history))
        try:
            async with aclosing(self._run(ctx, span)) as events:
                async for event in events:
                    if isinstance(event, RejectedEvent):
                        outcome = (
                            OUTCOME_MODERATED
                            if event.reason == REJECT_REASON_MODERATION
                            else OUTCOME_REJECTED
                        )
                    yield event
            if outcome is None:
                outcome = OUTCOME_OK
        except (asyncio.CancelledError, GeneratorExit):
            outcome = outcome or OUTCOME_CANCELLED
            raise
        except Exception as exc:
            outcome = OUTCOME_ERROR
            span.record_exception(exc)
            logger.warning("Chat turn failed for chat %s", chat_id, exc_info=True)
            raise
        finally:
            outcome = outcome or OUTCOME_ERROR
            span.set_attribute(ATTR_OUTCOME, outcome)
            span.end()
            CHAT_TURNS_TOTAL.labels(topic=profile.value, outcome=outcome).inc()
            CHAT_TURN_DURATION_SECONDS.labels(topic=profile.value).observe(
                time.monotonic() - start
            )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, ctx: ChatContext, span: Span) -> AsyncIterator[StreamEvent]:
        question = HumanMessage(content=ctx.query)

        with trace.use_span(span, record_exception=False):
            prepared = await self._prepare(ctx, question)
        if isinstance(prepared, RejectedEvent):
            yield prepared
            return

        fragments: list[str] = []
        parent = trace.set_span_in_context(span)
        async with aclosing(self._streamer.generate(prepared, parent)) as stream:
            async for fragment in stream:
                fragments.append(fragment)
                yield ContentEvent(content=fragment)

        with trace.use_span(span, record_exception=False):
            await self._history.append(
                ctx.chat_id, [question, AIMessage(content="".join(fragments))]
            )

    async def _prepare(
        self, ctx: ChatContext, question: HumanMessage
    ) -> list[BaseMessage] | RejectedEvent:
        """Run every step up to generation.

        Returns the final prompt, or the event rejecting the turn.
        """
        working = [*ctx.history, question]
        budget = self._config.budget

        to_check = working if self._config.moderation.check_history else [question]
        if not await self._moderation.check_all(to_check):
            logger.info("Chat %s: turn rejected by moderation", ctx.chat_id)
            return RejectedEvent(
                reason=REJECT_REASON_MODERATION,
                message=self._config.moderation.failure_response,
            )

        search_query = await self._rewriter.rewrite(ctx.query, ctx.history)
        embedding = await self._embedder.embed(search_query)
        snippets = await self._retriever.retrieve(embedding, ctx.topic)

        context = build_context(snippets, self._tokenizer, budget.max_context_tokens)
        framing = build_prompt_messages(ctx.topic, context, budget.style_directives)
        messages = cap_messages(
            framing,
            working,
            self._tokenizer,
            budget.max_total_tokens,
            budget.max_response_tokens,
        )

        prior_turns = messages[len(framing) : -1]
        verdict = await self._guardrail.evaluate(ctx.query, prior_turns)
        if not verdict.accepted:
            logger.info("Chat %s: turn rejected by guardrail", ctx.chat_id)
            return RejectedEvent(
                reason=REJECT_REASON_GUARDRAIL,
                message=self._config.guardrail.failure_response,
            )
        return messages
