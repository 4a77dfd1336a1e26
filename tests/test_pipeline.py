"""End-to-end tests of a chat turn over faked upstream services."""

import asyncio
from contextlib import aclosing
from unittest.mock import patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from opentelemetry import trace
from opentelemetry.trace import NonRecordingSpan, SpanContext

from koda.configs.config import AppConfig
from koda.configs.system import (
    BudgetConfig,
    HistoryConfig,
    ModerationConfig,
    QueryRewriteConfig,
)
from koda.configs.topics import UnsupportedTopicError
from koda.core.service.budget import PromptBudgetExceeded
from koda.core.service.models import (
    EVENT_TYPE_CONTENT,
    EVENT_TYPE_REJECTED,
    REJECT_REASON_GUARDRAIL,
    REJECT_REASON_MODERATION,
    ContentEvent,
    RejectedEvent,
)
from koda.core.service.prompt import NO_CONTEXT_PROMPT
from koda.infra.telemetry import SPAN_PIPELINE, tracer

from .conftest import match


async def collect(events):
    return [event async for event in events]


def words(n: int) -> str:
    return " ".join(["x"] * n)


@pytest.mark.asyncio
class TestHappyPath:
    async def test_streams_answer_grounded_in_documentation(self, build_pipeline):
        p = build_pipeline(
            matches={"flow": [match("Button docs: use new Button()", 0.9)]},
            chunks=["Use ", "new Button()."],
        )

        events = await collect(
            p.service.stream_events("c1", "How do I add a button?", "flow")
        )

        assert events == [
            ContentEvent(content="Use "),
            ContentEvent(content="new Button()."),
        ]
        assert all(e.type == EVENT_TYPE_CONTENT for e in events)

        prompt = p.answer_llm.calls[0]
        assert isinstance(prompt[0], SystemMessage)
        assert "Flow framework" in prompt[0].content
        assert "Button docs: use new Button()" in prompt[1].content
        assert prompt[-1].content == "How do I add a button?"

    async def test_pipeline_call_order_inputs(self, build_pipeline):
        p = build_pipeline()
        await collect(p.service.stream_events("c1", "What is a route?", "hilla-lit"))

        p.openai.moderations.create.assert_awaited_once_with(input="What is a route?")
        p.openai.embeddings.create.assert_awaited_once_with(
            input="What is a route?", model="text-embedding-ada-002"
        )
        namespaces = sorted(call.args[2] for call in p.index.query.await_args_list)
        assert namespaces == ["", "hilla-lit"]
        assert len(p.guardrail_llm.calls) == 1
        assert "Hilla with Lit framework" in p.answer_llm.calls[0][0].content

    async def test_no_documentation_uses_no_context_prompt(self, build_pipeline):
        p = build_pipeline(matches={"flow": [match("weak", 0.3)]})
        await collect(p.service.stream_events("c1", "Anything?", "flow"))
        assert p.answer_llm.calls[0][1].content == NO_CONTEXT_PROMPT

    async def test_done_sentinel_ends_reply(self, build_pipeline):
        p = build_pipeline(chunks=["Hello", "\n\n", " world", "[DONE]"])
        fragments = await collect(p.service.stream("c1", "Hi?", "flow"))
        assert fragments == ["Hello", " world"]


@pytest.mark.asyncio
class TestRejections:
    async def test_moderation_rejects_before_retrieval(self, build_pipeline, app_config):
        p = build_pipeline(flagged=True)

        events = await collect(p.service.stream_events("c1", "bad words", "flow"))

        assert events == [
            RejectedEvent(
                reason=REJECT_REASON_MODERATION,
                message=app_config.moderation.failure_response,
            )
        ]
        assert events[0].type == EVENT_TYPE_REJECTED
        p.openai.embeddings.create.assert_not_awaited()
        p.index.query.assert_not_awaited()
        assert p.guardrail_llm.calls == []
        assert p.answer_llm.calls == []

    async def test_guardrail_rejects_before_generation(self, build_pipeline, app_config):
        p = build_pipeline(guardrail_reply="Cooking.\nDECISION: REJECT")

        events = await collect(p.service.stream_events("c1", "Pasta recipe?", "flow"))

        assert events == [
            RejectedEvent(
                reason=REJECT_REASON_GUARDRAIL,
                message=app_config.guardrail.failure_response,
            )
        ]
        assert p.answer_llm.calls == []

    async def test_guardrail_without_marker_fails_open(self, build_pipeline):
        p = build_pipeline(guardrail_reply="not sure", chunks=["Answer"])
        events = await collect(p.service.stream_events("c1", "Question?", "flow"))
        assert events == [ContentEvent(content="Answer")]

    async def test_stream_yields_rejection_message(self, build_pipeline, app_config):
        p = build_pipeline(guardrail_reply="DECISION: REJECT")
        fragments = await collect(p.service.stream("c1", "Pasta?", "flow"))
        assert fragments == [app_config.guardrail.failure_response]

    async def test_rejected_turn_is_not_recorded(self, build_pipeline):
        p = build_pipeline(flagged=True)
        await collect(p.service.stream_events("c1", "bad words", "flow"))
        assert await p.service.get_history("c1") == []

    async def test_moderation_of_history_when_enabled(self, build_pipeline):
        config = AppConfig(moderation=ModerationConfig(check_history=True))
        p = build_pipeline(config=config, flagged=[True, False])
        await p.history.append(
            "c1", [HumanMessage(content="old bad"), AIMessage(content="reply")]
        )

        events = await collect(p.service.stream_events("c1", "fine question", "flow"))

        assert events[0].reason == REJECT_REASON_MODERATION
        assert p.openai.moderations.create.await_count == 3


@pytest.mark.asyncio
class TestValidation:
    async def test_unsupported_topic_makes_no_upstream_calls(self, build_pipeline):
        p = build_pipeline()
        with pytest.raises(UnsupportedTopicError) as exc_info:
            await collect(p.service.stream_events("c1", "Question?", "angular"))
        assert exc_info.value.topic == "angular"
        assert "flow" in exc_info.value.supported
        p.openai.moderations.create.assert_not_awaited()
        p.openai.embeddings.create.assert_not_awaited()
        p.index.query.assert_not_awaited()

    async def test_missing_topic_is_rejected(self, build_pipeline):
        p = build_pipeline()
        with pytest.raises(UnsupportedTopicError):
            await collect(p.service.stream_events("c1", "Question?", None))

    async def test_blank_message_is_rejected(self, build_pipeline):
        p = build_pipeline()
        with pytest.raises(ValueError):
            await collect(p.service.stream_events("c1", "   ", "flow"))
        p.openai.moderations.create.assert_not_awaited()


@pytest.mark.asyncio
class TestBudget:
    async def test_long_history_is_trimmed_oldest_first(self, build_pipeline, tokenizer):
        config = AppConfig(history=HistoryConfig(window=100))
        p = build_pipeline(config=config)
        history = [
            HumanMessage(content=f"q{i} " + words(100))
            if i % 2 == 0
            else AIMessage(content=f"a{i} " + words(100))
            for i in range(50)
        ]
        await p.history.append("c1", history)

        await collect(p.service.stream_events("c1", "latest question", "flow"))

        prompt = p.answer_llm.calls[0]
        budget = config.budget
        assert (
            tokenizer.count_messages(prompt)
            <= budget.max_total_tokens - budget.max_response_tokens
        )
        assert prompt[-1].content == "latest question"
        kept = [m for m in prompt if m in history]
        assert kept
        assert kept == history[-len(kept) :]
        assert len(kept) < len(history)

    async def test_oversized_question_raises(self, build_pipeline):
        config = AppConfig(
            budget=BudgetConfig(max_total_tokens=200, max_response_tokens=100)
        )
        p = build_pipeline(config=config)

        with pytest.raises(PromptBudgetExceeded):
            await collect(p.service.stream_events("c1", words(500), "flow"))

        assert p.answer_llm.calls == []
        assert p.guardrail_llm.calls == []
        assert await p.service.get_history("c1") == []


@pytest.mark.asyncio
class TestHistory:
    async def test_successful_turn_is_recorded(self, build_pipeline):
        p = build_pipeline(chunks=["Use ", "Grid."])
        await collect(p.service.stream_events("c1", "How to show a table?", "flow"))

        history = await p.service.get_history("c1")
        assert [m.content for m in history] == ["How to show a table?", "Use Grid."]
        assert isinstance(history[0], HumanMessage)
        assert isinstance(history[1], AIMessage)

    async def test_follow_up_sees_previous_turn(self, build_pipeline):
        p = build_pipeline(chunks=["Use Grid."])
        p.guardrail_llm.replies.append("DECISION: ACCEPT")
        await collect(p.service.stream_events("c1", "How to show a table?", "flow"))
        await collect(p.service.stream_events("c1", "And sorting?", "flow"))

        second_prompt = p.answer_llm.calls[1]
        contents = [m.content for m in second_prompt]
        assert contents[-3:] == ["How to show a table?", "Use Grid.", "And sorting?"]

        guardrail_prompt = p.guardrail_llm.calls[1][0].content
        assert "USER: How to show a table?" in guardrail_prompt
        assert "ASSISTANT: Use Grid." in guardrail_prompt

    async def test_chats_are_isolated(self, build_pipeline):
        p = build_pipeline()
        await collect(p.service.stream_events("c1", "Question?", "flow"))
        assert await p.service.get_history("c2") == []

    async def test_clear_history(self, build_pipeline):
        p = build_pipeline()
        await collect(p.service.stream_events("c1", "Question?", "flow"))
        await p.service.clear_history("c1")
        assert await p.service.get_history("c1") == []

    async def test_failed_stream_is_not_recorded(self, build_pipeline):
        p = build_pipeline(chunks=["partial", ConnectionError("reset")])
        with pytest.raises(ConnectionError):
            await collect(p.service.stream_events("c1", "Question?", "flow"))
        assert await p.service.get_history("c1") == []

    async def test_abandoned_stream_is_not_recorded(self, build_pipeline):
        p = build_pipeline(chunks=["one", "two", "three"])
        async with aclosing(p.service.stream_events("c1", "Question?", "flow")) as events:
            async for _ in events:
                break
        assert await p.service.get_history("c1") == []


@pytest.mark.asyncio
class TestConcurrency:
    async def test_concurrent_turns_keep_their_topic(self, build_pipeline):
        p = build_pipeline(chunks=["ok"])
        p.guardrail_llm.replies.append("DECISION: ACCEPT")

        await asyncio.gather(
            collect(p.service.stream_events("a", "Question one?", "flow")),
            collect(p.service.stream_events("b", "Question two?", "hilla-react")),
        )

        by_question = {
            call[-1].content: call[0].content for call in p.answer_llm.calls
        }
        assert "Flow framework" in by_question["Question one?"]
        assert "Hilla with React framework" in by_question["Question two?"]

    async def test_supported_topics(self, build_pipeline):
        p = build_pipeline()
        assert [t.value for t in p.service.supported_topics()] == [
            "flow",
            "hilla-react",
            "hilla-lit",
        ]


@pytest.mark.asyncio
class TestDocumentedScenario:
    async def test_flow_question_with_three_snippets(self, build_pipeline):
        snippets = [
            "Button is a clickable component.",
            "Register a listener with addClickListener.",
            "Buttons can show an icon next to the text.",
        ]
        scores = [0.95, 0.9, 0.85]
        p = build_pipeline(
            matches={"flow": [match(t, s) for t, s in zip(snippets, scores)]},
            chunks=["Use ", "Button", "[DONE]"],
        )

        reply = "".join(
            await collect(p.service.stream("c1", "How do I add a button?", "flow"))
        )

        assert reply == "Use Button"
        prompt = p.answer_llm.calls[0]
        assert [type(m) for m in prompt] == [
            SystemMessage,
            HumanMessage,
            HumanMessage,
            HumanMessage,
        ]
        assert all(text in prompt[1].content for text in snippets)
        assert prompt[-1].content == "How do I add a button?"


@pytest.mark.asyncio
class TestQueryRewrite:
    async def test_search_uses_rewritten_query(self, build_pipeline):
        p = build_pipeline(rewrite_replies=["Vaadin Flow Button component usage"])

        await collect(p.service.stream_events("c1", "how do i add a button pls", "flow"))

        p.openai.embeddings.create.assert_awaited_once_with(
            input="Vaadin Flow Button component usage",
            model="text-embedding-ada-002",
        )
        assert p.answer_llm.calls[0][-1].content == "how do i add a button pls"
        assert "how do i add a button pls" in p.guardrail_llm.calls[0][0].content

    async def test_follow_up_is_made_standalone(self, build_pipeline):
        p = build_pipeline(
            rewrite_replies=["How do I sort a Grid table?", "Vaadin Grid sorting"]
        )
        await p.history.append(
            "c1",
            [HumanMessage(content="How to show a table?"), AIMessage(content="Use Grid.")],
        )

        await collect(p.service.stream_events("c1", "And sorting?", "flow"))

        compression_prompt = p.rewrite_llm.calls[0][0].content
        assert "USER: How to show a table?" in compression_prompt
        assert "ASSISTANT: Use Grid." in compression_prompt
        assert "And sorting?" in compression_prompt
        assert "How do I sort a Grid table?" in p.rewrite_llm.calls[1][0].content
        p.openai.embeddings.create.assert_awaited_once_with(
            input="Vaadin Grid sorting", model="text-embedding-ada-002"
        )

    async def test_rewrite_error_falls_back_to_user_turn(self, build_pipeline):
        p = build_pipeline(rewrite_error=RuntimeError("rate limited"), chunks=["ok"])

        events = await collect(p.service.stream_events("c1", "What is a route?", "flow"))

        assert events == [ContentEvent(content="ok")]
        p.openai.embeddings.create.assert_awaited_once_with(
            input="What is a route?", model="text-embedding-ada-002"
        )

    async def test_disabled_rewrite_makes_no_call(self, build_pipeline):
        config = AppConfig(query_rewrite=QueryRewriteConfig(enabled=False))
        p = build_pipeline(config=config, rewrite_replies=["ignored"])

        await collect(p.service.stream_events("c1", "What is a route?", "flow"))

        assert p.rewrite_llm.calls == []
        p.openai.embeddings.create.assert_awaited_once_with(
            input="What is a route?", model="text-embedding-ada-002"
        )

    async def test_moderated_turn_is_not_rewritten(self, build_pipeline):
        p = build_pipeline(flagged=True, rewrite_replies=["ignored"])
        await collect(p.service.stream_events("c1", "bad words", "flow"))
        assert p.rewrite_llm.calls == []


class TrackedSpan(NonRecordingSpan):
    """Valid, non-recording span that remembers whether it was ended."""

    def __init__(self) -> None:
        super().__init__(SpanContext(trace_id=0x1, span_id=0x2, is_remote=False))
        self.ended = False

    def end(self, end_time=None) -> None:
        self.ended = True


@pytest.mark.asyncio
class TestTracing:
    async def test_pipeline_span_is_current_only_inside_steps(self, build_pipeline):
        p = build_pipeline(chunks=["one", "two"])
        pipeline_span = TrackedSpan()
        current_during_embed = []
        embedding_response = p.openai.embeddings.create.return_value

        async def embed(**kwargs):
            current_during_embed.append(trace.get_current_span())
            return embedding_response

        p.openai.embeddings.create.side_effect = embed

        def start_span(name, *args, **kwargs):
            return pipeline_span if name == SPAN_PIPELINE else trace.INVALID_SPAN

        current_between_events = []
        with patch.object(tracer, "start_span", side_effect=start_span):
            async with aclosing(
                p.service.stream_events("c1", "Question?", "flow")
            ) as events:
                async for _ in events:
                    current_between_events.append(trace.get_current_span())
                    assert not pipeline_span.ended

        assert current_during_embed == [pipeline_span]
        assert len(current_between_events) == 2
        assert pipeline_span not in current_between_events
        assert pipeline_span.ended

    async def test_abandoned_turn_ends_its_span(self, build_pipeline):
        p = build_pipeline(chunks=["one", "two"])
        pipeline_span = TrackedSpan()

        def start_span(name, *args, **kwargs):
            return pipeline_span if name == SPAN_PIPELINE else trace.INVALID_SPAN

        with patch.object(tracer, "start_span", side_effect=start_span):
            async with aclosing(
                p.service.stream_events("c1", "Question?", "flow")
            ) as events:
                async for _ in events:
                    break

        assert pipeline_span.ended
