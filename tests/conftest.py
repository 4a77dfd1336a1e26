"""Shared fakes for the assistant pipeline tests."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatGenerationChunk, ChatResult
from pydantic import Field

from koda.configs.config import AppConfig
from koda.core.embedding import EmbeddingClient
from koda.core.guardrail import GuardrailGate
from koda.core.llm.streamer import CompletionStreamer
from koda.core.moderation import ModerationGate
from koda.core.query import QueryRewriter
from koda.core.retrieval import DocumentRetriever, IndexMatch
from koda.core.service.assistant import DocsAssistantService
from koda.infra.history import ChatHistoryStore
from koda.infra.tokens import Tokenizer


class WordEncoding:
    """Whitespace tokenizer: one token per word, no network needed."""

    def encode_ordinary(self, text: str) -> list[int]:
        return [len(word) for word in text.split()]


class ScriptedChatModel(BaseChatModel):
    """Chat model replaying canned replies.

    ``replies`` feed ``ainvoke`` one per call; ``chunks`` feed ``astream``
    (an ``Exception`` entry is raised at that point of the stream).
    """

    replies: list[str] = Field(default_factory=list)
    chunks: list[Any] = Field(default_factory=list)
    error: Exception | None = None
    calls: list[list[BaseMessage]] = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else ""
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=text))])

    async def _astream(self, messages, stop=None, run_manager=None, **kwargs):
        self.calls.append(list(messages))
        for item in self.chunks:
            if isinstance(item, Exception):
                raise item
            yield ChatGenerationChunk(message=AIMessageChunk(content=item))


def make_openai_client(
    flagged: bool | list[bool] = False, embedding: list[float] | None = None
) -> MagicMock:
    """Fake ``openai.AsyncOpenAI`` with moderation and embedding endpoints."""
    client = MagicMock()
    flags = list(flagged) if isinstance(flagged, list) else None

    async def moderate(input: str, **kwargs):
        if flags is None:
            value = flagged
        else:
            value = flags.pop(0) if flags else False
        return SimpleNamespace(results=[SimpleNamespace(flagged=value)])

    client.moderations.create = AsyncMock(side_effect=moderate)
    client.embeddings.create = AsyncMock(
        return_value=SimpleNamespace(
            data=[SimpleNamespace(embedding=embedding or [0.1, 0.2, 0.3])]
        )
    )
    return client


def make_index(matches_by_namespace: dict[str, list[IndexMatch]] | None = None):
    """Fake vector index whose ``query`` returns canned matches per namespace."""
    matches_by_namespace = matches_by_namespace or {}
    index = MagicMock()

    async def query(vector, top_k, namespace):
        return list(matches_by_namespace.get(namespace, []))

    index.query = AsyncMock(side_effect=query)
    return index


def match(text: str | None, score: float) -> IndexMatch:
    metadata = {"text": text} if text is not None else {"source": "x"}
    return IndexMatch(id=f"doc-{score}", score=score, metadata=metadata)


@pytest.fixture()
def tokenizer() -> Tokenizer:
    return Tokenizer(encoding=WordEncoding())


@pytest.fixture()
def app_config() -> AppConfig:
    return AppConfig()


class Pipeline(SimpleNamespace):
    """Bundle of a service and the fakes behind it."""


@pytest.fixture()
def build_pipeline(tokenizer, app_config):
    """Factory building a ``DocsAssistantService`` over fakes.

    The rewrite model answers blank by default, which keeps the raw user
    turn as the search query.
    """

    def _build(
        *,
        flagged: bool | list[bool] = False,
        matches: dict[str, list[IndexMatch]] | None = None,
        guardrail_reply: str = "On topic.\nDECISION: ACCEPT",
        rewrite_replies: list[str] | None = None,
        rewrite_error: Exception | None = None,
        chunks: list[Any] | None = None,
        config: AppConfig | None = None,
    ) -> Pipeline:
        config = config or app_config
        openai_client = make_openai_client(flagged=flagged)
        index = make_index(matches)
        guardrail_llm = ScriptedChatModel(replies=[guardrail_reply])
        rewrite_llm = ScriptedChatModel(
            replies=list(rewrite_replies or []), error=rewrite_error
        )
        answer_llm = ScriptedChatModel(chunks=chunks if chunks is not None else ["Hi"])
        history = ChatHistoryStore(window=config.history.window)
        service = DocsAssistantService(
            config=config,
            tokenizer=tokenizer,
            moderation=ModerationGate(openai_client, config.moderation),
            rewriter=QueryRewriter(
                rewrite_llm,
                enabled=config.query_rewrite.enabled,
                compress_history=config.query_rewrite.compress_history,
                rewrite=config.query_rewrite.rewrite,
                target=config.query_rewrite.target,
            ),
            embedder=EmbeddingClient(openai_client, config.embedding),
            retriever=DocumentRetriever(index),
            guardrail=GuardrailGate(
                guardrail_llm,
                acceptance_criteria=config.guardrail.acceptance_criteria,
                include_history=config.guardrail.include_history,
                enabled=config.guardrail.enabled,
            ),
            streamer=CompletionStreamer(answer_llm),
            history=history,
        )
        return Pipeline(
            service=service,
            openai=openai_client,
            index=index,
            guardrail_llm=guardrail_llm,
            rewrite_llm=rewrite_llm,
            answer_llm=answer_llm,
            history=history,
        )

    return _build
