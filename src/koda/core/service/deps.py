"""Factories wiring the assistant's long-lived collaborators.

Each ``get_*`` factory is a ``@singleton``: the first call builds the
object from ``get_app_config()`` (or the config passed in) and later
calls return the same instance.  Tests call ``<factory>.reset()`` to
start over.
"""

import openai

from koda.configs.config import AppConfig, get_app_config
from koda.core.embedding import EmbeddingClient
from koda.core.guardrail import GuardrailGate
from koda.core.llm import (
    CompletionStreamer,
    create_guardrail_llm,
    create_llm,
    create_query_rewrite_llm,
)
from koda.core.moderation import ModerationGate
from koda.core.query import QueryRewriter
from koda.core.retrieval import DocumentRetriever, VectorIndexClient
from koda.infra import singleton
from koda.infra.history import ChatHistoryStore
from koda.infra.tokens import Tokenizer

from .assistant import DocsAssistantService


@singleton
def get_openai_client(config: AppConfig | None = None) -> openai.AsyncOpenAI:
    """Shared SDK client for moderation and embeddings."""
    config = config or get_app_config()
    return openai.AsyncOpenAI(
        base_url=config.openai.base_url,
        api_key=config.openai.api_key or "unused",
        timeout=config.openai.timeout.total_seconds(),
        max_retries=config.openai.max_retries,
    )


@singleton
def get_history_store(config: AppConfig | None = None) -> ChatHistoryStore:
    config = config or get_app_config()
    return ChatHistoryStore(window=config.history.window)


@singleton
def get_docs_assistant_service(
    config: AppConfig | None = None,
) -> DocsAssistantService:
    """Create the singleton ``DocsAssistantService``."""
    config = config or get_app_config()
    client = get_openai_client(config)
    return DocsAssistantService(
        config=config,
        tokenizer=Tokenizer(config.budget.encoding),
        moderation=ModerationGate(client, config.moderation),
        rewriter=QueryRewriter(
            create_query_rewrite_llm(config),
            enabled=config.query_rewrite.enabled,
            compress_history=config.query_rewrite.compress_history,
            rewrite=config.query_rewrite.rewrite,
            target=config.query_rewrite.target,
        ),
        embedder=EmbeddingClient(client, config.embedding),
        retriever=DocumentRetriever(VectorIndexClient(config.vector_index)),
        guardrail=GuardrailGate(
            create_guardrail_llm(config),
            acceptance_criteria=config.guardrail.acceptance_criteria,
            include_history=config.guardrail.include_history,
            enabled=config.guardrail.enabled,
        ),
        streamer=CompletionStreamer(create_llm(config)),
        history=get_history_store(config),
    )
