from datetime import timedelta

from pydantic import BaseModel, Field

from .prompts import (
    DEFAULT_ACCEPTANCE_CRITERIA,
    DEFAULT_GUARDRAIL_FAILURE_RESPONSE,
    DEFAULT_MODERATION_FAILURE_RESPONSE,
)


class OpenAIConfig(BaseModel):
    """Connection settings shared by every OpenAI-compatible client."""

    api_key: str = Field(default="", description="OpenAI API key")
    base_url: str | None = Field(
        default=None,
        description="Override for OpenAI-compatible servers (None = api.openai.com)",
    )
    timeout: timedelta = Field(
        default=timedelta(seconds=45),
        description="Response timeout for every outbound model call",
    )
    max_retries: int = Field(
        default=0,
        description="SDK-level retries; the pipeline itself never retries",
    )


class LLMConfig(BaseModel):
    """Answer generation model settings."""

    model_name: str = Field(default="gpt-3.5-turbo", description="Chat model")
    temperature: float = Field(
        default=0.7, description="Sampling temperature for answers"
    )


class GuardrailConfig(BaseModel):
    """LLM-based topical relevance gate."""

    enabled: bool = Field(default=True, description="Enable the guardrail gate")
    model_name: str | None = Field(
        default=None,
        description="Evaluator model (None = same model as answers)",
    )
    include_history: bool = Field(
        default=True,
        description="Render prior turns into the evaluator prompt",
    )
    acceptance_criteria: str = Field(
        default=DEFAULT_ACCEPTANCE_CRITERIA,
        description="Plain-language description of acceptable questions",
    )
    failure_response: str = Field(
        default=DEFAULT_GUARDRAIL_FAILURE_RESPONSE,
        description="Reply sent to the user when a question is rejected",
    )


class ModerationConfig(BaseModel):
    """Content moderation gate."""

    enabled: bool = Field(default=True, description="Enable moderation")
    model_name: str | None = Field(
        default=None, description="Moderation model (None = provider default)"
    )
    check_history: bool = Field(
        default=False,
        description="Moderate the whole working history instead of the new turn only",
    )
    failure_response: str = Field(
        default=DEFAULT_MODERATION_FAILURE_RESPONSE,
        description="Reply sent to the user when content is flagged",
    )


class QueryRewriteConfig(BaseModel):
    """Pre-retrieval query transformation.

    ``compress_history`` folds prior turns into a standalone query;
    ``rewrite`` then tightens that query for vector search.  Both run on
    a temperature-0 model and fall back to the raw user turn on error.
    """

    enabled: bool = Field(default=True, description="Enable query rewriting")
    model_name: str | None = Field(
        default=None,
        description="Rewrite model (None = same model as answers)",
    )
    compress_history: bool = Field(
        default=True,
        description="Fold prior turns into a standalone query",
    )
    rewrite: bool = Field(
        default=True,
        description="Rewrite the query for vector search",
    )
    target: str = Field(
        default="vector store",
        description="Search target named in the rewrite prompt",
    )


class EmbeddingConfig(BaseModel):
    """Query embedding settings."""

    model_name: str = Field(
        default="text-embedding-ada-002", description="Embedding model"
    )


class VectorIndexConfig(BaseModel):
    """Pinecone-compatible vector index."""

    endpoint: str = Field(
        default="http://localhost:5080",
        description="Index base URL; queries are sent to <endpoint>/query",
    )
    api_key: str = Field(default="", description="Index API key")
    timeout: timedelta = Field(
        default=timedelta(seconds=15), description="Query timeout"
    )


class BudgetConfig(BaseModel):
    """Token ceilings for prompt assembly."""

    encoding: str = Field(
        default="cl100k_base", description="tiktoken encoding used for counting"
    )
    max_total_tokens: int = Field(
        default=4096, description="Context window of the answer model"
    )
    max_response_tokens: int = Field(
        default=1024, description="Tokens reserved for the generated reply"
    )
    max_context_tokens: int = Field(
        default=1536, description="Ceiling for retrieved documentation"
    )
    style_directives: bool = Field(
        default=True,
        description="Append the fixed formatting rules message to the prompt",
    )


class HistoryConfig(BaseModel):
    """In-memory conversation history."""

    window: int = Field(
        default=20, description="Most recent messages loaded per request"
    )


class LoggingConfig(BaseModel):
    """Root logger configuration."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(
        default=True, description="Emit JSON lines instead of plain text"
    )
