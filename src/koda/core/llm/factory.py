"""Chat model factories."""

from langchain_openai import ChatOpenAI

from koda.configs.config import AppConfig

GUARDRAIL_TEMPERATURE = 0.0
QUERY_REWRITE_TEMPERATURE = 0.0


def create_llm(config: AppConfig) -> ChatOpenAI:
    """Streaming answer model bounded to ``budget.max_response_tokens``."""
    return ChatOpenAI(
        base_url=config.openai.base_url,
        api_key=config.openai.api_key or "unused",
        model=config.llm.model_name,
        temperature=config.llm.temperature,
        max_tokens=config.budget.max_response_tokens,
        timeout=config.openai.timeout.total_seconds(),
        max_retries=config.openai.max_retries,
        streaming=True,
    )


def _helper_llm(
    config: AppConfig, model_name: str | None, temperature: float
) -> ChatOpenAI:
    return ChatOpenAI(
        base_url=config.openai.base_url,
        api_key=config.openai.api_key or "unused",
        model=model_name or config.llm.model_name,
        temperature=temperature,
        timeout=config.openai.timeout.total_seconds(),
        max_retries=config.openai.max_retries,
        streaming=False,
    )


def create_guardrail_llm(config: AppConfig) -> ChatOpenAI:
    """Deterministic evaluator model for the guardrail gate."""
    return _helper_llm(config, config.guardrail.model_name, GUARDRAIL_TEMPERATURE)


def create_query_rewrite_llm(config: AppConfig) -> ChatOpenAI:
    """Deterministic model for pre-retrieval query rewriting."""
    return _helper_llm(
        config, config.query_rewrite.model_name, QUERY_REWRITE_TEMPERATURE
    )
