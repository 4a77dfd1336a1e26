"""Application settings for Koda.

``get_app_config()`` builds a new ``AppConfig`` each time it is called, so
edits to ``configs/config.yaml`` or the environment are picked up by the
next caller.  Long-lived objects receive the config they were built with.

Sources, highest priority first: init kwargs, ``KODA_*`` environment
variables (``__`` separates nested fields, e.g.
``KODA_BUDGET__MAX_TOTAL_TOKENS``), the ``.env`` file, the static YAML
file, secret files, then field defaults.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .system import (
    BudgetConfig,
    EmbeddingConfig,
    GuardrailConfig,
    HistoryConfig,
    LLMConfig,
    LoggingConfig,
    ModerationConfig,
    OpenAIConfig,
    QueryRewriteConfig,
    VectorIndexConfig,
)
from .topics import DEFAULT_TOPICS, TopicProfile

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------

CONFIG_PY_PATH = Path(__file__).resolve()
PROJECT_ROOT = CONFIG_PY_PATH.parent.parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "configs"

STATIC_CONFIG_FILE = CONFIG_DIR / "config.yaml"

DOTENV_FILE_PATH = PROJECT_ROOT / ".env"
ENV_DELIMITER = "__"
ENV_PREFIX = "KODA_"

DEFAULT_ENCODING = "utf-8"


class AppConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=DOTENV_FILE_PATH,
        env_file_encoding=DEFAULT_ENCODING,
        env_nested_delimiter=ENV_DELIMITER,
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
        yaml_file=STATIC_CONFIG_FILE,
        yaml_file_encoding=DEFAULT_ENCODING,
    )

    openai: OpenAIConfig = Field(
        default_factory=OpenAIConfig,
        description="Shared OpenAI client settings",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="Answer generation model settings",
    )

    guardrail: GuardrailConfig = Field(
        default_factory=GuardrailConfig,
        description="Topical relevance gate settings",
    )

    moderation: ModerationConfig = Field(
        default_factory=ModerationConfig,
        description="Content moderation gate settings",
    )

    query_rewrite: QueryRewriteConfig = Field(
        default_factory=QueryRewriteConfig,
        description="Pre-retrieval query rewriting settings",
    )

    embedding: EmbeddingConfig = Field(
        default_factory=EmbeddingConfig,
        description="Query embedding settings",
    )

    vector_index: VectorIndexConfig = Field(
        default_factory=VectorIndexConfig,
        description="Vector index connection settings",
    )

    budget: BudgetConfig = Field(
        default_factory=BudgetConfig,
        description="Token budgets for prompt assembly",
    )

    history: HistoryConfig = Field(
        default_factory=HistoryConfig,
        description="Conversation history settings",
    )

    topics: list[TopicProfile] = Field(
        default_factory=lambda: list(DEFAULT_TOPICS),
        description="Supported documentation topics",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging settings",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def get_app_config() -> AppConfig:
    """Get the application configuration (re-read on every call)."""
    return AppConfig()
