"""Supported documentation topics and their retrieval profiles.

Each topic selects a namespace of the vector index and parameterizes the
system prompt.  Profiles are plain value objects passed explicitly down
the call chain, so concurrent turns for different topics never share
state.
"""

from pydantic import BaseModel, ConfigDict, Field

GENERAL_NAMESPACE = ""


class UnsupportedTopicError(ValueError):
    """Raised when a chat turn names a topic outside the supported set."""

    def __init__(self, topic: str | None, supported: list[str]) -> None:
        super().__init__(
            f"Unsupported topic {topic!r}; expected one of {supported}"
        )
        self.topic = topic
        self.supported = supported


class TopicProfile(BaseModel):
    """Retrieval and prompt configuration for one documentation topic."""

    model_config = ConfigDict(frozen=True)

    value: str = Field(description="Selector sent by clients, e.g. 'flow'")
    label: str = Field(description="Human-readable name used in prompts")
    namespace: str = Field(description="Vector index namespace to query")
    top_k: int = Field(default=10, ge=1, description="Matches to keep")
    similarity_threshold: float | None = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Minimum relevance score (None disables filtering)",
    )
    include_general: bool = Field(
        default=True,
        description="Also query the catch-all namespace for shared docs",
    )


DEFAULT_TOPICS: list[TopicProfile] = [
    TopicProfile(value="flow", label="Flow", namespace="flow"),
    TopicProfile(
        value="hilla-react", label="Hilla with React", namespace="hilla-react"
    ),
    TopicProfile(value="hilla-lit", label="Hilla with Lit", namespace="hilla-lit"),
]


def resolve_topic(topic: str | None, profiles: list[TopicProfile]) -> TopicProfile:
    """Return the profile for *topic*.

    Unknown or missing topics fail closed with ``UnsupportedTopicError``.
    """
    for profile in profiles:
        if profile.value == topic:
            return profile
    raise UnsupportedTopicError(topic, [p.value for p in profiles])
