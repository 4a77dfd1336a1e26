"""Domain models for the assistant pipeline.

Request-scoped values (context, snippets, verdicts) are dataclasses;
stream events are pydantic models so callers can serialize them as-is.
"""

from dataclasses import dataclass, field
from typing import Literal

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field

from koda.configs.topics import TopicProfile

# ---------------------------------------------------------------------------
# Event type constants
# ---------------------------------------------------------------------------

EVENT_TYPE_CONTENT = "content"
EVENT_TYPE_REJECTED = "rejected"

REJECT_REASON_MODERATION = "moderation"
REJECT_REASON_GUARDRAIL = "guardrail"

VALID_EVENT_TYPES = frozenset({EVENT_TYPE_CONTENT, EVENT_TYPE_REJECTED})


# ---------------------------------------------------------------------------
# Request-scoped values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Snippet:
    """A retrieved unit of documentation text."""

    text: str
    relevance_score: float


@dataclass(frozen=True)
class GuardrailVerdict:
    """Outcome of the guardrail evaluation for one question.

    ``anomaly`` is set when the verdict was not read from a well-formed
    evaluator reply (missing marker or evaluator error).
    """

    accepted: bool
    rationale: str | None = None
    anomaly: bool = False


@dataclass
class ChatContext:
    """Per-request context threaded through the pipeline.

    Carries the topic profile explicitly so nothing about the active
    topic lives on the (shared) service instance.
    """

    chat_id: str
    query: str
    topic: TopicProfile
    history: list[BaseMessage] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


class ContentEvent(BaseModel):
    """Incremental fragment of the assistant reply."""

    type: Literal["content"] = "content"
    content: str = Field(description="Text fragment")


class RejectedEvent(BaseModel):
    """Policy failure reported to the user as the assistant's reply."""

    type: Literal["rejected"] = "rejected"
    reason: Literal["moderation", "guardrail"] = Field(
        description="Which gate rejected the turn"
    )
    message: str = Field(description="User-facing explanation")


StreamEvent = ContentEvent | RejectedEvent
