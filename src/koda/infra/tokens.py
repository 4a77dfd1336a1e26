"""Token counting against the answer model's encoding.

Counts follow the OpenAI chat accounting: every message is framed as
``<|start|>{role}\\n{content}<|end|>\\n`` and every reply is primed with
``<|start|>assistant<|message|>``.  The overhead constants below must
match the target model; a mismatch is a calibration bug, not a runtime
error.
"""

from collections.abc import Iterable
from typing import Protocol

import tiktoken
from langchain_core.messages import BaseMessage

DEFAULT_ENCODING = "cl100k_base"

MESSAGE_OVERHEAD_TOKENS = 4
"""Role/delimiter framing added to every message."""

REPLY_PRIMING_TOKENS = 3
"""Added once per prompt for the assistant reply priming."""

SNIPPET_SEPARATOR_TOKENS = 2
"""Newline + ``---`` separator appended after each context snippet."""

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

# langchain message ``type`` -> OpenAI wire role
_ROLE_BY_MESSAGE_TYPE = {
    "system": ROLE_SYSTEM,
    "human": ROLE_USER,
    "ai": ROLE_ASSISTANT,
}


class Encoding(Protocol):
    def encode_ordinary(self, text: str) -> list[int]: ...


def role_of(message: BaseMessage) -> str:
    """Return the OpenAI wire role for *message*."""
    return _ROLE_BY_MESSAGE_TYPE.get(message.type, message.type)


def _content_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    # Multi-part content: count the text parts only.
    return "".join(
        part if isinstance(part, str) else str(part.get("text", ""))
        for part in content
    )


class Tokenizer:
    """Stateless token counter bound to one encoding for its lifetime."""

    def __init__(
        self,
        encoding_name: str = DEFAULT_ENCODING,
        encoding: Encoding | None = None,
    ) -> None:
        self.encoding_name = encoding_name
        self._encoding = encoding or tiktoken.get_encoding(encoding_name)

    def count(self, text: str) -> int:
        """Return the number of tokens *text* encodes to."""
        if not text:
            return 0
        return len(self._encoding.encode_ordinary(text))

    def count_message(self, message: BaseMessage) -> int:
        return (
            MESSAGE_OVERHEAD_TOKENS
            + self.count(role_of(message))
            + self.count(_content_text(message))
        )

    def count_messages(self, messages: Iterable[BaseMessage]) -> int:
        """Return the prompt cost of *messages*, including reply priming."""
        return REPLY_PRIMING_TOKENS + sum(self.count_message(m) for m in messages)
