"""Session-scoped conversation history keyed by chat id.

Each chat gets its own ``ListChatMessageHistory``, a LangChain
``BaseChatMessageHistory`` over a plain list.  Nothing is persisted; a
process restart forgets every conversation.
"""

import logging
from collections.abc import Sequence

from langchain_core.chat_history import BaseChatMessageHistory
from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)


class ListChatMessageHistory(BaseChatMessageHistory):
    """In-process chat message history (LangChain compatible)."""

    def __init__(self) -> None:
        super().__init__()
        self.messages: list[BaseMessage] = []

    def add_messages(self, messages: Sequence[BaseMessage]) -> None:
        self.messages.extend(messages)

    async def aget_messages(self) -> list[BaseMessage]:
        return list(self.messages)

    async def aadd_messages(self, messages: Sequence[BaseMessage]) -> None:
        self.add_messages(messages)

    def clear(self) -> None:
        self.messages = []

    async def aclear(self) -> None:
        self.clear()


class ChatHistoryStore:
    """In-memory chat histories with a bounded read window."""

    def __init__(self, window: int | None = None) -> None:
        self._window = window
        self._histories: dict[str, ListChatMessageHistory] = {}

    def _history(self, chat_id: str) -> ListChatMessageHistory:
        history = self._histories.get(chat_id)
        if history is None:
            history = self._histories[chat_id] = ListChatMessageHistory()
        return history

    async def load(self, chat_id: str) -> list[BaseMessage]:
        """Return the most recent messages for *chat_id*, oldest-first."""
        history = self._histories.get(chat_id)
        if history is None:
            return []
        messages = await history.aget_messages()
        if self._window:
            messages = messages[-self._window :]
        logger.debug("Loaded %d messages for chat %s", len(messages), chat_id)
        return messages

    async def append(self, chat_id: str, messages: list[BaseMessage]) -> None:
        await self._history(chat_id).aadd_messages(messages)

    async def clear(self, chat_id: str) -> None:
        """Forget every message of *chat_id*."""
        history = self._histories.pop(chat_id, None)
        if history is not None:
            await history.aclear()
            logger.info("Cleared history for chat %s", chat_id)

    def __contains__(self, chat_id: str) -> bool:
        return chat_id in self._histories
