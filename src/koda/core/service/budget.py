"""Token budgeting for retrieved context and conversation history."""

import logging
from collections.abc import Sequence

from langchain_core.messages import BaseMessage

from koda.infra.tokens import SNIPPET_SEPARATOR_TOKENS, Tokenizer

from .metrics import HISTORY_TRIMMED_TOTAL, PROMPT_TOKENS
from .models import Snippet

logger = logging.getLogger(__name__)

SNIPPET_SEPARATOR = "\n---\n"


class PromptBudgetExceeded(Exception):
    """System/context messages plus the current question exceed the budget."""


def build_context(
    snippets: Sequence[Snippet],
    tokenizer: Tokenizer,
    max_context_tokens: int,
) -> str:
    """Concatenate the longest prefix of *snippets* that fits the ceiling.

    Snippets are taken in the given (relevance) order; the first one that
    would overflow ends the context, smaller later snippets are not
    considered.  Each included snippet is followed by a separator.
    """
    token_count = 0
    parts: list[str] = []
    for snippet in snippets:
        token_count += tokenizer.count(snippet.text) + SNIPPET_SEPARATOR_TOKENS
        if token_count > max_context_tokens:
            break
        parts.append(snippet.text)
        parts.append(SNIPPET_SEPARATOR)

    if len(parts) // 2 < len(snippets):
        logger.debug(
            "Context budget kept %d of %d snippets (max_context_tokens=%d)",
            len(parts) // 2,
            len(snippets),
            max_context_tokens,
        )
    return "".join(parts)


def cap_messages(
    system_messages: Sequence[BaseMessage],
    history: Sequence[BaseMessage],
    tokenizer: Tokenizer,
    max_total_tokens: int,
    max_response_tokens: int,
) -> list[BaseMessage]:
    """Drop the oldest history messages until the prompt fits.

    The prompt must leave ``max_response_tokens`` of ``max_total_tokens``
    free for the reply.  The last history message is the current user
    question and is never removed; if it alone does not fit next to the
    system messages, ``PromptBudgetExceeded`` is raised.
    """
    available = max_total_tokens - max_response_tokens
    capped = list(history)
    tokens = tokenizer.count_messages([*system_messages, *capped])

    removed = 0
    while tokens > available:
        if len(capped) <= 1:
            raise PromptBudgetExceeded(
                f"Prompt requires {tokens} tokens with only the user question "
                f"left, but {available} are available "
                f"(max_total_tokens={max_total_tokens}, "
                f"max_response_tokens={max_response_tokens})"
            )
        capped.pop(0)
        removed += 1
        tokens = tokenizer.count_messages([*system_messages, *capped])

    if removed:
        HISTORY_TRIMMED_TOTAL.inc()
        logger.warning(
            "Trimmed %d history message(s) to fit context budget "
            "(available=%d, prompt=%d)",
            removed,
            available,
            tokens,
        )
    PROMPT_TOKENS.observe(tokens)
    return [*system_messages, *capped]
