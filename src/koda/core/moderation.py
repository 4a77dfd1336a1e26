"""Content moderation gate backed by the OpenAI moderation endpoint."""

import asyncio
import logging
from collections.abc import Sequence

import openai
from langchain_core.messages import BaseMessage

from koda.configs.system import ModerationConfig
from koda.core.service.metrics import MODERATION_FLAGGED_TOTAL
from koda.infra.telemetry import SPAN_MODERATION, tracer

logger = logging.getLogger(__name__)


class ModerationGate:
    """Binary safe/unsafe classification per message.

    ``check_all`` fans out one request per message and reports unsafe if
    any of them is flagged.  Upstream errors propagate to the caller.
    """

    def __init__(self, client: openai.AsyncOpenAI, config: ModerationConfig) -> None:
        self._client = client
        self._config = config

    async def check(self, message: BaseMessage | str) -> bool:
        """Return ``True`` when *message* is safe."""
        if not self._config.enabled:
            return True

        text = message if isinstance(message, str) else str(message.content)
        kwargs = {"model": self._config.model_name} if self._config.model_name else {}
        response = await self._client.moderations.create(input=text, **kwargs)

        flagged = any(result.flagged for result in response.results)
        if flagged:
            MODERATION_FLAGGED_TOTAL.inc()
            logger.info("Moderation flagged a message (%d chars)", len(text))
        return not flagged

    async def check_all(self, messages: Sequence[BaseMessage | str]) -> bool:
        """Return ``True`` only when every message is safe."""
        if not self._config.enabled or not messages:
            return True
        with tracer.start_as_current_span(SPAN_MODERATION):
            results = await asyncio.gather(*(self.check(m) for m in messages))
        return all(results)
