"""Vector index client and document retriever.

The index speaks the Pinecone REST query contract::

    POST <endpoint>/query
    {"vector": [...], "topK": 10, "namespace": "flow", "includeMetadata": true}

    -> {"matches": [{"id": "...", "score": 0.83, "metadata": {"text": "..."}}]}

Matches without a ``text`` metadata field are kept by the client as empty
strings and dropped by the retriever, never raised as errors.
"""

from __future__ import annotations

import asyncio
import logging
import time

import httpx
from pydantic import BaseModel, Field

from koda.configs.system import VectorIndexConfig
from koda.configs.topics import GENERAL_NAMESPACE, TopicProfile
from koda.core.service.metrics import (
    RETRIEVAL_LATENCY_SECONDS,
    RETRIEVAL_SNIPPETS_RETURNED,
)
from koda.core.service.models import Snippet
from koda.infra.telemetry import (
    ATTR_RETRIEVE_NAMESPACES,
    ATTR_RETRIEVE_RESULT_COUNT,
    ATTR_RETRIEVE_THRESHOLD,
    ATTR_RETRIEVE_TOP_K,
    SPAN_RETRIEVE,
    tracer,
)

logger = logging.getLogger(__name__)

QUERY_PATH = "/query"
API_KEY_HEADER = "Api-Key"
METADATA_TEXT_KEY = "text"


class IndexMatch(BaseModel):
    """One match of a vector index query."""

    id: str = ""
    score: float = 0.0
    metadata: dict[str, object] | None = None

    @property
    def text(self) -> str:
        if not self.metadata:
            return ""
        value = self.metadata.get(METADATA_TEXT_KEY)
        return value if isinstance(value, str) else ""


class QueryResponse(BaseModel):
    matches: list[IndexMatch] = Field(default_factory=list)


class VectorIndexClient:
    """Async HTTP client for a Pinecone-compatible index.

    The underlying ``httpx.AsyncClient`` is long-lived and safe to share
    between concurrent turns.
    """

    def __init__(
        self,
        config: VectorIndexConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._http = http_client or httpx.AsyncClient(
            base_url=config.endpoint,
            timeout=config.timeout.total_seconds(),
            headers={
                API_KEY_HEADER: config.api_key,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )

    async def query(
        self,
        vector: list[float],
        top_k: int,
        namespace: str,
    ) -> list[IndexMatch]:
        """Return the *top_k* nearest matches in *namespace*."""
        logger.debug("Querying namespace %r (top_k=%d)", namespace, top_k)
        response = await self._http.post(
            QUERY_PATH,
            json={
                "vector": vector,
                "topK": top_k,
                "namespace": namespace,
                "includeMetadata": True,
            },
        )
        response.raise_for_status()
        return QueryResponse.model_validate(response.json()).matches

    async def aclose(self) -> None:
        await self._http.aclose()


class DocumentRetriever:
    """Ranked, relevance-thresholded snippets for a topic."""

    def __init__(self, index: VectorIndexClient) -> None:
        self._index = index

    @staticmethod
    def namespaces_for(profile: TopicProfile) -> list[str]:
        namespaces = [profile.namespace]
        if profile.include_general and profile.namespace != GENERAL_NAMESPACE:
            namespaces.append(GENERAL_NAMESPACE)
        return namespaces

    async def retrieve(
        self, embedding: list[float], profile: TopicProfile
    ) -> list[Snippet]:
        """Return snippets ordered by descending relevance.

        Only matches scoring at least ``profile.similarity_threshold``
        (when set) and carrying non-blank text are returned.
        """
        namespaces = self.namespaces_for(profile)
        with tracer.start_as_current_span(SPAN_RETRIEVE) as span:
            span.set_attribute(ATTR_RETRIEVE_NAMESPACES, namespaces)
            span.set_attribute(ATTR_RETRIEVE_TOP_K, profile.top_k)
            if profile.similarity_threshold is not None:
                span.set_attribute(
                    ATTR_RETRIEVE_THRESHOLD, profile.similarity_threshold
                )

            start = time.monotonic()
            results = await asyncio.gather(
                *(self._index.query(embedding, profile.top_k, ns) for ns in namespaces)
            )
            RETRIEVAL_LATENCY_SECONDS.observe(time.monotonic() - start)

            matches = sorted(
                (m for batch in results for m in batch),
                key=lambda m: m.score,
                reverse=True,
            )[: profile.top_k]

            threshold = profile.similarity_threshold
            snippets = [
                Snippet(text=m.text, relevance_score=m.score)
                for m in matches
                if (threshold is None or m.score >= threshold) and m.text.strip()
            ]

            RETRIEVAL_SNIPPETS_RETURNED.observe(len(snippets))
            span.set_attribute(ATTR_RETRIEVE_RESULT_COUNT, len(snippets))
            logger.info(
                "Retrieved %d snippets for topic %s (threshold=%s)",
                len(snippets),
                profile.value,
                threshold,
            )
            return snippets
