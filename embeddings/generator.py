"""
Embedding Client
Converts text to vectors through a Jina-compatible /embeddings HTTP API.

Queries and passages are embedded with different task modes:
  - "retrieval.passage"  for chunks written into the index
  - "retrieval.query"    for search queries
The mode is a required argument.

Failures are raised as EmbeddingServiceError; no placeholder vectors are
ever returned.
"""

import logging
from enum import Enum
from typing import List, Optional, Sequence

import httpx

from services.errors import EmbeddingServiceError

log = logging.getLogger(__name__)


class EmbeddingMode(str, Enum):
    QUERY = "retrieval.query"
    PASSAGE = "retrieval.passage"


class EmbeddingClient:
    """
    Async client for the embedding service.

    Model: jina-embeddings-v3 (1024-dim) by default; any service exposing the
    same request/response shape can be configured.
    """

    DEFAULT_MODEL = "jina-embeddings-v3"
    EMBEDDING_DIM = 1024
    MAX_INPUT_CHARS = 6000   # conservative cap below the model's token limit
    BATCH_SIZE = 64

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_MODEL,
        dimension: int = EMBEDDING_DIM,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Service root, e.g. https://api.jina.ai/v1
            api_key: Bearer token for the service
            model_name: Embedding model name
            dimension: Expected vector length; responses are checked against it
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.model_name = model_name
        self.dimension = dimension
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def embed(self, texts: Sequence[str], mode: EmbeddingMode) -> List[List[float]]:
        """
        Embed a batch of texts in the given mode. Output order matches input order.

        Raises:
            ValueError: if any text is empty
            EmbeddingServiceError: on transport errors, timeouts, bad status or bad shape
        """
        if not texts:
            return []
        prepared = []
        for text in texts:
            if not text or not text.strip():
                raise ValueError("Cannot embed empty text")
            prepared.append(text[: self.MAX_INPUT_CHARS])

        vectors: List[List[float]] = []
        for start in range(0, len(prepared), self.BATCH_SIZE):
            batch = prepared[start:start + self.BATCH_SIZE]
            vectors.extend(await self._embed_batch(batch, mode))
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Convenience wrapper: one query-mode vector."""
        return (await self.embed([text], EmbeddingMode.QUERY))[0]

    async def embed_passages(self, texts: Sequence[str]) -> List[List[float]]:
        """Convenience wrapper: passage-mode vectors for indexing."""
        return await self.embed(texts, EmbeddingMode.PASSAGE)

    async def _embed_batch(self, batch: List[str], mode: EmbeddingMode) -> List[List[float]]:
        payload = {
            "model": self.model_name,
            "input": batch,
            "task": mode.value,
            "encoding_format": "float",
        }
        try:
            response = await self._client.post("/embeddings", json=payload)
        except httpx.TimeoutException as e:
            log.warning("Embedding request timed out (batch=%s, mode=%s)", len(batch), mode.value)
            raise EmbeddingServiceError(f"Embedding request timed out: {e}") from e
        except httpx.HTTPError as e:
            log.warning("Embedding request failed: %s", e)
            raise EmbeddingServiceError(f"Embedding request failed: {e}") from e

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code == 429
            log.warning("Embedding service returned %s: %s", response.status_code, response.text[:200])
            raise EmbeddingServiceError(
                f"Embedding service returned HTTP {response.status_code}",
                retryable=retryable,
            )

        try:
            data = response.json()["data"]
            # The API may return items out of order; "index" is authoritative
            items = sorted(data, key=lambda item: item.get("index", 0))
            vectors = [list(map(float, item["embedding"])) for item in items]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingServiceError(f"Malformed embedding response: {e}", retryable=False) from e

        if len(vectors) != len(batch):
            raise EmbeddingServiceError(
                f"Embedding count mismatch: sent {len(batch)}, got {len(vectors)}",
                retryable=False,
            )
        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingServiceError(
                    f"Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}",
                    retryable=False,
                )
        return vectors
