"""
Retrieval Engine

Course-scoped similarity search over indexed material chunks:
- Query text = exam type + included topics, embedded in query mode
- Search is always filtered on course_id
- Results become RankedExcerpts (content bounded to 500 chars) for the prompt

The search is an idempotent read, so retryable upstream failures are retried
a couple of times with a short backoff before giving up.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from embeddings.generator import EmbeddingClient
from embeddings.qdrant_manager import SearchHit, VectorIndex
from services.errors import UpstreamServiceError

log = logging.getLogger(__name__)


# ─── Constants ────────────────────────────────────────────────────────────────

DEFAULT_TOP_K = 12
EXCERPT_CHARS = 500
SEARCH_RETRIES = 2           # extra attempts after the first
RETRY_BACKOFF_SECONDS = 0.5


def excerpt_id(material_id: int, chunk_index: int) -> str:
    """Stable id the model cites: one per (material, chunk)."""
    return f"m{material_id}c{chunk_index}"


@dataclass
class RankedExcerpt:
    id: str
    material_id: int
    chunk_index: int
    type: Optional[str]
    title: Optional[str]
    year: Optional[int]
    weightings: Optional[Dict[str, Any]]
    style_notes: Optional[str]
    excerpt: str
    score: float

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "RankedExcerpt":
        payload = hit.payload
        material_id = int(payload.get("material_id", 0))
        chunk_index = int(payload.get("chunk_index", 0))
        return cls(
            id=excerpt_id(material_id, chunk_index),
            material_id=material_id,
            chunk_index=chunk_index,
            type=payload.get("type"),
            title=payload.get("title"),
            year=payload.get("year"),
            weightings=payload.get("weightings"),
            style_notes=payload.get("style_notes"),
            excerpt=(payload.get("content") or "")[:EXCERPT_CHARS],
            score=round(float(hit.score), 4),
        )

    def to_context(self) -> Dict[str, Any]:
        """Shape sent to the model as one context.rag item."""
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "year": self.year,
            "weightings": self.weightings,
            "style_notes": self.style_notes,
            "excerpt": self.excerpt,
            "relevance_score": self.score,
        }


class RetrievalService:
    def __init__(
        self,
        embedder: EmbeddingClient,
        index: VectorIndex,
        top_k: int = DEFAULT_TOP_K,
        retries: int = SEARCH_RETRIES,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    ):
        self.embedder = embedder
        self.index = index
        self.top_k = top_k
        self.retries = retries
        self.backoff_seconds = backoff_seconds

    @staticmethod
    def build_query(exam_type: str, include_topics: Sequence[str]) -> str:
        parts = [exam_type.strip()] + [t.strip() for t in include_topics if t and t.strip()]
        return " ".join(p for p in parts if p)

    async def retrieve(
        self,
        course_id: int,
        exam_type: str,
        include_topics: Sequence[str],
        top_k: Optional[int] = None,
        type_filter: Optional[str] = None,
    ) -> List[RankedExcerpt]:
        """
        Top-k excerpts for a paper request, ranked by descending similarity.
        Returns [] when the vector index is disabled.
        """
        if not self.index.enabled:
            log.info("Vector index disabled; generating course %s without retrieved context", course_id)
            return []

        limit = top_k or self.top_k
        query = self.build_query(exam_type, include_topics)
        if not query:
            return []

        attempt = 0
        while True:
            try:
                vector = await self.embedder.embed_query(query)
                hits = await self.index.search(course_id, vector, limit, type_filter=type_filter)
                break
            except UpstreamServiceError as e:
                if not e.retryable or attempt >= self.retries:
                    log.error("Retrieval failed for course %s after %s attempts: %s", course_id, attempt + 1, e)
                    raise
                attempt += 1
                log.warning("Retrieval attempt %s failed for course %s: %s; retrying", attempt, course_id, e)
                await asyncio.sleep(self.backoff_seconds * attempt)

        excerpts: List[RankedExcerpt] = []
        seen = set()
        for hit in sorted(hits, key=lambda h: h.score, reverse=True):
            excerpt = RankedExcerpt.from_hit(hit)
            if excerpt.id in seen:
                continue
            seen.add(excerpt.id)
            excerpts.append(excerpt)

        log.info("Retrieved %s excerpts for course %s (query=%r)", len(excerpts), course_id, query)
        return excerpts
