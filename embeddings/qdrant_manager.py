"""
Qdrant Vector Index
Stores chunk embeddings of course materials, partitioned by course_id.

One collection (course_materials); each point is one chunk of one material.
Point ids are derived from (material_id, chunk_index) so re-indexing the
same material produces the same ids.

When the vector subsystem is disabled, NullVectorIndex is used instead:
writes are no-ops and searches return nothing.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance, FieldCondition, Filter, FilterSelector, MatchAny, MatchValue,
    PayloadSchemaType, PointStruct, VectorParams,
)

from services.errors import VectorIndexError

if TYPE_CHECKING:
    from ingestion.chunker import TextChunk

log = logging.getLogger(__name__)

# Fixed namespace so point ids are stable across processes
POINT_NAMESPACE = uuid.UUID("6f1c3a52-8d0e-4b7a-9a51-2b1f0c8e7d44")

_QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException, httpx.HTTPError, asyncio.TimeoutError)


def chunk_point_id(material_id: int, chunk_index: int) -> str:
    """Deterministic point id for one chunk of one material."""
    return str(uuid.uuid5(POINT_NAMESPACE, f"material:{material_id}:chunk:{chunk_index}"))


@dataclass
class SearchHit:
    """One scored point returned by a search."""
    point_id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def material_id(self) -> Optional[int]:
        return self.payload.get("material_id")

    @property
    def course_id(self) -> Optional[int]:
        return self.payload.get("course_id")


class VectorIndex(ABC):
    """Contract shared by the Qdrant implementation and the disabled null object."""

    enabled: bool = True

    @abstractmethod
    async def ensure_collection(self) -> None: ...

    @abstractmethod
    async def upsert(
        self,
        material_id: int,
        course_id: int,
        chunks: Sequence["TextChunk"],
        vectors: Sequence[Sequence[float]],
        payload: Dict[str, Any],
    ) -> int: ...

    @abstractmethod
    async def search(
        self,
        course_id: int,
        query_vector: Sequence[float],
        top_k: int,
        type_filter: Optional[str] = None,
    ) -> List[SearchHit]: ...

    @abstractmethod
    async def delete_material(self, material_id: int) -> None: ...

    @abstractmethod
    async def delete_materials(self, material_ids: Sequence[int]) -> None: ...

    @abstractmethod
    async def delete_course(self, course_id: int) -> None: ...

    @abstractmethod
    async def list_material_ids(self, course_id: Optional[int] = None) -> Set[int]: ...

    @abstractmethod
    async def count(self, material_id: Optional[int] = None, course_id: Optional[int] = None) -> int: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None


class QdrantVectorIndex(VectorIndex):
    """
    Manages the course_materials collection.

    Payload per point:
        material_id, course_id, type, title, description, year, weightings,
        style_notes, content (chunk text), chunk_index, total_chunks,
        start_index, end_index, chunk_length
    """

    COLLECTION_NAME = "course_materials"
    SCROLL_PAGE_SIZE = 256
    PAYLOAD_INDEXES = [
        ("course_id", PayloadSchemaType.INTEGER),
        ("material_id", PayloadSchemaType.INTEGER),
        ("type", PayloadSchemaType.KEYWORD),
    ]

    def __init__(
        self,
        client: AsyncQdrantClient,
        dimension: int,
        collection_name: str = COLLECTION_NAME,
    ):
        self.client = client
        self.dimension = dimension
        self.collection_name = collection_name

    @classmethod
    def from_url(
        cls,
        url: str,
        dimension: int,
        api_key: Optional[str] = None,
        collection_name: str = COLLECTION_NAME,
        timeout: float = 60.0,
    ) -> "QdrantVectorIndex":
        client = AsyncQdrantClient(url=url, api_key=api_key, timeout=int(timeout))
        return cls(client, dimension=dimension, collection_name=collection_name)

    async def close(self) -> None:
        await self.client.close()

    # ─── Collection bootstrap ──────────────────────────────────────────────────

    async def ensure_collection(self) -> None:
        """Create the collection and its payload indexes if missing."""
        try:
            if await self.client.collection_exists(self.collection_name):
                return
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
            )
            for field_name, schema in self.PAYLOAD_INDEXES:
                await self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=schema,
                )
            log.info("Created Qdrant collection %s (dim=%s)", self.collection_name, self.dimension)
        except _QDRANT_ERRORS as e:
            raise VectorIndexError(f"Could not ensure collection {self.collection_name}: {e}") from e

    async def ping(self) -> bool:
        try:
            await self.client.get_collections()
            return True
        except _QDRANT_ERRORS as e:
            log.warning("Qdrant ping failed: %s", e)
            return False

    # ─── Writes ────────────────────────────────────────────────────────────────

    async def upsert(
        self,
        material_id: int,
        course_id: int,
        chunks: Sequence["TextChunk"],
        vectors: Sequence[Sequence[float]],
        payload: Dict[str, Any],
    ) -> int:
        """
        Replace every point of material_id with the given chunks.

        Old points are deleted first, then the new set is written in a single
        upsert. If the second call fails the material has no points and is
        picked up as "missing" by reconciliation.

        Returns:
            Number of points written
        """
        if len(chunks) != len(vectors):
            raise ValueError("chunks and vectors must have same length")
        for vector in vectors:
            if len(vector) != self.dimension:
                raise ValueError(f"vector dimension {len(vector)} != collection dimension {self.dimension}")

        total = len(chunks)
        points = [
            PointStruct(
                id=chunk_point_id(material_id, chunk.index),
                vector=list(vector),
                payload={
                    **payload,
                    "material_id": material_id,
                    "course_id": course_id,
                    "content": chunk.text,
                    "chunk_index": chunk.index,
                    "total_chunks": total,
                    "start_index": chunk.start,
                    "end_index": chunk.end,
                    "chunk_length": len(chunk.text),
                },
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        try:
            await self.ensure_collection()
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=self._material_filter(material_id)),
                wait=True,
            )
            if points:
                await self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
        except _QDRANT_ERRORS as e:
            raise VectorIndexError(f"Upsert failed for material {material_id}: {e}") from e

        log.info("Indexed %s chunks for material %s (course %s)", len(points), material_id, course_id)
        return len(points)

    async def delete_material(self, material_id: int) -> None:
        """Delete all points of a material. Unknown ids are a no-op."""
        await self._delete_by_filter(self._material_filter(material_id), f"material {material_id}")

    async def delete_materials(self, material_ids: Sequence[int]) -> None:
        ids = sorted(set(material_ids))
        if not ids:
            return
        await self._delete_by_filter(
            Filter(must=[FieldCondition(key="material_id", match=MatchAny(any=ids))]),
            f"{len(ids)} materials",
        )

    async def delete_course(self, course_id: int) -> None:
        """Delete all points of a course. Unknown ids are a no-op."""
        await self._delete_by_filter(
            Filter(must=[FieldCondition(key="course_id", match=MatchValue(value=course_id))]),
            f"course {course_id}",
        )

    async def _delete_by_filter(self, points_filter: Filter, label: str) -> None:
        try:
            if not await self.client.collection_exists(self.collection_name):
                return
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=points_filter),
                wait=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorIndexError(f"Delete failed for {label}: {e}") from e
        log.info("Deleted vectors for %s", label)

    # ─── Reads ─────────────────────────────────────────────────────────────────

    async def search(
        self,
        course_id: int,
        query_vector: Sequence[float],
        top_k: int,
        type_filter: Optional[str] = None,
    ) -> List[SearchHit]:
        """
        Similarity search, always scoped to course_id.
        Results are ranked by descending cosine similarity.
        """
        if top_k <= 0:
            return []
        must = [FieldCondition(key="course_id", match=MatchValue(value=course_id))]
        if type_filter:
            must.append(FieldCondition(key="type", match=MatchValue(value=type_filter)))

        try:
            if not await self.client.collection_exists(self.collection_name):
                return []
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=list(query_vector),
                query_filter=Filter(must=must),
                limit=top_k,
                with_payload=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorIndexError(f"Search failed for course {course_id}: {e}") from e

        hits = [
            SearchHit(point_id=str(point.id), score=point.score, payload=point.payload or {})
            for point in response.points
        ]
        # Results must belong to course_id, whatever the filter returned
        return [hit for hit in hits if hit.course_id == course_id]

    async def list_material_ids(self, course_id: Optional[int] = None) -> Set[int]:
        """Scroll the whole collection (or one course) and collect material ids."""
        scroll_filter = None
        if course_id is not None:
            scroll_filter = Filter(must=[FieldCondition(key="course_id", match=MatchValue(value=course_id))])

        material_ids: Set[int] = set()
        offset = None
        try:
            if not await self.client.collection_exists(self.collection_name):
                return material_ids
            while True:
                points, offset = await self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=scroll_filter,
                    limit=self.SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=["material_id"],
                    with_vectors=False,
                )
                for point in points:
                    mid = (point.payload or {}).get("material_id")
                    if mid is not None:
                        material_ids.add(int(mid))
                if offset is None:
                    break
        except _QDRANT_ERRORS as e:
            raise VectorIndexError(f"Scroll failed: {e}") from e
        return material_ids

    async def count(self, material_id: Optional[int] = None, course_id: Optional[int] = None) -> int:
        must = []
        if material_id is not None:
            must.append(FieldCondition(key="material_id", match=MatchValue(value=material_id)))
        if course_id is not None:
            must.append(FieldCondition(key="course_id", match=MatchValue(value=course_id)))
        try:
            if not await self.client.collection_exists(self.collection_name):
                return 0
            result = await self.client.count(
                collection_name=self.collection_name,
                count_filter=Filter(must=must) if must else None,
                exact=True,
            )
        except _QDRANT_ERRORS as e:
            raise VectorIndexError(f"Count failed: {e}") from e
        return result.count

    @staticmethod
    def _material_filter(material_id: int) -> Filter:
        return Filter(must=[FieldCondition(key="material_id", match=MatchValue(value=material_id))])


class NullVectorIndex(VectorIndex):
    """Stand-in used when QDRANT_ENABLED is false."""

    enabled = False

    async def ensure_collection(self) -> None:
        return None

    async def upsert(self, material_id, course_id, chunks, vectors, payload) -> int:
        return 0

    async def search(self, course_id, query_vector, top_k, type_filter=None) -> List[SearchHit]:
        return []

    async def delete_material(self, material_id: int) -> None:
        return None

    async def delete_materials(self, material_ids: Sequence[int]) -> None:
        return None

    async def delete_course(self, course_id: int) -> None:
        return None

    async def list_material_ids(self, course_id: Optional[int] = None) -> Set[int]:
        return set()

    async def count(self, material_id: Optional[int] = None, course_id: Optional[int] = None) -> int:
        return 0

    async def ping(self) -> bool:
        return True
