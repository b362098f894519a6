"""
Embeddings package
Text-to-vector conversion and the Qdrant-backed vector index
"""

from .generator import EmbeddingClient, EmbeddingMode
from .qdrant_manager import (
    NullVectorIndex,
    QdrantVectorIndex,
    SearchHit,
    VectorIndex,
    chunk_point_id,
)

__all__ = [
    "EmbeddingClient",
    "EmbeddingMode",
    "NullVectorIndex",
    "QdrantVectorIndex",
    "SearchHit",
    "VectorIndex",
    "chunk_point_id",
]
