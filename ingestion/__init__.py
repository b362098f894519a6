"""
Ingestion package
Upload text extraction, chunking and vector indexing of course materials
"""

from .chunker import TextChunk, TextChunker, chunk_text
from .parser import DocumentTextExtractor, clean_text

__all__ = [
    "DocumentTextExtractor",
    "TextChunk",
    "TextChunker",
    "chunk_text",
    "clean_text",
]
