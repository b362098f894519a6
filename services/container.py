"""
Service container.

All external clients are constructed here, once per process, from Settings and
handed to the pipelines. The API stores the container on app.state; tests build
their own with fakes and override get_services.
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from config import Settings
from embeddings.generator import EmbeddingClient
from embeddings.qdrant_manager import NullVectorIndex, QdrantVectorIndex, VectorIndex
from generation.gpt_client import ChatModelClient
from generation.paper_generator import PaperGenerator
from generation.quota import QuotaLedger
from generation.retrieval_engine import RetrievalService
from grading.grader import Grader
from ingestion.chunker import TextChunker
from ingestion.indexer import MaterialIndexer
from ingestion.parser import DocumentTextExtractor
from services.storage import LocalFileStorage

log = logging.getLogger(__name__)


@dataclass
class Services:
    embedder: EmbeddingClient
    vector_index: VectorIndex
    text_extractor: DocumentTextExtractor
    indexer: MaterialIndexer
    retrieval: RetrievalService
    model: ChatModelClient
    quota: QuotaLedger
    generator: PaperGenerator
    grader: Grader
    storage: LocalFileStorage

    async def aclose(self) -> None:
        await self.embedder.aclose()
        await self.vector_index.close()
        await self.model.aclose()


def build_vector_index(settings: Settings) -> VectorIndex:
    if not settings.qdrant_enabled:
        log.info("QDRANT_ENABLED=false: vector index disabled")
        return NullVectorIndex()
    return QdrantVectorIndex.from_url(
        settings.qdrant_url,
        dimension=settings.embedding_dim,
        api_key=settings.qdrant_api_key,
        collection_name=settings.qdrant_collection,
        timeout=settings.request_timeout_seconds,
    )


def assemble_services(
    settings: Settings,
    embedder: EmbeddingClient,
    vector_index: VectorIndex,
    model: ChatModelClient,
    storage: LocalFileStorage,
) -> Services:
    """Wire pipelines around the given clients."""
    text_extractor = DocumentTextExtractor(max_size=settings.max_upload_size)
    chunker = TextChunker(settings.chunk_size, settings.chunk_overlap)
    retrieval = RetrievalService(embedder, vector_index, top_k=settings.retrieval_top_k)
    quota = QuotaLedger()
    return Services(
        embedder=embedder,
        vector_index=vector_index,
        text_extractor=text_extractor,
        indexer=MaterialIndexer(embedder, vector_index, chunker),
        retrieval=retrieval,
        model=model,
        quota=quota,
        generator=PaperGenerator(retrieval, model, quota),
        grader=Grader(model, text_extractor, storage),
        storage=storage,
    )


def build_services(settings: Settings) -> Services:
    embedder = EmbeddingClient(
        base_url=settings.embedding_api_url,
        api_key=settings.embedding_api_key,
        model_name=settings.embedding_model,
        dimension=settings.embedding_dim,
        timeout=settings.request_timeout_seconds,
    )
    model = ChatModelClient(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        timeout=settings.request_timeout_seconds,
    )
    return assemble_services(
        settings,
        embedder=embedder,
        vector_index=build_vector_index(settings),
        model=model,
        storage=LocalFileStorage(settings.upload_dir),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency."""
    return request.app.state.services
