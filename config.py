"""
Runtime configuration for the PaperSmith backend.

All values come from environment variables (a .env file is loaded by the
API entry point). Settings are read once and passed into the components
that need them; nothing downstream calls os.getenv at request time.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = os.getenv("POSTGRES_USER", "papersmith")
    password = os.getenv("POSTGRES_PASSWORD", "papersmith")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "papersmith")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


@dataclass(frozen=True)
class Settings:
    database_url: str

    # Vector index
    qdrant_enabled: bool = True
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: Optional[str] = None
    qdrant_collection: str = "course_materials"

    # Embedding service (Jina-compatible /embeddings endpoint)
    embedding_api_url: str = "https://api.jina.ai/v1"
    embedding_api_key: Optional[str] = None
    embedding_model: str = "jina-embeddings-v3"
    embedding_dim: int = 1024

    # Generative model (OpenAI-compatible chat completions)
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_model: str = "gpt-4o-mini"

    request_timeout_seconds: float = 60.0

    # Uploads
    upload_dir: str = "uploads"
    max_upload_size: int = 10 * 1024 * 1024

    # Chunking / retrieval
    chunk_size: int = 1000
    chunk_overlap: int = 100
    retrieval_top_k: int = 12

    # Auth (tokens are issued by the main platform; this service only verifies)
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        database_url=_database_url(),
        qdrant_enabled=_env_bool("QDRANT_ENABLED", True),
        qdrant_url=os.getenv("QDRANT_URL", "http://localhost:6333"),
        qdrant_api_key=os.getenv("QDRANT_API_KEY") or None,
        qdrant_collection=os.getenv("QDRANT_COLLECTION", "course_materials"),
        embedding_api_url=os.getenv("EMBEDDING_API_URL", "https://api.jina.ai/v1"),
        embedding_api_key=os.getenv("EMBEDDING_API_KEY") or os.getenv("JINA_API_KEY"),
        embedding_model=os.getenv("EMBEDDING_MODEL", "jina-embeddings-v3"),
        embedding_dim=int(os.getenv("EMBEDDING_DIM", "1024")),
        llm_api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY"),
        llm_base_url=os.getenv("LLM_BASE_URL") or None,
        llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
        request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60")),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        max_upload_size=int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024))),
        chunk_size=int(os.getenv("CHUNK_SIZE", "1000")),
        chunk_overlap=int(os.getenv("CHUNK_OVERLAP", "100")),
        retrieval_top_k=int(os.getenv("RETRIEVAL_TOP_K", "12")),
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", "change-me"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return load_settings()
