# /tests/conftest.py

import os

# Must be set before database.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import hashlib
import json
import math
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest
from qdrant_client import AsyncQdrantClient

from database import crud
from database.database import Base, SessionLocal, engine
from database.models import Course, MaterialType, Plan, User, UserRole
from embeddings.generator import EmbeddingMode
from embeddings.qdrant_manager import QdrantVectorIndex
from generation.gpt_client import ChatModelClient
from generation.paper_generator import PaperGenerator
from generation.retrieval_engine import RetrievalService
from grading.grader import Grader
from ingestion.chunker import TextChunker
from ingestion.indexer import MaterialIndexer
from ingestion.parser import DocumentTextExtractor
from services.storage import LocalFileStorage

TEST_DIM = 64


# --- Fakes for external services ---

class HashEmbedder:
    """
    Deterministic bag-of-words embedder: each token hashes into one of TEST_DIM
    buckets. Texts sharing words end up close in cosine space.
    """

    def __init__(self, dimension: int = TEST_DIM):
        self.dimension = dimension
        self.calls: List[Dict[str, Any]] = []

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dimension
        vec[0] = 0.01  # never a zero vector
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        norm = math.sqrt(sum(x * x for x in vec))
        return [x / norm for x in vec]

    async def embed(self, texts: Sequence[str], mode: EmbeddingMode) -> List[List[float]]:
        self.calls.append({"texts": list(texts), "mode": mode})
        return [self.vector(t) for t in texts]

    async def embed_query(self, text: str) -> List[float]:
        return (await self.embed([text], EmbeddingMode.QUERY))[0]

    async def embed_passages(self, texts: Sequence[str]) -> List[List[float]]:
        return await self.embed(texts, EmbeddingMode.PASSAGE)

    async def aclose(self) -> None:
        return None


Response = Union[str, Exception, Callable[[str], str]]


class FakeChatModel(ChatModelClient):
    """Records every call and answers from a queue of canned responses."""

    def __init__(self, responses: Optional[List[Response]] = None):
        super().__init__(api_key="test-key", model="fake-model")
        self.responses: List[Response] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def complete_json(self, system, prompt, temperature, max_tokens, seed=None) -> str:
        self.calls.append({
            "system": system,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "seed": seed,
        })
        if not self.responses:
            raise AssertionError("FakeChatModel has no response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response


def prompt_payload(prompt: str) -> Dict[str, Any]:
    """The JSON document embedded in a generation/grading prompt."""
    return json.loads(prompt[prompt.find("{"): prompt.rfind("}") + 1])


def make_paper(
    citation_ids: Sequence[str],
    variant_ids: Sequence[str] = ("A",),
    questions: Optional[List[Dict[str, Any]]] = None,
    with_scheme: bool = True,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """A valid generation response citing the given excerpt ids."""
    cite = list(citation_ids) or ["synthesized"]
    if questions is None:
        questions = [
            {"id": "Q1", "type": "short_answer", "text": "Explain binary search on a sorted array.",
             "marks": 4, "difficulty": "easy", "syllabus_tags": ["searching"]},
            {"id": "Q2", "type": "short_answer", "text": "Compare a stack with a queue.",
             "marks": 4, "difficulty": "medium", "syllabus_tags": ["stacks", "queues"]},
            {"id": "Q3", "type": "long_answer", "text": "Analyse merge sort and give its complexity.",
             "marks": 2, "difficulty": "hard", "syllabus_tags": ["sorting"]},
        ]
    paper, scheme = [], []
    for vid in variant_ids:
        qs = []
        for i, q in enumerate(questions):
            q = dict(q)
            q.setdefault("source_citations", [{"id": cite[i % len(cite)], "rationale": "syllabus topic"}])
            qs.append(q)
            if with_scheme and "marks" in q:
                scheme.append({
                    "variant_id": vid,
                    "question_id": q["id"],
                    "answer_key": f"Key for {q['id']}",
                    "rubric": "Award marks for correct definitions and reasoning.",
                    "max_marks": q["marks"],
                })
        paper.append({
            "variant_id": vid,
            "title": f"CS101 Midterm - Variant {vid}",
            "sections": [{"name": "Section A", "questions": qs}],
        })
    return {
        "status": "ok",
        "meta": {"seed": seed},
        "style_alignment": "Follows the 2023 paper: one section of short answers.",
        "paper": paper,
        "marking_scheme": scheme,
    }


def paper_from_prompt(**kwargs) -> Callable[[str], str]:
    """Model response that cites whatever excerpts the prompt carried."""
    def respond(prompt: str) -> str:
        payload = prompt_payload(prompt)
        ids = [item["id"] for item in payload["context"]["rag"]]
        variants = [chr(ord("A") + i) for i in range(payload["request"]["variant_count"])]
        kwargs.setdefault("variant_ids", variants)
        return json.dumps(make_paper(ids, seed=payload["request"]["seed"], **kwargs))
    return respond


def make_grading(awards: Dict[str, float], maxes: Dict[str, float], grade: str = "B") -> Dict[str, Any]:
    total = sum(awards.values())
    max_total = sum(maxes.values())
    return {
        "status": "ok",
        "total_score": total,
        "max_score": max_total,
        "percentage": round(total / max_total * 100, 2),
        "grade": grade,
        "marks_breakdown": [
            {"question_id": qid, "awarded_marks": awards[qid], "max_marks": maxes[qid], "feedback": "ok"}
            for qid in awards
        ],
        "feedback": {"overall": "Solid work.", "strengths": ["clear"], "improvements": ["detail"]},
    }


# --- Database fixtures ---

@pytest.fixture
def db():
    """Fresh in-memory schema per test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def plan(db) -> Plan:
    p = Plan(name="Medium", tier="medium", max_papers_per_month=3, max_variants=2, include_answers=True)
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def student(db, plan) -> User:
    u = User(email="student@example.com", name="Stu Dent", role=UserRole.STUDENT, plan_id=plan.id)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def other_student(db, plan) -> User:
    u = User(email="other@example.com", name="Other", role=UserRole.STUDENT, plan_id=plan.id)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def admin(db) -> User:
    u = User(email="admin@example.com", name="Admin", role=UserRole.SUPER_ADMIN)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def course(db) -> Course:
    c = Course(name="Introduction to Computer Science", code="CS101", level="Undergraduate",
               board_or_university="State University", language="English")
    db.add(c)
    db.commit()
    return c


@pytest.fixture
def other_course(db) -> Course:
    c = Course(name="Organic Chemistry", code="CHEM201", language="English")
    db.add(c)
    db.commit()
    return c


SYLLABUS_TEXT = (
    "CS101 Syllabus. Unit 1: arrays and linked lists. Unit 2: stacks and queues. "
    "Unit 3: searching, linear search and binary search on sorted arrays. "
    "Unit 4: sorting algorithms, bubble sort, merge sort and quick sort."
)
OLD_PAPER_TEXT = (
    "CS101 Midterm 2023. Q1 Define a linked list. Q2 Explain how a stack supports push and pop. "
    "Q3 Trace merge sort on a small array."
)
CHEMISTRY_TEXT = "Organic chemistry: alkanes, alkenes, benzene rings and reaction mechanisms."


def add_material(db, course, title, text, material_type=MaterialType.SYLLABUS, **extra):
    return crud.create_material(
        db, course_id=course.id, title=title, type=material_type, content=text,
        file_size=len(text), **extra,
    )


# --- Service fixtures ---

@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
async def vector_index():
    client = AsyncQdrantClient(location=":memory:")
    index = QdrantVectorIndex(client, dimension=TEST_DIM, collection_name="test_course_materials")
    await index.ensure_collection()
    yield index
    await client.close()


@pytest.fixture
def chunker() -> TextChunker:
    return TextChunker(chunk_size=200, overlap=20)


@pytest.fixture
def indexer(embedder, vector_index, chunker) -> MaterialIndexer:
    return MaterialIndexer(embedder, vector_index, chunker)


@pytest.fixture
def retrieval(embedder, vector_index) -> RetrievalService:
    return RetrievalService(embedder, vector_index, top_k=12, backoff_seconds=0)


@pytest.fixture
def fake_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def generator(retrieval, fake_model) -> PaperGenerator:
    return PaperGenerator(retrieval, fake_model)


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(str(tmp_path / "uploads"))


@pytest.fixture
def grader(fake_model, storage) -> Grader:
    return Grader(fake_model, DocumentTextExtractor(), storage)


@pytest.fixture
async def indexed_cs101(db, course, other_course, indexer):
    """CS101 with a syllabus and an old paper, plus an unrelated chemistry course."""
    syllabus = add_material(db, course, "CS101 Syllabus", SYLLABUS_TEXT, MaterialType.SYLLABUS,
                            weightings={"searching": 30, "sorting": 30})
    old_paper = add_material(db, course, "Midterm 2023", OLD_PAPER_TEXT, MaterialType.OLD_PAPER,
                             year=2023, style_notes="Short answers, 10 marks")
    chemistry = add_material(db, other_course, "Chemistry Notes", CHEMISTRY_TEXT, MaterialType.REFERENCE)
    for material in (syllabus, old_paper, chemistry):
        await indexer.index_and_record(db, material)
    return {"syllabus": syllabus, "old_paper": old_paper, "chemistry": chemistry}
