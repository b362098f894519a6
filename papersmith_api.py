"""
PaperSmith API - Main Application
FastAPI application for course material indexing, exam paper generation and
answer sheet grading.
"""

from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_settings
from database.database import Base, SessionLocal, engine
from database.models import Plan
from routers import generation, grading, materials
from services.container import build_services
from services.errors import PaperSmithError, UpstreamServiceError

logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(name)s  %(message)s")
logging.getLogger("httpx").setLevel(logging.WARNING)

log = logging.getLogger("papersmith.api")

DEFAULT_PLANS = [
    # name, tier, max_papers_per_month (<0 = unlimited), max_variants, include_answers
    ("Free", "free", 5, 1, False),
    ("Medium", "medium", 30, 3, True),
    ("Pro", "pro", -1, 5, True),
]


def _seed_defaults():
    """Create the default plans if none exist."""
    db = SessionLocal()
    try:
        if db.query(Plan).count() == 0:
            for name, tier, max_papers, max_variants, include_answers in DEFAULT_PLANS:
                db.add(Plan(
                    name=name,
                    tier=tier,
                    max_papers_per_month=max_papers,
                    max_variants=max_variants,
                    include_answers=include_answers,
                ))
            db.commit()
            log.info("Default plans seeded (%s)", ", ".join(p[0] for p in DEFAULT_PLANS))
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables, seed plans, build clients. Shutdown: close clients."""
    settings = get_settings()
    Base.metadata.create_all(bind=engine)
    _seed_defaults()

    services = build_services(settings)
    try:
        await services.vector_index.ensure_collection()
    except UpstreamServiceError as e:
        # Upload/reconcile recreate it later; startup must not depend on Qdrant
        log.error("Could not ensure Qdrant collection at startup: %s", e)
    app.state.services = services
    yield
    await services.aclose()


app = FastAPI(
    title="PaperSmith API",
    description="RAG exam paper generation and LLM grading",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaperSmithError)
async def paper_smith_error_handler(request: Request, exc: PaperSmithError):
    if isinstance(exc, UpstreamServiceError):
        log.error("%s %s: upstream %s failed: %s", request.method, request.url.path, exc.service, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "internal_error"})


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(materials.router)
app.include_router(generation.router)
app.include_router(grading.router)


@app.get("/")
def root():
    return {
        "name": "PaperSmith API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "materials": "/courses/{course_id}/materials",
            "generate": "/papers/generate",
            "grade": "/papers/grade",
            "quota": "/quota",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "papersmith-api"}


@app.get("/health/qdrant")
async def qdrant_health(request: Request):
    index = request.app.state.services.vector_index
    if not index.enabled:
        return {"status": "disabled", "service": "qdrant"}
    if await index.ping():
        return {"status": "healthy", "service": "qdrant", "points": await index.count()}
    return JSONResponse(status_code=503, content={"status": "unhealthy", "service": "qdrant"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
