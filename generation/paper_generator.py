"""
Paper Generation Orchestrator

Pipeline for one request (PENDING → GENERATED | FAILED):
  1. Quota precondition (user row locked; rejection persists nothing)
  2. Clamp variant count to the plan's max_variants
  3. Persist the PENDING request (seed generated here if absent)
  4. Retrieve course-scoped excerpts
  5. Build a deterministic JSON prompt
  6. Call the model (temperature 0.2, seed forwarded)
  7. Validate the output strictly
  8. Persist variants + GENERATED in one transaction

Any failure after step 3 marks the request FAILED with the error code and
re-raises, so the API can answer with the same code.
"""

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from database import crud
from database.models import Course, PaperRequest, PaperVariant, Plan
from database.schemas import MAX_SEED, GeneratePaperRequest
from generation.gpt_client import ChatModelClient
from generation.prompts import PAPER_GENERATION_PROMPT, PAPER_OUTPUT_SCHEMA
from generation.quota import UNLIMITED, QuotaLedger
from generation.retrieval_engine import RankedExcerpt, RetrievalService
from generation.validator import validate_paper_output
from services.errors import NotFoundError, PaperSmithError, PreconditionError

log = logging.getLogger(__name__)


# ─── Policy constants ─────────────────────────────────────────────────────────

DEFAULT_DIFFICULTY_MIX = {"easy": 40, "medium": 40, "hard": 20}   # % of marks
ORIGINALITY_TARGET_PCT = 85
CITATION_REQUIRED = True

GENERATION_TEMPERATURE = 0.2
GENERATION_MAX_TOKENS = 4000


@dataclass
class GenerationOutcome:
    paper_request: PaperRequest
    variants: List[PaperVariant]
    seed: int
    requested_variant_count: int
    variant_count: int
    style_alignment: Optional[str]
    include_answers: bool


def build_generation_prompt(
    course: Course,
    plan: Plan,
    request: GeneratePaperRequest,
    seed: int,
    variant_count: int,
    quota_left: int,
    excerpts: Sequence[RankedExcerpt],
) -> str:
    """
    Serialize the generation input as one JSON document.
    Keys are sorted so identical inputs give byte-identical prompts.
    """
    payload: Dict[str, Any] = {
        "course": {
            "id": course.id,
            "name": course.name,
            "code": course.code,
            "level": course.level,
            "board_or_university": course.board_or_university,
            "language": course.language,
        },
        "plan": {
            "tier": (plan.tier or "").lower(),
            "user_quota_left_this_period": None if quota_left == UNLIMITED else quota_left,
            "max_variants": plan.max_variants,
            "include_answers": bool(plan.include_answers),
        },
        "request": {
            "exam_type": request.exam_type,
            "total_marks": request.total_marks,
            "duration_minutes": request.duration_minutes,
            "topics_include": list(request.topics_include),
            "topics_exclude": list(request.topics_exclude),
            "difficulty_mix": request.difficulty_pref or DEFAULT_DIFFICULTY_MIX,
            "seed": seed,
            "variant_count": variant_count,
            "style_overrides": request.style_overrides,
        },
        "policy": {
            "originality_target_pct": ORIGINALITY_TARGET_PCT,
            "citation_required": CITATION_REQUIRED,
            "language": course.language,
            "safety_flags": [],
        },
        "context": {"rag": [e.to_context() for e in excerpts]},
        "output_schema": PAPER_OUTPUT_SCHEMA,
    }
    return (
        "Generate exam paper(s) per the system rules using this input:\n"
        + json.dumps(payload, sort_keys=True, ensure_ascii=False, indent=2)
        + "\n\nRespond with exactly one JSON object following output_schema."
    )


class PaperGenerator:
    def __init__(
        self,
        retrieval: RetrievalService,
        model: ChatModelClient,
        quota: Optional[QuotaLedger] = None,
    ):
        self.retrieval = retrieval
        self.model = model
        self.quota = quota or QuotaLedger()

    async def generate(self, db: Session, user_id: int, request: GeneratePaperRequest) -> GenerationOutcome:
        user, quota_left = self.quota.acquire(db, user_id)
        plan = user.plan

        course = crud.get_course(db, request.course_id)
        if course is None:
            db.rollback()
            raise NotFoundError(f"Course {request.course_id} not found")

        if plan.max_variants < 1:
            db.rollback()
            raise PreconditionError(f"Plan {plan.name} does not allow any paper variants")
        variant_count = min(request.variant_count, plan.max_variants)
        seed = request.seed if request.seed is not None else secrets.randbelow(MAX_SEED)

        # Commit releases the user-row lock taken by acquire()
        paper_request = crud.create_paper_request(
            db,
            user_id=user.id,
            course_id=course.id,
            exam_type=request.exam_type,
            total_marks=request.total_marks,
            duration_minutes=request.duration_minutes,
            topics_include=list(request.topics_include),
            topics_exclude=list(request.topics_exclude),
            difficulty_pref=request.difficulty_pref,
            style_overrides=request.style_overrides,
            seed=seed,
            variant_count=variant_count,
        )
        log.info(
            "Paper request %s: user=%s course=%s variants=%s/%s seed=%s",
            paper_request.id, user.id, course.id, variant_count, request.variant_count, seed,
        )

        try:
            excerpts = await self.retrieval.retrieve(
                course.id, request.exam_type, request.topics_include
            )
            prompt = build_generation_prompt(
                course, plan, request, seed, variant_count, quota_left, excerpts
            )
            raw = await self.model.complete_json(
                system=PAPER_GENERATION_PROMPT,
                prompt=prompt,
                temperature=GENERATION_TEMPERATURE,
                max_tokens=GENERATION_MAX_TOKENS,
                seed=seed,
            )
            output = validate_paper_output(raw, [e.id for e in excerpts])

            accepted = output.paper[:variant_count]
            for variant in accepted:
                if abs(variant.total_marks() - request.total_marks) > 0.01:
                    log.warning(
                        "Paper request %s: variant %s totals %s marks, requested %s",
                        paper_request.id, variant.variant_id, variant.total_marks(), request.total_marks,
                    )
            if len(output.paper) > variant_count:
                log.warning(
                    "Paper request %s: model returned %s variants, keeping %s",
                    paper_request.id, len(output.paper), variant_count,
                )
            rows = crud.complete_paper_request(
                db,
                paper_request,
                [
                    {
                        "variant_id": variant.variant_id,
                        "paper_data": variant.model_dump(mode="json"),
                        "marking_scheme": [
                            entry.model_dump(mode="json") for entry in output.scheme_for(variant)
                        ],
                    }
                    for variant in accepted
                ],
            )
        except PaperSmithError as e:
            log.error("Paper request %s failed [%s]: %s", paper_request.id, e.code, e.message)
            crud.mark_paper_request_failed(db, paper_request, e.code, e.message)
            raise
        except Exception as e:
            log.exception("Paper request %s failed unexpectedly", paper_request.id)
            db.rollback()
            crud.mark_paper_request_failed(db, paper_request, "internal_error", str(e))
            raise

        log.info("Paper request %s generated %s variants", paper_request.id, len(rows))
        return GenerationOutcome(
            paper_request=paper_request,
            variants=rows,
            seed=seed,
            requested_variant_count=request.variant_count,
            variant_count=len(rows),
            style_alignment=output.style_alignment,
            include_answers=bool(plan.include_answers),
        )
