"""
Generation Router

Endpoints:
  GET  /quota                - the caller's monthly paper quota
  POST /papers/generate      - generate one or more paper variants
  GET  /papers               - the caller's paper requests
  GET  /papers/{request_id}  - one request with its variants

Marking schemes are returned only when the caller's plan includes answers.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import crud
from database.database import get_db
from database.models import PaperVariant, User
from database.schemas import (
    GeneratePaperRequest,
    GeneratePaperResponse,
    PaperRequestResponse,
    PaperVariantResponse,
    QuotaResponse,
)
from generation.quota import UNLIMITED
from routers.auth import get_current_user
from services.container import Services, get_services
from services.errors import AccessDeniedError, NotFoundError

router = APIRouter(tags=["generation"])

log = logging.getLogger(__name__)


def _variant_response(variant: PaperVariant, include_answers: bool) -> PaperVariantResponse:
    response = PaperVariantResponse.model_validate(variant)
    if not include_answers:
        response.marking_scheme = None
    return response


def _include_answers(user: User) -> bool:
    return bool(user.plan and user.plan.include_answers)


@router.get("/quota", response_model=QuotaResponse)
async def get_quota(
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(get_current_user),
):
    snapshot = services.quota.snapshot(db, current)
    return QuotaResponse(
        plan=snapshot.plan,
        limit=snapshot.limit,
        remaining=None if snapshot.remaining == UNLIMITED else snapshot.remaining,
        period_start=snapshot.period_start,
        period_end=snapshot.period_end,
    )


@router.post("/papers/generate", response_model=GeneratePaperResponse)
async def generate_paper(
    request: GeneratePaperRequest,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(get_current_user),
):
    """
    Generate paper variants for a course.

    Fails with quota_exhausted (403) before anything is stored when the
    monthly quota is used up. Model or validation failures leave the request
    FAILED and are returned with their reason code.
    """
    outcome = await services.generator.generate(db, current.id, request)
    return GeneratePaperResponse(
        paper_request=PaperRequestResponse.model_validate(outcome.paper_request),
        variants=[_variant_response(v, outcome.include_answers) for v in outcome.variants],
        seed=outcome.seed,
        requested_variant_count=outcome.requested_variant_count,
        variant_count=outcome.variant_count,
        style_alignment=outcome.style_alignment,
    )


@router.get("/papers", response_model=List[PaperRequestResponse])
async def list_papers(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return crud.get_user_paper_requests(db, current.id, skip=skip, limit=limit)


@router.get("/papers/{request_id}")
async def get_paper(
    request_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    paper_request = crud.get_paper_request(db, request_id)
    if paper_request is None:
        raise NotFoundError(f"Paper request {request_id} not found")
    if paper_request.user_id != current.id:
        raise AccessDeniedError("You can only view your own papers")

    include_answers = _include_answers(current)
    return {
        "paper_request": PaperRequestResponse.model_validate(paper_request),
        "variants": [_variant_response(v, include_answers) for v in paper_request.variants],
    }
