"""
Grading Router

Endpoints:
  POST /papers/grade                    - upload an answer sheet for a variant
  POST /submissions/{id}/regrade        - grade a stored answer sheet again (new submission)
  GET  /submissions/{id}                - submission with its grading result
"""

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from database import crud
from database.database import get_db
from database.models import User
from database.schemas import SubmissionResponse
from routers.auth import get_current_user
from services.container import Services, get_services
from services.errors import AccessDeniedError, NotFoundError

router = APIRouter(tags=["grading"])

log = logging.getLogger(__name__)


@router.post("/papers/grade", response_model=SubmissionResponse)
async def grade_paper(
    paper_variant_id: int = Form(..., gt=0),
    file: UploadFile = File(..., description="Answer sheet (PDF, DOCX, TXT)"),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(get_current_user),
):
    content = await file.read()
    outcome = await services.grader.grade(db, current.id, paper_variant_id, content, file.filename or "")
    return outcome.submission


@router.post("/submissions/{submission_id}/regrade", response_model=SubmissionResponse)
async def regrade_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    current: User = Depends(get_current_user),
):
    outcome = await services.grader.regrade(db, current.id, submission_id)
    return outcome.submission


@router.get("/submissions/{submission_id}", response_model=SubmissionResponse)
async def get_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    submission = crud.get_submission(db, submission_id)
    if submission is None:
        raise NotFoundError(f"Submission {submission_id} not found")
    if submission.user_id != current.id:
        raise AccessDeniedError("You can only view your own submissions")
    return submission
