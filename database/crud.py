"""
CRUD operations for the relational store
All pipeline database access goes through these functions
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from database import models


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================
# USERS, PLANS, COURSES
# ==========================================

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def lock_user(db: Session, user_id: int) -> Optional[models.User]:
    """Load a user row with FOR UPDATE so concurrent quota checks serialize."""
    return (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .with_for_update()
        .first()
    )


def get_course(db: Session, course_id: int) -> Optional[models.Course]:
    return db.query(models.Course).filter(models.Course.id == course_id).first()


# ==========================================
# COURSE MATERIALS
# ==========================================

def create_material(db: Session, **fields: Any) -> models.CourseMaterial:
    """Create a material row (content already extracted)."""
    material = models.CourseMaterial(**fields)
    db.add(material)
    db.commit()
    db.refresh(material)
    return material


def get_material(db: Session, material_id: int) -> Optional[models.CourseMaterial]:
    return db.query(models.CourseMaterial).filter(models.CourseMaterial.id == material_id).first()


def get_course_materials(db: Session, course_id: int) -> List[models.CourseMaterial]:
    return (
        db.query(models.CourseMaterial)
        .filter(models.CourseMaterial.course_id == course_id)
        .order_by(models.CourseMaterial.created_at.desc(), models.CourseMaterial.id.desc())
        .all()
    )


def get_all_materials(db: Session) -> List[models.CourseMaterial]:
    return db.query(models.CourseMaterial).order_by(models.CourseMaterial.id).all()


def update_material(db: Session, material: models.CourseMaterial, changes: Dict[str, Any]) -> models.CourseMaterial:
    for field, value in changes.items():
        setattr(material, field, value)
    db.commit()
    db.refresh(material)
    return material


def set_material_index_status(db: Session, material: models.CourseMaterial, status: str) -> None:
    material.index_status = status
    material.indexed_at = utcnow() if status == models.IndexStatus.INDEXED.value else None
    db.commit()


def delete_material(db: Session, material: models.CourseMaterial) -> None:
    db.delete(material)
    db.commit()


# ==========================================
# PAPER REQUESTS & VARIANTS
# ==========================================

def count_paper_requests(
    db: Session,
    user_id: int,
    period_start: datetime,
    period_end: datetime,
) -> int:
    """Count requests created in [period_start, period_end)."""
    return (
        db.query(func.count(models.PaperRequest.id))
        .filter(
            models.PaperRequest.user_id == user_id,
            models.PaperRequest.created_at >= period_start,
            models.PaperRequest.created_at < period_end,
        )
        .scalar()
        or 0
    )


def create_paper_request(db: Session, **fields: Any) -> models.PaperRequest:
    fields.setdefault("status", models.PaperRequestStatus.PENDING)
    fields.setdefault("created_at", utcnow())
    paper_request = models.PaperRequest(**fields)
    db.add(paper_request)
    db.commit()
    db.refresh(paper_request)
    return paper_request


def mark_paper_request_failed(
    db: Session,
    paper_request: models.PaperRequest,
    code: str,
    message: str,
) -> models.PaperRequest:
    paper_request.status = models.PaperRequestStatus.FAILED
    paper_request.failure_code = code
    paper_request.failure_message = message[:2000]
    db.commit()
    db.refresh(paper_request)
    return paper_request


def complete_paper_request(
    db: Session,
    paper_request: models.PaperRequest,
    variants: List[Dict[str, Any]],
) -> List[models.PaperVariant]:
    """
    Persist variants and flip the request to GENERATED in one transaction.
    variants: [{"variant_id", "paper_data", "marking_scheme"}]
    """
    rows = [
        models.PaperVariant(
            paper_request_id=paper_request.id,
            variant_id=v["variant_id"],
            paper_data=v["paper_data"],
            marking_scheme=v["marking_scheme"],
        )
        for v in variants
    ]
    try:
        db.add_all(rows)
        paper_request.status = models.PaperRequestStatus.GENERATED
        db.commit()
    except Exception:
        db.rollback()
        raise
    for row in rows:
        db.refresh(row)
    db.refresh(paper_request)
    return rows


def get_paper_request(db: Session, request_id: int) -> Optional[models.PaperRequest]:
    return (
        db.query(models.PaperRequest)
        .options(joinedload(models.PaperRequest.variants))
        .filter(models.PaperRequest.id == request_id)
        .first()
    )


def get_user_paper_requests(db: Session, user_id: int, skip: int = 0, limit: int = 50) -> List[models.PaperRequest]:
    return (
        db.query(models.PaperRequest)
        .filter(models.PaperRequest.user_id == user_id)
        .order_by(models.PaperRequest.created_at.desc(), models.PaperRequest.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_paper_variant(db: Session, variant_id: int) -> Optional[models.PaperVariant]:
    return (
        db.query(models.PaperVariant)
        .options(
            joinedload(models.PaperVariant.paper_request).joinedload(models.PaperRequest.course)
        )
        .filter(models.PaperVariant.id == variant_id)
        .first()
    )


# ==========================================
# SUBMISSIONS & GRADING
# ==========================================

def create_submission(
    db: Session,
    user_id: int,
    paper_variant_id: int,
    submitted_file: str,
    extracted_answers: List[Dict[str, str]],
) -> models.PaperSubmission:
    submission = models.PaperSubmission(
        user_id=user_id,
        paper_variant_id=paper_variant_id,
        submitted_file=submitted_file,
        extracted_answers=extracted_answers,
        status=models.SubmissionStatus.SUBMITTED,
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    return submission


def get_submission(db: Session, submission_id: int) -> Optional[models.PaperSubmission]:
    return (
        db.query(models.PaperSubmission)
        .options(joinedload(models.PaperSubmission.grading_result))
        .filter(models.PaperSubmission.id == submission_id)
        .first()
    )


def record_grading_result(
    db: Session,
    submission: models.PaperSubmission,
    result: Dict[str, Any],
) -> models.GradingResult:
    """
    Create the GradingResult and mark the submission GRADED atomically.
    A submission is never GRADED without a result, nor the reverse.
    """
    grading = models.GradingResult(
        submission_id=submission.id,
        total_score=result["total_score"],
        max_score=result["max_score"],
        percentage=result["percentage"],
        grade=result["grade"],
        marks_breakdown=result["marks_breakdown"],
        feedback=result.get("feedback"),
        auto_graded=True,
    )
    try:
        db.add(grading)
        submission.status = models.SubmissionStatus.GRADED
        submission.graded_at = utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(grading)
    db.refresh(submission)
    return grading
