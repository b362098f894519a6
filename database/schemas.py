"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from database.models import MaterialType, PaperRequestStatus, SubmissionStatus

MAX_SEED = 2 ** 31 - 1   # paper_requests.seed is a 32-bit INTEGER


# ==========================================
# MATERIAL SCHEMAS
# ==========================================

class MaterialUpdate(BaseModel):
    """Metadata edit - all fields optional"""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[MaterialType] = None
    year: Optional[int] = Field(None, ge=1900, le=2100)
    weightings: Optional[Dict[str, float]] = None
    style_notes: Optional[str] = None


class MaterialResponse(BaseModel):
    id: int
    course_id: int
    title: str
    description: Optional[str] = None
    type: MaterialType
    year: Optional[int] = None
    weightings: Optional[Dict[str, Any]] = None
    style_notes: Optional[str] = None
    file_size: int
    content_length: int = 0
    index_status: str
    indexed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReconcileResponse(BaseModel):
    dry_run: bool
    index_material_count: int
    record_material_count: int
    orphaned_material_ids: List[int]
    missing_material_ids: List[int]
    reindexed_material_ids: List[int]
    failed_material_ids: List[int]


# ==========================================
# GENERATION SCHEMAS
# ==========================================

class GeneratePaperRequest(BaseModel):
    """User-facing request to generate one or more paper variants."""
    course_id: int = Field(..., gt=0)
    exam_type: str = Field(..., min_length=1, max_length=100, description="e.g. Quiz, Midterm, Final")
    total_marks: int = Field(..., ge=1, le=1000)
    duration_minutes: int = Field(..., ge=5, le=600)
    topics_include: List[str] = Field(default_factory=list)
    topics_exclude: List[str] = Field(default_factory=list)
    difficulty_pref: Optional[Dict[str, float]] = Field(
        None, description="Percentages by marks, e.g. {'easy': 30, 'medium': 50, 'hard': 20}"
    )
    style_overrides: Optional[str] = None
    variant_count: int = Field(1, ge=1, le=10)
    seed: Optional[int] = Field(None, ge=0, le=MAX_SEED)


class PaperVariantResponse(BaseModel):
    id: int
    variant_id: str
    paper_data: Dict[str, Any]
    marking_scheme: Optional[List[Dict[str, Any]]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaperRequestResponse(BaseModel):
    id: int
    course_id: int
    exam_type: str
    total_marks: int
    duration_minutes: int
    topics_include: List[str]
    topics_exclude: List[str]
    seed: int
    variant_count: int
    status: PaperRequestStatus
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GeneratePaperResponse(BaseModel):
    success: bool = True
    paper_request: PaperRequestResponse
    variants: List[PaperVariantResponse]
    seed: int
    requested_variant_count: int
    variant_count: int
    style_alignment: Optional[str] = None


class QuotaResponse(BaseModel):
    plan: Optional[str] = None
    limit: int
    remaining: Optional[int] = None   # None = unlimited
    period_start: datetime
    period_end: datetime


# ==========================================
# GRADING SCHEMAS
# ==========================================

class GradingResultResponse(BaseModel):
    id: int
    total_score: float
    max_score: float
    percentage: float
    grade: str
    marks_breakdown: List[Dict[str, Any]]
    feedback: Optional[Any] = None
    auto_graded: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmissionResponse(BaseModel):
    id: int
    paper_variant_id: int
    extracted_answers: List[Dict[str, Any]]
    status: SubmissionStatus
    created_at: datetime
    graded_at: Optional[datetime] = None
    grading_result: Optional[GradingResultResponse] = None

    model_config = ConfigDict(from_attributes=True)
