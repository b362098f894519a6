"""
SQLAlchemy models for the relational store.

Plan → User → PaperRequest → PaperVariant → PaperSubmission → GradingResult
Course → CourseMaterial

Vectors never live here: indexed chunks are a derived projection held in Qdrant
and repaired from these rows by reconciliation.
"""

import enum

from sqlalchemy import (
    Boolean, Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer,
    JSON, String, Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database.database import Base


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class MaterialType(str, enum.Enum):
    SYLLABUS = "SYLLABUS"
    OLD_PAPER = "OLD_PAPER"
    REFERENCE = "REFERENCE"


class PaperRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    GENERATED = "GENERATED"
    FAILED = "FAILED"


class SubmissionStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"


class UserRole(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    TEAM = "TEAM"
    STUDENT = "STUDENT"


class IndexStatus(str, enum.Enum):
    PENDING = "pending"
    INDEXED = "indexed"
    FAILED = "failed"
    DISABLED = "disabled"


# ==========================================
# PLANS & USERS
# ==========================================

class Plan(Base):
    """
    Subscription plan limits.
    max_papers_per_month < 0 means unlimited.
    """
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    tier = Column(String(20), nullable=False, default="free")  # free | medium | pro
    max_papers_per_month = Column(Integer, nullable=False, default=5)
    max_variants = Column(Integer, nullable=False, default=1)
    include_answers = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    users = relationship("User", back_populates="plan")

    def __repr__(self):
        return f"<Plan(id={self.id}, tier='{self.tier}', max_papers={self.max_papers_per_month})>"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(SQLEnum(UserRole, values_callable=_enum_values), nullable=False, default=UserRole.STUDENT)
    is_active = Column(Boolean, default=True, nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    plan = relationship("Plan", back_populates="users")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ==========================================
# COURSES & MATERIALS
# ==========================================

class Course(Base):
    """
    A course and its grading policy.
    grading_scale is free text handed to the grader verbatim.
    """
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    level = Column(String(100), nullable=True)
    board_or_university = Column(String(255), nullable=True)
    language = Column(String(50), nullable=False, default="English")
    grading_scale = Column(
        String(255),
        nullable=False,
        default="A: 90-100, B: 80-89, C: 70-79, D: 60-69, F: 0-59",
    )
    pass_threshold = Column(Float, nullable=False, default=60.0)
    partial_marking = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    materials = relationship("CourseMaterial", back_populates="course", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Course(id={self.id}, code='{self.code}')>"


class CourseMaterial(Base):
    """
    Uploaded course material (syllabus, old paper, reference notes).
    content holds the extracted plain text; index_status tracks the Qdrant projection.
    """
    __tablename__ = "course_materials"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(SQLEnum(MaterialType, values_callable=_enum_values), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    year = Column(Integer, nullable=True)
    weightings = Column(JSON, nullable=True)    # e.g. {"algorithms": 30, "programming": 70}
    style_notes = Column(Text, nullable=True)
    file_path = Column(String(500), nullable=True)
    file_size = Column(Integer, nullable=False, default=0)
    uploaded_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    index_status = Column(String(20), nullable=False, default=IndexStatus.PENDING.value, index=True)
    indexed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    course = relationship("Course", back_populates="materials")

    @property
    def content_length(self) -> int:
        return len(self.content or "")

    def __repr__(self):
        return f"<CourseMaterial(id={self.id}, type='{self.type}', index_status='{self.index_status}')>"


# ==========================================
# PAPER GENERATION
# ==========================================

class PaperRequest(Base):
    """
    One generation request. PENDING → GENERATED | FAILED.
    Counted against the user's monthly quota regardless of outcome.
    """
    __tablename__ = "paper_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    exam_type = Column(String(100), nullable=False)
    total_marks = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    topics_include = Column(JSON, nullable=False, default=list)
    topics_exclude = Column(JSON, nullable=False, default=list)
    difficulty_pref = Column(JSON, nullable=True)
    style_overrides = Column(Text, nullable=True)
    seed = Column(Integer, nullable=False)
    variant_count = Column(Integer, nullable=False, default=1)
    status = Column(
        SQLEnum(PaperRequestStatus, values_callable=_enum_values),
        nullable=False,
        default=PaperRequestStatus.PENDING,
        index=True,
    )
    failure_code = Column(String(100), nullable=True)
    failure_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    user = relationship("User")
    course = relationship("Course")
    variants = relationship(
        "PaperVariant",
        back_populates="paper_request",
        cascade="all, delete-orphan",
        order_by="PaperVariant.id",
    )

    def __repr__(self):
        return f"<PaperRequest(id={self.id}, status='{self.status}')>"


class PaperVariant(Base):
    """One concrete generated paper. Immutable once created."""
    __tablename__ = "paper_variants"

    id = Column(Integer, primary_key=True, index=True)
    paper_request_id = Column(
        Integer, ForeignKey("paper_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    variant_id = Column(String(50), nullable=False)
    paper_data = Column(JSON, nullable=False)        # sections → questions
    marking_scheme = Column(JSON, nullable=False)    # [{question_id, answer_key, rubric, max_marks}]
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    paper_request = relationship("PaperRequest", back_populates="variants")

    def __repr__(self):
        return f"<PaperVariant(id={self.id}, variant_id='{self.variant_id}')>"


# ==========================================
# SUBMISSIONS & GRADING
# ==========================================

class PaperSubmission(Base):
    """A student's uploaded answer document for one PaperVariant."""
    __tablename__ = "paper_submissions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    paper_variant_id = Column(
        Integer, ForeignKey("paper_variants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    submitted_file = Column(String(500), nullable=False)
    extracted_answers = Column(JSON, nullable=False, default=list)
    status = Column(
        SQLEnum(SubmissionStatus, values_callable=_enum_values),
        nullable=False,
        default=SubmissionStatus.SUBMITTED,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    paper_variant = relationship("PaperVariant")
    grading_result = relationship(
        "GradingResult", back_populates="submission", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<PaperSubmission(id={self.id}, status='{self.status}')>"


class GradingResult(Base):
    """One-to-one with a submission. Immutable; regrading creates a new submission."""
    __tablename__ = "grading_results"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(
        Integer, ForeignKey("paper_submissions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    total_score = Column(Float, nullable=False)
    max_score = Column(Float, nullable=False)
    percentage = Column(Float, nullable=False)
    grade = Column(String(10), nullable=False)
    marks_breakdown = Column(JSON, nullable=False)
    feedback = Column(JSON, nullable=True)
    auto_graded = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    submission = relationship("PaperSubmission", back_populates="grading_result")

    def __repr__(self):
        return f"<GradingResult(id={self.id}, grade='{self.grade}', pct={self.percentage})>"
