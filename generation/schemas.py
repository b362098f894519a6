"""
Pydantic schemas for model output of the generation and grading calls.

These are the acceptance contract: a model response that does not validate
against them is rejected and the request fails.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ─── Generated paper ───────────────────────────────────────────────────────────

class SourceCitation(BaseModel):
    id: str = Field(..., min_length=1)
    rationale: Optional[str] = None


class PaperQuestion(BaseModel):
    """One question of one variant."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    type: str = "short_answer"
    text: str = Field(..., min_length=1)
    options: Optional[List[str]] = None
    marks: float = Field(..., gt=0)
    difficulty: Literal["easy", "medium", "hard"]
    syllabus_tags: List[str] = Field(..., min_length=1)
    source_citations: List[SourceCitation] = Field(..., min_length=1)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, v):
        return str(v).strip() if isinstance(v, (int, str)) else v

    @field_validator("difficulty", mode="before")
    @classmethod
    def _lower_difficulty(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("source_citations", mode="before")
    @classmethod
    def _citations_from_strings(cls, v):
        # Models sometimes return bare ids instead of {id, rationale}
        if isinstance(v, list):
            return [{"id": item} if isinstance(item, str) else item for item in v]
        return v


class PaperSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = "Section"
    instructions: Optional[str] = None
    questions: List[PaperQuestion] = Field(..., min_length=1)


class GeneratedVariant(BaseModel):
    """One concrete paper as returned by the model."""
    model_config = ConfigDict(extra="allow")

    variant_id: str = Field(..., min_length=1)
    title: Optional[str] = None
    instructions: Optional[str] = None
    sections: List[PaperSection] = Field(..., min_length=1)

    @field_validator("variant_id", mode="before")
    @classmethod
    def _variant_as_string(cls, v):
        return str(v).strip() if isinstance(v, (int, str)) else v

    def questions(self) -> List[PaperQuestion]:
        return [q for section in self.sections for q in section.questions]

    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions()]

    def total_marks(self) -> float:
        return sum(q.marks for q in self.questions())


class MarkingSchemeEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    question_id: str = Field(..., min_length=1)
    variant_id: Optional[str] = None
    answer_key: Optional[str] = None
    rubric: Optional[Union[str, List[Any], Dict[str, Any]]] = None
    max_marks: float = Field(..., ge=0)

    @field_validator("question_id", "variant_id", mode="before")
    @classmethod
    def _ids_as_string(cls, v):
        return str(v).strip() if isinstance(v, int) else v


class GenerationMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    seed: Optional[int] = None


class PaperGenerationOutput(BaseModel):
    """Full, successful generation response."""
    model_config = ConfigDict(extra="allow")

    status: Literal["ok", "success"] = "ok"
    meta: Optional[GenerationMeta] = None
    style_alignment: Optional[str] = None
    paper: List[GeneratedVariant] = Field(..., min_length=1)
    marking_scheme: List[MarkingSchemeEntry] = Field(..., min_length=1)

    def scheme_for(self, variant: GeneratedVariant) -> List[MarkingSchemeEntry]:
        """Entries that belong to this variant, in question order."""
        by_question: Dict[str, MarkingSchemeEntry] = {}
        for entry in self.marking_scheme:
            if entry.variant_id not in (None, variant.variant_id):
                continue
            # A variant-specific entry wins over a shared one
            if entry.question_id not in by_question or entry.variant_id is not None:
                by_question[entry.question_id] = entry
        return [by_question[qid] for qid in variant.question_ids() if qid in by_question]


# ─── Grading ───────────────────────────────────────────────────────────────────

class MarkBreakdownEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    question_id: str = Field(..., min_length=1)
    awarded_marks: float = Field(..., ge=0)
    max_marks: float = Field(..., ge=0)
    feedback: Optional[str] = None
    needs_review: bool = False

    @field_validator("question_id", mode="before")
    @classmethod
    def _id_as_string(cls, v):
        return str(v).strip() if isinstance(v, int) else v


class GradingOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Literal["ok", "success"] = "ok"
    total_score: float = Field(..., ge=0)
    max_score: float = Field(..., gt=0)
    percentage: float = Field(..., ge=0, le=100)
    grade: str = Field(..., min_length=1)
    marks_breakdown: List[MarkBreakdownEntry] = Field(..., min_length=1)
    feedback: Optional[Union[str, Dict[str, Any]]] = None
