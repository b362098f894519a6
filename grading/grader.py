"""
Grading Orchestrator

grade():    ownership → extract text → extract answers → store file →
            SUBMITTED submission → model (temperature 0.1) → validate →
            GradingResult + GRADED in one transaction
regrade():  new submission from the stored file of an existing one, graded
            the same way; earlier results are never touched

If the model call or validation fails the submission stays SUBMITTED and the
error propagates.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from database import crud
from database.models import Course, GradingResult, PaperSubmission, PaperVariant
from generation.gpt_client import ChatModelClient
from generation.prompts import GRADING_OUTPUT_SCHEMA, GRADING_PROMPT
from generation.schemas import GradingOutput
from generation.validator import parse_model_json, raise_for_model_status, summarize_validation_error
from grading.answer_extractor import AnswerExtractionStrategy, ExtractedAnswer, RegexAnswerExtractor
from ingestion.parser import DocumentTextExtractor
from services.errors import (
    AccessDeniedError,
    ModelOutputError,
    NotFoundError,
    PaperSmithError,
    PreconditionError,
)
from services.storage import LocalFileStorage

log = logging.getLogger(__name__)

GRADING_TEMPERATURE = 0.1
GRADING_MAX_TOKENS = 3000

SCORE_TOLERANCE = 0.01
PERCENTAGE_TOLERANCE = 1.0


@dataclass
class GradingOutcome:
    submission: PaperSubmission
    result: GradingResult


def grading_scheme(variant: PaperVariant) -> List[Dict[str, Any]]:
    """
    One entry per question of the variant, in paper order.
    Question marks fill in when a scheme entry lacks max_marks.
    """
    entries = {
        str(e.get("question_id")): e
        for e in (variant.marking_scheme or [])
        if isinstance(e, dict) and e.get("question_id") is not None
    }
    scheme: List[Dict[str, Any]] = []
    for section in (variant.paper_data or {}).get("sections", []):
        for question in section.get("questions", []):
            qid = str(question.get("id"))
            entry = entries.get(qid, {})
            max_marks = entry.get("max_marks")
            if max_marks is None:
                max_marks = question.get("marks")
            scheme.append({
                "question_id": qid,
                "question_text": question.get("text"),
                "answer_key": entry.get("answer_key"),
                "rubric": entry.get("rubric"),
                "max_marks": float(max_marks or 0),
                "difficulty": question.get("difficulty"),
            })
    return scheme


def build_grading_prompt(
    variant: PaperVariant,
    course: Course,
    scheme: List[Dict[str, Any]],
    answers: List[ExtractedAnswer],
) -> str:
    payload = {
        "paper_variant_id": variant.id,
        "marking_scheme": scheme,
        "extracted_answers": [a.to_dict() for a in answers],
        "course_policy": {
            "grading_scale": course.grading_scale,
            "pass_threshold": course.pass_threshold,
            "partial_marking": bool(course.partial_marking),
            "language": course.language,
        },
        "output_schema": GRADING_OUTPUT_SCHEMA,
    }
    return (
        "Grade this submission per the system rules using this input:\n"
        + json.dumps(payload, sort_keys=True, ensure_ascii=False, indent=2)
        + "\n\nRespond with exactly one JSON object following output_schema."
    )


def validate_grading_output(raw: str, scheme: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Parse and check a grading response against the marking scheme.

    Returns:
        Dict ready for crud.record_grading_result
    """
    data = parse_model_json(raw)
    raise_for_model_status(data)
    try:
        output = GradingOutput.model_validate(data)
    except ValidationError as e:
        raise ModelOutputError(f"Grading result failed validation: {summarize_validation_error(e)}") from e

    max_by_question = {entry["question_id"]: entry["max_marks"] for entry in scheme}
    breakdown = {}
    for item in output.marks_breakdown:
        if item.question_id not in max_by_question:
            raise ModelOutputError(f"Grading result mentions unknown question {item.question_id}")
        if item.question_id in breakdown:
            raise ModelOutputError(f"Grading result repeats question {item.question_id}")
        if item.awarded_marks > max_by_question[item.question_id] + SCORE_TOLERANCE:
            raise ModelOutputError(
                f"Question {item.question_id}: awarded {item.awarded_marks} exceeds "
                f"max {max_by_question[item.question_id]}"
            )
        breakdown[item.question_id] = item

    missing = [qid for qid in max_by_question if qid not in breakdown]
    if missing:
        raise ModelOutputError(
            f"Grading result has no marks for {', '.join(missing)}", code="incomplete_grading"
        )

    awarded_total = sum(item.awarded_marks for item in breakdown.values())
    max_total = sum(max_by_question.values())
    if abs(output.total_score - awarded_total) > SCORE_TOLERANCE:
        raise ModelOutputError(
            f"total_score {output.total_score} != sum of awarded marks {awarded_total}",
            code="inconsistent_totals",
        )
    if abs(output.max_score - max_total) > SCORE_TOLERANCE:
        raise ModelOutputError(
            f"max_score {output.max_score} != sum of max marks {max_total}",
            code="inconsistent_totals",
        )
    expected_pct = awarded_total / max_total * 100 if max_total else 0.0
    if abs(output.percentage - expected_pct) > PERCENTAGE_TOLERANCE:
        raise ModelOutputError(
            f"percentage {output.percentage} inconsistent with {awarded_total}/{max_total}",
            code="inconsistent_totals",
        )

    return {
        "total_score": round(awarded_total, 2),
        "max_score": round(max_total, 2),
        "percentage": round(expected_pct, 2),
        "grade": output.grade.strip(),
        "marks_breakdown": [
            breakdown[entry["question_id"]].model_dump(mode="json") for entry in scheme
        ],
        "feedback": output.feedback,
    }


class Grader:
    def __init__(
        self,
        model: ChatModelClient,
        text_extractor: DocumentTextExtractor,
        storage: LocalFileStorage,
        answer_strategy: Optional[AnswerExtractionStrategy] = None,
    ):
        self.model = model
        self.text_extractor = text_extractor
        self.storage = storage
        self.answer_strategy = answer_strategy or RegexAnswerExtractor()

    def _load_owned_variant(self, db: Session, user_id: int, paper_variant_id: int) -> PaperVariant:
        variant = crud.get_paper_variant(db, paper_variant_id)
        if variant is None:
            raise NotFoundError(f"Paper variant {paper_variant_id} not found")
        if variant.paper_request.user_id != user_id:
            log.warning("User %s tried to grade variant %s they do not own", user_id, paper_variant_id)
            raise AccessDeniedError("You can only grade your own papers")
        return variant

    async def grade(
        self,
        db: Session,
        user_id: int,
        paper_variant_id: int,
        content: bytes,
        filename: str,
    ) -> GradingOutcome:
        variant = self._load_owned_variant(db, user_id, paper_variant_id)
        return await self._submit_and_grade(db, user_id, variant, content, filename)

    async def regrade(self, db: Session, user_id: int, submission_id: int) -> GradingOutcome:
        """Grade the stored file of an earlier submission as a new submission."""
        previous = crud.get_submission(db, submission_id)
        if previous is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        if previous.user_id != user_id:
            raise AccessDeniedError("You can only regrade your own submissions")
        variant = self._load_owned_variant(db, user_id, previous.paper_variant_id)
        content = self.storage.read(previous.submitted_file)
        log.info("Regrading submission %s as a new submission", submission_id)
        return await self._submit_and_grade(
            db, user_id, variant, content, previous.submitted_file, stored_name=previous.submitted_file
        )

    async def _submit_and_grade(
        self,
        db: Session,
        user_id: int,
        variant: PaperVariant,
        content: bytes,
        filename: str,
        stored_name: Optional[str] = None,
    ) -> GradingOutcome:
        scheme = grading_scheme(variant)
        if not scheme:
            raise PreconditionError(f"Paper variant {variant.id} has no questions to grade")

        text = await self.text_extractor.extract(content, filename)
        answers = self.answer_strategy.extract(text, [entry["question_id"] for entry in scheme])
        found = sum(1 for a in answers if a.found)
        log.info("Variant %s: extracted %s/%s answers", variant.id, found, len(answers))

        if stored_name is None:
            stored_name = self.storage.save(content, filename)
        submission = crud.create_submission(
            db,
            user_id=user_id,
            paper_variant_id=variant.id,
            submitted_file=stored_name,
            extracted_answers=[a.to_dict() for a in answers],
        )

        course = variant.paper_request.course
        try:
            raw = await self.model.complete_json(
                system=GRADING_PROMPT,
                prompt=build_grading_prompt(variant, course, scheme, answers),
                temperature=GRADING_TEMPERATURE,
                max_tokens=GRADING_MAX_TOKENS,
            )
            result = validate_grading_output(raw, scheme)
            grading = crud.record_grading_result(db, submission, result)
        except PaperSmithError as e:
            log.error(
                "Grading failed for submission %s [%s]: %s; left SUBMITTED", submission.id, e.code, e.message
            )
            raise

        log.info(
            "Submission %s graded: %s/%s (%s%%, %s)",
            submission.id, grading.total_score, grading.max_score, grading.percentage, grading.grade,
        )
        return GradingOutcome(submission=submission, result=grading)
