# /tests/test_grader.py

import json

import pytest

from database import crud
from database.models import GradingResult, PaperSubmission, SubmissionStatus
from grading.answer_extractor import NO_ANSWER
from grading.grader import GRADING_TEMPERATURE, grading_scheme, validate_grading_output
from services.errors import (
    AccessDeniedError,
    ModelOutputError,
    ModelServiceError,
    NotFoundError,
    UnsupportedFileTypeError,
)
from tests.conftest import make_grading, make_paper, prompt_payload

MAXES = {"Q1": 4, "Q2": 4, "Q3": 2}
ANSWER_SHEET = (
    b"Q1. Binary search compares with the middle element and halves the interval.\n"
    b"Q2. A stack is LIFO while a queue is FIFO.\n"
)


def _variant(db, owner, course):
    paper_request = crud.create_paper_request(
        db, user_id=owner.id, course_id=course.id, exam_type="Midterm", total_marks=10,
        duration_minutes=60, topics_include=["searching"], topics_exclude=[], seed=7, variant_count=1,
    )
    paper = make_paper(["synthesized"])
    rows = crud.complete_paper_request(db, paper_request, [{
        "variant_id": "A",
        "paper_data": paper["paper"][0],
        "marking_scheme": paper["marking_scheme"],
    }])
    return rows[0]


@pytest.fixture
def variant(db, student, course):
    return _variant(db, student, course)


@pytest.mark.asyncio
async def test_grades_submission_against_marking_scheme(db, student, variant, grader, fake_model):
    """
    GIVEN a 10-mark variant (Q1 4, Q2 4, Q3 2) and an answer sheet covering Q1 and Q2
    WHEN the student submits it for grading
    THEN the result is 7/10 at 70% and Q3 was sent to the model as unanswered
    """
    fake_model.responses.append(json.dumps(make_grading({"Q1": 3, "Q2": 4, "Q3": 0}, MAXES)))

    outcome = await grader.grade(db, student.id, variant.id, ANSWER_SHEET, "answers.txt")

    result = outcome.result
    assert (result.total_score, result.max_score, result.percentage) == (7.0, 10.0, 70.0)
    assert result.grade == "B"
    assert [m["question_id"] for m in result.marks_breakdown] == ["Q1", "Q2", "Q3"]
    assert outcome.submission.status == SubmissionStatus.GRADED
    assert outcome.submission.graded_at is not None

    answers = {a["question_id"]: a["answer_text"] for a in outcome.submission.extracted_answers}
    assert answers["Q2"] == "A stack is LIFO while a queue is FIFO."
    assert answers["Q3"] == NO_ANSWER

    call = fake_model.calls[0]
    assert call["temperature"] == GRADING_TEMPERATURE == 0.1
    payload = prompt_payload(call["prompt"])
    assert payload["paper_variant_id"] == variant.id
    assert [e["answer_key"] for e in payload["marking_scheme"]] == ["Key for Q1", "Key for Q2", "Key for Q3"]
    assert payload["course_policy"]["partial_marking"] is True


@pytest.mark.asyncio
async def test_submitted_file_is_stored(db, student, variant, grader, fake_model, storage):
    fake_model.responses.append(json.dumps(make_grading({"Q1": 4, "Q2": 4, "Q3": 2}, MAXES, grade="A")))

    outcome = await grader.grade(db, student.id, variant.id, ANSWER_SHEET, "answers.txt")

    assert outcome.submission.submitted_file.endswith(".txt")
    assert storage.read(outcome.submission.submitted_file) == ANSWER_SHEET


@pytest.mark.asyncio
async def test_cannot_grade_someone_elses_variant(db, other_student, variant, grader, fake_model):
    with pytest.raises(AccessDeniedError) as exc:
        await grader.grade(db, other_student.id, variant.id, ANSWER_SHEET, "answers.txt")

    assert exc.value.http_status == 403
    assert db.query(PaperSubmission).count() == 0
    assert fake_model.calls == []


@pytest.mark.asyncio
async def test_unknown_variant(db, student, grader):
    with pytest.raises(NotFoundError):
        await grader.grade(db, student.id, 999, ANSWER_SHEET, "answers.txt")


@pytest.mark.asyncio
async def test_unsupported_answer_file_creates_no_submission(db, student, variant, grader, fake_model):
    with pytest.raises(UnsupportedFileTypeError):
        await grader.grade(db, student.id, variant.id, b"\x89PNG", "answers.png")
    assert db.query(PaperSubmission).count() == 0


@pytest.mark.asyncio
async def test_incomplete_breakdown_leaves_submission_ungraded(db, student, variant, grader, fake_model):
    """
    GIVEN a model response that omits Q3 from the breakdown
    WHEN the result is validated
    THEN grading fails with incomplete_grading and the submission stays SUBMITTED without a result
    """
    fake_model.responses.append(json.dumps(make_grading({"Q1": 3, "Q2": 4}, {"Q1": 4, "Q2": 4})))

    with pytest.raises(ModelOutputError) as exc:
        await grader.grade(db, student.id, variant.id, ANSWER_SHEET, "answers.txt")

    assert exc.value.code == "incomplete_grading"
    submission = db.query(PaperSubmission).one()
    assert submission.status == SubmissionStatus.SUBMITTED
    assert db.query(GradingResult).count() == 0


@pytest.mark.asyncio
async def test_model_failure_leaves_submission_ungraded(db, student, variant, grader, fake_model):
    fake_model.responses.append(ModelServiceError("model timed out"))

    with pytest.raises(ModelServiceError):
        await grader.grade(db, student.id, variant.id, ANSWER_SHEET, "answers.txt")

    assert db.query(PaperSubmission).one().status == SubmissionStatus.SUBMITTED
    assert db.query(GradingResult).count() == 0


@pytest.mark.asyncio
async def test_regrade_creates_independent_result(db, student, variant, grader, fake_model):
    """
    GIVEN a graded submission
    WHEN it is regraded
    THEN a second submission and result exist and the first result is unchanged
    """
    fake_model.responses.extend([
        json.dumps(make_grading({"Q1": 3, "Q2": 4, "Q3": 0}, MAXES)),
        json.dumps(make_grading({"Q1": 4, "Q2": 4, "Q3": 0}, MAXES)),
    ])
    first = await grader.grade(db, student.id, variant.id, ANSWER_SHEET, "answers.txt")
    first_result_id = first.result.id

    second = await grader.regrade(db, student.id, first.submission.id)

    assert second.submission.id != first.submission.id
    assert second.submission.submitted_file == first.submission.submitted_file
    assert second.result.total_score == 8.0
    assert db.query(GradingResult).count() == 2
    assert db.get(GradingResult, first_result_id).total_score == 7.0


@pytest.mark.asyncio
async def test_regrade_requires_ownership(db, student, other_student, variant, grader, fake_model):
    fake_model.responses.append(json.dumps(make_grading({"Q1": 3, "Q2": 4, "Q3": 0}, MAXES)))
    first = await grader.grade(db, student.id, variant.id, ANSWER_SHEET, "answers.txt")

    with pytest.raises(AccessDeniedError):
        await grader.regrade(db, other_student.id, first.submission.id)


def test_scheme_falls_back_to_question_marks(db, student, course):
    variant = _variant(db, student, course)
    variant.marking_scheme = [{"question_id": "Q1", "answer_key": "k", "max_marks": 4}]

    scheme = grading_scheme(variant)

    assert [(e["question_id"], e["max_marks"]) for e in scheme] == [("Q1", 4.0), ("Q2", 4.0), ("Q3", 2.0)]
    assert scheme[1]["answer_key"] is None


def test_zero_max_marks_in_scheme_is_kept(db, student, course):
    variant = _variant(db, student, course)
    variant.marking_scheme = [{"question_id": "Q3", "answer_key": "bonus", "max_marks": 0}]

    scheme = {e["question_id"]: e["max_marks"] for e in grading_scheme(variant)}

    assert scheme == {"Q1": 4.0, "Q2": 4.0, "Q3": 0.0}


def _scheme():
    return [{"question_id": qid, "max_marks": float(m)} for qid, m in MAXES.items()]


def test_awarded_above_max_is_rejected():
    raw = json.dumps(make_grading({"Q1": 5, "Q2": 4, "Q3": 0}, MAXES))
    with pytest.raises(ModelOutputError) as exc:
        validate_grading_output(raw, _scheme())
    assert exc.value.code == "invalid_model_output"


def test_inconsistent_total_is_rejected():
    data = make_grading({"Q1": 3, "Q2": 4, "Q3": 0}, MAXES)
    data["total_score"] = 9
    with pytest.raises(ModelOutputError) as exc:
        validate_grading_output(json.dumps(data), _scheme())
    assert exc.value.code == "inconsistent_totals"


def test_inconsistent_percentage_is_rejected():
    data = make_grading({"Q1": 3, "Q2": 4, "Q3": 0}, MAXES)
    data["percentage"] = 85
    with pytest.raises(ModelOutputError) as exc:
        validate_grading_output(json.dumps(data), _scheme())
    assert exc.value.code == "inconsistent_totals"


def test_unknown_question_is_rejected():
    awards = {"Q1": 3, "Q2": 4, "Q3": 0, "Q9": 0}
    raw = json.dumps(make_grading(awards, dict(MAXES, Q9=1)))
    with pytest.raises(ModelOutputError):
        validate_grading_output(raw, _scheme())


def test_breakdown_is_returned_in_scheme_order():
    data = make_grading({"Q3": 1, "Q1": 2, "Q2": 3}, {"Q3": 2, "Q1": 4, "Q2": 4})
    result = validate_grading_output(json.dumps(data), _scheme())
    assert [m["question_id"] for m in result["marks_breakdown"]] == ["Q1", "Q2", "Q3"]
    assert result["percentage"] == 60.0
