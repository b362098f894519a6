# /tests/test_answer_extractor.py

from grading.answer_extractor import NO_ANSWER, RegexAnswerExtractor

extractor = RegexAnswerExtractor()


def _as_dict(answers):
    return {a.question_id: a.answer_text for a in answers}


def test_splits_answers_by_question_id():
    """
    GIVEN an answer sheet with "Q1." and "Q2." at line starts
    WHEN answers are extracted for Q1 and Q2
    THEN each answer holds only the text under its own id
    """
    text = "Q1. Binary search halves the interval each step.\nQ2. A stack is LIFO; a queue is FIFO."
    answers = extractor.extract(text, ["Q1", "Q2"])

    assert _as_dict(answers) == {
        "Q1": "Binary search halves the interval each step.",
        "Q2": "A stack is LIFO; a queue is FIFO.",
    }


def test_q1_does_not_swallow_q10():
    text = "Q1) first answer\nQ10) tenth answer"
    answers = _as_dict(extractor.extract(text, ["Q1", "Q10"]))
    assert answers["Q1"] == "first answer"
    assert answers["Q10"] == "tenth answer"


def test_answer_prefixes_are_recognised():
    text = "Answer Q1: merge sort is O(n log n).\n\nAns Q2 - pop removes the top element.\nQuestion Q3: unanswered"
    answers = _as_dict(extractor.extract(text, ["Q1", "Q2", "Q3"]))
    assert answers == {
        "Q1": "merge sort is O(n log n).",
        "Q2": "pop removes the top element.",
        "Q3": "unanswered",
    }


def test_missing_answers_get_placeholder():
    answers = extractor.extract("Q2. only the second one", ["Q1", "Q2", "Q3"])
    assert [a.answer_text for a in answers] == [NO_ANSWER, "only the second one", NO_ANSWER]
    assert [a.found for a in answers] == [False, True, False]


def test_empty_anchor_counts_as_missing():
    answers = _as_dict(extractor.extract("Q1.\nQ2. something", ["Q1", "Q2"]))
    assert answers["Q1"] == NO_ANSWER


def test_output_follows_question_order_not_document_order():
    text = "Q3. third\nQ1. first\nQ2. second"
    answers = extractor.extract(text, ["Q1", "Q2", "Q3"])
    assert [a.question_id for a in answers] == ["Q1", "Q2", "Q3"]
    assert [a.answer_text for a in answers] == ["first", "second", "third"]


def test_ids_inside_a_sentence_are_not_anchors():
    text = "Q1. As shown in Q2 earlier, recursion needs a base case.\nQ2. Base case stops recursion."
    answers = _as_dict(extractor.extract(text, ["Q1", "Q2"]))
    assert answers["Q1"] == "As shown in Q2 earlier, recursion needs a base case."


def test_matching_ignores_case_and_multiline_answers_are_kept():
    text = "q1: line one\nline two\n\nq2: other"
    answers = _as_dict(extractor.extract(text, ["Q1", "Q2"]))
    assert answers["Q1"] == "line one\nline two"


def test_first_occurrence_wins():
    text = "Q1. first try\nQ2. answer two\nQ1. second try"
    answers = _as_dict(extractor.extract(text, ["Q1", "Q2"]))
    assert answers["Q1"] == "first try"
    assert answers["Q2"] == "answer two"


def test_to_dict_shape():
    answer = extractor.extract("Q1. yes", ["Q1"])[0]
    assert answer.to_dict() == {"question_id": "Q1", "answer_text": "yes"}
