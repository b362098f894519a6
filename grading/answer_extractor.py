"""
Answer extraction: split an answer sheet's text into one answer per question.

The strategy is pluggable; RegexAnswerExtractor is the baseline. It anchors
on question ids written at the start of a line, optionally prefixed with
"Answer" / "Ans" / "Question", e.g.

    Q1. Binary search halves the interval ...
    Ans Q2: A stack is LIFO ...

An id only matches when no word character follows it, so "Q1" never
swallows "Q10". Each answer runs until the next recognised anchor.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

NO_ANSWER = "No answer found"


@dataclass(frozen=True)
class ExtractedAnswer:
    question_id: str
    answer_text: str

    @property
    def found(self) -> bool:
        return self.answer_text != NO_ANSWER

    def to_dict(self) -> Dict[str, str]:
        return {"question_id": self.question_id, "answer_text": self.answer_text}


class AnswerExtractionStrategy(ABC):
    @abstractmethod
    def extract(self, text: str, question_ids: Sequence[str]) -> List[ExtractedAnswer]:
        """Return exactly one ExtractedAnswer per question id, in the given order."""


class RegexAnswerExtractor(AnswerExtractionStrategy):
    PREFIX = r"(?:(?:answer|ans)\s*(?:to\s+)?(?:question\s*)?[.:\-]?\s*|question\s*)?"
    SEPARATOR = r"[ \t]*[.:)\-]?"

    def _anchor_pattern(self, question_id: str) -> "re.Pattern[str]":
        return re.compile(
            r"^[ \t]*" + self.PREFIX + re.escape(question_id) + r"(?!\w)" + self.SEPARATOR,
            re.IGNORECASE | re.MULTILINE,
        )

    def find_anchors(self, text: str, question_ids: Sequence[str]) -> List[Tuple[int, int, str]]:
        """All (start, end, question_id) anchors, ordered by position."""
        anchors: List[Tuple[int, int, str]] = []
        for qid in question_ids:
            for match in self._anchor_pattern(qid).finditer(text):
                anchors.append((match.start(), match.end(), qid))
        anchors.sort(key=lambda a: (a[0], -(a[1] - a[0])))

        # Two ids can anchor at the same line start; keep the longer match
        deduped: List[Tuple[int, int, str]] = []
        for anchor in anchors:
            if deduped and anchor[0] == deduped[-1][0]:
                continue
            deduped.append(anchor)
        return deduped

    def extract(self, text: str, question_ids: Sequence[str]) -> List[ExtractedAnswer]:
        unique_ids = list(dict.fromkeys(question_ids))
        answers: Dict[str, str] = {}
        anchors = self.find_anchors(text or "", unique_ids)

        for i, (_, end, qid) in enumerate(anchors):
            if qid in answers:
                continue
            stop = anchors[i + 1][0] if i + 1 < len(anchors) else len(text)
            body = text[end:stop].strip()
            if body:
                answers[qid] = body

        return [ExtractedAnswer(qid, answers.get(qid, NO_ANSWER)) for qid in unique_ids]
