"""
Model output validation for paper generation.

A response is accepted only if:
- it is one JSON object
- it is not a model-reported error or a needs_more_context answer
- it validates against PaperGenerationOutput (every question has id, marks > 0,
  difficulty, syllabus_tags and source_citations)
- every citation points at a retrieved excerpt or is "synthesized"
- every question of every variant has a marking-scheme entry

Anything else raises ModelOutputError (or ModelReportedError) and the paper
request ends FAILED.
"""

import json
import re
from typing import Any, Dict, Iterable

from pydantic import ValidationError

from generation.schemas import PaperGenerationOutput
from services.errors import ModelOutputError, ModelReportedError

SYNTHESIZED = "synthesized"


def parse_model_json(raw: str) -> Dict[str, Any]:
    """Extract the JSON object from a raw model response."""
    text = (raw or "").strip()
    text = re.sub(r"^```(?:json)?\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r"\s*```$", "", text, flags=re.MULTILINE)
    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end == 0:
        raise ModelOutputError(f"No JSON object found in model response: {text[:200]}")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise ModelOutputError(f"Model returned malformed JSON: {e}") from e
    if not isinstance(data, dict):
        raise ModelOutputError("Model response is not a JSON object")
    return data


def raise_for_model_status(data: Dict[str, Any]) -> None:
    """Turn a model-reported error or needs_more_context answer into an exception."""
    status = str(data.get("status") or "ok").lower()
    if status == "error":
        error = data.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        raise ModelReportedError(
            error.get("message") or "Model reported an error",
            code=error.get("code") or None,
        )
    if status == "needs_more_context":
        missing = data.get("missing_fields") or []
        raise ModelReportedError(
            "Not enough course material to generate this paper",
            code="needs_more_context",
            details={"missing_fields": missing},
        )


def summarize_validation_error(error: ValidationError, limit: int = 5) -> str:
    parts = []
    for item in error.errors()[:limit]:
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def validate_paper_output(raw: str, retrieved_ids: Iterable[str]) -> PaperGenerationOutput:
    """
    Parse and validate a generation response.

    Args:
        raw: Raw model message text
        retrieved_ids: Excerpt ids that were sent as context.rag

    Raises:
        ModelReportedError: status "error" or "needs_more_context"
        ModelOutputError: malformed or structurally invalid output
    """
    data = parse_model_json(raw)
    raise_for_model_status(data)

    try:
        output = PaperGenerationOutput.model_validate(data)
    except ValidationError as e:
        raise ModelOutputError(
            f"Generated paper failed validation: {summarize_validation_error(e)}"
        ) from e

    allowed = set(retrieved_ids) | {SYNTHESIZED}
    seen_variants = set()
    for variant in output.paper:
        if variant.variant_id in seen_variants:
            raise ModelOutputError(f"Duplicate variant id {variant.variant_id}")
        seen_variants.add(variant.variant_id)

        question_ids = variant.question_ids()
        if len(question_ids) != len(set(question_ids)):
            raise ModelOutputError(f"Variant {variant.variant_id} repeats question ids")

        for question in variant.questions():
            for citation in question.source_citations:
                if citation.id not in allowed:
                    raise ModelOutputError(
                        f"Question {question.id} cites unknown source '{citation.id}'",
                        code="invalid_citation",
                    )

        covered = {entry.question_id for entry in output.scheme_for(variant)}
        uncovered = [qid for qid in question_ids if qid not in covered]
        if uncovered:
            raise ModelOutputError(
                f"Variant {variant.variant_id} has no marking scheme for {', '.join(uncovered)}",
                code="incomplete_marking_scheme",
            )

    return output
