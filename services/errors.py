"""
Error taxonomy shared by the generation and grading pipelines.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer should answer with. Upstream errors never expose service internals to
callers; their ``public_message`` is a generic retry hint.
"""

from typing import Any, Dict, Optional


class PaperSmithError(Exception):
    """Base class for all domain errors."""

    code = "internal_error"
    http_status = 500

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    @property
    def public_message(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.public_message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


# ─── Precondition failures ────────────────────────────────────────────────────

class PreconditionError(PaperSmithError):
    """Rejected before any expensive call is made."""

    code = "precondition_failed"
    http_status = 400


class QuotaExhaustedError(PreconditionError):
    code = "quota_exhausted"
    http_status = 403


class NoActivePlanError(PreconditionError):
    code = "no_active_plan"
    http_status = 403


class AccessDeniedError(PreconditionError):
    code = "forbidden"
    http_status = 403


class NotFoundError(PreconditionError):
    code = "not_found"
    http_status = 404


class UnsupportedFileTypeError(PreconditionError):
    code = "unsupported_file_type"
    http_status = 400


class FileTooLargeError(PreconditionError):
    code = "file_too_large"
    http_status = 413


class NoExtractableTextError(PreconditionError):
    code = "no_extractable_text"
    http_status = 422


class UnreadableDocumentError(PreconditionError):
    code = "unreadable_document"
    http_status = 422


# ─── Upstream service failures ────────────────────────────────────────────────

class UpstreamServiceError(PaperSmithError):
    """Embedding / vector index / model call failed or timed out."""

    code = "upstream_unavailable"
    http_status = 503

    def __init__(self, message: str, service: str, retryable: bool = True, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.service = service
        self.retryable = retryable

    @property
    def public_message(self) -> str:
        return "The service is temporarily unavailable. Please try again."

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.public_message, "code": self.code, "retryable": self.retryable}


class EmbeddingServiceError(UpstreamServiceError):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message, service="embedding", retryable=retryable)


class VectorIndexError(UpstreamServiceError):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message, service="vector_index", retryable=retryable)


class ModelServiceError(UpstreamServiceError):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message, service="generative_model", retryable=retryable)


# ─── Validation failures ──────────────────────────────────────────────────────

class ModelOutputError(PaperSmithError):
    """The model answered, but not with something we can accept."""

    code = "invalid_model_output"
    http_status = 502


class ModelReportedError(ModelOutputError):
    """The model returned a structured error object (e.g. insufficient context)."""

    code = "model_reported_error"
    http_status = 422
