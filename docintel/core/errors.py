"""
Error Taxonomy

Typed errors raised by the docintel services. Each carries a stable
``kind`` string and the HTTP status the transport layer maps it to, so
callers can distinguish failures without parsing messages.
"""

from __future__ import annotations


class DocIntelError(Exception):
    """Base class for all errors surfaced to callers."""

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, str]:
        """Serializable payload for API error responses."""
        return {"kind": self.kind, "message": self.message}


class NotFoundError(DocIntelError):
    """Unknown document id(s), or no document uploaded yet."""

    kind = "not_found"
    status_code = 404


class InvalidInputError(DocIntelError):
    """Empty question, unsupported file, or empty parsed content."""

    kind = "invalid_input"
    status_code = 400


class InconsistentScopeError(DocIntelError):
    """A multi-document request spans more than one namespace."""

    kind = "inconsistent_scope"
    status_code = 400


class UpstreamError(DocIntelError):
    """Embedding, vector store, or model call failed."""

    kind = "upstream_failure"
    status_code = 502


class UnprocessableContentError(DocIntelError):
    """No chunks produced, or no indexed text found for a document."""

    kind = "unprocessable_content"
    status_code = 422
