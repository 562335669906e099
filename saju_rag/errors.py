"""
Error taxonomy for the RAG pipeline.

Every error carries the HTTP status it maps to and a stable ``error`` code.
``public_message`` is what clients see; internal detail stays in the logs.
"""

from typing import Any, Optional


class RagError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    error_code: str = "internal_error"
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        super().__init__(message or self.public_message)
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error_code, "message": self.public_message}
        if self.details is not None:
            body["details"] = self.details
        return body


class EmbeddingError(RagError):
    """Embedding service returned no usable vector."""

    error_code = "embedding_failed"
    public_message = "Failed to process the request."


class RetrievalError(RagError):
    """Vector index or document store call failed."""

    error_code = "retrieval_failed"
    public_message = "Failed to retrieve context."


class ModelInvocationError(RagError):
    """Network or service error from the chat model."""

    status_code = 502
    error_code = "model_invocation_failed"
    public_message = "The AI model could not produce a response."

    def __init__(self, message: Optional[str] = None, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class EmptyResponseError(ModelInvocationError):
    """Chat model returned null or an empty object after a successful call."""

    error_code = "empty_model_response"
    public_message = "The AI model returned an empty response."


class DuplicateDocumentError(RagError):
    """A document with identical text already exists."""

    status_code = 409
    error_code = "duplicate_document"
    public_message = "Document with this text already exists."


class NotFoundError(RagError):
    """Lookup or delete by an unknown id."""

    status_code = 404
    error_code = "not_found"

    def __init__(self, message: str = "Resource not found.", details: Any = None):
        super().__init__(message, details)
        self.public_message = message


class InvalidRequestError(RagError):
    """Request payload failed validation."""

    status_code = 400
    error_code = "invalid_request"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message, details)
        self.public_message = message


class StageTimeoutError(RagError, TimeoutError):
    """A pipeline stage exceeded its time budget."""

    status_code = 504
    error_code = "timeout"
    public_message = "The request timed out."

    def __init__(self, stage: str, seconds: float):
        super().__init__(f"Stage '{stage}' timed out after {seconds}s")
        self.stage = stage
        self.seconds = seconds
