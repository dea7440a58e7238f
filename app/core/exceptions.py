"""Custom exception classes for structured error handling."""

from typing import Any


class ArchiError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, code: str, message: str, status_code: int = 500) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class ExtractionError(ArchiError):
    def __init__(self, message: str = "Text extraction failed") -> None:
        super().__init__(code="EXTRACTION_FAILED", message=message, status_code=422)


class EmbeddingProviderError(ArchiError):
    def __init__(self, message: str = "Embedding provider call failed") -> None:
        super().__init__(code="EMBEDDING_PROVIDER_ERROR", message=message, status_code=502)


class VectorIndexError(ArchiError):
    def __init__(self, message: str = "Vector index operation failed") -> None:
        super().__init__(code="VECTOR_INDEX_ERROR", message=message, status_code=503)


class GenerationError(ArchiError):
    def __init__(self, message: str = "Completion provider call failed") -> None:
        super().__init__(code="GENERATION_FAILED", message=message, status_code=502)


class ConfigurationError(ArchiError):
    def __init__(self, message: str = "Invalid configuration") -> None:
        super().__init__(code="CONFIGURATION_ERROR", message=message, status_code=409)


class BlobStoreError(ArchiError):
    def __init__(self, message: str = "Blob store operation failed") -> None:
        super().__init__(code="BLOB_STORE_ERROR", message=message, status_code=503)


class DocumentNotFoundError(ArchiError):
    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(code="DOCUMENT_NOT_FOUND", message=message, status_code=404)


class AgentNotFoundError(ArchiError):
    def __init__(self, message: str = "Agent not found") -> None:
        super().__init__(code="AGENT_NOT_FOUND", message=message, status_code=404)


class KnowledgeBaseNotFoundError(ArchiError):
    def __init__(self, message: str = "Knowledge base not found") -> None:
        super().__init__(code="KNOWLEDGE_BASE_NOT_FOUND", message=message, status_code=404)


class InvalidFileTypeError(ArchiError):
    def __init__(self, message: str = "Unsupported file type") -> None:
        super().__init__(code="INVALID_FILE_TYPE", message=message, status_code=400)
