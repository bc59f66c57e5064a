"""Models package - Pydantic schemas and SQLAlchemy ORM for docintel."""

from docintel.models.orm import DENSE_DIMENSION, SPARSE_DIMENSION, VectorRecordRow
from docintel.models.schemas import (
    AskResult,
    ChunkMetadata,
    ChunkRecord,
    DocumentEntry,
    ExtractionFailure,
    ExtractionResult,
    ExtractResponse,
    Guardrail,
    PageText,
    ShipmentExtraction,
    SourceSnippet,
    SparseValues,
    UploadResult,
)

__all__ = [
    # Pydantic schemas (pipeline records)
    "AskResult",
    "ChunkMetadata",
    "ChunkRecord",
    "DocumentEntry",
    "ExtractionFailure",
    "ExtractionResult",
    "ExtractResponse",
    "Guardrail",
    "PageText",
    "ShipmentExtraction",
    "SourceSnippet",
    "SparseValues",
    "UploadResult",
    # SQLAlchemy ORM (persistence layer)
    "VectorRecordRow",
    "DENSE_DIMENSION",
    "SPARSE_DIMENSION",
]
