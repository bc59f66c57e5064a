"""
Document Intelligence Schemas

Pydantic models for the records flowing through the pipeline:
pages → chunks → indexed snippets → answers and extractions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Guardrail = Literal["ok", "caution", "not_found"]


class PageText(BaseModel):
    """Raw text of one parsed page (1-based page number)."""

    page_number: int = Field(ge=1)
    text: str


class ChunkMetadata(BaseModel):
    """
    Metadata stored alongside every chunk record.

    Every field has a safe default because the same model is used to
    read metadata back from the store, where older or foreign records
    may be missing keys.
    """

    document_id: str = ""
    tenant_id: str = ""
    document_title: str = ""
    source_file_name: str = ""
    uploaded_at: str = Field(default="", description="ISO-8601 upload time")
    page_number: int = 0
    chunk_number: int = Field(default=0, description="Document-global, 1-based")
    chunk_text: str = ""


class ChunkRecord(BaseModel):
    """
    A citeable unit of document text ready for indexing.

    Attributes:
        id: ``<document_id>#p<page>c<ordinal>``.
        text: Chunk text.
        metadata: Document/page/position metadata.
    """

    id: str
    text: str
    metadata: ChunkMetadata


class SourceSnippet(BaseModel):
    """A retrieval result. Produced per query, never persisted."""

    id: str
    score: float
    text: str
    metadata: ChunkMetadata


class SparseValues(BaseModel):
    """Sparse (lexical) embedding as parallel index/value lists."""

    indices: list[int] = Field(default_factory=list)
    values: list[float] = Field(default_factory=list)


class DocumentEntry(BaseModel):
    """
    Registry entry for one uploaded document.

    Written exactly once, after all of the document's chunks are indexed.
    """

    document_id: str
    tenant_id: str
    namespace: str
    file_name: str
    uploaded_at: datetime
    chunk_count: int = Field(ge=0)


class UploadResult(BaseModel):
    """Summary returned after a successful upload."""

    document_id: str
    file_name: str
    chunk_count: int
    namespace: str
    uploaded_at: datetime


class AskResult(BaseModel):
    """Calibrated answer to a question over one or more documents."""

    document_id: str = Field(description="Primary (first) document in scope")
    document_ids: list[str]
    answer: str
    confidence: float = Field(ge=0.0, le=1.0)
    guardrail: Guardrail
    rewritten_query: str
    sources: list[SourceSnippet] = Field(default_factory=list)


class ShipmentExtraction(BaseModel):
    """Structured shipment record. Every field is nullable."""

    shipment_id: str | None = None
    shipper: str | None = None
    consignee: str | None = None
    pickup_datetime: str | None = None
    delivery_datetime: str | None = None
    equipment_type: str | None = None
    mode: str | None = None
    rate: float | None = None
    currency: str | None = None
    weight: float | None = None
    carrier_name: str | None = None


class ExtractionResult(BaseModel):
    """Extraction output for a single document."""

    document_id: str
    file_name: str
    extraction: ShipmentExtraction
    confidence: float = Field(ge=0.0, le=1.0)


class ExtractionFailure(BaseModel):
    """A document skipped under the ``collect`` failure policy."""

    document_id: str
    kind: str
    message: str


class ExtractResponse(BaseModel):
    """Extraction output for every document in scope."""

    results: list[ExtractionResult] = Field(default_factory=list)
    total: int = 0
    failures: list[ExtractionFailure] = Field(default_factory=list)
