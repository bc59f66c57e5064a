"""
Document Intelligence API Schemas

Request bodies for the JSON endpoints. Response bodies reuse the
pipeline models from ``docintel.models.schemas``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    """Request body for grounded question answering."""

    question: str = Field(
        ...,
        description="Natural language question about the uploaded documents",
    )
    document_id: str | None = Field(
        default=None,
        description="Single document to ask about (defaults to the latest upload)",
    )
    document_ids: list[str] | None = Field(
        default=None,
        description="Documents to ask across; takes precedence over document_id",
    )


class ExtractRequest(BaseModel):
    """Request body for shipment extraction."""

    document_id: str | None = Field(
        default=None,
        description="Single document to extract from (defaults to the latest upload)",
    )
    document_ids: list[str] | None = Field(
        default=None,
        description="Documents to extract from, in order",
    )
