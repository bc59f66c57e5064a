"""
Shipment Extraction

Produces a structured shipment record from a document's full text and
weights the model's self-reported confidence by how complete the record
actually is.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from typing import Final

from pydantic import BaseModel, Field

from docintel.core.config import settings
from docintel.models.schemas import ShipmentExtraction, SourceSnippet
from docintel.services.hybrid_index import clamp
from docintel.services.llm import Message, StructuredModel

logger = logging.getLogger(__name__)

MODEL_CONFIDENCE_WEIGHT: Final[float] = 0.65
COMPLETENESS_WEIGHT: Final[float] = 0.35

EXTRACTION_PROMPT: Final[str] = (
    "Extract shipment data from a logistics document. Return null for missing "
    "fields. Use ISO-8601 datetime when explicitly present; otherwise keep "
    "original date-time text. Keep currency as a 3-letter code when available."
)

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


class ShipmentExtractionDraft(BaseModel):
    """Raw model output before normalisation."""

    shipment_id: str | None
    shipper: str | None
    consignee: str | None
    pickup_datetime: str | None
    delivery_datetime: str | None
    equipment_type: str | None
    mode: str | None
    rate: float | str | None
    currency: str | None
    weight: float | str | None
    carrier_name: str | None
    self_assessed_confidence: float = Field(description="Own certainty, 0 to 1")


def to_nullable_string(value: str | None) -> str | None:
    """Trimmed string, or None when missing/blank."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def to_nullable_number(value: float | str | None) -> float | None:
    """
    Coerce a number-or-string to float.

    Strings keep only digits, ``.`` and ``-``, then the leading numeric
    prefix is parsed: ``"USD 1,250.00"`` becomes ``1250.0`` and
    ``"2450.00 - flat"`` becomes ``2450.0``. No prefix yields None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    match = _LEADING_NUMBER.match(_NON_NUMERIC.sub("", value))
    if match is None:
        return None
    parsed = float(match.group())
    return parsed if math.isfinite(parsed) else None


def normalize_extraction(draft: ShipmentExtractionDraft) -> ShipmentExtraction:
    return ShipmentExtraction(
        shipment_id=to_nullable_string(draft.shipment_id),
        shipper=to_nullable_string(draft.shipper),
        consignee=to_nullable_string(draft.consignee),
        pickup_datetime=to_nullable_string(draft.pickup_datetime),
        delivery_datetime=to_nullable_string(draft.delivery_datetime),
        equipment_type=to_nullable_string(draft.equipment_type),
        mode=to_nullable_string(draft.mode),
        rate=to_nullable_number(draft.rate),
        currency=to_nullable_string(draft.currency),
        weight=to_nullable_number(draft.weight),
        carrier_name=to_nullable_string(draft.carrier_name),
    )


def extraction_confidence(extraction: ShipmentExtraction, model_confidence: float) -> float:
    """
    Blend model certainty with record completeness.

    ``0.65 * model_confidence + 0.35 * (non-null fields / all fields)``,
    rounded to 4 decimals.
    """
    values = extraction.model_dump().values()
    completeness = sum(1 for v in values if v is not None) / len(ShipmentExtraction.model_fields)
    return round(
        MODEL_CONFIDENCE_WEIGHT * clamp(model_confidence, 0.0, 1.0)
        + COMPLETENESS_WEIGHT * completeness,
        4,
    )


def reconstruct_text(chunks: Sequence[SourceSnippet]) -> str:
    """Join ordered chunk texts back into the document body."""
    return "\n\n".join(chunk.text for chunk in chunks).strip()


class ExtractionEngine:
    """
    Structured shipment extraction over reconstructed document text.

    Usage::

        engine = ExtractionEngine(StructuredLLM())
        extraction, confidence = await engine.extract(text, file_name="bol.pdf")

    Args:
        llm: Structured-output model.
        max_chars: Ceiling on the text sent to the model.
    """

    def __init__(self, llm: StructuredModel, max_chars: int | None = None) -> None:
        self._llm = llm
        self._max_chars = max_chars or settings.EXTRACTION_MAX_CHARS

    async def extract(
        self, text: str, file_name: str | None = None
    ) -> tuple[ShipmentExtraction, float]:
        """
        Extract a shipment record from document text.

        Returns:
            The normalised record and its weighted confidence.

        Raises:
            UpstreamError: If the model call fails.
        """
        safe_text = text[: self._max_chars]
        if len(text) > self._max_chars:
            logger.info("Truncated extraction input from %d to %d chars", len(text), self._max_chars)

        messages: list[Message] = [
            {"role": "system", "content": EXTRACTION_PROMPT},
            {
                "role": "user",
                "content": f"File name: {file_name or 'unknown'}\n\nDocument:\n{safe_text}",
            },
        ]
        draft = await self._llm.invoke(messages, ShipmentExtractionDraft)

        extraction = normalize_extraction(draft)
        confidence = extraction_confidence(extraction, draft.self_assessed_confidence)
        return extraction, confidence
