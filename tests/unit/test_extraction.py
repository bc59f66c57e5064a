"""
Extraction Engine Unit Tests

Tests for output normalisation, completeness-weighted confidence and
prompt construction with a scripted model.
"""

from __future__ import annotations

import pytest

from docintel.core.errors import UpstreamError
from docintel.models.schemas import ShipmentExtraction
from docintel.services.extraction import (
    EXTRACTION_PROMPT,
    ExtractionEngine,
    ShipmentExtractionDraft,
    extraction_confidence,
    normalize_extraction,
    reconstruct_text,
    to_nullable_number,
    to_nullable_string,
)
from tests.fakes import make_snippet

_FIELDS = (
    "shipment_id",
    "shipper",
    "consignee",
    "pickup_datetime",
    "delivery_datetime",
    "equipment_type",
    "mode",
    "rate",
    "currency",
    "weight",
    "carrier_name",
)


def _draft(confidence: float = 0.9, **fields) -> ShipmentExtractionDraft:
    values = dict.fromkeys(_FIELDS)
    values.update(fields)
    return ShipmentExtractionDraft(**values, self_assessed_confidence=confidence)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


class TestNormalisation:
    def test_strings_trimmed_and_blank_is_null(self) -> None:
        assert to_nullable_string("  ACME  ") == "ACME"
        assert to_nullable_string("   ") is None
        assert to_nullable_string(None) is None

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (1250, 1250.0),
            (12.5, 12.5),
            ("USD 1,250.00", 1250.0),
            ("-3.5 kg", -3.5),
            ("n/a", None),
            ("1.2.3", 1.2),
            ("2450.00 - flat", 2450.0),
            ("$1,200.00 (net 30-days)", 1200.003),
            ("1500.00.", 1500.0),
            ("-", None),
            (".5 t", 0.5),
            (float("inf"), None),
            (None, None),
            (True, None),
        ],
    )
    def test_number_coercion(self, raw, expected) -> None:
        assert to_nullable_number(raw) == expected

    def test_normalize_extraction(self) -> None:
        extraction = normalize_extraction(
            _draft(shipment_id=" SHP-1042 ", rate="$2,100", currency=" ", weight="18,000 lbs")
        )

        assert extraction.shipment_id == "SHP-1042"
        assert extraction.rate == 2100.0
        assert extraction.currency is None
        assert extraction.weight == 18000.0


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


class TestExtractionConfidence:
    def test_all_null_with_full_model_confidence(self) -> None:
        assert extraction_confidence(ShipmentExtraction(), 1.0) == 0.65

    def test_complete_record(self) -> None:
        extraction = ShipmentExtraction(
            **{name: "x" for name in _FIELDS if name not in ("rate", "weight")},
            rate=1.0,
            weight=2.0,
        )
        assert extraction_confidence(extraction, 1.0) == 1.0

    def test_model_confidence_clamped(self) -> None:
        assert extraction_confidence(ShipmentExtraction(), 7.0) == 0.65
        assert extraction_confidence(ShipmentExtraction(), -1.0) == 0.0


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TestExtractionEngine:
    @pytest.mark.asyncio
    async def test_extracts_and_scores(self, llm) -> None:
        llm.queue(ShipmentExtractionDraft, _draft(1.0, shipment_id="SHP-1042", rate="USD 900"))
        engine = ExtractionEngine(llm)

        extraction, confidence = await engine.extract("Shipment SHP-1042", file_name="bol.pdf")

        assert extraction.shipment_id == "SHP-1042"
        assert extraction.rate == 900.0
        assert confidence == round(0.65 + 0.35 * 2 / 11, 4)

        schema, messages = llm.calls[0]
        assert schema is ShipmentExtractionDraft
        assert messages[0] == {"role": "system", "content": EXTRACTION_PROMPT}
        assert messages[1]["content"].startswith("File name: bol.pdf")

    @pytest.mark.asyncio
    async def test_truncates_input(self, llm) -> None:
        llm.queue(ShipmentExtractionDraft, _draft())
        engine = ExtractionEngine(llm, max_chars=10)

        await engine.extract("0123456789ABCDEF")

        content = llm.calls[0][1][1]["content"]
        assert content.endswith("Document:\n0123456789")
        assert "File name: unknown" in content

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, llm) -> None:
        llm.queue(ShipmentExtractionDraft, UpstreamError("quota"))

        with pytest.raises(UpstreamError):
            await ExtractionEngine(llm).extract("text")


class TestReconstructText:
    def test_joins_in_order(self) -> None:
        chunks = [make_snippet("a", 0.0, text="first"), make_snippet("b", 0.0, text="second")]
        assert reconstruct_text(chunks) == "first\n\nsecond"

    def test_empty(self) -> None:
        assert reconstruct_text([]) == ""
