"""
Retrieval Agent Unit Tests

Covers the evidence pool, confidence calibration, guardrail gates and
the rewrite → retrieve → answer loop with a scripted model and a stub
index.
"""

from __future__ import annotations

import pytest

from docintel.core.errors import UpstreamError
from docintel.services.agent import (
    CAUTION_NOTICE,
    NOT_FOUND_ANSWER,
    AgentAnswer,
    AgentStep,
    CallRetrieve,
    EvidencePool,
    GuardrailThresholds,
    Respond,
    RetrievalAgent,
    RewrittenQuery,
    apply_guardrail,
    build_context,
    compute_confidence,
    to_decision,
)
from tests.fakes import make_snippet

NAMESPACE = "tenant-demo:acme"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class StubIndex:
    """Returns the same snippets for every query and records calls."""

    def __init__(self, snippets=None) -> None:
        self.snippets = list(snippets or [])
        self.calls: list[dict] = []

    async def query(self, text, namespace, top_k, document_id=None, document_ids=None):
        self.calls.append(
            {"text": text, "namespace": namespace, "top_k": top_k, "document_ids": document_ids}
        )
        return list(self.snippets)


def _answer(
    text: str = "Pickup is on 2026-03-02.",
    grounded: bool = True,
    not_found: bool = False,
    cited: list[str] | None = None,
) -> AgentAnswer:
    return AgentAnswer(
        answer=text, grounded=grounded, not_found=not_found, cited_chunk_ids=cited or []
    )


def _retrieve(query: str) -> AgentStep:
    return AgentStep(action="retrieve", query=query, answer=None)


def _respond(answer: AgentAnswer) -> AgentStep:
    return AgentStep(action="respond", query=None, answer=answer)


def _pool(*scores: float) -> EvidencePool:
    return EvidencePool().merge(make_snippet(f"c{i}", s) for i, s in enumerate(scores))


THRESHOLDS = GuardrailThresholds()


# ---------------------------------------------------------------------------
# Evidence pool
# ---------------------------------------------------------------------------


class TestEvidencePool:
    def test_merge_keeps_max_score_per_id(self) -> None:
        pool = EvidencePool().merge([make_snippet("a", 0.5)])
        pool = pool.merge([make_snippet("a", 0.9), make_snippet("b", 0.7)])
        pool = pool.merge([make_snippet("a", 0.2)])

        assert [(s.id, s.score) for s in pool.snippets] == [("a", 0.9), ("b", 0.7)]

    def test_merge_evicts_lowest_beyond_limit(self) -> None:
        pool = EvidencePool(limit=2).merge(
            [make_snippet("a", 0.1), make_snippet("b", 0.9), make_snippet("c", 0.5)]
        )

        assert [s.id for s in pool.snippets] == ["b", "c"]
        assert pool.limit == 2

    def test_merge_returns_new_pool(self) -> None:
        original = EvidencePool()
        merged = original.merge([make_snippet("a", 1.0)])

        assert len(original) == 0
        assert len(merged) == 1

    def test_top_score(self) -> None:
        assert EvidencePool().top_score == 0.0
        assert _pool(0.4, 1.3).top_score == 1.3


class TestBuildContext:
    def test_truncates_long_text(self) -> None:
        context = build_context([make_snippet("a", 1.0, text="x" * 1000)])
        assert f"text={'x' * 900}..." in context

    def test_caps_number_of_sources(self) -> None:
        snippets = [make_snippet(f"c{i}", 1.0) for i in range(8)]
        context = build_context(snippets)

        assert context.count("chunk_id=") == 6
        assert "chunk_id=c6" not in context


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class TestToDecision:
    def test_respond_with_answer(self) -> None:
        decision = to_decision(_respond(_answer()), "fallback")
        assert isinstance(decision, Respond)

    def test_respond_without_answer_retrieves(self) -> None:
        step = AgentStep(action="respond", query=None, answer=None)
        assert to_decision(step, "fallback") == CallRetrieve("fallback")

    def test_blank_query_uses_fallback(self) -> None:
        assert to_decision(_retrieve("  "), "fallback") == CallRetrieve("fallback")
        assert to_decision(_retrieve(" rate "), "fallback") == CallRetrieve("rate")


# ---------------------------------------------------------------------------
# Confidence and guardrail
# ---------------------------------------------------------------------------


class TestConfidence:
    def test_reference_scenario(self) -> None:
        pool = EvidencePool().merge([make_snippet("a", 0.9), make_snippet("b", 0.81)])
        assert compute_confidence(pool, ["a"]) == 0.591

    def test_monotone_in_top_score(self) -> None:
        scores = [0.0, 0.25, 0.5, 1.0, 1.5, 2.0, 2.5]
        values = [
            compute_confidence(EvidencePool().merge([make_snippet("a", s)]), ["a"])
            for s in scores
        ]
        assert values == sorted(values)

    def test_unknown_citations_lower_confidence(self) -> None:
        pool = _pool(2.5, 2.5)
        assert compute_confidence(pool, ["c0", "zzz"]) < compute_confidence(pool, ["c0"])

    def test_no_citations(self) -> None:
        assert compute_confidence(_pool(2.5, 2.5), []) == 0.85


class TestGuardrail:
    def test_empty_pool_is_not_found(self) -> None:
        outcome = apply_guardrail(EvidencePool(), _answer(), THRESHOLDS)

        assert outcome.guardrail == "not_found"
        assert outcome.confidence == 0.0
        assert outcome.answer == NOT_FOUND_ANSWER

    def test_weak_top_score_is_not_found(self) -> None:
        outcome = apply_guardrail(_pool(0.84), _answer(cited=["c0"]), THRESHOLDS)
        assert (outcome.guardrail, outcome.confidence) == ("not_found", 0.0)

    def test_model_not_found_overrides_confidence(self) -> None:
        outcome = apply_guardrail(_pool(2.5, 2.5), _answer(not_found=True, cited=["c0"]), THRESHOLDS)

        assert outcome.guardrail == "not_found"
        assert outcome.answer == NOT_FOUND_ANSWER
        assert outcome.confidence == 0.35

    def test_ungrounded_answer_is_not_found(self) -> None:
        outcome = apply_guardrail(_pool(2.5, 2.5), _answer(grounded=False), THRESHOLDS)
        assert outcome.guardrail == "not_found"
        assert outcome.confidence <= 0.35

    def test_low_confidence_keeps_confidence(self) -> None:
        outcome = apply_guardrail(_pool(0.86, 0.0), _answer(), THRESHOLDS)

        assert outcome.guardrail == "not_found"
        assert outcome.confidence == 0.2064

    def test_moderate_confidence_adds_caution(self) -> None:
        pool = EvidencePool().merge([make_snippet("a", 0.9), make_snippet("b", 0.81)])
        outcome = apply_guardrail(pool, _answer("  Falcon Freight  ", cited=["a"]), THRESHOLDS)

        assert outcome.guardrail == "caution"
        assert outcome.confidence == 0.591
        assert outcome.answer == f"Falcon Freight\n\n{CAUTION_NOTICE}"

    def test_high_confidence_is_ok(self) -> None:
        outcome = apply_guardrail(_pool(2.5, 2.5), _answer(" Falcon Freight ", cited=["c0"]), THRESHOLDS)

        assert outcome.guardrail == "ok"
        assert outcome.confidence == 1.0
        assert outcome.answer == "Falcon Freight"


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


class TestRetrievalAgent:
    @pytest.mark.asyncio
    async def test_retrieve_then_answer(self, llm) -> None:
        index = StubIndex([make_snippet("a", 0.9), make_snippet("b", 0.81)])
        llm.queue(RewrittenQuery, RewrittenQuery(query="pickup date SHP-1042"))
        llm.queue(AgentStep, _retrieve("pickup date"), _respond(_answer(cited=["a"])))
        agent = RetrievalAgent(index, llm, top_k=6)

        result = await agent.run("When is pickup?", NAMESPACE, ["doc-1", "doc-2"])

        assert result.guardrail == "caution"
        assert result.confidence == 0.591
        assert result.rewritten_query == "pickup date SHP-1042"
        assert result.document_id == "doc-1"
        assert result.document_ids == ["doc-1", "doc-2"]
        assert [s.id for s in result.sources] == ["a", "b"]
        assert index.calls == [
            {
                "text": "pickup date",
                "namespace": NAMESPACE,
                "top_k": 6,
                "document_ids": ["doc-1", "doc-2"],
            }
        ]

    @pytest.mark.asyncio
    async def test_multiple_retrievals_merge_evidence(self, llm) -> None:
        index = StubIndex([make_snippet("a", 1.0)])
        llm.queue(RewrittenQuery, RewrittenQuery(query="q"))
        llm.queue(
            AgentStep,
            _retrieve("shipper"),
            _retrieve("consignee"),
            _respond(_answer(cited=["a"])),
        )

        result = await RetrievalAgent(index, llm).run("Who?", NAMESPACE, ["doc-1"])

        assert [c["text"] for c in index.calls] == ["shipper", "consignee"]
        assert len(result.sources) == 1

    @pytest.mark.asyncio
    async def test_rewrite_failure_falls_back_to_question(self, llm) -> None:
        index = StubIndex([make_snippet("a", 2.5)])
        llm.queue(RewrittenQuery, UpstreamError("boom"))
        llm.queue(AgentStep, _retrieve(""), _respond(_answer(cited=["a"])))

        result = await RetrievalAgent(index, llm).run("Who is the carrier?", NAMESPACE, ["doc-1"])

        assert result.rewritten_query == "Who is the carrier?"
        assert index.calls[0]["text"] == "Who is the carrier?"

    @pytest.mark.asyncio
    async def test_rewrite_invalid_output_falls_back_to_question(self, llm) -> None:
        llm.queue(RewrittenQuery, ValueError("unparseable model output"))
        agent = RetrievalAgent(StubIndex(), llm)

        assert await agent.rewrite("What rate?") == "What rate?"

    @pytest.mark.asyncio
    async def test_blank_rewrite_falls_back_to_question(self, llm) -> None:
        llm.queue(RewrittenQuery, RewrittenQuery(query="   "))
        agent = RetrievalAgent(StubIndex(), llm)

        assert await agent.rewrite("What rate?") == "What rate?"

    @pytest.mark.asyncio
    async def test_answer_before_retrieval_forces_retrieval(self, llm) -> None:
        index = StubIndex([make_snippet("a", 2.5)])
        llm.queue(RewrittenQuery, RewrittenQuery(query="carrier name"))
        llm.queue(AgentStep, _respond(_answer()), _respond(_answer(cited=["a"])))

        result = await RetrievalAgent(index, llm).run("Carrier?", NAMESPACE, ["doc-1"])

        assert [c["text"] for c in index.calls] == ["carrier name"]
        assert result.guardrail == "ok"

    @pytest.mark.asyncio
    async def test_step_budget_requests_final_answer(self, llm) -> None:
        index = StubIndex([make_snippet("a", 2.5)])
        llm.queue(RewrittenQuery, RewrittenQuery(query="q"))
        llm.queue(AgentStep, _retrieve("one"), _retrieve("two"))
        llm.queue(AgentAnswer, _answer(cited=["a"]))

        result = await RetrievalAgent(index, llm, max_steps=2).run("Q?", NAMESPACE, ["doc-1"])

        assert len(index.calls) == 2
        assert llm.calls_for(AgentStep) == 2
        assert llm.calls_for(AgentAnswer) == 1
        assert result.guardrail == "ok"

    @pytest.mark.asyncio
    async def test_no_evidence_is_not_found(self, llm) -> None:
        llm.queue(RewrittenQuery, RewrittenQuery(query="q"))
        llm.queue(AgentStep, _retrieve("q"), _respond(_answer("made up")))

        result = await RetrievalAgent(StubIndex(), llm).run("Q?", NAMESPACE, ["doc-1"])

        assert result.answer == NOT_FOUND_ANSWER
        assert result.confidence == 0.0
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_controller_failure_propagates(self, llm) -> None:
        llm.queue(RewrittenQuery, RewrittenQuery(query="q"))
        llm.queue(AgentStep, UpstreamError("model down"))

        with pytest.raises(UpstreamError, match="model down"):
            await RetrievalAgent(StubIndex(), llm).run("Q?", NAMESPACE, ["doc-1"])
