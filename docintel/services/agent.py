"""
Retrieval Agent

Multi-step grounded question answering over the hybrid index.

State machine::

    REWRITE → RETRIEVE (0..n) → ANSWER → GUARDRAIL → DONE

- REWRITE: the model turns the question into a retrieval query. Any
  failure falls back to the original question.
- RETRIEVE: the model decides, step by step, whether to run another
  retrieval (``CallRetrieve``) or to answer (``Respond``). Results are
  merged into an immutable ``EvidencePool`` that is threaded through the
  loop. The loop is bounded by ``max_steps``.
- ANSWER: a structured ``AgentAnswer`` grounded in pooled evidence.
- GUARDRAIL: retrieval floor → grounding → confidence policy. The first
  gate that fires decides the outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Final, Literal

from pydantic import BaseModel, Field

from docintel.core.config import settings
from docintel.core.errors import UpstreamError
from docintel.models.schemas import AskResult, Guardrail, SourceSnippet
from docintel.services.hybrid_index import HybridIndex, clamp
from docintel.services.llm import Message, StructuredModel

logger = logging.getLogger(__name__)

NOT_FOUND_ANSWER: Final[str] = "Not found in document."
CAUTION_NOTICE: Final[str] = "Caution: This answer has moderate confidence."
GROUNDING_CONFIDENCE_CAP: Final[float] = 0.35

CONTEXT_MAX_SOURCES: Final[int] = 6
CONTEXT_MAX_CHARS: Final[int] = 900

REWRITE_PROMPT: Final[str] = (
    "Rewrite the user question for retrieval. Keep entities, dates, and "
    "shipment IDs exact. Return concise query text."
)

AGENT_PROMPT: Final[str] = (
    "You are a grounded logistics QA agent working over uploaded documents.\n"
    "At every step return exactly one action:\n"
    '- action="retrieve" with a focused `query` to search the documents. '
    "For complex or multi-part questions, retrieve several times with refined queries.\n"
    '- action="respond" with an `answer` once the evidence is sufficient.\n'
    "Always retrieve before answering. Answer only from retrieved evidence. "
    f"If information is missing, set not_found=true and answer='{NOT_FOUND_ANSWER}'. "
    "cited_chunk_ids must contain exact chunk_id values from retrieved evidence."
)

NO_RESULTS_MESSAGE: Final[str] = "No relevant passages found for that query in this document."


# ---------------------------------------------------------------------------
# Model output schemas
# ---------------------------------------------------------------------------


class RewrittenQuery(BaseModel):
    """Retrieval-optimized rewrite of the user question."""

    query: str


class AgentAnswer(BaseModel):
    """Final structured answer from the controller."""

    answer: str
    grounded: bool
    not_found: bool
    cited_chunk_ids: list[str]


class AgentStep(BaseModel):
    """One controller decision as emitted by the model."""

    action: Literal["retrieve", "respond"]
    query: str | None = Field(description="Retrieval query when action is 'retrieve'")
    answer: AgentAnswer | None = Field(description="Final answer when action is 'respond'")


@dataclass(frozen=True)
class CallRetrieve:
    query: str


@dataclass(frozen=True)
class Respond:
    answer: AgentAnswer


Decision = CallRetrieve | Respond


def to_decision(step: AgentStep, fallback_query: str) -> Decision:
    """
    Convert a raw model step into a tagged decision.

    A ``respond`` step without an answer is treated as a request for more
    evidence; a ``retrieve`` step without a query reuses ``fallback_query``.
    """
    if step.action == "respond" and step.answer is not None:
        return Respond(step.answer)
    query = (step.query or "").strip()
    return CallRetrieve(query or fallback_query)


# ---------------------------------------------------------------------------
# Evidence pool
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EvidencePool:
    """
    Deduplicated, score-ranked snippets gathered during one ask.

    Invariants:
        - at most one snippet per id, holding the highest score seen;
        - sorted by score, highest first;
        - at most ``limit`` snippets (lowest scores are evicted).

    ``merge`` returns a new pool; instances are never mutated.
    """

    snippets: tuple[SourceSnippet, ...] = ()
    limit: int = 16

    def merge(self, incoming: Iterable[SourceSnippet]) -> EvidencePool:
        best: dict[str, SourceSnippet] = {}
        for snippet in (*self.snippets, *incoming):
            current = best.get(snippet.id)
            if current is None or snippet.score > current.score:
                best[snippet.id] = snippet

        ranked = sorted(best.values(), key=lambda s: s.score, reverse=True)
        return EvidencePool(snippets=tuple(ranked[: self.limit]), limit=self.limit)

    @property
    def ids(self) -> set[str]:
        return {snippet.id for snippet in self.snippets}

    @property
    def top_score(self) -> float:
        return self.snippets[0].score if self.snippets else 0.0

    def __len__(self) -> int:
        return len(self.snippets)


def build_context(
    snippets: Sequence[SourceSnippet],
    max_sources: int = CONTEXT_MAX_SOURCES,
    max_chars: int = CONTEXT_MAX_CHARS,
) -> str:
    """Render snippets as model-readable evidence blocks."""
    blocks = []
    for snippet in snippets[:max_sources]:
        text = snippet.text if len(snippet.text) <= max_chars else f"{snippet.text[:max_chars]}..."
        blocks.append(
            f"chunk_id={snippet.id}\n"
            f"score={snippet.score}\n"
            f"page={snippet.metadata.page_number}\n"
            f"text={text}"
        )
    return "\n\n----\n\n".join(blocks)


# ---------------------------------------------------------------------------
# Confidence & guardrail
# ---------------------------------------------------------------------------


def compute_confidence(pool: EvidencePool, cited_chunk_ids: Sequence[str]) -> float:
    """
    Calibrated confidence from retrieval strength, agreement and citations.

    ``0.6 * retrieval + 0.25 * agreement + 0.15 * citation``, rounded to
    4 decimals, where retrieval = top/2.5, agreement = second/top and
    citation = fraction of claimed chunk ids present in the pool.
    """
    top_score = pool.top_score
    second_score = pool.snippets[1].score if len(pool) > 1 else top_score

    retrieval_signal = clamp(top_score / 2.5, 0.0, 1.0)
    agreement_signal = clamp(second_score / top_score, 0.0, 1.0) if top_score > 0 else 0.0

    if cited_chunk_ids:
        known = pool.ids
        valid = sum(1 for chunk_id in cited_chunk_ids if chunk_id in known)
        citation_signal = clamp(valid / len(cited_chunk_ids), 0.0, 1.0)
    else:
        citation_signal = 0.0

    return round(
        0.6 * retrieval_signal + 0.25 * agreement_signal + 0.15 * citation_signal, 4
    )


@dataclass(frozen=True)
class GuardrailThresholds:
    min_top_score: float = 0.85
    low_confidence: float = 0.4
    caution_confidence: float = 0.6

    @classmethod
    def from_settings(cls) -> GuardrailThresholds:
        return cls(
            min_top_score=settings.GUARDRAIL_MIN_TOP_SCORE,
            low_confidence=settings.GUARDRAIL_LOW_CONFIDENCE,
            caution_confidence=settings.GUARDRAIL_CAUTION_CONFIDENCE,
        )


@dataclass(frozen=True)
class GuardrailOutcome:
    answer: str
    confidence: float
    guardrail: Guardrail


def apply_guardrail(
    pool: EvidencePool,
    response: AgentAnswer,
    thresholds: GuardrailThresholds,
) -> GuardrailOutcome:
    """Run the three ordered gates; the first one that fires wins."""
    # Retrieval floor
    if not len(pool) or pool.top_score < thresholds.min_top_score:
        return GuardrailOutcome(NOT_FOUND_ANSWER, 0.0, "not_found")

    confidence = compute_confidence(pool, response.cited_chunk_ids)

    # Grounding
    if response.not_found or not response.grounded:
        return GuardrailOutcome(
            NOT_FOUND_ANSWER, min(confidence, GROUNDING_CONFIDENCE_CAP), "not_found"
        )

    # Confidence policy
    if confidence < thresholds.low_confidence:
        return GuardrailOutcome(NOT_FOUND_ANSWER, confidence, "not_found")

    answer = response.answer.strip()
    if confidence < thresholds.caution_confidence:
        return GuardrailOutcome(f"{answer}\n\n{CAUTION_NOTICE}", confidence, "caution")
    return GuardrailOutcome(answer, confidence, "ok")


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class RetrievalAgent:
    """
    Rewrite → retrieve loop → answer → guardrail.

    Usage::

        agent = RetrievalAgent(index, StructuredLLM())
        result = await agent.run(
            "When is pickup for SHP-1042?",
            namespace="tenant-demo:acme",
            document_ids=["4b1e..."],
        )
        print(result.guardrail, result.confidence)

    Args:
        index: Hybrid index used for every retrieval step.
        llm: Structured-output model for rewrite, steps and answer.
        top_k: Snippets requested per retrieval call.
        max_sources: Evidence pool capacity.
        max_steps: Upper bound on controller decisions.
        thresholds: Guardrail thresholds.
    """

    def __init__(
        self,
        index: HybridIndex,
        llm: StructuredModel,
        *,
        top_k: int | None = None,
        max_sources: int | None = None,
        max_steps: int | None = None,
        thresholds: GuardrailThresholds | None = None,
    ) -> None:
        self._index = index
        self._llm = llm
        self._top_k = top_k or settings.AGENT_TOP_K
        self._max_sources = max_sources or settings.AGENT_MAX_SOURCES
        self._max_steps = max_steps or settings.AGENT_MAX_STEPS
        self._thresholds = thresholds or GuardrailThresholds.from_settings()

    async def run(
        self,
        question: str,
        namespace: str,
        document_ids: Sequence[str],
    ) -> AskResult:
        """
        Answer ``question`` from the documents in scope.

        Raises:
            UpstreamError: Any retrieval or controller failure (the rewrite
                step degrades instead of failing).
        """
        scope = list(document_ids)
        rewritten = await self.rewrite(question)

        pool, response = await self._retrieve_and_answer(question, rewritten, namespace, scope)
        outcome = apply_guardrail(pool, response, self._thresholds)

        logger.info(
            "Ask complete: guardrail=%s confidence=%.4f sources=%d",
            outcome.guardrail,
            outcome.confidence,
            len(pool),
        )

        return AskResult(
            document_id=scope[0] if scope else "",
            document_ids=scope,
            answer=outcome.answer,
            confidence=round(outcome.confidence, 4),
            guardrail=outcome.guardrail,
            rewritten_query=rewritten,
            sources=list(pool.snippets),
        )

    async def rewrite(self, question: str) -> str:
        """Retrieval-optimized query, or the question itself on any failure."""
        messages: list[Message] = [
            {"role": "system", "content": REWRITE_PROMPT},
            {"role": "user", "content": question},
        ]
        try:
            output = await self._llm.invoke(messages, RewrittenQuery)
        except (UpstreamError, ValueError) as exc:
            logger.warning("Query rewrite failed, using original question: %s", exc)
            return question

        rewritten = output.query.strip()
        return rewritten or question

    async def _retrieve_and_answer(
        self,
        question: str,
        rewritten: str,
        namespace: str,
        scope: list[str],
    ) -> tuple[EvidencePool, AgentAnswer]:
        pool = EvidencePool(limit=self._max_sources)
        retrievals = 0
        messages: list[Message] = [
            {"role": "system", "content": AGENT_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Question: {question}\n\n"
                    f"Initial retrieval query suggestion: {rewritten}"
                ),
            },
        ]

        for step in range(self._max_steps):
            decision = to_decision(await self._llm.invoke(messages, AgentStep), rewritten)

            if isinstance(decision, Respond):
                if retrievals > 0:
                    return pool, decision.answer
                logger.info("Controller answered before retrieving; retrieving '%s'", rewritten)
                decision = CallRetrieve(rewritten)

            pool, found = await self._retrieve(decision.query, namespace, scope, pool)
            retrievals += 1
            logger.debug("Step %d: retrieved %d snippets for '%s'", step + 1, len(found), decision.query)

            messages.append(
                {"role": "assistant", "content": f'retrieve(query="{decision.query}")'}
            )
            messages.append(
                {
                    "role": "user",
                    "content": build_context(found) if found else NO_RESULTS_MESSAGE,
                }
            )

        logger.info("Step budget (%d) exhausted; requesting final answer", self._max_steps)
        messages.append(
            {"role": "user", "content": "Retrieval budget exhausted. Answer now from the evidence above."}
        )
        return pool, await self._llm.invoke(messages, AgentAnswer)

    async def _retrieve(
        self,
        query: str,
        namespace: str,
        scope: list[str],
        pool: EvidencePool,
    ) -> tuple[EvidencePool, list[SourceSnippet]]:
        found = await self._index.query(query, namespace, self._top_k, document_ids=scope)
        return pool.merge(found), found
