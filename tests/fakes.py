"""
In-Memory Test Doubles

Fakes for the vector store, embedders and structured model, so the
service layer can be exercised without PostgreSQL, OpenAI or local
model downloads.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from docintel.core.errors import UpstreamError
from docintel.models.schemas import ChunkMetadata, SourceSnippet, SparseValues
from docintel.repositories.vector_store import (
    IdPage,
    MetadataFilter,
    RecordPage,
    StoreMatch,
    VectorRecord,
)

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _matches(metadata: dict[str, Any], metadata_filter: MetadataFilter | None) -> bool:
    for key, condition in (metadata_filter or {}).items():
        value = metadata.get(key)
        for operator, operand in condition.items():
            if operator == "$eq" and value != operand:
                return False
            if operator == "$in" and value not in operand:
                return False
    return True


class FakeVectorStore:
    """
    Dict-backed VectorStore.

    Scores are ``dense · q_dense + sparse · q_sparse``, matching the
    pgvector implementation. ``hidden_reads`` makes freshly written ids
    invisible to that many ``fetch_by_ids`` calls, to simulate eventual
    consistency.
    """

    def __init__(self, hidden_reads: int = 0) -> None:
        self.namespaces: dict[str, dict[str, VectorRecord]] = {}
        self.hidden_reads = hidden_reads
        self.upsert_calls: list[tuple[str, list[VectorRecord]]] = []
        self.query_calls: list[dict[str, Any]] = []
        self.fetch_calls = 0
        self.canned_matches: list[StoreMatch] | None = None

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> None:
        self.upsert_calls.append((namespace, list(records)))
        bucket = self.namespaces.setdefault(namespace, {})
        for record in records:
            bucket[record.id] = record

    async def query(
        self,
        namespace: str,
        dense: list[float],
        sparse: SparseValues | None,
        top_k: int,
        metadata_filter: MetadataFilter | None = None,
    ) -> list[StoreMatch]:
        self.query_calls.append(
            {
                "namespace": namespace,
                "dense": dense,
                "sparse": sparse,
                "top_k": top_k,
                "filter": metadata_filter,
            }
        )
        if self.canned_matches is not None:
            return self.canned_matches[:top_k]

        matches = []
        for record in self.namespaces.get(namespace, {}).values():
            if not _matches(record.metadata, metadata_filter):
                continue
            score = sum(a * b for a, b in zip(record.dense, dense, strict=False))
            if sparse is not None and record.sparse is not None:
                weights = dict(zip(record.sparse.indices, record.sparse.values, strict=True))
                score += sum(
                    weights.get(i, 0.0) * v
                    for i, v in zip(sparse.indices, sparse.values, strict=True)
                )
            matches.append(StoreMatch(id=record.id, score=score, metadata=record.metadata))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def fetch_by_ids(self, namespace: str, ids: Sequence[str]) -> dict[str, VectorRecord]:
        self.fetch_calls += 1
        if self.hidden_reads > 0:
            self.hidden_reads -= 1
            return {}
        bucket = self.namespaces.get(namespace, {})
        return {i: bucket[i] for i in ids if i in bucket}

    async def fetch_by_metadata(
        self,
        namespace: str,
        metadata_filter: MetadataFilter,
        limit: int,
        pagination_token: str | None = None,
    ) -> RecordPage:
        bucket = self.namespaces.get(namespace, {})
        ordered = sorted(
            (r for r in bucket.values() if _matches(r.metadata, metadata_filter)),
            key=lambda r: r.id,
        )
        if pagination_token is not None:
            ordered = [r for r in ordered if r.id > pagination_token]
        page = ordered[:limit]
        next_token = page[-1].id if len(page) == limit else None
        return RecordPage(records=page, next_token=next_token)

    async def list_ids(
        self,
        namespace: str,
        prefix: str,
        limit: int,
        pagination_token: str | None = None,
    ) -> IdPage:
        ids = sorted(i for i in self.namespaces.get(namespace, {}) if i.startswith(prefix))
        if pagination_token is not None:
            ids = [i for i in ids if i > pagination_token]
        page = ids[:limit]
        next_token = page[-1] if len(page) == limit else None
        return IdPage(ids=page, next_token=next_token)


class FakeDenseEmbedder:
    """Deterministic 3-d vectors: ``[1.0, len(text) / 1000, 0.0]``."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [[1.0, len(text) / 1000, 0.0] for text in texts]


class FakeSparseEmbedder:
    """One lexical dimension per distinct lowercase word (hash bucket)."""

    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str]] = []

    async def embed(self, texts: list[str], intent: str) -> list[SparseValues]:
        self.calls.append((list(texts), intent))
        rows = []
        for text in texts:
            buckets = sorted({sum(map(ord, word)) % 997 for word in text.lower().split()})
            rows.append(SparseValues(indices=buckets, values=[1.0] * len(buckets)))
        return rows


class ScriptedLLM:
    """
    StructuredModel double that replays queued responses per schema.

    Queue either a schema instance or an exception; an exhausted queue
    raises UpstreamError so unexpected calls fail loudly.
    """

    def __init__(self) -> None:
        self._queues: dict[type, list[BaseModel | Exception]] = {}
        self.calls: list[tuple[type, list[dict[str, Any]]]] = []

    def queue(self, schema: type, *responses: BaseModel | Exception) -> None:
        self._queues.setdefault(schema, []).extend(responses)

    def calls_for(self, schema: type) -> int:
        return sum(1 for called, _ in self.calls if called is schema)

    async def invoke(self, messages, schema):
        self.calls.append((schema, list(messages)))
        queue = self._queues.get(schema) or []
        if not queue:
            raise UpstreamError(f"No scripted response for {schema.__name__}")
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_snippet(
    chunk_id: str,
    score: float,
    text: str = "text",
    document_id: str = "doc-1",
    page_number: int = 1,
    chunk_number: int = 1,
) -> SourceSnippet:
    """Build a SourceSnippet with consistent metadata."""
    return SourceSnippet(
        id=chunk_id,
        score=score,
        text=text,
        metadata=ChunkMetadata(
            document_id=document_id,
            tenant_id="tenant-demo",
            document_title="bol.pdf",
            source_file_name="bol.pdf",
            uploaded_at="2026-01-01T00:00:00+00:00",
            page_number=page_number,
            chunk_number=chunk_number,
            chunk_text=text,
        ),
    )


