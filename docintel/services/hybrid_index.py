"""
Hybrid Index

Dense + sparse retrieval over the namespaced vector store.

Write path (``upsert``):
    chunk texts → dense/sparse embeddings (sequential batches) →
    one record per chunk → read-your-write settle poll.

Read paths:
    - ``query``: alpha-weighted fusion of the dense and sparse query
      vectors into a single store query, optionally scoped to one or
      more documents.
    - ``fetch_all``: every chunk of one document in original order, for
      full-text reconstruction.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from pydantic import ValidationError

from docintel.core.config import settings
from docintel.models.schemas import ChunkMetadata, ChunkRecord, SourceSnippet, SparseValues
from docintel.repositories.vector_store import MetadataFilter, VectorRecord, VectorStore
from docintel.services.embeddings import DenseEmbedder, SparseEmbedder

logger = logging.getLogger(__name__)

FETCH_PAGE_SIZE: int = 200
SETTLE_ID_BATCH: int = 100

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


def clamp(value: float, low: float, high: float) -> float:
    """Bound ``value`` to ``[low, high]``."""
    return max(low, min(high, value))


async def in_batches(
    items: Sequence[InputT],
    size: int,
    fn: Callable[[list[InputT]], Awaitable[list[OutputT]]],
) -> list[OutputT]:
    """Apply ``fn`` to consecutive slices of ``items``, one at a time."""
    output: list[OutputT] = []
    for start in range(0, len(items), size):
        output.extend(await fn(list(items[start : start + size])))
    return output


def build_document_filter(
    document_id: str | None = None,
    document_ids: Sequence[str] | None = None,
) -> MetadataFilter | None:
    """Set-membership filter if ``document_ids`` is non-empty, else exact match."""
    if document_ids:
        return {"document_id": {"$in": list(document_ids)}}
    if document_id:
        return {"document_id": {"$eq": document_id}}
    return None


class HybridIndex:
    """
    Chunk index with fused dense/sparse similarity search.

    Usage::

        index = HybridIndex(store, dense_embedder, sparse_embedder)
        await index.upsert(chunks, namespace="tenant-demo:acme")
        hits = await index.query("pickup date", "tenant-demo:acme", top_k=6)

    Args:
        store: Vector store holding the records.
        dense: Dense embedder.
        sparse: Sparse embedder.
        alpha: Dense weight in [0, 1]; sparse gets ``1 - alpha``.
        batch_size: Texts per embedding request.
        settle_timeout: Max seconds to wait for written records to be visible.
        settle_interval: Seconds between visibility polls.
    """

    def __init__(
        self,
        store: VectorStore,
        dense: DenseEmbedder,
        sparse: SparseEmbedder,
        *,
        alpha: float | None = None,
        batch_size: int | None = None,
        settle_timeout: float | None = None,
        settle_interval: float | None = None,
    ) -> None:
        self._store = store
        self._dense = dense
        self._sparse = sparse
        self._alpha = clamp(settings.HYBRID_ALPHA if alpha is None else alpha, 0.0, 1.0)
        self._batch_size = batch_size or settings.EMBED_BATCH_SIZE
        self._settle_timeout = (
            settings.SETTLE_TIMEOUT_SECONDS if settle_timeout is None else settle_timeout
        )
        self._settle_interval = (
            settings.SETTLE_POLL_INTERVAL_SECONDS if settle_interval is None else settle_interval
        )

    @property
    def alpha(self) -> float:
        """Effective (clamped) dense weight."""
        return self._alpha

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def upsert(self, chunks: Sequence[ChunkRecord], namespace: str) -> None:
        """
        Embed and write chunks, then wait until they are readable.

        The store is eventually consistent; this method only returns once
        every written id is visible or the settle timeout elapses.
        """
        if not chunks:
            return

        texts = [chunk.text for chunk in chunks]
        dense_vectors = await in_batches(texts, self._batch_size, self._dense.embed)
        sparse_vectors = await in_batches(
            texts,
            self._batch_size,
            lambda batch: self._sparse.embed(batch, "passage"),
        )

        records = [
            VectorRecord(
                id=chunk.id,
                dense=dense_vectors[i],
                sparse=sparse_vectors[i],
                metadata=chunk.metadata.model_dump(),
            )
            for i, chunk in enumerate(chunks)
        ]
        await self._store.upsert(namespace, records)
        logger.info("Indexed %d chunks into '%s'", len(records), namespace)

        await self._await_visible([r.id for r in records], namespace)

    async def _await_visible(self, ids: list[str], namespace: str) -> bool:
        """Poll ``fetch_by_ids`` until all ids are visible or time runs out."""
        deadline = time.monotonic() + self._settle_timeout
        pending = list(ids)

        while True:
            visible: set[str] = set()
            for start in range(0, len(pending), SETTLE_ID_BATCH):
                batch = pending[start : start + SETTLE_ID_BATCH]
                visible.update((await self._store.fetch_by_ids(namespace, batch)).keys())
            pending = [i for i in pending if i not in visible]

            if not pending:
                return True
            if time.monotonic() >= deadline:
                logger.warning(
                    "%d of %d records not yet visible in '%s' after %.1fs",
                    len(pending),
                    len(ids),
                    namespace,
                    self._settle_timeout,
                )
                return False
            await asyncio.sleep(self._settle_interval)

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    async def query(
        self,
        text: str,
        namespace: str,
        top_k: int,
        document_id: str | None = None,
        document_ids: Sequence[str] | None = None,
    ) -> list[SourceSnippet]:
        """
        Fused similarity search.

        Args:
            text: Query text.
            namespace: Tenant namespace to search.
            top_k: Maximum number of results.
            document_id: Restrict to one document.
            document_ids: Restrict to a set of documents (wins over
                ``document_id`` when non-empty).

        Returns:
            Snippets ranked by fused score (rounded to 4 decimals).
        """
        dense = (await self._dense.embed([text]) or [[]])[0]
        sparse = (await self._sparse.embed([text], "query") or [SparseValues()])[0]

        weighted_dense = [value * self._alpha for value in dense]
        weighted_sparse = SparseValues(
            indices=list(sparse.indices),
            values=[value * (1.0 - self._alpha) for value in sparse.values],
        )

        matches = await self._store.query(
            namespace,
            weighted_dense,
            weighted_sparse,
            top_k,
            build_document_filter(document_id, document_ids),
        )

        snippets: list[SourceSnippet] = []
        for match in matches:
            if not match.id or not match.metadata:
                continue
            snippet = _to_snippet(match.id, round(match.score, 4), match.metadata)
            if snippet is not None:
                snippets.append(snippet)
        return snippets

    async def fetch_all(self, document_id: str, namespace: str) -> list[SourceSnippet]:
        """Every chunk of a document, sorted by ``chunk_number`` (score 0)."""
        collected: list[SourceSnippet] = []
        token: str | None = None

        while True:
            page = await self._store.fetch_by_metadata(
                namespace,
                {"document_id": {"$eq": document_id}},
                FETCH_PAGE_SIZE,
                token,
            )
            for record in page.records:
                if not record.metadata:
                    continue
                snippet = _to_snippet(record.id, 0.0, record.metadata)
                if snippet is not None:
                    collected.append(snippet)

            token = page.next_token
            if not token:
                break

        collected.sort(key=lambda snippet: snippet.metadata.chunk_number)
        logger.debug("Fetched %d chunks for document %s", len(collected), document_id)
        return collected


def _to_snippet(record_id: str, score: float, metadata: dict) -> SourceSnippet | None:
    try:
        parsed = ChunkMetadata.model_validate(metadata)
    except ValidationError:
        logger.warning("Skipping record %s with malformed metadata", record_id)
        return None
    return SourceSnippet(id=record_id, score=score, text=parsed.chunk_text, metadata=parsed)
