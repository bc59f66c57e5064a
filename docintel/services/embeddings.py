"""
Embedding Services

Dense (semantic) and sparse (lexical) embedders feeding the hybrid index.

Backends:
    - OpenAIDenseEmbedder: hosted ``text-embedding-3-*`` via AsyncOpenAI.
    - LocalDenseEmbedder: sentence-transformers model (default MiniLM),
      useful offline or when no API key is available.
    - SpladeSparseEmbedder: sentence-transformers ``SparseEncoder``
      producing vocabulary-sized lexical vectors, with separate query
      and passage encoders.

Local models are loaded lazily on first use and cached per instance.
Inference is CPU-bound and runs through ``asyncio.to_thread`` so the
event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal, Protocol

from openai import AsyncOpenAI, OpenAIError

from docintel.core.config import Settings, settings
from docintel.core.errors import UpstreamError
from docintel.models.schemas import SparseValues

logger = logging.getLogger(__name__)

SparseIntent = Literal["query", "passage"]


class DenseEmbedder(Protocol):
    """Length-preserving text → dense vector mapping."""

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class SparseEmbedder(Protocol):
    """Length-preserving text → sparse vector mapping."""

    async def embed(
        self, texts: list[str], intent: SparseIntent
    ) -> list[SparseValues]: ...


class OpenAIDenseEmbedder:
    """
    Dense embeddings from the OpenAI embeddings endpoint.

    Usage::

        embedder = OpenAIDenseEmbedder()
        vectors = await embedder.embed(["hello", "world"])
        assert len(vectors) == 2
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        self._api_key = api_key or settings.OPENAI_API_KEY
        self._model = model or settings.OPENAI_EMBEDDING_MODEL
        self._dimensions = dimensions or settings.DENSE_DIMENSIONS
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise UpstreamError("OPENAI_API_KEY is not configured.")
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a batch of texts.

        Raises:
            UpstreamError: If the API call fails or returns a short batch.
        """
        if not texts:
            return []

        client = self._get_client()
        try:
            response = await client.embeddings.create(
                model=self._model,
                input=texts,
                dimensions=self._dimensions,
            )
        except OpenAIError as exc:
            raise UpstreamError(f"Dense embedding failed: {exc}") from exc

        vectors = [item.embedding for item in response.data]
        if len(vectors) != len(texts):
            raise UpstreamError(
                f"Dense embedding returned {len(vectors)} vectors for {len(texts)} inputs."
            )
        return vectors


class LocalDenseEmbedder:
    """
    Dense embeddings from a local sentence-transformers model.

    The import is deferred so that ``sentence_transformers`` is only
    loaded when this backend is actually used.
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or settings.LOCAL_DENSE_MODEL
        self._model: Any = None

    def _get_model(self) -> Any:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading dense embedding model: %s ...", self._model_name)
            self._model = SentenceTransformer(self._model_name)
            logger.info("Dense model loaded")
        return self._model

    def _encode_sync(self, texts: list[str]) -> list[list[float]]:
        """Synchronous batch encoding; call via ``asyncio.to_thread``."""
        model = self._get_model()
        embeddings = model.encode(texts, normalize_embeddings=True)
        result: list[list[float]] = embeddings.tolist()
        return result

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts in a worker thread."""
        if not texts:
            return []
        try:
            return await asyncio.to_thread(self._encode_sync, texts)
        except (OSError, RuntimeError, ValueError) as exc:
            raise UpstreamError(f"Local dense embedding failed: {exc}") from exc


class SpladeSparseEmbedder:
    """
    Sparse lexical embeddings from a SPLADE ``SparseEncoder``.

    Queries and passages go through the model's dedicated
    ``encode_query`` / ``encode_document`` paths. Output dimensions are
    the model vocabulary (30522 for BERT-based SPLADE).

    Usage::

        embedder = SpladeSparseEmbedder()
        [vec] = await embedder.embed(["shipment SHP-1042"], intent="query")
        print(vec.indices[:5], vec.values[:5])
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or settings.SPARSE_MODEL
        self._model: Any = None

    def _get_model(self) -> Any:
        if self._model is None:
            from sentence_transformers import SparseEncoder

            logger.info("Loading sparse embedding model: %s ...", self._model_name)
            self._model = SparseEncoder(self._model_name)
            logger.info("Sparse model loaded")
        return self._model

    def _encode_sync(self, texts: list[str], intent: SparseIntent) -> list[SparseValues]:
        """Synchronous batch encoding; call via ``asyncio.to_thread``."""
        model = self._get_model()
        encode = model.encode_query if intent == "query" else model.encode_document
        embeddings = encode(texts, convert_to_tensor=True, convert_to_sparse_tensor=True)
        return _rows_from_sparse_tensor(embeddings, len(texts))

    async def embed(self, texts: list[str], intent: SparseIntent) -> list[SparseValues]:
        """Embed a batch of texts in a worker thread."""
        if not texts:
            return []
        try:
            return await asyncio.to_thread(self._encode_sync, texts, intent)
        except (OSError, RuntimeError, ValueError) as exc:
            raise UpstreamError(f"Sparse embedding failed: {exc}") from exc


def _rows_from_sparse_tensor(embeddings: Any, row_count: int) -> list[SparseValues]:
    """Split a 2-D COO tensor into one SparseValues per row."""
    coalesced = embeddings.coalesce()
    rows = [SparseValues() for _ in range(row_count)]
    coordinates = coalesced.indices().t().tolist()
    for (row, column), value in zip(coordinates, coalesced.values().tolist(), strict=True):
        rows[row].indices.append(int(column))
        rows[row].values.append(float(value))
    return rows


def build_dense_embedder(config: Settings = settings) -> DenseEmbedder:
    """Select the dense backend configured by ``DENSE_BACKEND``."""
    if config.DENSE_BACKEND == "local":
        return LocalDenseEmbedder(config.LOCAL_DENSE_MODEL)
    return OpenAIDenseEmbedder(
        api_key=config.OPENAI_API_KEY,
        model=config.OPENAI_EMBEDDING_MODEL,
        dimensions=config.DENSE_DIMENSIONS,
    )
