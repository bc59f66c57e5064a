"""
Vector Store Repository

Namespaced record store backed by PostgreSQL + pgvector. Holds both
chunk records (dense + sparse vectors) and document registry entries
(dense only), partitioned by ``namespace``.

Capabilities:
    - upsert: insert-or-replace records by ``(namespace, id)``.
    - query: fused dense + sparse inner-product ranking with an
      optional metadata filter.
    - fetch_by_ids / fetch_by_metadata / list_ids: exact reads with
      keyset pagination on ``id``.

Metadata filters use the ``{"field": {"$eq": value}}`` and
``{"field": {"$in": [values]}}`` shapes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from pgvector import SparseVector
from sqlalchemy import ColumnElement, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.core.database import get_session_factory
from docintel.core.errors import UpstreamError
from docintel.models.orm import SPARSE_DIMENSION, VectorRecordRow
from docintel.models.schemas import SparseValues

logger = logging.getLogger(__name__)

MetadataFilter = dict[str, dict[str, Any]]


@dataclass(frozen=True)
class VectorRecord:
    """One record as written to or read from the store."""

    id: str
    dense: list[float]
    sparse: SparseValues | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StoreMatch:
    """A ranked similarity match."""

    id: str
    score: float
    metadata: dict[str, Any] | None


@dataclass(frozen=True)
class RecordPage:
    """One page of records; ``next_token`` is None on the last page."""

    records: list[VectorRecord]
    next_token: str | None = None


@dataclass(frozen=True)
class IdPage:
    """One page of record ids; ``next_token`` is None on the last page."""

    ids: list[str]
    next_token: str | None = None


class VectorStore(Protocol):
    """Operations the index and registry need from a vector store."""

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> None: ...

    async def query(
        self,
        namespace: str,
        dense: list[float],
        sparse: SparseValues | None,
        top_k: int,
        metadata_filter: MetadataFilter | None = None,
    ) -> list[StoreMatch]: ...

    async def fetch_by_ids(
        self, namespace: str, ids: Sequence[str]
    ) -> dict[str, VectorRecord]: ...

    async def fetch_by_metadata(
        self,
        namespace: str,
        metadata_filter: MetadataFilter,
        limit: int,
        pagination_token: str | None = None,
    ) -> RecordPage: ...

    async def list_ids(
        self,
        namespace: str,
        prefix: str,
        limit: int,
        pagination_token: str | None = None,
    ) -> IdPage: ...


def to_sparse_vector(values: SparseValues) -> SparseVector:
    """Convert parallel index/value lists to a pgvector SparseVector."""
    return SparseVector(dict(zip(values.indices, values.values, strict=True)), SPARSE_DIMENSION)


def from_sparse_vector(vector: SparseVector | None) -> SparseValues | None:
    """Convert a pgvector SparseVector back to parallel lists."""
    if vector is None:
        return None
    return SparseValues(indices=list(vector.indices()), values=list(vector.values()))


def filter_clauses(metadata_filter: MetadataFilter | None) -> list[ColumnElement[bool]]:
    """
    Translate a metadata filter into SQL predicates on the JSONB column.

    Raises:
        ValueError: For operators other than ``$eq`` and ``$in``.
    """
    clauses: list[ColumnElement[bool]] = []
    for key, condition in (metadata_filter or {}).items():
        column = VectorRecordRow.record_metadata[key].astext
        for operator, operand in condition.items():
            if operator == "$eq":
                clauses.append(column == str(operand))
            elif operator == "$in":
                clauses.append(column.in_([str(v) for v in operand]))
            else:
                raise ValueError(f"Unsupported filter operator: {operator}")
    return clauses


class PgVectorStore:
    """
    pgvector implementation of the VectorStore protocol.

    Each operation runs in its own session from the shared factory, so a
    single instance can serve concurrent requests.

    Scoring:
        ``score = dense · q_dense + sparse · q_sparse`` (inner products).
        Callers pre-scale the query vectors to weight the two signals.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> None:
        """Insert or replace records in one transaction."""
        if not records:
            return

        rows = [
            {
                "namespace": namespace,
                "id": record.id,
                "embedding": record.dense,
                "sparse_embedding": (
                    to_sparse_vector(record.sparse) if record.sparse is not None else None
                ),
                "record_metadata": record.metadata,
            }
            for record in records
        ]
        stmt = insert(VectorRecordRow).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[VectorRecordRow.namespace, VectorRecordRow.id],
            set_={
                "embedding": stmt.excluded.embedding,
                "sparse_embedding": stmt.excluded.sparse_embedding,
                "record_metadata": stmt.excluded.record_metadata,
            },
        )

        try:
            async with self._sessions()() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise UpstreamError(f"Vector upsert failed: {exc}") from exc

        logger.info("Upserted %d records into '%s'", len(rows), namespace)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def query(
        self,
        namespace: str,
        dense: list[float],
        sparse: SparseValues | None,
        top_k: int,
        metadata_filter: MetadataFilter | None = None,
    ) -> list[StoreMatch]:
        """Rank records in ``namespace`` by fused inner-product score."""
        # <#> is the negative inner product
        score = -VectorRecordRow.embedding.max_inner_product(dense)
        if sparse is not None and sparse.indices:
            sparse_score = -VectorRecordRow.sparse_embedding.max_inner_product(
                to_sparse_vector(sparse)
            )
            score = score + func.coalesce(sparse_score, 0.0)
        score_col = score.label("score")

        stmt = (
            select(VectorRecordRow.id, VectorRecordRow.record_metadata, score_col)
            .where(VectorRecordRow.namespace == namespace, *filter_clauses(metadata_filter))
            .order_by(score_col.desc())
            .limit(top_k)
        )

        try:
            async with self._sessions()() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as exc:
            raise UpstreamError(f"Vector query failed: {exc}") from exc

        return [StoreMatch(id=row[0], score=float(row[2] or 0.0), metadata=row[1]) for row in rows]

    async def fetch_by_ids(
        self, namespace: str, ids: Sequence[str]
    ) -> dict[str, VectorRecord]:
        """Fetch records by id; missing ids are absent from the result."""
        if not ids:
            return {}

        stmt = select(VectorRecordRow).where(
            VectorRecordRow.namespace == namespace,
            VectorRecordRow.id.in_(list(ids)),
        )
        try:
            async with self._sessions()() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise UpstreamError(f"Vector fetch failed: {exc}") from exc

        return {row.id: self._to_record(row) for row in rows}

    async def fetch_by_metadata(
        self,
        namespace: str,
        metadata_filter: MetadataFilter,
        limit: int,
        pagination_token: str | None = None,
    ) -> RecordPage:
        """Fetch one page of records matching a metadata filter."""
        stmt = select(VectorRecordRow).where(
            VectorRecordRow.namespace == namespace, *filter_clauses(metadata_filter)
        )
        if pagination_token is not None:
            stmt = stmt.where(VectorRecordRow.id > pagination_token)
        stmt = stmt.order_by(VectorRecordRow.id).limit(limit)

        try:
            async with self._sessions()() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise UpstreamError(f"Vector metadata fetch failed: {exc}") from exc

        records = [self._to_record(row) for row in rows]
        next_token = records[-1].id if len(records) == limit else None
        return RecordPage(records=records, next_token=next_token)

    async def list_ids(
        self,
        namespace: str,
        prefix: str,
        limit: int,
        pagination_token: str | None = None,
    ) -> IdPage:
        """List one page of record ids starting with ``prefix``."""
        stmt = select(VectorRecordRow.id).where(
            VectorRecordRow.namespace == namespace,
            VectorRecordRow.id.startswith(prefix, autoescape=True),
        )
        if pagination_token is not None:
            stmt = stmt.where(VectorRecordRow.id > pagination_token)
        stmt = stmt.order_by(VectorRecordRow.id).limit(limit)

        try:
            async with self._sessions()() as session:
                result = await session.execute(stmt)
                ids = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise UpstreamError(f"Vector id listing failed: {exc}") from exc

        next_token = ids[-1] if len(ids) == limit else None
        return IdPage(ids=ids, next_token=next_token)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_record(row: VectorRecordRow) -> VectorRecord:
        return VectorRecord(
            id=row.id,
            dense=[float(v) for v in row.embedding],
            sparse=from_sparse_vector(row.sparse_embedding),
            metadata=dict(row.record_metadata or {}),
        )
