"""
Vector Record ORM Model

SQLAlchemy 2.0 model for the namespaced record store. One table holds
every record (chunks and registry entries); the ``namespace`` column
partitions tenants from each other and from the registry.

Table:
    vector_records - id, dense embedding, optional sparse embedding,
    free-form JSONB metadata.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pgvector.sqlalchemy import SPARSEVEC, Vector
from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from docintel.core.config import settings
from docintel.models.base import Base

DENSE_DIMENSION: int = settings.DENSE_DIMENSIONS
SPARSE_DIMENSION: int = settings.SPARSE_DIMENSIONS


class VectorRecordRow(Base):
    """
    Persistent storage for one vector record.

    Records are addressed by ``(namespace, id)``. Writing the same key
    twice overwrites the previous record (upsert semantics).

    Attributes:
        namespace: Logical partition (``<prefix>:<tenant>`` or
            ``<prefix>:registry``).
        id: Record id (chunk id or ``docmeta#<document_id>``).
        embedding: Dense vector.
        sparse_embedding: Lexical vector (NULL for registry entries).
        record_metadata: JSONB metadata, filterable by key.
        created_at: Insertion timestamp.
    """

    __tablename__ = "vector_records"

    namespace: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(DENSE_DIMENSION),
        nullable=False,
    )
    sparse_embedding: Mapped[Any | None] = mapped_column(
        SPARSEVEC(SPARSE_DIMENSION),
        nullable=True,
    )
    record_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<VectorRecordRow(namespace='{self.namespace}', id='{self.id}')>"
