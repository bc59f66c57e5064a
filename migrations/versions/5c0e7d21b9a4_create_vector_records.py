"""create vector records

Revision ID: 5c0e7d21b9a4
Revises:
Create Date: 2026-09-14 10:02:47.118230

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import SPARSEVEC, Vector
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "5c0e7d21b9a4"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Must match DENSE_DIMENSIONS / SPARSE_DIMENSIONS at deploy time
DENSE_DIMENSIONS = 1536
SPARSE_DIMENSIONS = 30522


def upgrade() -> None:
    """Create the namespaced vector_records table (chunks + registry)."""
    # sparsevec requires pgvector >= 0.7
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "vector_records",
        sa.Column("namespace", sa.String(255), nullable=False),
        sa.Column("id", sa.String(512), nullable=False),
        sa.Column("embedding", Vector(DENSE_DIMENSIONS), nullable=False),
        sa.Column("sparse_embedding", SPARSEVEC(SPARSE_DIMENSIONS), nullable=True),
        sa.Column(
            "record_metadata",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("namespace", "id"),
    )

    # Chunk lookups by document (fetch_all, scoped queries)
    op.execute(
        """
        CREATE INDEX ix_vector_records_document_id
        ON vector_records (namespace, (record_metadata ->> 'document_id'))
        """
    )

    # HNSW index for dense inner-product search
    op.execute(
        """
        CREATE INDEX ix_vector_records_embedding_hnsw
        ON vector_records
        USING hnsw (embedding vector_ip_ops)
        WITH (m = 16, ef_construction = 64)
        """
    )


def downgrade() -> None:
    """Drop the vector_records table."""
    op.execute("DROP INDEX IF EXISTS ix_vector_records_embedding_hnsw")
    op.execute("DROP INDEX IF EXISTS ix_vector_records_document_id")
    op.drop_table("vector_records")
