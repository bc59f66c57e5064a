"""
Document Registry

Durable map from document id to its registry entry (file name, tenant,
namespace, upload time, chunk count), stored in the vector store's
dedicated registry namespace so entries never appear in chunk search.

Consistency:
    The store is eventually consistent. A ``save`` may not be visible to
    ``get``/``list`` immediately; callers must not rely on strict
    read-after-write.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from docintel.core.config import settings
from docintel.models.schemas import DocumentEntry
from docintel.repositories.vector_store import VectorRecord, VectorStore
from docintel.services.embeddings import DenseEmbedder

logger = logging.getLogger(__name__)

REGISTRY_ID_PREFIX: str = "docmeta#"
REGISTRY_RECORD_TYPE: str = "document_registry"
LIST_PAGE_SIZE: int = 100
FETCH_BATCH_SIZE: int = 100

_REQUIRED_FIELDS = ("document_id", "file_name", "uploaded_at", "namespace", "tenant_id")


def to_registry_id(document_id: str) -> str:
    return f"{REGISTRY_ID_PREFIX}{document_id}"


def from_registry_id(registry_id: str) -> str:
    if registry_id.startswith(REGISTRY_ID_PREFIX):
        return registry_id[len(REGISTRY_ID_PREFIX) :]
    return registry_id


def entry_from_metadata(metadata: dict | None, fallback_id: str = "") -> DocumentEntry | None:
    """
    Build a DocumentEntry from stored metadata, or None if it is unusable.

    Blank required fields and unparseable values both yield None so a
    single corrupt entry never breaks listing.
    """
    if not metadata:
        return None

    values = {key: str(metadata.get(key) or "").strip() for key in _REQUIRED_FIELDS}
    if not values["document_id"]:
        values["document_id"] = fallback_id
    if not all(values.values()):
        return None

    try:
        return DocumentEntry(**values, chunk_count=int(metadata.get("chunk_count") or 0))
    except (ValidationError, TypeError, ValueError):
        return None


class DocumentRegistry:
    """
    Registry of uploaded documents.

    Usage::

        registry = DocumentRegistry(store, dense_embedder)
        await registry.save(entry)
        latest = await registry.latest_id()

    Args:
        store: Vector store shared with the chunk index.
        dense: Dense embedder (registry records need a vector to be stored).
        namespace: Registry namespace (default ``<VECTOR_NAMESPACE>:registry``).
    """

    def __init__(
        self,
        store: VectorStore,
        dense: DenseEmbedder,
        namespace: str | None = None,
    ) -> None:
        self._store = store
        self._dense = dense
        self._namespace = namespace or settings.REGISTRY_NAMESPACE

    @property
    def namespace(self) -> str:
        return self._namespace

    async def save(self, entry: DocumentEntry) -> None:
        """Write (or overwrite) the entry for ``entry.document_id``."""
        uploaded_at = entry.uploaded_at.isoformat()
        embedding_input = (
            f"document_id:{entry.document_id}\n"
            f"file_name:{entry.file_name}\n"
            f"uploaded_at:{uploaded_at}"
        )
        [vector] = await self._dense.embed([embedding_input])

        await self._store.upsert(
            self._namespace,
            [
                VectorRecord(
                    id=to_registry_id(entry.document_id),
                    dense=vector,
                    metadata={
                        "record_type": REGISTRY_RECORD_TYPE,
                        "document_id": entry.document_id,
                        "file_name": entry.file_name,
                        "uploaded_at": uploaded_at,
                        "namespace": entry.namespace,
                        "tenant_id": entry.tenant_id,
                        "chunk_count": entry.chunk_count,
                    },
                )
            ],
        )
        logger.info("Registered document %s ('%s')", entry.document_id, entry.file_name)

    async def get(self, document_id: str) -> DocumentEntry | None:
        """Entry for ``document_id``, or None if absent or malformed."""
        registry_id = to_registry_id(document_id)
        records = await self._store.fetch_by_ids(self._namespace, [registry_id])
        record = records.get(registry_id)
        if record is None:
            return None

        entry = entry_from_metadata(record.metadata, fallback_id=document_id)
        if entry is None:
            logger.warning("Registry entry %s is malformed; ignoring", registry_id)
            return None
        return entry.model_copy(update={"document_id": document_id})

    async def list(self) -> list[DocumentEntry]:
        """Every entry, newest upload first, across all store pages."""
        ids = await self._list_ids()
        entries: list[DocumentEntry] = []

        for start in range(0, len(ids), FETCH_BATCH_SIZE):
            batch = ids[start : start + FETCH_BATCH_SIZE]
            records = await self._store.fetch_by_ids(self._namespace, batch)
            for registry_id, record in records.items():
                entry = entry_from_metadata(record.metadata, fallback_id=from_registry_id(registry_id))
                if entry is None:
                    logger.warning("Registry entry %s is malformed; skipping", registry_id)
                    continue
                entries.append(entry)

        entries.sort(key=lambda e: e.uploaded_at, reverse=True)
        return entries

    async def latest_id(self) -> str | None:
        """Id of the most recently uploaded document, if any."""
        entries = await self.list()
        return entries[0].document_id if entries else None

    async def _list_ids(self) -> list[str]:
        ids: list[str] = []
        token: str | None = None
        while True:
            page = await self._store.list_ids(
                self._namespace, REGISTRY_ID_PREFIX, LIST_PAGE_SIZE, token
            )
            ids.extend(i for i in page.ids if i)
            token = page.next_token
            if not token:
                return ids
