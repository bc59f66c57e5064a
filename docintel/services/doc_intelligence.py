"""
Document Intelligence Service

Caller-facing orchestrator. This is the single entry point for the API
layer; it composes the individual services into four workflows:

**Upload** (``upload``):
    bytes → FileProcessor → PageChunker → HybridIndex.upsert →
    DocumentRegistry.save

**Ask** (``ask``):
    scope resolution (registry) → RetrievalAgent → AskResult

**Extract** (``extract``):
    scope resolution (registry) → HybridIndex.fetch_all →
    ExtractionEngine → ExtractResponse

**List** (``list_documents`` / ``latest_document``):
    DocumentRegistry
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from docintel.core.config import Settings, settings
from docintel.core.errors import (
    InconsistentScopeError,
    InvalidInputError,
    NotFoundError,
    UnprocessableContentError,
)
from docintel.models.schemas import (
    AskResult,
    DocumentEntry,
    ExtractionFailure,
    ExtractionResult,
    ExtractResponse,
    UploadResult,
)
from docintel.repositories.vector_store import PgVectorStore, VectorStore
from docintel.services.agent import GuardrailThresholds, RetrievalAgent
from docintel.services.chunking import PageChunker
from docintel.services.embeddings import SpladeSparseEmbedder, build_dense_embedder
from docintel.services.extraction import ExtractionEngine, reconstruct_text
from docintel.services.hybrid_index import HybridIndex
from docintel.services.ingestion import FileProcessor, file_extension, is_supported
from docintel.services.llm import StructuredLLM, StructuredModel
from docintel.services.registry import DocumentRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AskScope:
    """Resolved documents for one request, all in one namespace."""

    namespace: str
    tenant_id: str
    document_ids: list[str]


def clean_ids(document_ids: Sequence[str] | None) -> list[str]:
    """Trim, drop blanks, de-duplicate (first occurrence wins)."""
    seen: dict[str, None] = {}
    for raw in document_ids or []:
        value = raw.strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)


class DocIntelligenceService:
    """
    Orchestrates upload, ask, extract and listing.

    Usage::

        service = build_service()
        uploaded = await service.upload(raw, "bol.pdf", tenant_id="acme")
        answer = await service.ask("Who is the carrier?", document_id=uploaded.document_id)
        records = await service.extract(document_ids=[uploaded.document_id])
    """

    def __init__(
        self,
        *,
        index: HybridIndex,
        registry: DocumentRegistry,
        agent: RetrievalAgent,
        extractor: ExtractionEngine,
        processor: FileProcessor | None = None,
        chunker: PageChunker | None = None,
        config: Settings = settings,
    ) -> None:
        self._index = index
        self._registry = registry
        self._agent = agent
        self._extractor = extractor
        self._processor = processor or FileProcessor()
        self._chunker = chunker or PageChunker(
            config.CHUNK_TARGET_CHARS, config.CHUNK_OVERLAP_CHARS
        )
        self._config = config

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        file_bytes: bytes,
        file_name: str | None,
        tenant_id: str | None = None,
    ) -> UploadResult:
        """
        Parse, chunk, index and register one document.

        The registry entry is written last, so a document only becomes
        listable once all of its chunks are indexed.

        Raises:
            InvalidInputError: Unsupported file type or empty content.
            UnprocessableContentError: No chunks could be produced.
            UpstreamError: Embedding or store failure.
        """
        tenant = (tenant_id or "").strip() or self._config.DEFAULT_TENANT
        name = (file_name or "").strip() or f"upload-{int(time.time() * 1000)}"

        if not is_supported(name):
            extension = file_extension(name).lstrip(".") or "unknown"
            raise InvalidInputError(
                f"Unsupported file type '{extension}'. Supported: md, pdf, txt."
            )

        document_id = str(uuid4())
        uploaded_at = datetime.now(UTC)

        pages = await self._processor.parse_pages(name, file_bytes)
        if not any(page.text.strip() for page in pages):
            raise InvalidInputError(f"'{name}' contains no extractable text.")

        chunks = self._chunker.split(
            pages,
            document_id=document_id,
            tenant_id=tenant,
            file_name=name,
            uploaded_at=uploaded_at.isoformat(),
        )
        if not chunks:
            raise UnprocessableContentError("Could not extract usable text from this document.")

        namespace = self._config.tenant_namespace(tenant)
        await self._index.upsert(chunks, namespace)

        entry = DocumentEntry(
            document_id=document_id,
            tenant_id=tenant,
            namespace=namespace,
            file_name=name,
            uploaded_at=uploaded_at,
            chunk_count=len(chunks),
        )
        await self._registry.save(entry)

        logger.info(
            "Uploaded '%s' as %s (%d chunks, namespace=%s)",
            name,
            document_id,
            len(chunks),
            namespace,
        )
        return UploadResult(
            document_id=document_id,
            file_name=name,
            chunk_count=len(chunks),
            namespace=namespace,
            uploaded_at=uploaded_at,
        )

    # ------------------------------------------------------------------
    # Ask
    # ------------------------------------------------------------------

    async def ask(
        self,
        question: str,
        document_id: str | None = None,
        document_ids: Sequence[str] | None = None,
    ) -> AskResult:
        """
        Answer a question over the documents in scope.

        Raises:
            InvalidInputError: Blank question.
            NotFoundError: Unknown document(s) or nothing uploaded yet.
            InconsistentScopeError: Documents span several namespaces.
            UpstreamError: Retrieval or model failure.
        """
        cleaned = question.strip()
        if not cleaned:
            raise InvalidInputError("Question cannot be empty.")

        scope = await self.resolve_scope(document_id, document_ids)
        return await self._agent.run(cleaned, scope.namespace, scope.document_ids)

    async def resolve_scope(
        self,
        document_id: str | None = None,
        document_ids: Sequence[str] | None = None,
    ) -> AskScope:
        """
        Resolve requested documents to one namespace.

        Non-empty ``document_ids`` take precedence over ``document_id``;
        with neither, the most recently uploaded document is used.
        """
        ids = clean_ids(document_ids)
        if ids:
            entries = [await self._registry.get(doc_id) for doc_id in ids]
            missing = [doc_id for doc_id, entry in zip(ids, entries, strict=True) if entry is None]
            if missing:
                raise NotFoundError(f"Document(s) not found: {', '.join(missing)}")

            resolved = [entry for entry in entries if entry is not None]
            namespaces = {entry.namespace for entry in resolved}
            if len(namespaces) > 1:
                raise InconsistentScopeError(
                    "Selected documents belong to different namespaces. "
                    "Please select documents from the same tenant."
                )
            return AskScope(
                namespace=resolved[0].namespace,
                tenant_id=resolved[0].tenant_id,
                document_ids=ids,
            )

        entry = await self._resolve_single(document_id)
        return AskScope(
            namespace=entry.namespace,
            tenant_id=entry.tenant_id,
            document_ids=[entry.document_id],
        )

    async def _resolve_single(self, document_id: str | None) -> DocumentEntry:
        selected = (document_id or "").strip() or await self._registry.latest_id()
        if not selected:
            raise NotFoundError("No uploaded document found. Upload a document first.")

        entry = await self._registry.get(selected)
        if entry is None:
            raise NotFoundError(f"Document '{selected}' was not found.")
        return entry

    # ------------------------------------------------------------------
    # Extract
    # ------------------------------------------------------------------

    async def extract(
        self,
        document_id: str | None = None,
        document_ids: Sequence[str] | None = None,
    ) -> ExtractResponse:
        """
        Extract a shipment record from each document in scope.

        Documents are processed one after another. Under the default
        ``fail_fast`` policy the first failing document aborts the
        request; under ``collect`` it is reported in ``failures``.

        Raises:
            NotFoundError: Unknown document(s) or nothing uploaded yet.
            UnprocessableContentError: A document has no indexed text.
            UpstreamError: Store or model failure.
        """
        ids = clean_ids(document_ids)
        if not ids:
            ids = [(await self._resolve_single(document_id)).document_id]

        collect = self._config.EXTRACTION_FAILURE_POLICY == "collect"
        response = ExtractResponse()

        for doc_id in ids:
            try:
                response.results.append(await self._extract_one(doc_id))
            except (NotFoundError, UnprocessableContentError) as exc:
                if not collect:
                    raise
                logger.warning("Extraction skipped for %s: %s", doc_id, exc)
                response.failures.append(
                    ExtractionFailure(document_id=doc_id, kind=exc.kind, message=exc.message)
                )

        response.total = len(response.results)
        return response

    async def _extract_one(self, document_id: str) -> ExtractionResult:
        entry = await self._registry.get(document_id)
        if entry is None:
            raise NotFoundError(f"Document '{document_id}' was not found.")

        chunks = await self._index.fetch_all(document_id, entry.namespace)
        text = reconstruct_text(chunks)
        if not text:
            raise UnprocessableContentError(
                f"No indexed chunk content found for document '{document_id}'. "
                "Re-upload and try again."
            )

        extraction, confidence = await self._extractor.extract(text, entry.file_name)
        return ExtractionResult(
            document_id=document_id,
            file_name=entry.file_name,
            extraction=extraction,
            confidence=confidence,
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_documents(self) -> list[DocumentEntry]:
        """Every registered document, newest first."""
        return await self._registry.list()

    async def latest_document(self) -> DocumentEntry | None:
        """Most recently uploaded document, if any."""
        latest_id = await self._registry.latest_id()
        if latest_id is None:
            return None
        return await self._registry.get(latest_id)


def build_service(
    config: Settings = settings,
    *,
    store: VectorStore | None = None,
    llm: StructuredModel | None = None,
) -> DocIntelligenceService:
    """Wire the production adapters into a DocIntelligenceService."""
    store = store or PgVectorStore()
    llm = llm or StructuredLLM(api_key=config.OPENAI_API_KEY, model=config.OPENAI_CHAT_MODEL)
    dense = build_dense_embedder(config)

    index = HybridIndex(
        store,
        dense,
        SpladeSparseEmbedder(config.SPARSE_MODEL),
        alpha=config.HYBRID_ALPHA,
        batch_size=config.EMBED_BATCH_SIZE,
        settle_timeout=config.SETTLE_TIMEOUT_SECONDS,
        settle_interval=config.SETTLE_POLL_INTERVAL_SECONDS,
    )
    agent = RetrievalAgent(
        index,
        llm,
        top_k=config.AGENT_TOP_K,
        max_sources=config.AGENT_MAX_SOURCES,
        max_steps=config.AGENT_MAX_STEPS,
        thresholds=GuardrailThresholds(
            min_top_score=config.GUARDRAIL_MIN_TOP_SCORE,
            low_confidence=config.GUARDRAIL_LOW_CONFIDENCE,
            caution_confidence=config.GUARDRAIL_CAUTION_CONFIDENCE,
        ),
    )
    return DocIntelligenceService(
        index=index,
        registry=DocumentRegistry(store, dense, config.REGISTRY_NAMESPACE),
        agent=agent,
        extractor=ExtractionEngine(llm, config.EXTRACTION_MAX_CHARS),
        config=config,
    )

