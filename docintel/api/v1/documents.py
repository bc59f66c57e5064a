"""
Document Intelligence API Router

HTTP endpoints over ``DocIntelligenceService``. Handlers only translate
between HTTP and the service; domain errors become ``HTTPException``
with a ``{"kind", "message"}`` detail.

Endpoints:
    POST /upload            - Parse, chunk and index one file.
    POST /ask               - Grounded answer over one or more documents.
    POST /extract           - Structured shipment record per document.
    GET  /documents         - Every registered document, newest first.
    GET  /documents/latest  - Most recently uploaded document.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from docintel.core.errors import DocIntelError
from docintel.models.schemas import AskResult, DocumentEntry, ExtractResponse, UploadResult
from docintel.schemas.api import AskRequest, ExtractRequest
from docintel.services.doc_intelligence import DocIntelligenceService, build_service

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_service() -> DocIntelligenceService:
    """FastAPI dependency - one shared service per process."""
    return build_service()


def _to_http(exc: DocIntelError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error("Upstream failure: %s", exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/upload",
    response_model=UploadResult,
    summary="Upload a document",
    responses={
        400: {"description": "Unsupported file type or no extractable text"},
        422: {"description": "No usable chunks could be produced"},
        502: {"description": "Embedding or vector store failure"},
    },
)
async def upload(
    file: UploadFile = File(...),
    tenant_id: str | None = Form(default=None),
    service: DocIntelligenceService = Depends(_get_service),
) -> UploadResult:
    """
    Upload a PDF, text or Markdown file.

    The document is parsed page by page, chunked, embedded (dense and
    sparse) and indexed into the tenant's namespace before it is
    registered. Omitting ``tenant_id`` uses the default tenant.
    """
    raw = await file.read()
    try:
        return await service.upload(raw, file.filename, tenant_id)
    except DocIntelError as exc:
        raise _to_http(exc) from exc


@router.post(
    "/ask",
    response_model=AskResult,
    summary="Ask a question about uploaded documents",
    responses={
        400: {"description": "Blank question or documents from different tenants"},
        404: {"description": "Unknown document or nothing uploaded yet"},
        502: {"description": "Retrieval or model failure"},
    },
)
async def ask(
    request: AskRequest,
    service: DocIntelligenceService = Depends(_get_service),
) -> AskResult:
    """
    Answer a question from the selected documents.

    The answer is gated by guardrails: weak retrieval or an ungrounded
    answer yields ``"Not found in document."`` with ``guardrail="not_found"``,
    and moderate confidence appends a caution notice.
    """
    logger.info("Ask request: question='%s'", request.question[:50])
    try:
        return await service.ask(request.question, request.document_id, request.document_ids)
    except DocIntelError as exc:
        raise _to_http(exc) from exc


@router.post(
    "/extract",
    response_model=ExtractResponse,
    summary="Extract shipment data",
    responses={
        404: {"description": "Unknown document or nothing uploaded yet"},
        422: {"description": "A document has no indexed text"},
        502: {"description": "Store or model failure"},
    },
)
async def extract(
    request: ExtractRequest,
    service: DocIntelligenceService = Depends(_get_service),
) -> ExtractResponse:
    """Extract one structured shipment record per selected document."""
    try:
        return await service.extract(request.document_id, request.document_ids)
    except DocIntelError as exc:
        raise _to_http(exc) from exc


@router.get(
    "/documents",
    response_model=list[DocumentEntry],
    summary="List uploaded documents",
)
async def list_documents(
    service: DocIntelligenceService = Depends(_get_service),
) -> list[DocumentEntry]:
    try:
        return await service.list_documents()
    except DocIntelError as exc:
        raise _to_http(exc) from exc


@router.get(
    "/documents/latest",
    response_model=DocumentEntry,
    summary="Most recently uploaded document",
    responses={404: {"description": "Nothing uploaded yet"}},
)
async def latest_document(
    service: DocIntelligenceService = Depends(_get_service),
) -> DocumentEntry:
    try:
        entry = await service.latest_document()
    except DocIntelError as exc:
        raise _to_http(exc) from exc

    if entry is None:
        raise HTTPException(
            status_code=404,
            detail={"kind": "not_found", "message": "No uploaded document found."},
        )
    return entry
