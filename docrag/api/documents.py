from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import httpx
from docrag.core.database import get_db
from docrag.core.errors import ContentUnavailable, DocumentNotFound, IndexingInProgress, VectorStoreError
from docrag.core.security import get_current_user_id
from docrag.models.document import Document, DocumentStatus
from docrag.rag.pipeline import delete_document, index_document, prepare_reindex, process_document
from docrag.schemas.document_schemas import (
    DocumentAccepted,
    DocumentDeleteResponse,
    DocumentIngestRequest,
    DocumentStatusResponse,
    UrlIngestRequest,
)
from docrag.utils.logger import get_logger
from docrag.utils.permissions import check_document_ownership, check_workspace_ownership
from docrag.web.search import get_firecrawl

logger = get_logger("docrag.api.documents")

router = APIRouter(prefix="/documents", tags=["documents"])


async def _create_document(
    db: AsyncSession,
    owner_id: int,
    name: str,
    content: str,
    source_kind: str,
    workspace_id=None,
) -> Document:
    if workspace_id is not None:
        try:
            await check_workspace_ownership(db, workspace_id, owner_id)
        except DocumentNotFound:
            raise HTTPException(status_code=404, detail="Workspace not found")

    doc = Document(
        owner_id=owner_id,
        workspace_id=workspace_id,
        name=name,
        content=content,
        source_kind=source_kind,
        status=DocumentStatus.PENDING.value,
    )
    db.add(doc)
    await db.commit()
    await db.refresh(doc)
    logger.info("Document saved to database", extra={
        "document_id": doc.id,
        "owner_id": owner_id,
        "content_length": len(content),
    })
    return doc


# ------ Ingest extracted text -----
@router.post("", response_model=DocumentAccepted, status_code=202)
async def ingest_document(
    body: DocumentIngestRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    doc = await _create_document(db, user_id, body.name, body.content, body.source_kind, body.workspace_id)

    # Fire and forget; callers poll the status endpoint
    background_tasks.add_task(index_document, doc.id)
    return DocumentAccepted(id=doc.id, status=doc.status)


# ------ Ingest a web page -----
@router.post("/url", response_model=DocumentAccepted, status_code=202)
async def ingest_url(
    body: UrlIngestRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    firecrawl = get_firecrawl()
    if firecrawl is None:
        raise HTTPException(status_code=503, detail="URL ingestion is not configured")

    url = str(body.url)
    try:
        content = await firecrawl.scrape(url)
    except httpx.HTTPError as e:
        logger.error("Scrape failed", extra={"url": url, "error": str(e)})
        raise HTTPException(status_code=502, detail="Failed to retrieve content from URL")

    if not content.strip():
        raise HTTPException(status_code=400, detail="Failed to retrieve content from URL")

    doc = await _create_document(db, user_id, url, content, "url", body.workspace_id)
    background_tasks.add_task(index_document, doc.id)
    return DocumentAccepted(id=doc.id, status=doc.status)


@router.get("/status/{doc_id}", response_model=DocumentStatusResponse)
async def get_document_status(
    doc_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        doc = await check_document_ownership(db, doc_id, user_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")

    return DocumentStatusResponse(
        document_id=doc.id,
        status=doc.status,
        chunk_count=doc.chunk_count or 0,
    )


# ------ Retry / re-index (clears chunks, reuses stored content) -----
@router.post("/{doc_id}/retry", response_model=DocumentAccepted, status_code=202)
async def retry_document(
    doc_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    logger.info("Retry requested", extra={"user_id": user_id, "document_id": doc_id})
    try:
        doc = await prepare_reindex(db, doc_id, user_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
    except ContentUnavailable as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IndexingInProgress:
        raise HTTPException(status_code=409, detail="Document is already being indexed")
    except VectorStoreError as e:
        logger.error("Could not clear chunks for retry", extra={"document_id": doc_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to clear previous chunks; document marked failed")

    background_tasks.add_task(process_document, doc.id)
    return DocumentAccepted(id=doc.id, status=doc.status)


@router.delete("/{doc_id}", response_model=DocumentDeleteResponse)
async def remove_document(
    doc_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        await delete_document(db, doc_id, user_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
    except VectorStoreError as e:
        logger.error("Document delete failed", extra={"document_id": doc_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to delete document chunks")

    return DocumentDeleteResponse(detail="Document deleted")
