import asyncio
from datetime import datetime, timedelta, timezone
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from docrag.core.config import settings
from docrag.core.database import AsyncSessionLocal
from docrag.core.errors import (
    ContentUnavailable,
    EmbeddingServiceError,
    EmptyContent,
    IndexingInProgress,
    VectorStoreError,
)
from docrag.embeddings.embedder import embed_text
from docrag.models.document import Document, DocumentStatus
from docrag.rag.chunker import Chunk, chunk_text, normalize_text
from docrag.utils.logger import get_logger
from docrag.utils.permissions import check_document_ownership
from docrag.vectorstore.vector_store import ChunkEmbedding, delete_by_document, insert_chunks

logger = get_logger("docrag.pipeline")

RETRYABLE_STATUSES = (DocumentStatus.FAILED.value, DocumentStatus.COMPLETED.value)
IN_FLIGHT_STATUSES = (DocumentStatus.PENDING.value, DocumentStatus.INDEXING.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def update_status(
        db: AsyncSession,
        document_id: int,
        status: DocumentStatus,
        chunk_count: Optional[int] = None,
) -> None:
    """Write the document's lifecycle status (and chunk count when given)."""
    values = {"status": status.value, "status_updated_at": _now()}
    if chunk_count is not None:
        values["chunk_count"] = chunk_count
    await db.execute(update(Document).where(Document.id == document_id).values(**values))
    await db.commit()
    logger.debug("Status updated", extra={"document_id": document_id, "status": status.value})


async def _claim(
        db: AsyncSession,
        document_id: int,
        from_statuses: Sequence[str],
        stale_before: Optional[datetime] = None,
) -> bool:
    """
    Compare-and-set the document into `indexing`. Only one caller can win, so
    two indexing runs never work on the same document's chunks.
    """
    allowed = Document.status.in_(list(from_statuses))
    if stale_before is not None:
        allowed = or_(
            allowed,
            Document.status.in_(list(IN_FLIGHT_STATUSES)) & (Document.status_updated_at < stale_before),
        )
    result = await db.execute(
        update(Document)
        .where(Document.id == document_id, allowed)
        .values(status=DocumentStatus.INDEXING.value, chunk_count=0, status_updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return (result.rowcount or 0) == 1


def _batched(chunks: Iterable[Chunk], size: int) -> Iterator[List[Chunk]]:
    it = iter(chunks)
    while True:
        batch = list(islice(it, size))
        if not batch:
            return
        yield batch


async def _embed_batch(
        batch: List[Chunk],
        semaphore: asyncio.Semaphore,
        document_id: int,
) -> Tuple[List[ChunkEmbedding], int]:
    """Embed a batch concurrently; failed chunks are logged and skipped."""

    async def _one(chunk: Chunk):
        async with semaphore:
            return await embed_text(chunk.text)

    results = await asyncio.gather(*(_one(c) for c in batch), return_exceptions=True)

    embedded: List[ChunkEmbedding] = []
    failed = 0
    for chunk, result in zip(batch, results):
        if isinstance(result, EmbeddingServiceError):
            failed += 1
            logger.warning("Skipping chunk after embedding failure", extra={
                "document_id": document_id,
                "chunk_index": chunk.index,
                "error": str(result),
            })
            continue
        if isinstance(result, BaseException):
            raise result
        embedded.append(ChunkEmbedding(content=chunk.text, vector=result, metadata=chunk.metadata))
    return embedded, failed


async def process_document(document_id: int) -> int:
    """
    Index a document that has already been claimed (status `indexing`):

    1) chunk the stored text
    2) embed chunks, at most EMBEDDING_CONCURRENCY calls at a time
    3) commit each batch of INSERT_BATCH_SIZE embedded chunks as soon as it is ready
    4) mark the document `completed` with the number of stored chunks

    Chunks whose embedding fails are skipped; if every chunk fails, or on any
    other error, the document is marked `failed`, its chunk rows are removed and
    its chunk count reset to 0. Never raises.
    """
    async with AsyncSessionLocal() as db:
        doc = await db.get(Document, document_id)
        if doc is None:
            logger.warning("Document vanished before indexing", extra={"document_id": document_id})
            return 0

        logger.info("Starting document indexing", extra={
            "document_id": document_id,
            "document_name": doc.name,
            "content_length": len(doc.content or ""),
        })

        try:
            if not doc.has_indexable_content:
                raise ContentUnavailable(f"Document {document_id} has no stored text to index")

            text = normalize_text(doc.content)
            chunks = chunk_text(text, chunk_size=settings.CHUNK_SIZE, chunk_overlap=settings.CHUNK_OVERLAP)
            semaphore = asyncio.Semaphore(settings.EMBEDDING_CONCURRENCY)

            total = stored = failed = 0
            for batch in _batched(chunks, settings.INSERT_BATCH_SIZE):
                total += len(batch)
                embedded, batch_failed = await _embed_batch(batch, semaphore, document_id)
                failed += batch_failed
                stored += await insert_chunks(db, document_id, embedded)
                logger.info(f"Indexed {stored}/{total} chunks so far", extra={"document_id": document_id})

            if total == 0:
                raise EmptyContent(f"Document {document_id} produced no chunks")
            if stored == 0:
                raise EmbeddingServiceError(f"All {total} chunks of document {document_id} failed to embed")

            await update_status(db, document_id, DocumentStatus.COMPLETED, chunk_count=stored)
            logger.info("Document indexing completed", extra={
                "document_id": document_id,
                "chunk_count": stored,
                "chunks_failed": failed,
            })
            return stored

        except Exception as e:
            logger.error(f"Error indexing document {document_id}: {e}", exc_info=True, extra={
                "document_id": document_id,
            })
            await _mark_failed(db, document_id)
            return 0


async def _mark_failed(db: AsyncSession, document_id: int) -> None:
    try:
        await db.rollback()
        await delete_by_document(db, document_id)
        await update_status(db, document_id, DocumentStatus.FAILED, chunk_count=0)
    except Exception:
        # Leaves the document `indexing`; recoverable through a stale retry.
        logger.exception("Could not mark document as failed", extra={"document_id": document_id})


async def index_document(document_id: int) -> int:
    """
    Entry point for freshly ingested documents: claim `pending` -> `indexing`
    and run the pipeline. Returns the stored chunk count (0 if not claimed or failed).
    """
    async with AsyncSessionLocal() as db:
        claimed = await _claim(db, document_id, (DocumentStatus.PENDING.value,))
    if not claimed:
        logger.warning("Document not pending, skipping indexing", extra={"document_id": document_id})
        return 0
    return await process_document(document_id)


async def prepare_reindex(db: AsyncSession, document_id: int, owner_id: int) -> Document:
    """
    Guard and reset a document for retry / forced re-index. Allowed from
    `failed` or `completed`, or from a `pending`/`indexing` state that has not
    moved for INDEXING_STALE_AFTER_SECONDS (a crashed run). Clears old chunk
    rows; the caller then schedules `process_document`.

    Raises:
        DocumentNotFound: missing or not owned
        ContentUnavailable: nothing stored to re-index from
        IndexingInProgress: another run owns the document
        VectorStoreError: old chunks could not be removed; the document is left `failed`
    """
    doc = await check_document_ownership(db, document_id, owner_id)

    if not doc.has_indexable_content:
        raise ContentUnavailable("Document content not available. Please delete and re-upload.")

    stale_before = _now() - timedelta(seconds=settings.INDEXING_STALE_AFTER_SECONDS)
    if not await _claim(db, document_id, RETRYABLE_STATUSES, stale_before=stale_before):
        raise IndexingInProgress(f"Document {document_id} is already being indexed")

    try:
        await delete_by_document(db, document_id)
    except VectorStoreError:
        # Release the claim so the document is not stuck in `indexing`
        await update_status(db, document_id, DocumentStatus.FAILED, chunk_count=0)
        raise
    await db.refresh(doc)
    logger.info("Document reset for re-indexing", extra={"document_id": document_id})
    return doc


async def delete_document(db: AsyncSession, document_id: int, owner_id: int) -> None:
    """Remove a document and every chunk row it owns."""
    doc = await check_document_ownership(db, document_id, owner_id)
    await delete_by_document(db, document_id)
    await db.delete(doc)
    await db.commit()
    logger.info("Document deleted", extra={"document_id": document_id})
