from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import numpy as np
import faiss
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from docrag.core.config import settings
from docrag.core.errors import VectorStoreError
from docrag.models.document import Document
from docrag.models.embedding import EmbeddingRecord
from docrag.utils.logger import get_logger

logger = get_logger("docrag.vectorstore")


@dataclass
class ChunkEmbedding:
    """A chunk ready for insertion."""
    content: str
    vector: Sequence[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchHit:
    content: str
    metadata: Dict[str, Any]
    distance: float
    document_id: int
    document_name: str
    chunk_id: int


def _pack(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="float32").tobytes()


def _unpack(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="float32")


def _normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (matrix / norms).astype("float32")


# Insert one batch of chunks
async def insert_chunks(
        db: AsyncSession,
        document_id: int,
        chunks: Sequence[ChunkEmbedding],
) -> int:
    """
    Insert a batch of chunks for one document in a single transaction.
    Either every chunk of the batch becomes visible or none does.

    Raises:
        VectorStoreError: on a dimensionality mismatch or a database failure
    """
    if not chunks:
        return 0

    dim = settings.EMBEDDING_DIM
    for chunk in chunks:
        if len(chunk.vector) != dim:
            raise VectorStoreError(
                f"Embedding dimension mismatch: got {len(chunk.vector)}, expected {dim}"
            )

    try:
        db.add_all([
            EmbeddingRecord(
                document_id=document_id,
                content=chunk.content,
                chunk_metadata=dict(chunk.metadata),
                vector=_pack(chunk.vector),
            )
            for chunk in chunks
        ])
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Batch insert failed", extra={"document_id": document_id, "error": str(e)})
        raise VectorStoreError(f"Failed to insert chunks for document {document_id}: {e}") from e

    logger.debug("Batch committed", extra={"document_id": document_id, "count": len(chunks)})
    return len(chunks)


# Delete all chunks of a single document
async def delete_by_document(db: AsyncSession, document_id: int) -> int:
    try:
        result = await db.execute(
            delete(EmbeddingRecord).where(EmbeddingRecord.document_id == document_id)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise VectorStoreError(f"Failed to delete chunks for document {document_id}: {e}") from e

    removed = result.rowcount or 0
    logger.info("Deleted document chunks", extra={"document_id": document_id, "chunks_removed": removed})
    return removed


async def count_by_document(db: AsyncSession, document_id: int) -> int:
    result = await db.execute(
        select(func.count(EmbeddingRecord.id)).where(EmbeddingRecord.document_id == document_id)
    )
    return int(result.scalar_one())


# Search
async def search(
        db: AsyncSession,
        query_vector: Sequence[float],
        *,
        document_ids: Optional[Sequence[int]] = None,
        owner_id: Optional[int] = None,
        limit: int = 5,
) -> List[SearchHit]:
    """
    Nearest-neighbour search by cosine distance (0 = identical, 2 = opposite).

    Candidates are restricted to `document_ids`, to documents owned by
    `owner_id`, or both. Results are ordered by ascending distance, ties by
    insertion order.
    """
    if document_ids is None and owner_id is None:
        raise ValueError("search requires document_ids or owner_id")
    if document_ids is not None and len(document_ids) == 0:
        return []

    dim = settings.EMBEDDING_DIM
    if len(query_vector) != dim:
        raise VectorStoreError(
            f"Query dimension mismatch: got {len(query_vector)}, expected {dim}"
        )

    stmt = (
        select(
            EmbeddingRecord.id,
            EmbeddingRecord.document_id,
            EmbeddingRecord.content,
            EmbeddingRecord.chunk_metadata,
            EmbeddingRecord.vector,
            Document.name,
        )
        .join(Document, Document.id == EmbeddingRecord.document_id)
        .order_by(EmbeddingRecord.id)
    )
    if document_ids is not None:
        stmt = stmt.where(EmbeddingRecord.document_id.in_(list(document_ids)))
    if owner_id is not None:
        stmt = stmt.where(Document.owner_id == owner_id)

    try:
        rows = (await db.execute(stmt)).all()
    except SQLAlchemyError as e:
        raise VectorStoreError(f"Vector search failed: {e}") from e

    if not rows:
        logger.info("Vector search found no candidates", extra={
            "document_ids_filter": list(document_ids) if document_ids is not None else None,
            "owner_id": owner_id,
        })
        return []

    matrix = _normalize(np.vstack([_unpack(r.vector) for r in rows]))
    query = _normalize(np.asarray(query_vector, dtype="float32").reshape(1, -1))

    index = faiss.IndexFlatIP(dim)
    index.add(matrix)
    similarities, indices = index.search(query, len(rows))

    scored = []
    for sim, idx in zip(similarities[0], indices[0]):
        if idx < 0:
            continue
        distance = float(np.clip(1.0 - float(sim), 0.0, 2.0))
        scored.append((distance, rows[idx].id, rows[idx]))

    scored.sort(key=lambda item: (item[0], item[1]))
    hits = [
        SearchHit(
            content=row.content,
            metadata=dict(row.chunk_metadata or {}),
            distance=distance,
            document_id=row.document_id,
            document_name=row.name,
            chunk_id=row.id,
        )
        for distance, _, row in scored[:limit]
    ]

    logger.info("Vector search completed", extra={
        "candidates": len(rows),
        "results_count": len(hits),
        "distances": [round(h.distance, 3) for h in hits],
    })
    return hits
