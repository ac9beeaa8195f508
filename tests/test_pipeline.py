# tests/test_pipeline.py
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from docrag.core.errors import (
    ContentUnavailable,
    DocumentNotFound,
    EmbeddingServiceError,
    IndexingInProgress,
    VectorStoreError,
)
from docrag.models.document import IMAGE_PENDING_MARKER, Document, DocumentStatus
from docrag.models.embedding import EmbeddingRecord
from docrag.rag import pipeline
from docrag.rag.pipeline import delete_document, index_document, prepare_reindex, process_document
from docrag.vectorstore.vector_store import count_by_document
from tests.conftest import fake_vector, paragraphs


async def _reload(db, doc):
    await db.refresh(doc)
    return doc


async def _stored_indices(db, document_id):
    result = await db.execute(
        select(EmbeddingRecord.chunk_metadata)
        .where(EmbeddingRecord.document_id == document_id)
        .order_by(EmbeddingRecord.id)
    )
    return [m["chunk_index"] for m in result.scalars().all()]


async def test_three_chunk_document_completes(db, make_document, fake_embedder, mocker):
    doc = await make_document(content=paragraphs(3))
    spy = mocker.spy(pipeline, "update_status")

    assert await index_document(doc.id) == 3

    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.COMPLETED.value
    assert doc.chunk_count == 3
    assert await count_by_document(db, doc.id) == 3
    assert await _stored_indices(db, doc.id) == [0, 1, 2]
    assert [c.args[2] for c in spy.call_args_list] == [DocumentStatus.COMPLETED]


async def test_failed_chunk_is_skipped(db, make_document, mocker):
    async def flaky(text):
        if text.startswith("p1w0"):
            raise EmbeddingServiceError("gave up", attempts=3)
        return fake_vector(text)

    mocker.patch("docrag.rag.pipeline.embed_text", side_effect=flaky)
    doc = await make_document(content=paragraphs(3))

    assert await index_document(doc.id) == 2

    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.COMPLETED.value
    assert doc.chunk_count == 2
    assert await _stored_indices(db, doc.id) == [0, 2]


async def test_all_chunks_failing_marks_failed(db, make_document, mocker):
    mocker.patch(
        "docrag.rag.pipeline.embed_text",
        side_effect=EmbeddingServiceError("down", attempts=3),
    )
    doc = await make_document(content=paragraphs(3))

    assert await index_document(doc.id) == 0

    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.FAILED.value
    assert doc.chunk_count == 0
    assert await count_by_document(db, doc.id) == 0


async def test_store_error_removes_committed_batches(db, make_document, mocker):
    # first batch of five commits, the second batch hits a bad vector
    async def embed(text):
        if text.startswith("p6w0"):
            return [1.0, 2.0]
        return fake_vector(text)

    mocker.patch("docrag.rag.pipeline.embed_text", side_effect=embed)
    doc = await make_document(content=paragraphs(7))

    assert await index_document(doc.id) == 0

    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.FAILED.value
    assert doc.chunk_count == 0
    assert await count_by_document(db, doc.id) == 0


async def test_text_that_normalizes_to_nothing_fails(db, make_document, fake_embedder):
    doc = await make_document(content="\x00\x00")
    assert await index_document(doc.id) == 0
    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.FAILED.value
    assert doc.chunk_count == 0


async def test_index_document_only_claims_pending(db, make_document, fake_embedder):
    doc = await make_document(content=paragraphs(1), status=DocumentStatus.COMPLETED)
    assert await index_document(doc.id) == 0
    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.COMPLETED.value
    assert await count_by_document(db, doc.id) == 0


async def test_reindex_is_idempotent(db, make_document, fake_embedder):
    doc = await make_document(content=paragraphs(3))
    await index_document(doc.id)

    doc = await prepare_reindex(db, doc.id, owner_id=1)
    assert doc.status == DocumentStatus.INDEXING.value
    assert doc.chunk_count == 0
    assert await count_by_document(db, doc.id) == 0

    assert await process_document(doc.id) == 3
    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.COMPLETED.value
    assert doc.chunk_count == 3
    assert await count_by_document(db, doc.id) == 3


async def test_retry_from_failed(db, make_document, fake_embedder):
    doc = await make_document(content=paragraphs(2), status=DocumentStatus.FAILED)
    await prepare_reindex(db, doc.id, owner_id=1)
    assert await process_document(doc.id) == 2


async def test_retry_rejected_while_indexing(db, make_document):
    doc = await make_document(content=paragraphs(2), status=DocumentStatus.INDEXING)
    with pytest.raises(IndexingInProgress):
        await prepare_reindex(db, doc.id, owner_id=1)

    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.INDEXING.value


async def test_retry_allowed_when_indexing_is_stale(db, make_document):
    doc = await make_document(content=paragraphs(2), status=DocumentStatus.INDEXING)
    long_ago = datetime.now(timezone.utc) - timedelta(hours=2)
    await db.execute(update(Document).where(Document.id == doc.id).values(status_updated_at=long_ago))
    await db.commit()

    doc = await prepare_reindex(db, doc.id, owner_id=1)
    assert doc.status == DocumentStatus.INDEXING.value


async def test_retry_without_content(db, make_document):
    doc = await make_document(content=IMAGE_PENDING_MARKER, status=DocumentStatus.FAILED)
    with pytest.raises(ContentUnavailable):
        await prepare_reindex(db, doc.id, owner_id=1)

    empty = await make_document(content=None, status=DocumentStatus.FAILED)
    with pytest.raises(ContentUnavailable):
        await prepare_reindex(db, empty.id, owner_id=1)


async def test_retry_of_someone_elses_document(db, make_document):
    doc = await make_document(owner_id=2, status=DocumentStatus.FAILED)
    with pytest.raises(DocumentNotFound):
        await prepare_reindex(db, doc.id, owner_id=1)


async def test_delete_document_removes_chunks(db, make_document, fake_embedder):
    doc = await make_document(content=paragraphs(2))
    await index_document(doc.id)
    doc_id = doc.id

    await delete_document(db, doc_id, owner_id=1)

    assert await db.get(Document, doc_id) is None
    assert await count_by_document(db, doc_id) == 0


async def test_retry_releases_claim_when_cleanup_fails(db, make_document, mocker):
    mocker.patch("docrag.rag.pipeline.delete_by_document", side_effect=VectorStoreError("locked"))
    doc = await make_document(content=paragraphs(1), status=DocumentStatus.COMPLETED)

    with pytest.raises(VectorStoreError):
        await prepare_reindex(db, doc.id, owner_id=1)

    doc = await _reload(db, doc)
    assert doc.status == DocumentStatus.FAILED.value
    assert doc.chunk_count == 0
