# tests/conftest.py
import hashlib
import os
import tempfile
from pathlib import Path

# Settings are read at import time; point everything at a throwaway sqlite db.
_TMP = Path(tempfile.mkdtemp(prefix="docrag-tests-"))
os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'test.db'}"
os.environ["LOG_DIR"] = str(_TMP / "logs")
os.environ["EMBEDDING_DIM"] = "8"
os.environ["EMBEDDING_BACKOFF_SECONDS"] = "0"
os.environ["FIRECRAWL_API_KEY"] = ""

import pytest

from docrag.core.database import AsyncSessionLocal, Base, engine
import docrag.models  # noqa: F401  (register tables)
from docrag.models.document import Document, DocumentStatus
from docrag.models.workspace import Workspace

DIM = 8


def fake_vector(text: str):
    """Deterministic bag-of-words vector: same words, same direction."""
    vec = [0.0] * DIM
    for word in text.lower().split():
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % DIM
        vec[bucket] += 1.0
    if not any(vec):
        vec[0] = 1.0
    return vec


async def fake_embed(text: str):
    return fake_vector(text)


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def make_document(db):
    async def _make(
        content="hello world",
        owner_id=1,
        name="notes.txt",
        workspace_id=None,
        status=DocumentStatus.PENDING,
    ):
        doc = Document(
            owner_id=owner_id,
            name=name,
            content=content,
            workspace_id=workspace_id,
            status=status.value,
        )
        db.add(doc)
        await db.commit()
        await db.refresh(doc)
        return doc
    return _make


@pytest.fixture
def make_workspace(db):
    async def _make(owner_id=1, name="research"):
        ws = Workspace(owner_id=owner_id, name=name)
        db.add(ws)
        await db.commit()
        await db.refresh(ws)
        return ws
    return _make


@pytest.fixture
def fake_embedder(mocker):
    """Route every embedding call to the deterministic fake."""
    mocker.patch("docrag.rag.pipeline.embed_text", side_effect=fake_embed)
    mocker.patch("docrag.retriever.retriever.embed_text", side_effect=fake_embed)
    return fake_vector


def paragraphs(count: int, length: int = 600) -> str:
    """`count` distinct paragraphs of roughly `length` characters, blank-line separated."""
    out = []
    for p in range(count):
        words = []
        i = 0
        while len(" ".join(words)) < length:
            words.append(f"p{p}w{i}")
            i += 1
        out.append(" ".join(words) + ".")
    return "\n\n".join(out)
